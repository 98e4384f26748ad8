# src/i2pd_exporter/services/scrape.py
"""
One scrape: RouterInfo (authenticating as needed) -> snapshot, under a budget.

Every failure is folded into a typed outcome here; the HTTP layer only maps
outcomes to status codes.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Union

from i2pd_exporter.core.timeouts import Deadline
from i2pd_exporter.services.i2pcontrol import AuthenticationError, BudgetExceeded, I2pControlClient
from i2pd_exporter.services.rpc import (
    RpcCallError,
    RpcDecodeError,
    RpcError,
    RpcHttpError,
    RpcTimeoutError,
)
from i2pd_exporter.services.snapshot import MappingError, RouterMetricsSnapshot, build_snapshot

logger = logging.getLogger("i2pd_exporter.scrape")


@dataclass(frozen=True)
class Success:
    snapshot: RouterMetricsSnapshot
    duration: float


@dataclass(frozen=True)
class AuthFailure:
    message: str


@dataclass(frozen=True)
class UpstreamError:
    code: str
    message: str


@dataclass(frozen=True)
class Timeout:
    message: str


ScrapeOutcome = Union[Success, AuthFailure, UpstreamError, Timeout]


def outcome_name(outcome: ScrapeOutcome) -> str:
    return {
        Success: "success",
        AuthFailure: "auth_failure",
        UpstreamError: "upstream_error",
        Timeout: "timeout",
    }[type(outcome)]


def _error_code(e: RpcCallError) -> str:
    if isinstance(e, RpcError):
        return str(e.code)
    if isinstance(e, RpcHttpError):
        return f"http_{e.status_code}"
    if isinstance(e, RpcDecodeError):
        return "decode"
    return "transport"


async def _fetch(client: I2pControlClient, deadline: Deadline) -> RouterMetricsSnapshot:
    result = await client.fetch_router_info(deadline)
    return build_snapshot(result)


async def run_scrape(client: I2pControlClient, budget: float) -> ScrapeOutcome:
    """
    Run the pipeline with `budget` seconds end to end.

    Budget expiry (timer, exhausted deadline or an upstream HTTP timeout) is a
    Timeout; everything else that goes wrong is AuthFailure or UpstreamError.
    """
    start = time.perf_counter()
    deadline = Deadline(budget)
    log_extra = {"budget_s": budget}

    try:
        snapshot = await asyncio.wait_for(_fetch(client, deadline), timeout=budget)
    except asyncio.TimeoutError:
        logger.warning("Scrape exceeded budget of %.3fs", budget, extra=log_extra)
        return Timeout(f"scrape exceeded budget of {budget:.3f}s")
    except (BudgetExceeded, RpcTimeoutError) as e:
        logger.warning("Scrape timed out: %s", e, extra=log_extra)
        return Timeout(str(e))
    except AuthenticationError as e:
        logger.error("Scrape failed: %s", e, extra={**log_extra, "error_type": type(e).__name__})
        return AuthFailure(str(e))
    except RpcCallError as e:
        logger.error(
            "Scrape failed: %s",
            e,
            extra={**log_extra, "rpc_method": e.method, "error_type": type(e).__name__},
        )
        return UpstreamError(_error_code(e), str(e))
    except MappingError as e:
        logger.error("Scrape failed: %s", e, extra={**log_extra, "error_type": type(e).__name__})
        return UpstreamError("mapping", str(e))

    return Success(snapshot, time.perf_counter() - start)
