# src/i2pd_exporter/api/metrics.py
from __future__ import annotations

import time

from fastapi import APIRouter, Request, Response

from i2pd_exporter.core.config import Settings, get_settings
from i2pd_exporter.core.errors import AppError, ClientRequestError
from i2pd_exporter.core.metrics import ExporterSelfMetrics, encode_metrics_text
from i2pd_exporter.core.timeouts import SCRAPE_TIMEOUT_HEADER, effective_budget, parse_timeout_hint
from i2pd_exporter.services.i2pcontrol import I2pControlClient
from i2pd_exporter.services.scrape import Success, Timeout, outcome_name, run_scrape

router = APIRouter()


def _settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def _client(request: Request) -> I2pControlClient:
    client = getattr(request.app.state, "i2pcontrol", None)
    if client is None:
        raise AppError(
            code="i2pcontrol_unavailable",
            message="I2PControl client is not initialized",
            status_code=503,
        )
    return client


@router.get("/metrics")
async def metrics(request: Request) -> Response:
    raw = request.headers.get(SCRAPE_TIMEOUT_HEADER)
    hint = parse_timeout_hint(raw)
    if hint is None:
        if raw is None:
            raise ClientRequestError(f"Missing required header {SCRAPE_TIMEOUT_HEADER}")
        raise ClientRequestError(
            f"Invalid {SCRAPE_TIMEOUT_HEADER} header",
            extra={"value": raw},
        )

    s = _settings(request)
    budget = effective_budget(hint, s.max_scrape_timeout_seconds)
    request.state.scrape_budget = budget

    start = time.perf_counter()
    outcome = await run_scrape(_client(request), budget)
    request.state.scrape_outcome = outcome_name(outcome)

    ok = isinstance(outcome, Success)
    self_metrics = ExporterSelfMetrics(
        version=s.version,
        scrape_duration_seconds=outcome.duration if ok else time.perf_counter() - start,
        effective_timeout_seconds=budget,
        last_scrape_error=not ok,
    )
    body, content_type = encode_metrics_text(
        outcome.snapshot if ok else None,
        self_metrics,
        accept=request.headers.get("accept"),
    )

    return Response(
        content=body,
        status_code=504 if isinstance(outcome, Timeout) else 200,
        headers={"Content-Type": content_type, "Cache-Control": "no-store"},
    )
