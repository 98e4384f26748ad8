# src/i2pd_exporter/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from i2pd_exporter.core import errors
from i2pd_exporter.core import logging as logging_config
from i2pd_exporter.core.config import Settings, get_settings, verify_tls
from i2pd_exporter.services.i2pcontrol import build_client_from_settings, build_http_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    log = logging.getLogger("uvicorn.error")

    # Freeze settings for this app instance (single source of truth)
    s = getattr(app.state, "settings", None) or get_settings()
    app.state.settings = s

    # Tests may inject a client (e.g. backed by httpx.MockTransport); it stays theirs to close.
    injected: Optional[httpx.AsyncClient] = getattr(app.state, "injected_http_client", None)
    http_client = injected or build_http_client(s)
    app.state.http_client = http_client
    app.state.i2pcontrol = build_client_from_settings(http_client, s)

    if s.i2pcontrol_tls_insecure:
        log.warning("I2PCONTROL_TLS_INSECURE=1: TLS certificate verification disabled for %s", s.i2pcontrol_address)
    else:
        log.info(
            "i2pcontrol address=%s | tls_verify=%s | max_scrape_timeout=%ss | listen=%s",
            s.i2pcontrol_address,
            verify_tls(s),
            s.max_scrape_timeout_seconds,
            s.metrics_listen_addr,
        )

    yield

    # --------------------
    # Shutdown
    # --------------------
    app.state.i2pcontrol = None
    if injected is None:
        await http_client.aclose()


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    s = settings or get_settings()

    app = FastAPI(
        title=s.service_name,
        description="Prometheus exporter for the i2pd I2PControl API",
        version=s.version,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    # Freeze settings onto app.state (so routes don't re-read env)
    app.state.settings = s
    if http_client is not None:
        app.state.injected_http_client = http_client

    logging_config.setup(app, level=s.log_level)
    errors.setup(app)

    from i2pd_exporter.api import metrics

    app.include_router(metrics.router)

    return app
