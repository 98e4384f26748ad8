# src/i2pd_exporter/core/logging.py
from __future__ import annotations

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"

# Loggers that share the exporter's JSON handler.
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

# httpx logs every upstream request at INFO; one scrape is already one access record.
_QUIET_LOGGERS = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line: ts, level, logger, message, plus whichever of
    FIELDS the call site passed through `extra=`.
    """

    FIELDS: Tuple[str, ...] = (
        "request_id",
        "method",
        "path",
        "status_code",
        "latency_ms",
        "client_ip",
        "rpc_method",
        "outcome",
        "budget_s",
        "error_type",
        "error_message",
    )

    def format(self, record: logging.LogRecord) -> str:
        doc: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        doc.update(
            (name, getattr(record, name))
            for name in self.FIELDS
            if getattr(record, name, None) is not None
        )

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, _ = record.exc_info
            doc.setdefault("error_type", exc_type.__name__)
            doc.setdefault("error_message", str(exc))
            doc["traceback"] = self.formatException(record.exc_info)

        return json.dumps(doc, default=str)


access_logger = logging.getLogger("i2pd_exporter.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an id (echoed as X-Request-ID) and writes one
    access record when it completes. Scrapes also carry the outcome chosen by
    the /metrics handler.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        started = time.perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        fields: Dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None,
        }

        try:
            response = await call_next(request)
        except Exception:
            fields["latency_ms"] = _elapsed_ms(started)
            access_logger.exception("request failed", extra=fields)
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        fields["status_code"] = response.status_code
        fields["latency_ms"] = _elapsed_ms(started)
        fields["outcome"] = getattr(request.state, "scrape_outcome", None)
        fields["budget_s"] = getattr(request.state, "scrape_budget", None)

        access_logger.info("request", extra=fields)
        return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 3)


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in _SERVER_LOGGERS:
        lg = logging.getLogger(name)
        lg.handlers = [handler]
        lg.propagate = False
        lg.setLevel(level)

    upstream_level = logging.DEBUG if str(level).upper() == "DEBUG" else logging.WARNING
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(upstream_level)


def setup(app: FastAPI, level: str = "INFO") -> None:
    """Called from main.create_app()."""
    configure_logging(level)
    app.add_middleware(RequestLoggingMiddleware)
