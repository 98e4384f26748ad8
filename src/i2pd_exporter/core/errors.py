# src/i2pd_exporter/core/errors.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("i2pd_exporter.errors")

_STATUS_CODES = {404: "not_found", 405: "method_not_allowed"}


class AppError(HTTPException):
    """
    Error raised by route code; rendered as the JSON envelope.

    Subclasses HTTPException so it still becomes a response on an app that
    never called setup().
    """

    def __init__(
        self,
        *,
        code: str,
        message: str,
        status_code: int,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.extra = extra
        super().__init__(status_code=status_code, detail={"code": code, "message": message})


class ClientRequestError(AppError):
    """The scrape request itself is malformed (e.g. bad timeout header)."""

    def __init__(self, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(code="bad_request", message=message, status_code=400, extra=extra)


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    extra: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """
    {"code", "message", "extra"?, "request_id"?}; never cached.
    """
    payload: Dict[str, Any] = {"code": code, "message": message}
    if extra:
        payload["extra"] = extra

    request_id = getattr(request.state, "request_id", None)
    if request_id:
        payload["request_id"] = request_id

    return JSONResponse(payload, status_code=status_code, headers={"Cache-Control": "no-store"})


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    logger.info("%s: %s", exc.code, exc.message, extra={"path": request.url.path, "status_code": exc.status_code})
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        extra=exc.extra,
    )


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Router-level errors: unknown path, wrong method.
    code = _STATUS_CODES.get(exc.status_code, "http_error")
    message = "Not Found" if exc.status_code == 404 else str(exc.detail)
    return error_response(request, status_code=exc.status_code, code=code, message=message)


async def handle_unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled exception", exc_info=exc, extra={"path": request.url.path})
    return error_response(
        request,
        status_code=500,
        code="internal_error",
        message="An unexpected error occurred",
        extra={"exc_type": type(exc).__name__},
    )


def setup(app: FastAPI) -> None:
    app.add_exception_handler(AppError, handle_app_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(Exception, handle_unhandled_exception)
