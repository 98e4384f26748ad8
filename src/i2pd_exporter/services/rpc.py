# src/i2pd_exporter/services/rpc.py
"""
Generic JSON-RPC 2.0 call helper for I2PControl.

Every failure is raised as a subclass of RpcCallError so callers can tell
token errors, timeouts and everything else apart without string matching.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger("i2pd_exporter.rpc")

AUTHENTICATE = "Authenticate"
ROUTER_INFO = "RouterInfo"

ERROR_SNIPPET_CHARS = 2048
DEBUG_SNIPPET_CHARS = 4096
REDACTED = "***redacted***"
_SENSITIVE_KEYS = frozenset({"Password", "Token"})


class RpcCallError(Exception):
    def __init__(self, method: str, message: str) -> None:
        self.method = method
        super().__init__(message)


class RpcTransportError(RpcCallError):
    def __init__(self, method: str, error: Exception) -> None:
        self.error = error
        super().__init__(method, f"transport error calling {method}: {type(error).__name__}: {error}")


class RpcTimeoutError(RpcTransportError):
    pass


class RpcHttpError(RpcCallError):
    def __init__(self, method: str, status_code: int, body_snippet: str) -> None:
        self.status_code = status_code
        self.body_snippet = body_snippet
        super().__init__(method, f"HTTP {status_code} calling {method}: body: {body_snippet}")


class RpcError(RpcCallError):
    """Structured JSON-RPC error envelope returned by the router."""

    def __init__(self, method: str, code: int, message: str) -> None:
        self.code = code
        self.rpc_message = message
        super().__init__(method, f"{method} error {code}: {message}")


class RpcDecodeError(RpcCallError):
    def __init__(self, method: str, error: str, body_snippet: str) -> None:
        self.error = error
        self.body_snippet = body_snippet
        super().__init__(method, f"error decoding response body for {method}: {error}; body: {body_snippet}")


def truncate_chars(s: str, max_chars: int) -> str:
    return s if len(s) <= max_chars else s[:max_chars]


def redact_sensitive_fields(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: (REDACTED if k in _SENSITIVE_KEYS else redact_sensitive_fields(v))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact_sensitive_fields(v) for v in value]
    return value


def _body_snippet(method: str, text: str) -> str:
    # Never echo anything the router said in reply to a password.
    if method == AUTHENTICATE:
        return "<omitted>"
    return truncate_chars(text, ERROR_SNIPPET_CHARS)


def _parse_envelope(method: str, text: str) -> Any:
    try:
        payload = json.loads(text)
    except ValueError as e:
        raise RpcDecodeError(method, str(e), _body_snippet(method, text)) from None

    if not isinstance(payload, dict):
        raise RpcDecodeError(method, f"expected a JSON object, got {type(payload).__name__}", _body_snippet(method, text))

    if "result" in payload and payload.get("error") is None:
        return payload["result"]

    err = payload.get("error")
    if isinstance(err, dict) and isinstance(err.get("code"), int) and not isinstance(err.get("code"), bool):
        msg = err.get("message")
        raise RpcError(method, int(err["code"]), str(msg) if msg is not None else "")

    raise RpcDecodeError(method, "response has neither 'result' nor a valid 'error'", _body_snippet(method, text))


async def rpc_call(
    client: httpx.AsyncClient,
    url: str,
    method: str,
    params: Dict[str, Any],
    timeout: float,
    *,
    debug_requests: bool = False,
    debug_bodies: bool = False,
) -> Any:
    """
    POST one JSON-RPC request and return its `result`.

    The body is serialized up front so it goes out with a fixed Content-Length;
    some I2PControl servers reject chunked requests as malformed JSON.
    """
    req: Dict[str, Any] = {"id": 1, "jsonrpc": "2.0", "method": method, "params": params}
    body = json.dumps(req).encode("utf-8")

    if debug_requests:
        logger.info(
            "%s request body: %s",
            method,
            json.dumps(redact_sensitive_fields(req)),
            extra={"rpc_method": method},
        )

    try:
        resp = await client.post(
            url,
            content=body,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )
    except httpx.TimeoutException as e:
        raise RpcTimeoutError(method, e) from e
    except httpx.RequestError as e:
        raise RpcTransportError(method, e) from e

    text = resp.text

    if not resp.is_success:
        raise RpcHttpError(method, resp.status_code, _body_snippet(method, text))

    if debug_bodies and method == ROUTER_INFO:
        logger.debug(
            "%s response body: %s",
            method,
            truncate_chars(text, DEBUG_SNIPPET_CHARS),
            extra={"rpc_method": method},
        )

    return _parse_envelope(method, text)
