# src/i2pd_exporter/services/i2pcontrol.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

import httpx

from i2pd_exporter.core.config import DEFAULT_TOKEN_ERROR_CODES, Settings, get_settings, verify_tls
from i2pd_exporter.core.timeouts import Deadline
from i2pd_exporter.services.rpc import AUTHENTICATE, ROUTER_INFO, RpcError, rpc_call
from i2pd_exporter.services.snapshot import ROUTER_INFO_KEYS
from i2pd_exporter.services.token_store import TokenStore

logger = logging.getLogger("i2pd_exporter.i2pcontrol")

API_VERSION = 1


class AuthenticationError(Exception):
    """The router refused the configured password (or returned no token)."""


class BudgetExceeded(Exception):
    """The scrape budget ran out before an upstream call could be issued."""


class I2pControlClient:
    """
    Authenticated I2PControl client.

    - authenticate(timeout) -> token (stored in the TokenStore)
    - fetch_router_info(deadline) -> raw RouterInfo result mapping

    A token error on RouterInfo triggers exactly one re-authentication and one
    retry; a second token error is raised to the caller as-is.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_url: str,
        password: str,
        *,
        token_error_codes: Iterable[int] = DEFAULT_TOKEN_ERROR_CODES,
        token_store: Optional[TokenStore] = None,
        debug_requests: bool = False,
        debug_bodies: bool = False,
    ) -> None:
        self.http_client = http_client
        self.api_url = api_url
        self.password = password
        self.token_error_codes = frozenset(int(c) for c in token_error_codes)
        self.tokens = token_store or TokenStore()
        self.debug_requests = debug_requests
        self.debug_bodies = debug_bodies
        # created on first use so it binds to the serving loop
        self._auth_lock: Optional[asyncio.Lock] = None

    async def _call(self, method: str, params: Dict[str, Any], timeout: float) -> Any:
        return await rpc_call(
            self.http_client,
            self.api_url,
            method,
            params,
            timeout,
            debug_requests=self.debug_requests,
            debug_bodies=self.debug_bodies,
        )

    def is_token_error(self, err: RpcError) -> bool:
        return err.code in self.token_error_codes

    @staticmethod
    def _remaining(deadline: Deadline, stage: str) -> float:
        rem = deadline.remaining()
        if rem <= 0.0:
            raise BudgetExceeded(f"deadline exceeded before {stage}")
        return rem

    async def authenticate(self, timeout: float) -> str:
        params = {"API": API_VERSION, "Password": self.password}
        try:
            result = await self._call(AUTHENTICATE, params, timeout)
        except RpcError as e:
            raise AuthenticationError(f"Authentication rejected: {e}") from e

        token = result.get("Token") if isinstance(result, dict) else None
        if not isinstance(token, str) or not token:
            raise AuthenticationError("Authentication failed: no token received")

        self.tokens.set_token(token)
        logger.info("Obtained authentication token from I2PControl", extra={"rpc_method": AUTHENTICATE})
        return token

    async def _ensure_token(self, deadline: Deadline, stage: str) -> str:
        token = self.tokens.current_token()
        if token is not None:
            return token

        # Concurrent scrapes share one Authenticate; the TokenStore lock stays I/O-free.
        if self._auth_lock is None:
            self._auth_lock = asyncio.Lock()
        async with self._auth_lock:
            token = self.tokens.current_token()
            if token is not None:
                return token
            logger.info("No token found, authenticating...")
            return await self.authenticate(self._remaining(deadline, stage))

    async def _router_info(self, token: str, deadline: Deadline) -> Dict[str, Any]:
        # Empty strings instead of null: some i2pd builds reject nulls with parse errors.
        params: Dict[str, Any] = {key: "" for key in ROUTER_INFO_KEYS}
        params["Token"] = token
        return await self._call(ROUTER_INFO, params, self._remaining(deadline, "RouterInfo"))

    async def fetch_router_info(self, deadline: Deadline) -> Dict[str, Any]:
        token = await self._ensure_token(deadline, "authentication")
        try:
            return await self._router_info(token, deadline)
        except RpcError as e:
            if not self.is_token_error(e):
                raise
            logger.warning("Token error, re-authenticating...: %s", e, extra={"rpc_method": ROUTER_INFO})
            self.tokens.invalidate(token)

        token = await self._ensure_token(deadline, "re-authentication")
        return await self._router_info(token, deadline)


def build_http_client(s: Optional[Settings] = None) -> httpx.AsyncClient:
    s = s or get_settings()
    return httpx.AsyncClient(
        verify=verify_tls(s),
        timeout=s.max_scrape_timeout_seconds,
        headers={"User-Agent": f"i2pd-exporter/{s.version}"},
    )


def build_client_from_settings(
    http_client: httpx.AsyncClient,
    s: Optional[Settings] = None,
) -> I2pControlClient:
    s = s or get_settings()
    return I2pControlClient(
        http_client,
        s.api_url,
        s.i2pcontrol_password,
        token_error_codes=s.token_error_codes,
        debug_requests=s.debug_rpc_requests,
        debug_bodies=s.debug_rpc_bodies,
    )
