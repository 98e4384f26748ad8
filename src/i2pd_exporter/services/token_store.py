# src/i2pd_exporter/services/token_store.py
from __future__ import annotations

import threading
from typing import Optional


class TokenStore:
    """
    Holds the current I2PControl auth token.

    The lock is only held for the read/write itself, never across network I/O,
    so a slow scrape cannot block another one from authenticating.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._token: Optional[str] = None

    def current_token(self) -> Optional[str]:
        with self._lock:
            return self._token

    def set_token(self, token: str) -> None:
        with self._lock:
            self._token = token

    def invalidate(self, token: Optional[str] = None) -> bool:
        """
        Drop the stored token.

        With `token`, only drops it if it is still the stored one; a token
        refreshed by a concurrent scrape in the meantime is kept.
        Returns True when something was cleared.
        """
        with self._lock:
            if self._token is None:
                return False
            if token is not None and token != self._token:
                return False
            self._token = None
            return True
