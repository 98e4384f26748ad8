# src/i2pd_exporter/core/timeouts.py
from __future__ import annotations

import math
import time
from typing import Optional

SCRAPE_TIMEOUT_HEADER = "X-Prometheus-Scrape-Timeout-Seconds"

# Margin reserved for writing the response, applied only above the threshold.
MARGIN_SECONDS = 0.5
MARGIN_THRESHOLD_SECONDS = 3.0
MIN_BUDGET_SECONDS = 0.1


def parse_timeout_hint(raw: Optional[str]) -> Optional[float]:
    """Header value -> seconds. None when missing, non-numeric or non-finite."""
    if raw is None:
        return None
    try:
        secs = float(raw.strip())
    except ValueError:
        return None
    if not math.isfinite(secs):
        return None
    return secs


def effective_budget(hint: float, max_timeout: float) -> float:
    candidate = hint - MARGIN_SECONDS if hint > MARGIN_THRESHOLD_SECONDS else hint
    return max(min(candidate, max_timeout), MIN_BUDGET_SECONDS)


class Deadline:
    """Monotonic deadline shared by every upstream call of one scrape."""

    def __init__(self, budget: float) -> None:
        self.budget = float(budget)
        self._expires_at = time.monotonic() + self.budget

    def remaining(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())
