# src/i2pd_exporter/services/snapshot.py
"""
RouterInfo result -> RouterMetricsSnapshot.

Fields the router did not report stay None (or absent from the keyed maps) so
the exposition omits them instead of publishing a fabricated zero.
"""
from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

logger = logging.getLogger("i2pd_exporter.snapshot")

DIRECTIONS = ("inbound", "outbound", "transit")
WINDOWS = ("1s", "15s")
IP_FAMILIES = ("ipv4", "ipv6")

# I2PControl net status codes, in code order.
NET_STATES = ("ok", "firewalled", "unknown", "proxy", "mesh")
UNKNOWN_STATE = "unknown"

K_STATUS = "i2p.router.status"
K_VERSION = "i2p.router.version"
K_UPTIME = "i2p.router.uptime"

BANDWIDTH_KEYS: Dict[Tuple[str, str], str] = {
    ("inbound", "1s"): "i2p.router.net.bw.inbound.1s",
    ("inbound", "15s"): "i2p.router.net.bw.inbound.15s",
    ("outbound", "1s"): "i2p.router.net.bw.outbound.1s",
    ("outbound", "15s"): "i2p.router.net.bw.outbound.15s",
    ("transit", "15s"): "i2p.router.net.bw.transit.15s",
}

NET_STATUS_KEYS = {"ipv4": "i2p.router.net.status", "ipv6": "i2p.router.net.status.v6"}
NET_ERROR_KEYS = {"ipv4": "i2p.router.net.error", "ipv6": "i2p.router.net.error.v6"}
NET_TESTING_KEYS = {"ipv4": "i2p.router.net.testing", "ipv6": "i2p.router.net.testing.v6"}

TUNNEL_KEYS = {
    "tunnels_participating": "i2p.router.net.tunnels.participating",
    "tunnels_inbound": "i2p.router.net.tunnels.inbound",
    "tunnels_outbound": "i2p.router.net.tunnels.outbound",
    "tunnels_queue": "i2p.router.net.tunnels.queue",
    "tunnels_tbm_queue": "i2p.router.net.tunnels.tbmqueue",
}

# Reported as percentages; stored as ratios.
RATIO_KEYS = {
    "tunnels_success_ratio": "i2p.router.net.tunnels.successrate",
    "tunnels_total_success_ratio": "i2p.router.net.tunnels.totalsuccessrate",
}

NETDB_KEYS = {
    "netdb_activepeers": "i2p.router.netdb.activepeers",
    "netdb_knownpeers": "i2p.router.netdb.knownpeers",
    "netdb_floodfills": "i2p.router.netdb.floodfills",
    "netdb_leasesets": "i2p.router.netdb.leasesets",
}

BYTES_TOTAL_KEYS = {
    "inbound": "i2p.router.net.total.received.bytes",
    "outbound": "i2p.router.net.total.sent.bytes",
    "transit": "i2p.router.net.transit.sent.bytes",
}

ROUTER_INFO_KEYS: Tuple[str, ...] = (
    K_STATUS,
    K_VERSION,
    K_UPTIME,
    *BANDWIDTH_KEYS.values(),
    *NET_STATUS_KEYS.values(),
    *NET_ERROR_KEYS.values(),
    *NET_TESTING_KEYS.values(),
    *TUNNEL_KEYS.values(),
    *RATIO_KEYS.values(),
    *NETDB_KEYS.values(),
    *BYTES_TOTAL_KEYS.values(),
)


class MappingError(ValueError):
    """A RouterInfo field has the wrong JSON type or an impossible value."""


_unknown_status_lock = threading.Lock()
_unknown_status_logged = False


def net_status_label(code: int) -> str:
    global _unknown_status_logged
    if 0 <= code < len(NET_STATES):
        return NET_STATES[code]
    with _unknown_status_lock:
        first = not _unknown_status_logged
        _unknown_status_logged = True
    if first:
        logger.warning("Observed unknown net status code: %s", code)
    return UNKNOWN_STATE


@dataclass(frozen=True)
class NetStatus:
    code: int

    @property
    def label(self) -> str:
        return net_status_label(self.code)


def _frozen(m: Mapping) -> Mapping:
    return MappingProxyType(dict(m))


@dataclass(frozen=True)
class RouterMetricsSnapshot:
    router_status: Optional[int] = None
    router_version: Optional[str] = None
    uptime_seconds: Optional[float] = None

    bandwidth: Mapping[Tuple[str, str], float] = field(default_factory=dict)
    net_status: Mapping[str, NetStatus] = field(default_factory=dict)
    net_error: Mapping[str, int] = field(default_factory=dict)
    net_testing: Mapping[str, int] = field(default_factory=dict)

    tunnels_participating: Optional[int] = None
    tunnels_inbound: Optional[int] = None
    tunnels_outbound: Optional[int] = None
    tunnels_queue: Optional[int] = None
    tunnels_tbm_queue: Optional[int] = None
    tunnels_success_ratio: Optional[float] = None
    tunnels_total_success_ratio: Optional[float] = None

    netdb_activepeers: Optional[int] = None
    netdb_knownpeers: Optional[int] = None
    netdb_floodfills: Optional[int] = None
    netdb_leasesets: Optional[int] = None

    bytes_total: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("bandwidth", "net_status", "net_error", "net_testing", "bytes_total"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))

        for name in ("router_status", "uptime_seconds", *TUNNEL_KEYS, *NETDB_KEYS):
            _check_non_negative(name, getattr(self, name))

        for name in RATIO_KEYS:
            v = getattr(self, name)
            if v is not None and not (0.0 <= v <= 1.0):
                raise MappingError(f"{name} must lie in [0, 1], got {v!r}")

        for (direction, window), v in self.bandwidth.items():
            if direction not in DIRECTIONS or window not in WINDOWS:
                raise MappingError(f"bandwidth: unknown series ({direction!r}, {window!r})")
            _check_non_negative(f"bandwidth[{direction},{window}]", v)

        for family_map in (self.net_status, self.net_error, self.net_testing):
            for family in family_map:
                if family not in IP_FAMILIES:
                    raise MappingError(f"unknown ip family {family!r}")

        for family, st in self.net_status.items():
            _check_non_negative(f"net_status[{family}]", st.code)
        for family, v in self.net_error.items():
            _check_non_negative(f"net_error[{family}]", v)
        for family, v in self.net_testing.items():
            _check_non_negative(f"net_testing[{family}]", v)

        for direction, v in self.bytes_total.items():
            if direction not in DIRECTIONS:
                raise MappingError(f"bytes_total: unknown direction {direction!r}")
            _check_non_negative(f"bytes_total[{direction}]", v)


def _check_non_negative(name: str, v: Optional[float]) -> None:
    if v is None:
        return
    if not math.isfinite(v) or v < 0:
        raise MappingError(f"{name} must be a finite non-negative number, got {v!r}")


# -----------------------------
# JSON type coercion
# -----------------------------

def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _as_number(key: str, v: Any) -> float:
    if not _is_number(v):
        raise MappingError(f"{key}: expected a number, got {type(v).__name__}")
    f = float(v)
    if not math.isfinite(f):
        raise MappingError(f"{key}: expected a finite number, got {v!r}")
    return f


def _as_integer(key: str, v: Any, *, allow_string: bool = False) -> int:
    if allow_string and isinstance(v, str):
        try:
            return int(v.strip())
        except ValueError:
            raise MappingError(f"{key}: expected an integer string, got {v!r}") from None
    f = _as_number(key, v)
    if not f.is_integer():
        raise MappingError(f"{key}: expected an integer, got {v!r}")
    return int(f)


def _as_string(key: str, v: Any) -> str:
    if not isinstance(v, str):
        raise MappingError(f"{key}: expected a string, got {type(v).__name__}")
    return v


def build_snapshot(result: Any) -> RouterMetricsSnapshot:
    """
    Map a RouterInfo `result` to a snapshot.

    Unknown keys are ignored, missing (or null) keys are omitted, and a key of
    the wrong JSON type raises MappingError.
    """
    if not isinstance(result, Mapping):
        raise MappingError(f"RouterInfo result must be an object, got {type(result).__name__}")

    def get(key: str) -> Any:
        return result.get(key)

    fields: Dict[str, Any] = {}

    if (v := get(K_STATUS)) is not None:
        fields["router_status"] = _as_integer(K_STATUS, v, allow_string=True)
    if (v := get(K_VERSION)) is not None:
        fields["router_version"] = _as_string(K_VERSION, v)
    if (v := get(K_UPTIME)) is not None:
        # milliseconds upstream
        fields["uptime_seconds"] = _as_integer(K_UPTIME, v, allow_string=True) / 1000.0

    fields["bandwidth"] = {
        series: _as_number(key, v)
        for series, key in BANDWIDTH_KEYS.items()
        if (v := get(key)) is not None
    }
    fields["net_status"] = {
        family: NetStatus(_as_integer(key, v))
        for family, key in NET_STATUS_KEYS.items()
        if (v := get(key)) is not None
    }
    fields["net_error"] = {
        family: _as_integer(key, v)
        for family, key in NET_ERROR_KEYS.items()
        if (v := get(key)) is not None
    }
    fields["net_testing"] = {
        family: _as_integer(key, v, allow_string=True)
        for family, key in NET_TESTING_KEYS.items()
        if (v := get(key)) is not None
    }

    for name, key in {**TUNNEL_KEYS, **NETDB_KEYS}.items():
        if (v := get(key)) is not None:
            fields[name] = _as_integer(key, v)

    for name, key in RATIO_KEYS.items():
        if (v := get(key)) is not None:
            fields[name] = _as_number(key, v) / 100.0

    fields["bytes_total"] = {
        direction: _as_number(key, v)
        for direction, key in BYTES_TOTAL_KEYS.items()
        if (v := get(key)) is not None
    }

    return RouterMetricsSnapshot(**fields)
