# src/i2pd_exporter/core/metrics.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

from prometheus_client import CollectorRegistry
from prometheus_client.metrics_core import CounterMetricFamily, GaugeMetricFamily, Metric
from prometheus_client.exposition import choose_encoder
from prometheus_client.registry import Collector

from i2pd_exporter.services.snapshot import (
    DIRECTIONS,
    IP_FAMILIES,
    NET_STATES,
    WINDOWS,
    RouterMetricsSnapshot,
)

NET_STATUS_CODES_DOC = "0=OK, 1=Firewalled, 2=Unknown, 3=Proxy, 4=Mesh"


@dataclass(frozen=True)
class ExporterSelfMetrics:
    version: str
    scrape_duration_seconds: float
    effective_timeout_seconds: Optional[float]
    last_scrape_error: bool


def _gauge(name: str, documentation: str, value: float) -> GaugeMetricFamily:
    return GaugeMetricFamily(name, documentation, value=float(value))


def router_families(d: RouterMetricsSnapshot) -> Iterator[Metric]:
    if d.router_status is not None:
        yield _gauge("i2p_router_status", "Router status (1 or 0)", d.router_status)

    if d.router_version is not None:
        g = GaugeMetricFamily("i2p_router_build_info", "Router build information", labels=["version"])
        g.add_metric([d.router_version], 1.0)
        yield g

    if d.uptime_seconds is not None:
        yield _gauge("i2p_router_uptime_seconds", "Router uptime in seconds", d.uptime_seconds)

    if d.bandwidth:
        g = GaugeMetricFamily(
            "i2p_router_net_bw_bytes_per_second",
            "Router bandwidth in bytes/sec",
            labels=["direction", "window"],
        )
        for direction in DIRECTIONS:
            for window in WINDOWS:
                v = d.bandwidth.get((direction, window))
                if v is not None:
                    g.add_metric([direction, window], v)
        yield g

    if d.net_status:
        states = GaugeMetricFamily(
            "i2p_router_net_status",
            "Network status as states (ok, firewalled, unknown, proxy, mesh)",
            labels=["ip_family", "state"],
        )
        codes = GaugeMetricFamily(
            "i2p_router_net_status_code",
            f"Network status code ({NET_STATUS_CODES_DOC})",
            labels=["ip_family"],
        )
        for family in IP_FAMILIES:
            st = d.net_status.get(family)
            if st is None:
                continue
            active = st.label
            for state in NET_STATES:
                states.add_metric([family, state], 1.0 if state == active else 0.0)
            codes.add_metric([family], float(st.code))
        yield states
        yield codes

    if d.net_error:
        g = GaugeMetricFamily("i2p_router_net_error_code", "Network error code reported by the router", labels=["ip_family"])
        for family in IP_FAMILIES:
            if family in d.net_error:
                g.add_metric([family], float(d.net_error[family]))
        yield g

    if d.net_testing:
        g = GaugeMetricFamily("i2p_router_net_testing", "Whether a network reachability test is running", labels=["ip_family"])
        for family in IP_FAMILIES:
            if family in d.net_testing:
                g.add_metric([family], float(d.net_testing[family]))
        yield g

    for name, documentation, value in (
        ("i2p_router_tunnels_participating", "Number of active participating transit tunnels", d.tunnels_participating),
        ("i2p_router_tunnels_inbound", "Number of inbound tunnels", d.tunnels_inbound),
        ("i2p_router_tunnels_outbound", "Number of outbound tunnels", d.tunnels_outbound),
        ("i2p_router_tunnels_queue", "Tunnel build request queue size", d.tunnels_queue),
        ("i2p_router_tunnels_tbm_queue", "Transit build message queue size", d.tunnels_tbm_queue),
        ("i2p_router_tunnels_success_ratio", "Tunnel build success rate as a ratio (0..1)", d.tunnels_success_ratio),
        (
            "i2p_router_tunnels_total_success_ratio",
            "Aggregate tunnel build success rate as a ratio (0..1)",
            d.tunnels_total_success_ratio,
        ),
        ("i2p_router_netdb_activepeers", "Number of active known peers in NetDB", d.netdb_activepeers),
        ("i2p_router_netdb_knownpeers", "Total number of known peers (RouterInfos) in NetDB", d.netdb_knownpeers),
        ("i2p_router_netdb_floodfills", "Number of floodfill routers known to NetDB", d.netdb_floodfills),
        ("i2p_router_netdb_leasesets", "Number of LeaseSets known to NetDB", d.netdb_leasesets),
    ):
        if value is not None:
            yield _gauge(name, documentation, value)

    if d.bytes_total:
        c = CounterMetricFamily("i2p_router_net_bytes", "Total network bytes since router start", labels=["direction"])
        for direction in DIRECTIONS:
            v = d.bytes_total.get(direction)
            if v is not None:
                c.add_metric([direction], v)
        yield c


def exporter_families(m: ExporterSelfMetrics) -> Iterator[Metric]:
    g = GaugeMetricFamily("i2pd_exporter_build_info", "Exporter build information", labels=["version"])
    g.add_metric([m.version], 1.0)
    yield g

    yield _gauge("i2pd_exporter_scrape_duration_seconds", "Duration of last scrape", m.scrape_duration_seconds)

    if m.effective_timeout_seconds is not None:
        yield _gauge(
            "i2pd_exporter_effective_scrape_timeout_seconds",
            "Computed effective scrape timeout budget",
            m.effective_timeout_seconds,
        )

    yield _gauge(
        "i2pd_exporter_last_scrape_error",
        "1 if the last scrape had an error, 0 otherwise",
        1.0 if m.last_scrape_error else 0.0,
    )


class ScrapeCollector(Collector):
    """One-shot collector: router families (if any) followed by exporter self-metrics."""

    def __init__(self, snapshot: Optional[RouterMetricsSnapshot], self_metrics: ExporterSelfMetrics) -> None:
        self.snapshot = snapshot
        self.self_metrics = self_metrics

    def collect(self) -> Iterator[Metric]:
        if self.snapshot is not None:
            yield from router_families(self.snapshot)
        yield from exporter_families(self.self_metrics)


def encode_metrics_text(
    snapshot: Optional[RouterMetricsSnapshot],
    self_metrics: ExporterSelfMetrics,
    accept: Optional[str] = None,
) -> Tuple[bytes, str]:
    """
    Render router + exporter metrics.

    A fresh registry per scrape: nothing leaks from one scrape into the next.
    Returns (body, content_type); OpenMetrics when the Accept header asks for
    it, the Prometheus text format otherwise.
    """
    registry = CollectorRegistry(auto_describe=False)
    registry.register(ScrapeCollector(snapshot, self_metrics))
    encoder, content_type = choose_encoder(accept or "")
    return encoder(registry), content_type
