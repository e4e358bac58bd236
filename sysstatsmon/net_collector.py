"""Network interface statistics from <proc>/net/dev."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from .config import ConfigError, NetStatsConfig
from .metrics import (
    INTERFACE_NAME_LABEL,
    Aggregation,
    Metric,
    MetricID,
    new_int64_metric,
)

log = logging.getLogger(__name__)

_NET_DEV_FIELDS = (
    "rx_bytes",
    "rx_packets",
    "rx_errors",
    "rx_dropped",
    "rx_fifo",
    "rx_frame",
    "rx_compressed",
    "rx_multicast",
    "tx_bytes",
    "tx_packets",
    "tx_errors",
    "tx_dropped",
    "tx_fifo",
    "tx_collisions",
    "tx_carrier",
    "tx_compressed",
)


@dataclass(frozen=True)
class NetDevLine:
    """Counters of one network interface."""

    name: str
    rx_bytes: int = 0
    rx_packets: int = 0
    rx_errors: int = 0
    rx_dropped: int = 0
    rx_fifo: int = 0
    rx_frame: int = 0
    rx_compressed: int = 0
    rx_multicast: int = 0
    tx_bytes: int = 0
    tx_packets: int = 0
    tx_errors: int = 0
    tx_dropped: int = 0
    tx_fifo: int = 0
    tx_collisions: int = 0
    tx_carrier: int = 0
    tx_compressed: int = 0


def parse_net_dev(text: str) -> dict:
    """Parse /proc/net/dev into a mapping of interface name to NetDevLine."""
    stats = {}
    for line in text.splitlines()[2:]:
        if not line.strip():
            continue
        name, sep, rest = line.partition(":")
        if not sep:
            raise ValueError(f"malformed net/dev line: {line!r}")
        values = rest.split()
        if len(values) != len(_NET_DEV_FIELDS):
            raise ValueError(
                f"expected {len(_NET_DEV_FIELDS)} values in net/dev line, got {len(values)}"
            )
        name = name.strip()
        stats[name] = NetDevLine(name, **dict(zip(_NET_DEV_FIELDS, map(int, values))))
    return stats


_METRIC_DEFINITIONS = (
    (MetricID.NET_DEV_RX_BYTES, "Cumulative count of bytes received.", "Byte", "rx_bytes"),
    (MetricID.NET_DEV_RX_PACKETS, "Cumulative count of packets received.", "1", "rx_packets"),
    (MetricID.NET_DEV_RX_ERRORS, "Cumulative count of receive errors encountered.", "1", "rx_errors"),
    (MetricID.NET_DEV_RX_DROPPED, "Cumulative count of packets dropped while receiving.", "1", "rx_dropped"),
    (MetricID.NET_DEV_RX_FIFO, "Cumulative count of FIFO buffer errors.", "1", "rx_fifo"),
    (MetricID.NET_DEV_RX_FRAME, "Cumulative count of packet framing errors.", "1", "rx_frame"),
    (
        MetricID.NET_DEV_RX_COMPRESSED,
        "Cumulative count of compressed packets received by the device driver.",
        "1",
        "rx_compressed",
    ),
    (
        MetricID.NET_DEV_RX_MULTICAST,
        "Cumulative count of multicast frames received by the device driver.",
        "1",
        "rx_multicast",
    ),
    (MetricID.NET_DEV_TX_BYTES, "Cumulative count of bytes transmitted.", "Byte", "tx_bytes"),
    (MetricID.NET_DEV_TX_PACKETS, "Cumulative count of packets transmitted.", "1", "tx_packets"),
    (MetricID.NET_DEV_TX_ERRORS, "Cumulative count of transmit errors encountered.", "1", "tx_errors"),
    (MetricID.NET_DEV_TX_DROPPED, "Cumulative count of packets dropped while transmitting.", "1", "tx_dropped"),
    (MetricID.NET_DEV_TX_FIFO, "Cumulative count of FIFO buffer errors.", "1", "tx_fifo"),
    (
        MetricID.NET_DEV_TX_COLLISIONS,
        "Cumulative count of collisions detected on the interface.",
        "1",
        "tx_collisions",
    ),
    (
        MetricID.NET_DEV_TX_CARRIER,
        "Cumulative count of carrier losses detected by the device driver.",
        "1",
        "tx_carrier",
    ),
    (
        MetricID.NET_DEV_TX_COMPRESSED,
        "Cumulative count of compressed packets transmitted by the device driver.",
        "1",
        "tx_compressed",
    ),
)


@dataclass(frozen=True)
class _IfaceStatCollector:
    metric: Optional[Metric]
    exporter: Callable[[NetDevLine], int]


class IfaceStatRecorder:
    """Records a set of metrics, each drawn from one NetDevLine counter."""

    def __init__(self, new_int64_metric: Callable = new_int64_metric) -> None:
        self.new_int64_metric = new_int64_metric
        self.collectors: dict = {}

    def register(
        self, metric_id, view_name, description, unit, aggregation, tag_names, exporter
    ) -> None:
        """Add a metric; raise ValueError if it is already registered."""
        if metric_id in self.collectors:
            raise ValueError(f"metric {MetricID(metric_id).value!r} already registered")
        metric = self.new_int64_metric(
            metric_id, view_name, description, unit, aggregation, tag_names
        )
        self.collectors[metric_id] = _IfaceStatCollector(metric, exporter)

    def record_with_same_tags(self, stat: NetDevLine, tags: Mapping[str, str]) -> None:
        """Record every registered metric for one interface with the same tags."""
        for metric_id, collector in self.collectors.items():
            if collector.metric is None:
                continue
            measurement = collector.exporter(stat)
            collector.metric.record(tags, measurement)
            log.debug("Metric %s record measurement %d with tags %s", metric_id, measurement, tags)


def _exporter(attribute: str) -> Callable[[NetDevLine], int]:
    return lambda stat: int(getattr(stat, attribute))


class NetCollector:
    """Records per-interface network counters."""

    def __init__(
        self,
        config: NetStatsConfig,
        proc_path: str,
        recorder: Optional[IfaceStatRecorder] = None,
    ) -> None:
        self.config = config
        self.proc_path = proc_path
        self.recorder = recorder if recorder is not None else IfaceStatRecorder(new_int64_metric)
        for metric_id, description, unit, attribute in _METRIC_DEFINITIONS:
            self._register(metric_id, description, unit, Aggregation.SUM, _exporter(attribute))

    def _register(self, metric_id, description, unit, aggregation, exporter) -> None:
        metric_config = self.config.metrics_configs.get(metric_id.value)
        if metric_config is None:
            raise ConfigError(f"Metric config {metric_id.value!r} not found")
        self.recorder.register(
            metric_id,
            metric_config.display_name,
            description,
            unit,
            aggregation,
            [INTERFACE_NAME_LABEL],
            exporter,
        )

    def record_net_dev(self) -> None:
        """Record counters of every interface not excluded by the config."""
        path = os.path.join(self.proc_path, "net", "dev")
        try:
            with open(path, encoding="utf-8") as handle:
                stats = parse_net_dev(handle.read())
        except (OSError, ValueError) as exc:
            log.error("Failed to retrieve net dev stat: %s", exc)
            return

        exclude = self.config.exclude_interface_regexp.regex
        for iface, iface_stats in stats.items():
            if exclude is not None and exclude.search(iface):
                log.debug(
                    "Network interface %s matched exclude regexp %r, skipping recording",
                    iface,
                    exclude.pattern,
                )
                continue
            self.recorder.record_with_same_tags(iface_stats, {INTERFACE_NAME_LABEL: iface})

    def collect(self) -> None:
        """Record every configured network metric."""
        self.record_net_dev()