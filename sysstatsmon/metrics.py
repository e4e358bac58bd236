"""In-memory metrics used by the system stats collectors."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Optional, Union

# Labels attached to recorded measurements.
DEVICE_NAME_LABEL = "device_name"
DIRECTION_LABEL = "direction"
STATE_LABEL = "state"
FS_TYPE_LABEL = "fs_type"
MOUNT_OPTION_LABEL = "mount_option"
FEATURE_LABEL = "os_feature"
VALUE_LABEL = "value"
INTERFACE_NAME_LABEL = "interface_name"
CPU_LABEL = "cpu"
STAGE_LABEL = "stage"

_MAX_TAG_NAME_LENGTH = 255

Number = Union[int, float]


class Aggregation(Enum):
    """How successive measurements of a metric are combined."""

    LAST_VALUE = "last_value"
    SUM = "sum"


class MetricID(str, Enum):
    """Identifiers of the metrics that collectors can report."""

    CPU_RUNNABLE_TASK_COUNT = "cpu/runnable_task_count"
    CPU_USAGE_TIME = "cpu/usage_time"
    CPU_LOAD_1M = "cpu/load_1m"
    CPU_LOAD_5M = "cpu/load_5m"
    CPU_LOAD_15M = "cpu/load_15m"
    SYSTEM_PROCESSES_TOTAL = "system/processes_total"
    SYSTEM_PROCS_RUNNING = "system/procs_running"
    SYSTEM_PROCS_BLOCKED = "system/procs_blocked"
    SYSTEM_INTERRUPTS_TOTAL = "system/interrupts_total"
    SYSTEM_CPU_STAT = "system/cpu_stat"

    DISK_IO_TIME = "disk/io_time"
    DISK_WEIGHTED_IO = "disk/weighted_io"
    DISK_AVG_QUEUE_LEN = "disk/avg_queue_len"
    DISK_OPS_COUNT = "disk/operation_count"
    DISK_MERGED_OPS_COUNT = "disk/merged_operation_count"
    DISK_OPS_BYTES = "disk/operation_bytes_count"
    DISK_OPS_TIME = "disk/operation_time"
    DISK_BYTES_USED = "disk/bytes_used"
    DISK_PERCENT_USED = "disk/percent_used"

    HOST_UPTIME = "host/uptime"

    MEMORY_BYTES_USED = "memory/bytes_used"
    MEMORY_PERCENT_USED = "memory/percent_used"
    MEMORY_ANONYMOUS_USED = "memory/anonymous_used"
    MEMORY_PAGE_CACHE_USED = "memory/page_cache_used"
    MEMORY_UNEVICTABLE_USED = "memory/unevictable_used"
    MEMORY_DIRTY_USED = "memory/dirty_used"

    OS_FEATURE = "system/os_feature"

    NET_DEV_RX_BYTES = "net/rx_bytes"
    NET_DEV_RX_PACKETS = "net/rx_packets"
    NET_DEV_RX_ERRORS = "net/rx_errors"
    NET_DEV_RX_DROPPED = "net/rx_dropped"
    NET_DEV_RX_FIFO = "net/rx_fifo"
    NET_DEV_RX_FRAME = "net/rx_frame"
    NET_DEV_RX_COMPRESSED = "net/rx_compressed"
    NET_DEV_RX_MULTICAST = "net/rx_multicast"
    NET_DEV_TX_BYTES = "net/tx_bytes"
    NET_DEV_TX_PACKETS = "net/tx_packets"
    NET_DEV_TX_ERRORS = "net/tx_errors"
    NET_DEV_TX_DROPPED = "net/tx_dropped"
    NET_DEV_TX_FIFO = "net/tx_fifo"
    NET_DEV_TX_COLLISIONS = "net/tx_collisions"
    NET_DEV_TX_CARRIER = "net/tx_carrier"
    NET_DEV_TX_COMPRESSED = "net/tx_compressed"


@dataclass(frozen=True)
class MetricRepr:
    """A snapshot of one time series: its labels and current value."""

    labels: dict
    value: Number


@dataclass
class Metric:
    """A named metric that aggregates measurements per label set."""

    metric_id: MetricID
    view_name: str
    description: str
    unit: str
    aggregation: Aggregation
    tag_names: tuple
    value_type: type = float
    _series: dict = field(default_factory=dict, init=False, repr=False, compare=False)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def record(self, tags: Mapping[str, str], value: Number) -> None:
        """Record a measurement; tags outside the metric's tag names are dropped."""
        value = self._coerce(value)
        labels = {name: tags[name] for name in self.tag_names if name in tags}
        key = tuple(sorted(labels.items()))
        with self._lock:
            if self.aggregation is Aggregation.SUM and key in self._series:
                _, current = self._series[key]
                self._series[key] = (labels, current + value)
            else:
                self._series[key] = (labels, value)

    def list_metrics(self) -> list:
        """Return the current value of every recorded label set."""
        with self._lock:
            return [
                MetricRepr(labels=dict(labels), value=value)
                for labels, value in self._series.values()
            ]

    def _coerce(self, value: Number) -> Number:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"metric {self.view_name!r} needs a number, got {value!r}")
        if self.value_type is int:
            if not isinstance(value, int):
                raise TypeError(
                    f"metric {self.view_name!r} records integers, got {value!r}"
                )
            return value
        return float(value)


def _check_definition(aggregation: Aggregation, tag_names: Iterable[str]) -> tuple:
    if not isinstance(aggregation, Aggregation):
        raise ValueError(f"unknown aggregation option {aggregation!r}")
    names = tuple(tag_names)
    for name in names:
        if (
            not isinstance(name, str)
            or not name
            or len(name) > _MAX_TAG_NAME_LENGTH
            or not all(" " <= ch <= "~" for ch in name)
        ):
            raise ValueError(f"invalid tag name {name!r}")
    if len(set(names)) != len(names):
        raise ValueError(f"duplicate tag names in {list(names)!r}")
    return names


def _new_metric(
    value_type: type,
    metric_id: MetricID,
    view_name: str,
    description: str,
    unit: str,
    aggregation: Aggregation,
    tag_names: Iterable[str],
) -> Optional[Metric]:
    names = _check_definition(aggregation, tag_names)
    if not view_name:
        return None
    return Metric(
        metric_id=metric_id,
        view_name=view_name,
        description=description,
        unit=unit,
        aggregation=aggregation,
        tag_names=names,
        value_type=value_type,
    )


def new_int64_metric(metric_id, view_name, description, unit, aggregation, tag_names):
    """Create an integer metric, or return None when the view name is empty."""
    return _new_metric(int, metric_id, view_name, description, unit, aggregation, tag_names)


def new_float64_metric(metric_id, view_name, description, unit, aggregation, tag_names):
    """Create a float metric, or return None when the view name is empty."""
    return _new_metric(float, metric_id, view_name, description, unit, aggregation, tag_names)