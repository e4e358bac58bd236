"""Memory usage statistics."""

from __future__ import annotations

import logging
import os
import sys
from typing import Mapping, Optional

import psutil

from .config import MemoryStatsConfig, MetricConfig
from .metrics import (
    STATE_LABEL,
    Aggregation,
    MetricID,
    new_float64_metric,
    new_int64_metric,
)

log = logging.getLogger(__name__)

_IS_WINDOWS = sys.platform == "win32"
_KIB = 1024


def parse_meminfo(text: str) -> dict:
    """Parse the contents of /proc/meminfo into a mapping of field name to value.

    Values carrying a "kB" unit are returned as kibibytes; unitless values as-is.
    """
    meminfo = {}
    for line in text.splitlines():
        if not line.strip():
            continue
        key, sep, rest = line.partition(":")
        if not sep:
            raise ValueError(f"malformed meminfo line: {line!r}")
        parts = rest.split()
        if not parts or len(parts) > 2:
            raise ValueError(f"malformed meminfo line: {line!r}")
        if len(parts) == 2 and parts[1] != "kB":
            raise ValueError(f"unknown unit {parts[1]!r} in meminfo line: {line!r}")
        try:
            meminfo[key.strip()] = int(parts[0])
        except ValueError as exc:
            raise ValueError(f"invalid value in meminfo line: {line!r}") from exc
    return meminfo


class MemoryCollector:
    """Records memory usage broken down by state."""

    def __init__(self, config: MemoryStatsConfig, proc_path: str = "/proc") -> None:
        self.config = config
        self.proc_path = proc_path

        def display(metric_id: MetricID) -> str:
            return config.metrics_configs.get(metric_id.value, MetricConfig()).display_name

        self.m_bytes_used = new_int64_metric(
            MetricID.MEMORY_BYTES_USED,
            display(MetricID.MEMORY_BYTES_USED),
            "Memory usage by each memory state, in Bytes. Summing values of all states "
            "yields the total memory on the node.",
            "Byte",
            Aggregation.LAST_VALUE,
            [STATE_LABEL],
        )
        self.m_percent_used = new_float64_metric(
            MetricID.MEMORY_PERCENT_USED,
            display(MetricID.MEMORY_PERCENT_USED),
            "Memory usage in percentage of total memory.",
            "%",
            Aggregation.LAST_VALUE,
            [STATE_LABEL],
        )
        self.m_anonymous_used = new_int64_metric(
            MetricID.MEMORY_ANONYMOUS_USED,
            display(MetricID.MEMORY_ANONYMOUS_USED),
            "Anonymous memory usage, in Bytes. Summing values of all states yields the "
            "total anonymous memory used.",
            "Byte",
            Aggregation.LAST_VALUE,
            [STATE_LABEL],
        )
        self.m_page_cache_used = new_int64_metric(
            MetricID.MEMORY_PAGE_CACHE_USED,
            display(MetricID.MEMORY_PAGE_CACHE_USED),
            "Page cache memory usage, in Bytes. Summing values of all states yields the "
            "total anonymous memory used.",
            "Byte",
            Aggregation.LAST_VALUE,
            [STATE_LABEL],
        )
        self.m_unevictable_used = new_int64_metric(
            MetricID.MEMORY_UNEVICTABLE_USED,
            display(MetricID.MEMORY_UNEVICTABLE_USED),
            "Unevictable memory usage, in Bytes",
            "Byte",
            Aggregation.LAST_VALUE,
            [],
        )
        self.m_dirty_used = new_int64_metric(
            MetricID.MEMORY_DIRTY_USED,
            display(MetricID.MEMORY_DIRTY_USED),
            "Dirty pages usage, in Bytes. Dirty means the memory is waiting to be written "
            "back to disk, and writeback means the memory is actively being written back "
            "to disk.",
            "Byte",
            Aggregation.LAST_VALUE,
            [STATE_LABEL],
        )

    def record_meminfo(self, meminfo: Mapping[str, int]) -> None:
        """Record metrics from parsed meminfo values (in kibibytes)."""
        total: Optional[int] = meminfo.get("MemTotal")
        free = meminfo.get("MemFree")
        buffers = meminfo.get("Buffers")
        cached = meminfo.get("Cached")
        slab = meminfo.get("Slab")
        parts_known = None not in (total, free, buffers, cached, slab)

        if self.m_bytes_used is not None:
            for state, value in (
                ("free", free),
                ("buffered", buffers),
                ("cached", cached),
                ("slab", slab),
            ):
                if value is not None:
                    self.m_bytes_used.record({STATE_LABEL: state}, value * _KIB)
            if parts_known:
                used = total - free - buffers - cached - slab
                self.m_bytes_used.record({STATE_LABEL: "used"}, used * _KIB)

        if self.m_percent_used is not None and parts_known and total > 0:
            ratio = (total - free - buffers - cached - slab) / total
            self.m_percent_used.record({STATE_LABEL: "used"}, ratio * 100.0)

        for metric, pairs in (
            (self.m_dirty_used, (("dirty", "Dirty"), ("writeback", "Writeback"))),
            (
                self.m_anonymous_used,
                (("active", "Active(anon)"), ("inactive", "Inactive(anon)")),
            ),
            (
                self.m_page_cache_used,
                (("active", "Active(file)"), ("inactive", "Inactive(file)")),
            ),
        ):
            if metric is None:
                continue
            for state, key in pairs:
                value = meminfo.get(key)
                if value is not None:
                    metric.record({STATE_LABEL: state}, value * _KIB)

        unevictable = meminfo.get("Unevictable")
        if self.m_unevictable_used is not None and unevictable is not None:
            self.m_unevictable_used.record({}, unevictable * _KIB)

    def _collect_windows(self) -> None:
        try:
            memory = psutil.virtual_memory()
        except (OSError, psutil.Error) as exc:
            log.error("cannot get windows memory metrics: %s", exc)
            return
        if self.m_bytes_used is not None:
            self.m_bytes_used.record({STATE_LABEL: "free"}, int(memory.available) * _KIB)
            self.m_bytes_used.record({STATE_LABEL: "used"}, int(memory.used) * _KIB)
        if self.m_percent_used is not None:
            self.m_percent_used.record({STATE_LABEL: "used"}, float(memory.percent))

    def collect(self) -> None:
        """Record every configured memory metric."""
        if _IS_WINDOWS:
            self._collect_windows()
            return
        path = os.path.join(self.proc_path, "meminfo")
        try:
            with open(path, encoding="utf-8") as handle:
                meminfo = parse_meminfo(handle.read())
        except (OSError, ValueError) as exc:
            log.error("Failed to retrieve memory stats: %s", exc)
            return
        self.record_meminfo(meminfo)