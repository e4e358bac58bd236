"""Disk IO and disk space statistics."""

from __future__ import annotations

import logging
import math
import os
import subprocess
import sys
import time
from dataclasses import dataclass, fields
from datetime import timedelta
from typing import Iterable, Mapping

import psutil

from .config import DiskStatsConfig, MetricConfig
from .metrics import (
    DEVICE_NAME_LABEL,
    DIRECTION_LABEL,
    FS_TYPE_LABEL,
    MOUNT_OPTION_LABEL,
    STATE_LABEL,
    Aggregation,
    MetricID,
    new_float64_metric,
    new_int64_metric,
)

log = logging.getLogger(__name__)

_SECTOR_SIZE = 512
_IS_LINUX = sys.platform.startswith("linux")


@dataclass(frozen=True)
class IOCounters:
    """Cumulative IO counters of one block device."""

    read_count: int = 0
    merged_read_count: int = 0
    write_count: int = 0
    merged_write_count: int = 0
    read_bytes: int = 0
    write_bytes: int = 0
    read_time: int = 0
    write_time: int = 0
    iops_in_progress: int = 0
    io_time: int = 0
    weighted_io: int = 0
    name: str = ""


_DIRECTIONS = (
    ("read", ("read_count", "merged_read_count", "read_bytes", "read_time")),
    ("write", ("write_count", "merged_write_count", "write_bytes", "write_time")),
)


def _parse_diskstats(text: str, names: set) -> dict:
    counters = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 14:
            continue
        name = parts[2]
        if names and name not in names:
            continue
        values = [int(value) for value in parts[3:14]]
        counters[name] = IOCounters(
            read_count=values[0],
            merged_read_count=values[1],
            read_bytes=values[2] * _SECTOR_SIZE,
            read_time=values[3],
            write_count=values[4],
            merged_write_count=values[5],
            write_bytes=values[6] * _SECTOR_SIZE,
            write_time=values[7],
            iops_in_progress=values[8],
            io_time=values[9],
            weighted_io=values[10],
            name=name,
        )
    return counters


def _read_io_counters(devices: Iterable[str]) -> dict:
    names = {os.path.basename(device) for device in devices}
    if _IS_LINUX:
        path = os.path.join(os.environ.get("HOST_PROC", "/proc"), "diskstats")
        with open(path, encoding="utf-8") as handle:
            return _parse_diskstats(handle.read(), names)

    raw = psutil.disk_io_counters(perdisk=True) or {}
    return {
        name: IOCounters(
            read_count=int(stat.read_count),
            merged_read_count=int(getattr(stat, "read_merged_count", 0)),
            write_count=int(stat.write_count),
            merged_write_count=int(getattr(stat, "write_merged_count", 0)),
            read_bytes=int(stat.read_bytes),
            write_bytes=int(stat.write_bytes),
            read_time=int(getattr(stat, "read_time", 0)),
            write_time=int(getattr(stat, "write_time", 0)),
            io_time=int(getattr(stat, "busy_time", 0)),
            name=name,
        )
        for name, stat in raw.items()
        if not names or name in names
    }


class DiskCollector:
    """Records disk IO counters and disk space usage."""

    def __init__(self, config: DiskStatsConfig) -> None:
        self.config = config
        self.last_sample_time = 0.0
        self._last = {f.name: {} for f in fields(IOCounters) if f.name != "name"}

        def display(metric_id: MetricID) -> str:
            return config.metrics_configs.get(metric_id.value, MetricConfig()).display_name

        def int_metric(metric_id, description, unit, aggregation, tags):
            return new_int64_metric(
                metric_id, display(metric_id), description, unit, aggregation, tags
            )

        def float_metric(metric_id, description, unit, aggregation, tags):
            return new_float64_metric(
                metric_id, display(metric_id), description, unit, aggregation, tags
            )

        device = [DEVICE_NAME_LABEL]
        device_direction = [DEVICE_NAME_LABEL, DIRECTION_LABEL]

        self.m_io_time = int_metric(
            MetricID.DISK_IO_TIME,
            "The IO time spent on the disk, in ms",
            "ms",
            Aggregation.SUM,
            device,
        )
        self.m_weighted_io = int_metric(
            MetricID.DISK_WEIGHTED_IO,
            "The weighted IO on the disk, in ms",
            "ms",
            Aggregation.SUM,
            device,
        )
        self.m_avg_queue_len = float_metric(
            MetricID.DISK_AVG_QUEUE_LEN,
            "The average queue length on the disk",
            "1",
            Aggregation.LAST_VALUE,
            device,
        )
        self.m_ops_count = int_metric(
            MetricID.DISK_OPS_COUNT,
            "Disk operations count",
            "1",
            Aggregation.SUM,
            device_direction,
        )
        self.m_merged_ops_count = int_metric(
            MetricID.DISK_MERGED_OPS_COUNT,
            "Disk merged operations count",
            "1",
            Aggregation.SUM,
            device_direction,
        )
        self.m_ops_bytes = int_metric(
            MetricID.DISK_OPS_BYTES,
            "Bytes transferred in disk operations",
            "1",
            Aggregation.SUM,
            device_direction,
        )
        self.m_ops_time = int_metric(
            MetricID.DISK_OPS_TIME,
            "Time spent in disk operations, in ms",
            "ms",
            Aggregation.SUM,
            device_direction,
        )
        self.m_bytes_used = int_metric(
            MetricID.DISK_BYTES_USED,
            "Disk bytes used, in Bytes",
            "Byte",
            Aggregation.LAST_VALUE,
            [DEVICE_NAME_LABEL, FS_TYPE_LABEL, MOUNT_OPTION_LABEL, STATE_LABEL],
        )
        self.m_percent_used = float_metric(
            MetricID.DISK_PERCENT_USED,
            "Disk usage in percentage of total space",
            "%",
            Aggregation.LAST_VALUE,
            device,
        )

    def record_io_counters(self, io_counters: Mapping[str, IOCounters], sample_time: float) -> None:
        """Record IO deltas since the last sample; sample_time is in seconds."""
        last_io_time = self._last["io_time"]
        last_weighted = self._last["weighted_io"]
        for device, stat in io_counters.items():
            tags = {DEVICE_NAME_LABEL: device}

            history_exists = device in last_io_time
            previous_io_time = last_io_time.get(device, 0)
            previous_weighted = last_weighted.get(device, 0)
            last_io_time[device] = stat.io_time
            last_weighted[device] = stat.weighted_io

            if self.m_io_time is not None:
                self.m_io_time.record(tags, stat.io_time - previous_io_time)
            if self.m_weighted_io is not None:
                self.m_weighted_io.record(tags, stat.weighted_io - previous_weighted)
            if history_exists:
                avg_queue_len = 0.0
                if previous_weighted != stat.weighted_io:
                    delta = stat.weighted_io - previous_weighted
                    elapsed_ms = (sample_time - self.last_sample_time) * 1000
                    if elapsed_ms == 0:
                        avg_queue_len = math.copysign(math.inf, delta)
                    else:
                        avg_queue_len = delta / elapsed_ms
                if self.m_avg_queue_len is not None:
                    self.m_avg_queue_len.record(tags, avg_queue_len)

            metrics = (
                self.m_ops_count,
                self.m_merged_ops_count,
                self.m_ops_bytes,
                self.m_ops_time,
            )
            for direction, attributes in _DIRECTIONS:
                tags = {DEVICE_NAME_LABEL: device, DIRECTION_LABEL: direction}
                for metric, attribute in zip(metrics, attributes):
                    if metric is None:
                        continue
                    current = getattr(stat, attribute)
                    last = self._last[attribute]
                    metric.record(tags, current - last.get(device, 0))
                    last[device] = current

    def collect(self) -> None:
        """Record disk IO and disk space metrics."""
        devices = []
        if self.config.include_root_blk:
            devices.extend(list_root_block_devices(self.config.lsblk_timeout))

        try:
            partitions = psutil.disk_partitions(all=False)
        except (OSError, psutil.Error) as exc:
            log.error("Failed to list disk partitions: %s", exc)
            return

        if self.config.include_all_attached_blk:
            devices.extend(list_attached_block_devices(partitions))

        try:
            io_counters = _read_io_counters(devices)
        except (OSError, ValueError, RuntimeError, psutil.Error) as exc:
            log.error("Failed to retrieve disk IO counters: %s", exc)
            return
        sample_time = time.time()
        try:
            self.record_io_counters(io_counters, sample_time)
            if self.m_bytes_used is not None:
                self._record_usage(partitions)
        finally:
            self.last_sample_time = sample_time

    def _record_usage(self, partitions) -> None:
        seen = set()
        for partition in partitions:
            if partition.device in seen:
                continue
            seen.add(partition.device)
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except (OSError, psutil.Error) as exc:
                log.error("Failed to retrieve disk usage for %r: %s", partition.mountpoint, exc)
                continue
            device_name = partition.device.removeprefix("/dev/")
            opts = partition.opts
            if not isinstance(opts, str):
                opts = ",".join(opts)
            base = {
                DEVICE_NAME_LABEL: device_name,
                FS_TYPE_LABEL: partition.fstype,
                MOUNT_OPTION_LABEL: opts,
            }
            self.m_bytes_used.record({**base, STATE_LABEL: "free"}, int(usage.free))
            self.m_bytes_used.record({**base, STATE_LABEL: "used"}, int(usage.used))
            if self.m_percent_used is not None:
                self.m_percent_used.record({**base, STATE_LABEL: "used"}, float(usage.percent))


def list_root_block_devices(timeout: timedelta) -> list:
    """List block devices that are neither slaves nor holders, via lsblk."""
    stdout = ""
    try:
        result = subprocess.run(
            ["lsblk", "-d", "-n", "-o", "NAME"],
            capture_output=True,
            text=True,
            timeout=timeout.total_seconds(),
            check=False,
        )
        stdout = result.stdout or ""
        if result.returncode != 0:
            log.error("Error calling lsblk")
    except (OSError, subprocess.SubprocessError):
        log.error("Error calling lsblk")
    return stdout.strip().split("\n")


def list_attached_block_devices(partitions) -> list:
    """List the devices of all currently attached partitions."""
    return [partition.device for partition in partitions]