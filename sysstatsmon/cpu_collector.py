"""CPU usage, load and kernel scheduler statistics."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field, fields

import psutil

from .config import CPUStatsConfig, MetricConfig
from .metrics import (
    CPU_LABEL,
    STAGE_LABEL,
    STATE_LABEL,
    Aggregation,
    MetricID,
    new_float64_metric,
    new_int64_metric,
)

log = logging.getLogger(__name__)

# Ratio between one second and one USER_HZ clock tick; 100 on nearly every architecture.
CLOCK_TICK = 100.0

_IS_WINDOWS = sys.platform == "win32"

_USAGE_STATES = (
    ("user", "user"),
    ("system", "system"),
    ("idle", "idle"),
    ("nice", "nice"),
    ("iowait", "iowait"),
    ("irq", "irq"),
    ("softirq", "softirq"),
    ("steal", "steal"),
    ("guest", "guest"),
    ("guest_nice", "guest_nice"),
)

_CPU_STAGES = (
    ("user", "user"),
    ("nice", "nice"),
    ("system", "system"),
    ("idle", "idle"),
    ("iowait", "iowait"),
    ("iRQ", "irq"),
    ("softIRQ", "softirq"),
    ("steal", "steal"),
    ("guest", "guest"),
    ("guestNice", "guest_nice"),
)


@dataclass
class CPUTimes:
    """Time, in seconds, one CPU (or all of them) spent in each state."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0
    guest_nice: float = 0.0


@dataclass
class ProcStat:
    """The parts of a /proc/stat file the collector uses."""

    cpu_total: CPUTimes = field(default_factory=CPUTimes)
    cpu: dict = field(default_factory=dict)
    irq_total: int = 0
    context_switches: int = 0
    boot_time: int = 0
    process_created: int = 0
    processes_running: int = 0
    processes_blocked: int = 0


def _parse_cpu_times(values: list) -> CPUTimes:
    if not values:
        raise ValueError("cpu line has no values")
    names = [f.name for f in fields(CPUTimes)]
    return CPUTimes(**{name: float(v) / CLOCK_TICK for name, v in zip(names, values)})


def _first_int(key: str, values: list) -> int:
    if not values:
        raise ValueError(f"{key!r} line has no value")
    return int(values[0])


def parse_proc_stat(text: str) -> ProcStat:
    """Parse the contents of /proc/stat; CPU times come back in seconds."""
    stat = ProcStat()
    for line in text.splitlines():
        parts = line.split()
        if not parts:
            continue
        key, values = parts[0], parts[1:]
        if key == "cpu":
            stat.cpu_total = _parse_cpu_times(values)
        elif key.startswith("cpu"):
            stat.cpu[int(key[3:])] = _parse_cpu_times(values)
        elif key == "intr":
            stat.irq_total = _first_int(key, values)
        elif key == "ctxt":
            stat.context_switches = _first_int(key, values)
        elif key == "btime":
            stat.boot_time = _first_int(key, values)
        elif key == "processes":
            stat.process_created = _first_int(key, values)
        elif key == "procs_running":
            stat.processes_running = _first_int(key, values)
        elif key == "procs_blocked":
            stat.processes_blocked = _first_int(key, values)
    return stat


class CPUCollector:
    """Records CPU usage, load averages and process statistics."""

    def __init__(self, config: CPUStatsConfig, proc_path: str) -> None:
        self.config = config
        self.proc_path = proc_path
        self.last_usage_time: dict = {}

        def display(metric_id: MetricID) -> str:
            return config.metrics_configs.get(metric_id.value, MetricConfig()).display_name

        def float_metric(metric_id, description, unit, aggregation, tags=()):
            return new_float64_metric(
                metric_id, display(metric_id), description, unit, aggregation, list(tags)
            )

        def int_metric(metric_id, description, unit, aggregation, tags=()):
            return new_int64_metric(
                metric_id, display(metric_id), description, unit, aggregation, list(tags)
            )

        self.m_runnable_task_count = float_metric(
            MetricID.CPU_RUNNABLE_TASK_COUNT,
            "The average number of runnable tasks in the run-queue during the last minute",
            "1",
            Aggregation.LAST_VALUE,
        )
        self.m_usage_time = float_metric(
            MetricID.CPU_USAGE_TIME, "CPU usage, in seconds", "s", Aggregation.SUM, [STATE_LABEL]
        )
        self.m_cpu_load_1m = float_metric(
            MetricID.CPU_LOAD_1M, "CPU average load (1m)", "1", Aggregation.LAST_VALUE
        )
        self.m_cpu_load_5m = float_metric(
            MetricID.CPU_LOAD_5M, "CPU average load (5m)", "1", Aggregation.LAST_VALUE
        )
        self.m_cpu_load_15m = float_metric(
            MetricID.CPU_LOAD_15M, "CPU average load (15m)", "1", Aggregation.LAST_VALUE
        )
        self.m_system_processes_total = int_metric(
            MetricID.SYSTEM_PROCESSES_TOTAL, "Number of forks since boot.", "1", Aggregation.SUM
        )
        self.m_system_procs_running = int_metric(
            MetricID.SYSTEM_PROCS_RUNNING,
            "Number of processes currently running.",
            "1",
            Aggregation.LAST_VALUE,
        )
        self.m_system_procs_blocked = int_metric(
            MetricID.SYSTEM_PROCS_BLOCKED,
            "Number of processes currently blocked.",
            "1",
            Aggregation.LAST_VALUE,
        )
        self.m_system_interrupts_total = int_metric(
            MetricID.SYSTEM_INTERRUPTS_TOTAL,
            "Total number of interrupts serviced (cumulative).",
            "1",
            Aggregation.SUM,
        )
        self.m_system_cpu_stat = float_metric(
            MetricID.SYSTEM_CPU_STAT,
            "Cumulative time each cpu spent in various stages.",
            "ns",
            Aggregation.SUM,
            [CPU_LABEL, STAGE_LABEL],
        )

    def record_usage(self) -> None:
        """Record CPU time spent in each state since the previous collection."""
        if self.m_usage_time is None:
            return
        try:
            times = psutil.cpu_times(percpu=False)
        except (OSError, psutil.Error) as exc:
            log.error("Failed to retrieve CPU timers stat: %s", exc)
            return
        for state, attr in _USAGE_STATES:
            current = CLOCK_TICK * float(getattr(times, attr, 0.0))
            self.m_usage_time.record(
                {STATE_LABEL: state}, current - self.last_usage_time.get(state, 0.0)
            )
            self.last_usage_time[state] = current

    def record_load(self) -> None:
        """Record the 1, 5 and 15 minute load averages."""
        if _IS_WINDOWS:
            return
        if all(
            metric is None
            for metric in (
                self.m_runnable_task_count,
                self.m_cpu_load_1m,
                self.m_cpu_load_5m,
                self.m_cpu_load_15m,
            )
        ):
            return
        try:
            load1, load5, load15 = os.getloadavg()
        except OSError as exc:
            log.error("Failed to retrieve average CPU load: %s", exc)
            return
        for metric, value in (
            (self.m_runnable_task_count, load1),
            (self.m_cpu_load_1m, load1),
            (self.m_cpu_load_5m, load5),
            (self.m_cpu_load_15m, load15),
        ):
            if metric is not None:
                metric.record({}, float(value))

    def record_system_stats(self) -> None:
        """Record process, interrupt and per-CPU counters from <proc>/stat."""
        if _IS_WINDOWS:
            return
        if all(
            metric is None
            for metric in (
                self.m_system_cpu_stat,
                self.m_system_interrupts_total,
                self.m_system_processes_total,
                self.m_system_procs_blocked,
                self.m_system_procs_running,
            )
        ):
            return
        try:
            with open(os.path.join(self.proc_path, "stat"), encoding="utf-8") as handle:
                stat = parse_proc_stat(handle.read())
        except (OSError, ValueError) as exc:
            log.error("Failed to retrieve cpu/process stats: %s", exc)
            return

        for metric, value in (
            (self.m_system_processes_total, stat.process_created),
            (self.m_system_procs_running, stat.processes_running),
            (self.m_system_procs_blocked, stat.processes_blocked),
            (self.m_system_interrupts_total, stat.irq_total),
        ):
            if metric is not None:
                metric.record({}, value)

        if self.m_system_cpu_stat is not None:
            for index, times in sorted(stat.cpu.items()):
                for stage, attr in _CPU_STAGES:
                    self.m_system_cpu_stat.record(
                        {CPU_LABEL: f"cpu{index}", STAGE_LABEL: stage}, getattr(times, attr)
                    )

    def collect(self) -> None:
        """Record every configured CPU metric."""
        self.record_load()
        self.record_usage()
        self.record_system_stats()