"""The system stats monitor: periodically runs every configured collector."""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
from typing import Optional

from .config import ConfigError, SystemStatsConfig
from .cpu_collector import CPUCollector
from .disk_collector import DiskCollector
from .host_collector import HostCollector
from .memory_collector import MemoryCollector
from .net_collector import NetCollector
from .osfeature_collector import OSFeatureCollector
from .types import Monitor, ProblemDaemonHandler

log = logging.getLogger(__name__)

SYSTEM_STATS_MONITOR_NAME = "system-stats-monitor"

_HANDLERS: dict = {}


def _register(name: str, handler: ProblemDaemonHandler) -> None:
    if name in _HANDLERS:
        raise ValueError(f"problem daemon {name!r} already registered")
    _HANDLERS[name] = handler


def get_problem_daemon_handler(name: str) -> ProblemDaemonHandler:
    """Return the handler registered under name; raise KeyError if there is none."""
    try:
        return _HANDLERS[name]
    except KeyError:
        raise KeyError(f"problem daemon {name!r} is not registered") from None


class SystemStatsMonitor(Monitor):
    """Collects system statistics at the configured interval."""

    def __init__(self, config_path: str) -> None:
        self.config_path = config_path
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

        try:
            with open(config_path, encoding="utf-8") as handle:
                data = json.load(handle)
        except OSError as exc:
            raise ConfigError(f"Failed to read configuration file {config_path!r}: {exc}") from exc
        except ValueError as exc:
            raise ConfigError(
                f"Failed to unmarshal configuration file {config_path!r}: {exc}"
            ) from exc

        config = SystemStatsConfig.from_dict(data)
        config.apply_configuration()
        config.validate()
        self.config = config

        self.cpu_collector = (
            CPUCollector(config.cpu, config.proc_path) if config.cpu.metrics_configs else None
        )
        self.disk_collector = DiskCollector(config.disk) if config.disk.metrics_configs else None
        self.host_collector = HostCollector(config.host) if config.host.metrics_configs else None
        self.memory_collector = (
            MemoryCollector(config.memory) if config.memory.metrics_configs else None
        )
        self.os_feature_collector = None
        if config.os_feature.metrics_configs:
            known = config.os_feature.known_modules_config_path
            if not os.path.isabs(known):
                config.os_feature.known_modules_config_path = os.path.join(
                    os.path.dirname(config_path), known
                )
            self.os_feature_collector = OSFeatureCollector(config.os_feature, config.proc_path)
        self.net_collector = (
            NetCollector(config.net, config.proc_path) if config.net.metrics_configs else None
        )

    def collect_once(self) -> None:
        """Run every configured collector once."""
        for collector in (
            self.cpu_collector,
            self.disk_collector,
            self.host_collector,
            self.memory_collector,
            self.os_feature_collector,
            self.net_collector,
        ):
            if collector is not None:
                collector.collect()

    def _loop(self) -> None:
        if self._stopping.is_set():
            log.info("System stats monitor stopped: %s", self.config_path)
            return
        interval = self.config.invoke_interval.total_seconds()
        self.collect_once()
        while not self._stopping.wait(interval):
            self.collect_once()
        log.info("System stats monitor stopped: %s", self.config_path)

    def start(self):
        """Start collecting in the background; no problems are reported, so return None."""
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError(f"system stats monitor {self.config_path} already running")
        log.info("Start system stats monitor %s", self.config_path)
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._loop, name=f"system-stats-monitor:{self.config_path}", daemon=True
        )
        self._thread.start()
        return None

    def stop(self) -> None:
        """Stop collecting and wait for the background loop to finish."""
        log.info("Stop system stats monitor %s", self.config_path)
        self._stopping.set()
        if self._thread is not None:
            self._thread.join()


_register(
    SYSTEM_STATS_MONITOR_NAME,
    ProblemDaemonHandler(
        create_problem_daemon_or_die=SystemStatsMonitor,
        cmd_option_description="Set to config file paths.",
    ),
)


def main(argv=None) -> int:
    """Run system stats monitors for the given configuration files."""
    parser = argparse.ArgumentParser(
        prog="sysstatsmon", description="Collect system statistics periodically."
    )
    parser.add_argument("config", nargs="+", help="system stats monitor config file paths")
    parser.add_argument("--once", action="store_true", help="collect once and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug messages")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        monitors = [SystemStatsMonitor(path) for path in args.config]
    except (ConfigError, RuntimeError) as exc:
        print(f"sysstatsmon: {exc}", file=sys.stderr)
        return 1

    if args.once:
        try:
            for monitor in monitors:
                monitor.collect_once()
        except RuntimeError as exc:
            print(f"sysstatsmon: {exc}", file=sys.stderr)
            return 1
        return 0

    done = threading.Event()
    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[signum] = signal.signal(signum, lambda *_: done.set())
        except ValueError:
            pass

    for monitor in monitors:
        monitor.start()
    try:
        done.wait()
    except KeyboardInterrupt:
        pass
    finally:
        for monitor in monitors:
            monitor.stop()
        for signum, handler in previous.items():
            signal.signal(signum, handler)
    return 0