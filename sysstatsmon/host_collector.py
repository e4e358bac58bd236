"""Host uptime, tagged with the kernel and OS versions."""

from __future__ import annotations

import logging
import platform
import time

import psutil

from .config import HostStatsConfig, MetricConfig
from .metrics import Aggregation, MetricID, new_int64_metric

log = logging.getLogger(__name__)

OS_RELEASE_PATHS = ("/etc/os-release", "/usr/lib/os-release")


def _parse_os_release(text: str) -> dict:
    entries = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        entries[key.strip()] = value
    return entries


def get_os_version() -> str:
    """Return the OS name and version, e.g. "ubuntu 22.04"."""
    for path in OS_RELEASE_PATHS:
        try:
            with open(path, encoding="utf-8") as handle:
                entries = _parse_os_release(handle.read())
        except OSError:
            continue
        os_id = entries.get("ID", "")
        if not os_id:
            continue
        version = entries.get("VERSION_ID") or entries.get("BUILD_ID") or ""
        return f"{os_id} {version}".strip()

    name = platform.system().lower()
    if not name:
        raise RuntimeError("unable to determine the OS version")
    return f"{name} {platform.release()}".strip()


class HostCollector:
    """Records the host's uptime."""

    def __init__(self, config: HostStatsConfig) -> None:
        kernel_version = platform.release()
        if not kernel_version:
            raise RuntimeError("Failed to retrieve kernel version")
        self.tags = {
            "kernel_version": kernel_version,
            "os_version": get_os_version(),
        }
        self.uptime = None
        display_name = config.metrics_configs.get(
            MetricID.HOST_UPTIME.value, MetricConfig()
        ).display_name
        if display_name:
            self.uptime = new_int64_metric(
                MetricID.HOST_UPTIME,
                display_name,
                "The uptime of the operating system",
                "second",
                Aggregation.LAST_VALUE,
                ["kernel_version", "os_version"],
            )

    def collect(self) -> None:
        """Record the seconds since boot."""
        try:
            uptime = int(time.time() - psutil.boot_time())
        except (OSError, psutil.Error) as exc:
            log.error("Failed to retrieve uptime of the host: %s", exc)
            return
        if self.uptime is not None:
            self.uptime.record(self.tags, uptime)