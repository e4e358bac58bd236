"""Configuration of the system stats monitor."""

from __future__ import annotations

import os
import re
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from fractions import Fraction
from typing import Any, Optional


class ConfigError(ValueError):
    """Raised when a configuration cannot be loaded, applied or validated."""


_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]+)")
_MAX_NS = (1 << 63) - 1


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as "1m30s", "-1.5h" or "300ms"."""
    rest = text
    negative = False
    if rest and rest[0] in "+-":
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ValueError(f'time: invalid duration "{text}"')

    total = Fraction(0)
    pos = 0
    while pos < len(rest):
        match = _COMPONENT.match(rest, pos)
        if match is None:
            raise ValueError(f'time: invalid duration "{text}"')
        whole, frac, unit = match.groups()
        if not whole and not frac:
            raise ValueError(f'time: invalid duration "{text}"')
        if unit not in _UNITS:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{text}"')
        number = Fraction(int(whole or "0"))
        if frac:
            number += Fraction(int(frac), 10 ** len(frac))
        total += number * _UNITS[unit]
        pos = match.end()

    nanoseconds = int(total)
    if nanoseconds > _MAX_NS + (1 if negative else 0):
        raise ValueError(f'time: invalid duration "{text}"')
    microseconds = nanoseconds // 1000
    return timedelta(microseconds=-microseconds if negative else microseconds)


def _fraction(value: int, digits: int) -> str:
    whole, rem = divmod(value, 10**digits)
    if not rem:
        return str(whole)
    return f"{whole}.{str(rem).zfill(digits).rstrip('0')}"


def format_duration(value: timedelta) -> str:
    """Format a duration the way parse_duration reads it, e.g. "1m0s"."""
    nanoseconds = (value // timedelta(microseconds=1)) * 1000
    if nanoseconds == 0:
        return "0s"
    sign = "-" if nanoseconds < 0 else ""
    ns = abs(nanoseconds)
    if ns < 1_000:
        return f"{sign}{ns}ns"
    if ns < 1_000_000:
        return f"{sign}{_fraction(ns, 3)}\u00b5s"
    if ns < 1_000_000_000:
        return f"{sign}{_fraction(ns, 6)}ms"

    seconds, sub = divmod(ns, 1_000_000_000)
    text = f"{_fraction((seconds % 60) * 1_000_000_000 + sub, 9)}s"
    minutes = seconds // 60
    if minutes:
        text = f"{minutes % 60}m{text}"
        hours = minutes // 60
        if hours:
            text = f"{hours}h{text}"
    return sign + text


def _default_proc_path() -> str:
    return "/proc" if sys.platform.startswith("linux") else ""


DEFAULT_PROC_PATH = _default_proc_path()
DEFAULT_INVOKE_INTERVAL_STRING = format_duration(timedelta(seconds=60))
DEFAULT_LSBLK_TIMEOUT_STRING = format_duration(timedelta(seconds=5))
DEFAULT_KNOWN_MODULES_CONFIG_PATH = "guestosconfig/known-modules.json"


@dataclass
class MetricConfig:
    display_name: str = ""


@dataclass
class CPUStatsConfig:
    metrics_configs: dict = field(default_factory=dict)


@dataclass
class DiskStatsConfig:
    metrics_configs: dict = field(default_factory=dict)
    include_root_blk: bool = False
    include_all_attached_blk: bool = False
    lsblk_timeout_string: str = ""
    lsblk_timeout: timedelta = timedelta(0)


@dataclass
class HostStatsConfig:
    metrics_configs: dict = field(default_factory=dict)


@dataclass
class MemoryStatsConfig:
    metrics_configs: dict = field(default_factory=dict)


@dataclass
class OSFeatureStatsConfig:
    metrics_configs: dict = field(default_factory=dict)
    known_modules_config_path: str = ""


@dataclass
class NetStatsInterfaceRegexp:
    """An optional regular expression naming network interfaces to skip."""

    regex: Optional[re.Pattern] = None

    @classmethod
    def from_text(cls, text: str) -> "NetStatsInterfaceRegexp":
        if not text:
            return cls()
        try:
            return cls(re.compile(text))
        except re.error as exc:
            raise ConfigError(f"invalid interface regexp {text!r}: {exc}") from exc

    def to_text(self) -> str:
        return "" if self.regex is None else self.regex.pattern


@dataclass
class NetStatsConfig:
    metrics_configs: dict = field(default_factory=dict)
    exclude_interface_regexp: NetStatsInterfaceRegexp = field(
        default_factory=NetStatsInterfaceRegexp
    )


def _section(data: Mapping, key: str) -> Mapping:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{key!r} must be an object, got {type(value).__name__}")
    return value


def _string(data: Mapping, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigError(f"{key!r} must be a string, got {type(value).__name__}")
    return value


def _bool(data: Mapping, key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ConfigError(f"{key!r} must be a boolean, got {type(value).__name__}")
    return value


def _metrics_configs(data: Mapping) -> dict:
    return {
        name: MetricConfig(display_name=_string(_section(entries, name), "displayName"))
        for entries in [_section(data, "metricsConfigs")]
        for name in entries
    }


@dataclass
class SystemStatsConfig:
    cpu: CPUStatsConfig = field(default_factory=CPUStatsConfig)
    disk: DiskStatsConfig = field(default_factory=DiskStatsConfig)
    host: HostStatsConfig = field(default_factory=HostStatsConfig)
    memory: MemoryStatsConfig = field(default_factory=MemoryStatsConfig)
    os_feature: OSFeatureStatsConfig = field(default_factory=OSFeatureStatsConfig)
    net: NetStatsConfig = field(default_factory=NetStatsConfig)
    invoke_interval_string: str = ""
    invoke_interval: timedelta = timedelta(0)
    proc_path: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "SystemStatsConfig":
        """Build a configuration from its decoded JSON form."""
        if not isinstance(data, Mapping):
            raise ConfigError("configuration must be an object")
        disk = _section(data, "disk")
        os_feature = _section(data, "osFeature")
        net = _section(data, "net")
        return cls(
            cpu=CPUStatsConfig(_metrics_configs(_section(data, "cpu"))),
            disk=DiskStatsConfig(
                metrics_configs=_metrics_configs(disk),
                include_root_blk=_bool(disk, "includeRootBlk"),
                include_all_attached_blk=_bool(disk, "includeAllAttachedBlk"),
                lsblk_timeout_string=_string(disk, "lsblkTimeout"),
            ),
            host=HostStatsConfig(_metrics_configs(_section(data, "host"))),
            memory=MemoryStatsConfig(_metrics_configs(_section(data, "memory"))),
            os_feature=OSFeatureStatsConfig(
                metrics_configs=_metrics_configs(os_feature),
                known_modules_config_path=_string(os_feature, "knownModulesConfigPath"),
            ),
            net=NetStatsConfig(
                metrics_configs=_metrics_configs(net),
                exclude_interface_regexp=NetStatsInterfaceRegexp.from_text(
                    _string(net, "excludeInterfaceRegexp")
                ),
            ),
            invoke_interval_string=_string(data, "invokeInterval"),
            proc_path=_string(data, "procPath"),
        )

    def apply_configuration(self) -> None:
        """Fill in defaults and parse the duration strings."""
        if not self.invoke_interval_string:
            self.invoke_interval_string = DEFAULT_INVOKE_INTERVAL_STRING
        if not self.proc_path:
            self.proc_path = _default_proc_path()
        if not self.disk.lsblk_timeout_string:
            self.disk.lsblk_timeout_string = DEFAULT_LSBLK_TIMEOUT_STRING
        if not self.os_feature.known_modules_config_path:
            self.os_feature.known_modules_config_path = DEFAULT_KNOWN_MODULES_CONFIG_PATH

        try:
            self.invoke_interval = parse_duration(self.invoke_interval_string)
        except ValueError as exc:
            raise ConfigError(
                f"error in parsing InvokeIntervalString {self.invoke_interval_string!r}: {exc}"
            ) from exc
        try:
            self.disk.lsblk_timeout = parse_duration(self.disk.lsblk_timeout_string)
        except ValueError as exc:
            raise ConfigError(
                f"error in parsing LsblkTimeoutString {self.disk.lsblk_timeout_string!r}: {exc}"
            ) from exc

    def validate(self) -> None:
        """Raise ConfigError if the settings are not usable."""
        zero = timedelta(0)
        if self.invoke_interval <= zero:
            raise ConfigError(
                f"InvokeInterval {format_duration(self.invoke_interval)} must be above 0s"
            )
        self._validate_proc_path()
        if self.disk.lsblk_timeout <= zero:
            raise ConfigError(
                f"LsblkTimeout {format_duration(self.disk.lsblk_timeout)} must be above 0s"
            )
        if self.disk.lsblk_timeout > self.invoke_interval:
            raise ConfigError(
                f"LsblkTimeout {format_duration(self.disk.lsblk_timeout)} must be shorter "
                f"than InvokeInterval {format_duration(self.invoke_interval)}"
            )

    def _validate_proc_path(self) -> None:
        if not sys.platform.startswith("linux"):
            return
        try:
            os.stat(self.proc_path)
        except OSError as exc:
            raise ConfigError(f"ProcPath {self.proc_path} check failed: {exc}") from exc