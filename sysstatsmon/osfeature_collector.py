"""Guest OS features derived from the kernel command line and loaded modules."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from .config import MetricConfig, OSFeatureStatsConfig
from .metrics import (
    FEATURE_LABEL,
    VALUE_LABEL,
    Aggregation,
    Metric,
    MetricID,
    new_int64_metric,
)

log = logging.getLogger(__name__)

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_INT_PATTERN = re.compile(r"[+-]?\d+")
_ARG_PATTERN = re.compile(r'(?:[^\s"]+|"[^"]*"?)+')


@dataclass(frozen=True)
class CmdlineArg:
    """One key[=value] argument of the kernel command line."""

    key: str
    value: str = ""


@dataclass(frozen=True)
class KernelModule:
    """One loaded kernel module as listed in /proc/modules."""

    module_name: str
    size: int = 0
    instances: int = 0
    dependencies: tuple = ()
    state: str = ""
    offset: int = 0
    out_of_tree: bool = False
    proprietary: bool = False
    unsigned: bool = False


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def parse_cmdline(text: str) -> list:
    """Split a kernel command line into its arguments; double quotes group words."""
    args = []
    for token in _ARG_PATTERN.findall(text):
        key, _, value = token.partition("=")
        args.append(CmdlineArg(key=key, value=_unquote(value)))
    return args


def parse_modules(text: str) -> list:
    """Parse the contents of /proc/modules."""
    modules = []
    for line in text.splitlines():
        parts = line.split()
        if not parts:
            continue
        if len(parts) < 6:
            raise ValueError(f"malformed modules line: {line!r}")
        taints = parts[6].strip("()") if len(parts) > 6 else ""
        try:
            modules.append(
                KernelModule(
                    module_name=parts[0],
                    size=int(parts[1]),
                    instances=int(parts[2]),
                    dependencies=tuple(
                        dep for dep in parts[3].split(",") if dep and dep != "-"
                    ),
                    state=parts[4],
                    offset=int(parts[5], 16),
                    out_of_tree="O" in taints,
                    proprietary="P" in taints,
                    unsigned="E" in taints,
                )
            )
        except ValueError as exc:
            raise ValueError(f"malformed modules line: {line!r}") from exc
    return modules


def contains_module(name: str, modules: Iterable[KernelModule]) -> bool:
    """Tell whether a module with this name is among the modules."""
    return any(module.module_name == name for module in modules)


def _module_from_mapping(data: Mapping[str, Any]) -> KernelModule:
    normalised = {str(key).replace("_", "").lower(): value for key, value in data.items()}
    deps = normalised.get("dependencies") or ()
    return KernelModule(
        module_name=str(normalised.get("modulename", "")),
        size=int(normalised.get("size", 0) or 0),
        instances=int(normalised.get("instances", 0) or 0),
        dependencies=tuple(str(dep) for dep in deps),
        state=str(normalised.get("state", "") or ""),
        offset=int(normalised.get("offset", 0) or 0),
        out_of_tree=bool(normalised.get("outoftree", False)),
        proprietary=bool(normalised.get("proprietary", False)),
        unsigned=bool(normalised.get("unsigned", False)),
    )


def _parse_int(text: str) -> int:
    if not _INT_PATTERN.fullmatch(text):
        return 0
    return max(_INT64_MIN, min(_INT64_MAX, int(text)))


class OSFeatureCollector:
    """Records OS features such as GPU support and unknown kernel modules."""

    def __init__(self, config: OSFeatureStatsConfig, proc_path: str) -> None:
        self.config = config
        self.proc_path = proc_path
        self.os_feature: Optional[Metric] = None
        display_name = config.metrics_configs.get(
            MetricID.OS_FEATURE.value, MetricConfig()
        ).display_name
        if display_name:
            self.os_feature = new_int64_metric(
                MetricID.OS_FEATURE,
                display_name,
                "OS Features like GPU support, KTD kernel, third party modules as unknown "
                "modules. 1 if the feature is enabled and 0, if disabled.",
                "1",
                Aggregation.LAST_VALUE,
                [FEATURE_LABEL, VALUE_LABEL],
            )

    def record_features_from_cmdline(self, cmdline_args: Iterable[CmdlineArg]) -> None:
        """Record KTD, UnifiedCgroupHierarchy and KernelModuleIntegrity."""
        if self.os_feature is None:
            return
        features = {
            "KTD": 0,
            "UnifiedCgroupHierarchy": 0,
            "ModuleSigned": 0,
            "LoadPinEnabled": 0,
        }
        keys = {
            "csm.enabled": "KTD",
            "systemd.unified_cgroup_hierarchy": "UnifiedCgroupHierarchy",
            "module.sig_enforce": "ModuleSigned",
            "loadpin.enabled": "LoadPinEnabled",
        }
        for arg in cmdline_args:
            feature = keys.get(arg.key)
            if feature is not None:
                features[feature] = _parse_int(arg.value)

        self.os_feature.record({FEATURE_LABEL: "KTD"}, features["KTD"])
        self.os_feature.record(
            {FEATURE_LABEL: "UnifiedCgroupHierarchy"}, features["UnifiedCgroupHierarchy"]
        )
        integrity = int(features["ModuleSigned"] == 1 and features["LoadPinEnabled"] == 1)
        self.os_feature.record({FEATURE_LABEL: "KernelModuleIntegrity"}, integrity)

    def _known_modules(self) -> list:
        path = self.config.known_modules_config_path
        try:
            with open(path, encoding="utf-8") as handle:
                raw = handle.read()
        except OSError as exc:
            log.warning("Failed to read configuration file %s: %s", path, exc)
            return []
        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError("known modules must be a list")
            return [_module_from_mapping(entry) for entry in data]
        except (ValueError, TypeError, AttributeError) as exc:
            log.warning("Failed to retrieve known modules %s", exc)
            return []

    def record_features_from_modules(self, modules: Iterable[KernelModule]) -> None:
        """Record GPUSupport and third-party modules missing from the known list."""
        if self.os_feature is None:
            return
        known = self._known_modules()
        has_gpu_support = 0
        unknown = []
        for module in modules:
            if "nvidia" in module.module_name:
                has_gpu_support = 1
            elif (module.out_of_tree or module.proprietary) and not contains_module(
                module.module_name, known
            ):
                unknown.append(module.module_name)

        if unknown:
            self.os_feature.record(
                {FEATURE_LABEL: "UnknownModules", VALUE_LABEL: ",".join(unknown)}, 1
            )
        else:
            self.os_feature.record({FEATURE_LABEL: "UnknownModules"}, 0)
        self.os_feature.record({FEATURE_LABEL: "GPUSupport"}, has_gpu_support)

    def collect(self) -> None:
        """Record features from <proc>/cmdline and <proc>/modules."""
        if self.os_feature is None:
            return
        base = self.proc_path or os.sep
        try:
            with open(os.path.join(base, "cmdline"), encoding="utf-8") as handle:
                cmdline_args = parse_cmdline(handle.read())
        except (OSError, ValueError) as exc:
            raise RuntimeError(f"Error retrieving cmdline args: {exc}") from exc
        self.record_features_from_cmdline(cmdline_args)
        try:
            with open(os.path.join(base, "modules"), encoding="utf-8") as handle:
                modules = parse_modules(handle.read())
        except (OSError, ValueError) as exc:
            raise RuntimeError(f"Error retrieving kernel modules: {exc}") from exc
        self.record_features_from_modules(modules)