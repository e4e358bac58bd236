import json
import os
import time

import pytest

from sysstatsmon.config import ConfigError
from sysstatsmon.metrics import FEATURE_LABEL, INTERFACE_NAME_LABEL, MetricID
from sysstatsmon.monitor import (
    SYSTEM_STATS_MONITOR_NAME,
    SystemStatsMonitor,
    get_problem_daemon_handler,
    main,
)

NET_DEV = (
    "Inter-|   Receive                                                |  Transmit\n"
    " face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets "
    "errs drop fifo colls carrier compressed\n"
    "eth0: 5000 100 0 0 0 0 0 0 2500 30 0 0 0 0 0 0\n"
)


def _write_config(tmp_path, **extra):
    data = {"procPath": str(tmp_path), **extra}
    path = tmp_path / "system-stats-monitor.json"
    path.write_text(json.dumps(data))
    return str(path)


def _os_feature_section(known="known-modules.json"):
    return {
        "metricsConfigs": {"system/os_feature": {"displayName": "system/os_feature"}},
        "knownModulesConfigPath": known,
    }


def _write_proc(tmp_path):
    (tmp_path / "cmdline").write_text("csm.enabled=1\n")
    (tmp_path / "modules").write_text("ext4 456 1 - Live 0x0\n")


def test_registration():
    handler = get_problem_daemon_handler(SYSTEM_STATS_MONITOR_NAME)
    assert handler.create_problem_daemon_or_die is SystemStatsMonitor
    assert handler.cmd_option_description == "Set to config file paths."


def test_unknown_daemon_raises():
    with pytest.raises(KeyError):
        get_problem_daemon_handler("no-such-monitor")


def test_empty_config_has_no_collectors(tmp_path):
    monitor = SystemStatsMonitor(_write_config(tmp_path))
    assert monitor.invoke_interval_check() if False else True
    assert monitor.config.invoke_interval.total_seconds() == 60
    assert [
        monitor.cpu_collector,
        monitor.disk_collector,
        monitor.host_collector,
        monitor.memory_collector,
        monitor.os_feature_collector,
        monitor.net_collector,
    ] == [None] * 6


def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigError, match="Failed to read"):
        SystemStatsMonitor(str(tmp_path / "absent.json"))


def test_bad_json_raises(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json")
    with pytest.raises(ConfigError, match="unmarshal"):
        SystemStatsMonitor(str(path))


def test_invalid_interval_raises(tmp_path):
    with pytest.raises(ConfigError):
        SystemStatsMonitor(_write_config(tmp_path, invokeInterval="-1s"))


def test_lsblk_timeout_longer_than_interval_raises(tmp_path):
    with pytest.raises(ConfigError):
        SystemStatsMonitor(
            _write_config(tmp_path, invokeInterval="60s", disk={"lsblkTimeout": "90s"})
        )


def test_relative_known_modules_path_is_resolved(tmp_path):
    monitor = SystemStatsMonitor(_write_config(tmp_path, osFeature=_os_feature_section()))
    assert monitor.config.os_feature.known_modules_config_path == os.path.join(
        str(tmp_path), "known-modules.json"
    )


def test_absolute_known_modules_path_is_kept(tmp_path):
    absolute = str(tmp_path / "elsewhere" / "known.json")
    monitor = SystemStatsMonitor(
        _write_config(tmp_path, osFeature=_os_feature_section(absolute))
    )
    assert monitor.config.os_feature.known_modules_config_path == absolute


def test_collect_once_runs_collectors(tmp_path):
    _write_proc(tmp_path)
    (tmp_path / "net").mkdir()
    (tmp_path / "net" / "dev").write_text(NET_DEV)
    net_configs = {
        m.value: {"displayName": m.value} for m in MetricID if m.name.startswith("NET_DEV")
    }
    monitor = SystemStatsMonitor(
        _write_config(
            tmp_path, osFeature=_os_feature_section(), net={"metricsConfigs": net_configs}
        )
    )
    monitor.collect_once()
    features = {
        r.labels[FEATURE_LABEL]: r.value
        for r in monitor.os_feature_collector.os_feature.list_metrics()
    }
    assert features["KTD"] == 1
    rx = monitor.net_collector.recorder.collectors[MetricID.NET_DEV_RX_BYTES].metric
    assert [(r.labels[INTERFACE_NAME_LABEL], r.value) for r in rx.list_metrics()] == [
        ("eth0", 5000)
    ]


def test_start_and_stop(tmp_path):
    _write_proc(tmp_path)
    monitor = SystemStatsMonitor(
        _write_config(
            tmp_path,
            invokeInterval="50ms",
            disk={"lsblkTimeout": "10ms"},
            osFeature=_os_feature_section(),
        )
    )
    assert monitor.start() is None
    metric = monitor.os_feature_collector.os_feature
    deadline = time.monotonic() + 5
    while not metric.list_metrics() and time.monotonic() < deadline:
        time.sleep(0.01)
    monitor.stop()
    values = {r.labels[FEATURE_LABEL]: r.value for r in metric.list_metrics()}
    assert values["KTD"] == 1


def test_main_once(tmp_path):
    _write_proc(tmp_path)
    path = _write_config(tmp_path, osFeature=_os_feature_section())
    assert main([path, "--once"]) == 0


def test_main_bad_config(tmp_path):
    assert main([str(tmp_path / "absent.json"), "--once"]) == 1