import sys
from datetime import timedelta

import pytest

from sysstatsmon.config import (
    DEFAULT_PROC_PATH,
    ConfigError,
    DiskStatsConfig,
    MetricConfig,
    NetStatsInterfaceRegexp,
    OSFeatureStatsConfig,
    SystemStatsConfig,
    format_duration,
    parse_duration,
)


@pytest.mark.parametrize(
    "disk_kwargs,config_kwargs,wanted_invoke_string",
    [
        ({"lsblk_timeout_string": "5s"}, {"invoke_interval_string": "60s"}, "60s"),
        ({}, {}, "1m0s"),
    ],
    ids=["normal", "empty"],
)
def test_apply_configuration(disk_kwargs, config_kwargs, wanted_invoke_string):
    original = SystemStatsConfig(disk=DiskStatsConfig(**disk_kwargs), **config_kwargs)
    original.apply_configuration()
    wanted = SystemStatsConfig(
        disk=DiskStatsConfig(
            lsblk_timeout=timedelta(seconds=5), lsblk_timeout_string="5s"
        ),
        os_feature=OSFeatureStatsConfig(
            known_modules_config_path="guestosconfig/known-modules.json"
        ),
        invoke_interval_string=wanted_invoke_string,
        invoke_interval=timedelta(seconds=60),
        proc_path=DEFAULT_PROC_PATH,
    )
    assert original == wanted


def test_apply_configuration_error():
    config = SystemStatsConfig(disk=DiskStatsConfig(lsblk_timeout_string="foo"))
    with pytest.raises(ConfigError):
        config.apply_configuration()
    assert config.os_feature.known_modules_config_path == "guestosconfig/known-modules.json"


@pytest.mark.parametrize(
    "lsblk,invoke,is_error",
    [
        ("5s", "60s", False),
        ("5s", "-1s", True),
        ("-1s", "60s", True),
        ("90s", "60s", True),
    ],
    ids=[
        "normal",
        "negative-invoke-interval",
        "negative-lsblk-timeout",
        "lsblk-timeout-bigger-than-invoke-interval",
    ],
)
def test_validate(lsblk, invoke, is_error):
    config = SystemStatsConfig(
        disk=DiskStatsConfig(lsblk_timeout_string=lsblk), invoke_interval_string=invoke
    )
    config.apply_configuration()
    if is_error:
        with pytest.raises(ConfigError):
            config.validate()
    else:
        config.validate()
        assert config.invoke_interval == timedelta(seconds=60)


def test_validate_missing_proc_path_on_linux(monkeypatch, tmp_path):
    monkeypatch.setattr(sys, "platform", "linux")
    config = SystemStatsConfig(
        disk=DiskStatsConfig(lsblk_timeout_string="5s"),
        invoke_interval_string="60s",
        proc_path=str(tmp_path / "missing"),
    )
    config.apply_configuration()
    with pytest.raises(ConfigError):
        config.validate()


def test_validate_ignores_proc_path_elsewhere(monkeypatch, tmp_path):
    monkeypatch.setattr(sys, "platform", "win32")
    config = SystemStatsConfig(
        disk=DiskStatsConfig(lsblk_timeout_string="5s"),
        invoke_interval_string="60s",
        proc_path=str(tmp_path / "missing"),
    )
    config.apply_configuration()
    config.validate()
    assert config.proc_path.endswith("missing")


@pytest.mark.parametrize(
    "text,expected",
    [
        ("5s", timedelta(seconds=5)),
        ("60s", timedelta(seconds=60)),
        ("1m0s", timedelta(seconds=60)),
        ("-1s", timedelta(seconds=-1)),
        ("90s", timedelta(seconds=90)),
        ("0", timedelta(0)),
        ("1.5h", timedelta(hours=1, minutes=30)),
        ("300ms", timedelta(milliseconds=300)),
        ("1h2m3s", timedelta(hours=1, minutes=2, seconds=3)),
        ("2us", timedelta(microseconds=2)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "foo", "5", "1x", ".s", "-", "1s2"])
def test_parse_duration_rejects(text):
    with pytest.raises(ValueError):
        parse_duration(text)


@pytest.mark.parametrize(
    "value,expected",
    [
        (timedelta(seconds=60), "1m0s"),
        (timedelta(seconds=5), "5s"),
        (timedelta(0), "0s"),
        (timedelta(hours=1), "1h0m0s"),
        (timedelta(seconds=-1), "-1s"),
        (timedelta(milliseconds=1500), "1.5s"),
        (timedelta(milliseconds=300), "300ms"),
    ],
)
def test_format_duration(value, expected):
    assert format_duration(value) == expected


@pytest.mark.parametrize(
    "value",
    [timedelta(seconds=90), timedelta(microseconds=7), timedelta(hours=26, seconds=1.25)],
)
def test_duration_round_trip(value):
    assert parse_duration(format_duration(value)) == value


def test_interface_regexp_from_text():
    empty = NetStatsInterfaceRegexp.from_text("")
    assert empty.regex is None
    assert empty.to_text() == ""
    docker = NetStatsInterfaceRegexp.from_text(r"docker\d+")
    assert docker.to_text() == r"docker\d+"
    assert docker.regex.search("docker1")


def test_interface_regexp_invalid():
    with pytest.raises(ConfigError):
        NetStatsInterfaceRegexp.from_text("(")


def test_from_dict():
    data = {
        "cpu": {"metricsConfigs": {"cpu/load_1m": {"displayName": "cpu/load_1m"}}},
        "disk": {"includeRootBlk": True, "lsblkTimeout": "5s", "metricsConfigs": {}},
        "osFeature": {"knownModulesConfigPath": "known.json"},
        "net": {"excludeInterfaceRegexp": "^fake$"},
        "invokeInterval": "60s",
        "procPath": "/proc",
    }
    config = SystemStatsConfig.from_dict(data)
    assert config.cpu.metrics_configs == {"cpu/load_1m": MetricConfig("cpu/load_1m")}
    assert config.disk.include_root_blk is True
    assert config.disk.include_all_attached_blk is False
    assert config.disk.lsblk_timeout_string == "5s"
    assert config.os_feature.known_modules_config_path == "known.json"
    assert config.net.exclude_interface_regexp.to_text() == "^fake$"
    assert config.invoke_interval_string == "60s"
    assert config.proc_path == "/proc"
    assert config.host.metrics_configs == {}


def test_from_dict_wrong_type():
    with pytest.raises(ConfigError):
        SystemStatsConfig.from_dict({"invokeInterval": 60})
    with pytest.raises(ConfigError):
        SystemStatsConfig.from_dict(["not", "an", "object"])