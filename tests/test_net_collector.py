import re

import pytest

from sysstatsmon.config import ConfigError, MetricConfig, NetStatsConfig, NetStatsInterfaceRegexp
from sysstatsmon.metrics import Aggregation, MetricID, new_int64_metric
from sysstatsmon.net_collector import (
    IfaceStatRecorder,
    NetCollector,
    NetDevLine,
    parse_net_dev,
)

NET_IDS = [m for m in MetricID if m.value.startswith("net/")]

DEFAULT_METRICS_CONFIG = {m.value: MetricConfig(display_name=m.value) for m in NET_IDS}

FAKE_NET_PROC_CONTENT = (
    "Inter-|   Receive                                                |  Transmit\n"
    " face |bytes    packets errs drop fifo frame compressed multicast"
    "|bytes    packets errs drop fifo colls carrier compressed\n"
    "eth0:\t\t5000\t100\t\t0\t\t0\t\t0 \t\t0 \t\t0 \t\t0\t\t2500\t30\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0  \n"
    "docker0: \t1000\t90\t\t8\t\t7\t\t0 \t\t0 \t\t0 \t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\n"
    "docker1: \t500\t\t10\t\t0\t\t0\t\t0 \t\t0\t\t0\t\t0\t\t3000\t150\t\t15\t\t0\t\t20\t\t30\t\t0\t\t0\n"
    "docker2:\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t6000\t300\t\t550\t\t200\t\t0\t\t0\t\t0\t\t0\n"
)


def _collect(tmp_path, exclude):
    net_dir = tmp_path / "net"
    net_dir.mkdir()
    (net_dir / "dev").write_text(FAKE_NET_PROC_CONTENT)
    config = NetStatsConfig(
        metrics_configs=dict(DEFAULT_METRICS_CONFIG),
        exclude_interface_regexp=exclude,
    )
    collector = NetCollector(config, str(tmp_path), IfaceStatRecorder(new_int64_metric))
    collector.collect()
    return collector


def _values(collector, metric_id):
    metric = collector.recorder.collectors[metric_id].metric
    return {r.labels["interface_name"]: r.value for r in metric.list_metrics()}


def test_collect_no_filter_match(tmp_path):
    collector = _collect(tmp_path, NetStatsInterfaceRegexp(re.compile(r"^fake$")))
    assert _values(collector, MetricID.NET_DEV_RX_BYTES) == {
        "eth0": 5000,
        "docker0": 1000,
        "docker1": 500,
        "docker2": 0,
    }
    assert _values(collector, MetricID.NET_DEV_TX_BYTES) == {
        "eth0": 2500,
        "docker0": 0,
        "docker1": 3000,
        "docker2": 6000,
    }


def test_collect_filter_match(tmp_path):
    collector = _collect(tmp_path, NetStatsInterfaceRegexp(re.compile(r"docker\d+")))
    assert _values(collector, MetricID.NET_DEV_RX_BYTES) == {"eth0": 5000}
    assert _values(collector, MetricID.NET_DEV_TX_BYTES) == {"eth0": 2500}


def test_collect_registers_every_net_metric(tmp_path):
    collector = _collect(tmp_path, NetStatsInterfaceRegexp())
    assert set(collector.recorder.collectors) == set(NET_IDS)
    assert _values(collector, MetricID.NET_DEV_RX_ERRORS)["docker0"] == 8


def test_parse_net_dev_fields():
    stats = parse_net_dev(FAKE_NET_PROC_CONTENT)
    assert sorted(stats) == ["docker0", "docker1", "docker2", "eth0"]
    docker1 = stats["docker1"]
    assert (docker1.rx_bytes, docker1.rx_packets) == (500, 10)
    assert (docker1.tx_errors, docker1.tx_fifo, docker1.tx_collisions) == (15, 20, 30)
    assert stats["docker2"].tx_dropped == 200


def test_parse_net_dev_short_line():
    with pytest.raises(ValueError):
        parse_net_dev("h1\nh2\neth0: 1 2 3\n")


def test_register_duplicate_raises():
    recorder = IfaceStatRecorder(new_int64_metric)
    args = (MetricID.NET_DEV_RX_BYTES, "net/rx_bytes", "d", "Byte", Aggregation.SUM,
            ["interface_name"], lambda stat: stat.rx_bytes)
    recorder.register(*args)
    with pytest.raises(ValueError):
        recorder.register(*args)


def test_record_with_same_tags():
    recorder = IfaceStatRecorder(new_int64_metric)
    recorder.register(MetricID.NET_DEV_TX_PACKETS, "net/tx_packets", "d", "1",
                      Aggregation.SUM, ["interface_name"], lambda stat: stat.tx_packets)
    recorder.record_with_same_tags(NetDevLine("eth9", tx_packets=7), {"interface_name": "eth9"})
    metric = recorder.collectors[MetricID.NET_DEV_TX_PACKETS].metric
    assert [(r.labels, r.value) for r in metric.list_metrics()] == [({"interface_name": "eth9"}, 7)]


def test_missing_metric_config_raises(tmp_path):
    config = NetStatsConfig(metrics_configs={})
    with pytest.raises(ConfigError):
        NetCollector(config, str(tmp_path))


def test_missing_proc_file_records_nothing(tmp_path):
    config = NetStatsConfig(metrics_configs=dict(DEFAULT_METRICS_CONFIG))
    collector = NetCollector(config, str(tmp_path))
    collector.collect()
    assert _values(collector, MetricID.NET_DEV_RX_BYTES) == {}