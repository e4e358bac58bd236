import pytest

from sysstatsmon.config import MemoryStatsConfig, MetricConfig
from sysstatsmon.memory_collector import MemoryCollector, parse_meminfo
from sysstatsmon.metrics import MetricID

MEMINFO = """MemTotal:       16000 kB
MemFree:         4000 kB
Buffers:         1000 kB
Cached:          2000 kB
Slab:            1000 kB
Dirty:             10 kB
Writeback:          5 kB
Active(anon):     300 kB
Inactive(anon):   200 kB
Active(file):     700 kB
Inactive(file):   600 kB
Unevictable:       50 kB
HugePages_Total:    0
"""


def _full_config():
    return MemoryStatsConfig(
        metrics_configs={
            metric_id.value: MetricConfig(display_name=metric_id.value)
            for metric_id in (
                MetricID.MEMORY_BYTES_USED,
                MetricID.MEMORY_PERCENT_USED,
                MetricID.MEMORY_ANONYMOUS_USED,
                MetricID.MEMORY_PAGE_CACHE_USED,
                MetricID.MEMORY_UNEVICTABLE_USED,
                MetricID.MEMORY_DIRTY_USED,
            )
        }
    )


def _by_state(metric):
    return {repr_.labels.get("state"): repr_.value for repr_ in metric.list_metrics()}


def test_parse_meminfo_values():
    info = parse_meminfo(MEMINFO)
    assert info["MemTotal"] == 16000
    assert info["Active(anon)"] == 300
    assert info["HugePages_Total"] == 0


def test_parse_meminfo_rejects_garbage():
    with pytest.raises(ValueError):
        parse_meminfo("MemTotal: lots kB\n")


def test_empty_config_creates_no_metrics(tmp_path):
    (tmp_path / "meminfo").write_text(MEMINFO)
    collector = MemoryCollector(MemoryStatsConfig(), str(tmp_path))
    collector.collect()
    assert collector.m_bytes_used is None
    assert collector.m_percent_used is None


def test_record_meminfo():
    collector = MemoryCollector(_full_config(), "/proc")
    collector.record_meminfo(parse_meminfo(MEMINFO))
    assert _by_state(collector.m_bytes_used) == {
        "free": 4000 * 1024,
        "buffered": 1000 * 1024,
        "cached": 2000 * 1024,
        "slab": 1000 * 1024,
        "used": 8000 * 1024,
    }
    assert _by_state(collector.m_percent_used) == {"used": 50.0}
    assert _by_state(collector.m_dirty_used) == {"dirty": 10240, "writeback": 5120}
    assert _by_state(collector.m_anonymous_used) == {"active": 300 * 1024, "inactive": 200 * 1024}
    assert _by_state(collector.m_page_cache_used) == {"active": 700 * 1024, "inactive": 600 * 1024}
    assert [r.value for r in collector.m_unevictable_used.list_metrics()] == [50 * 1024]


def test_record_meminfo_partial_skips_used():
    collector = MemoryCollector(_full_config(), "/proc")
    collector.record_meminfo({"MemFree": 10})
    assert _by_state(collector.m_bytes_used) == {"free": 10240}
    assert collector.m_percent_used.list_metrics() == []


def test_collect_reads_proc_path(tmp_path):
    (tmp_path / "meminfo").write_text(MEMINFO)
    collector = MemoryCollector(_full_config(), str(tmp_path))
    collector.collect()
    assert _by_state(collector.m_bytes_used)["used"] == 8000 * 1024


def test_collect_missing_file_records_nothing(tmp_path):
    collector = MemoryCollector(_full_config(), str(tmp_path))
    collector.collect()
    assert collector.m_bytes_used.list_metrics() == []