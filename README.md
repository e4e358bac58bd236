# sysstatsmon

`sysstatsmon` is a system statistics monitor. It reads a JSON configuration
file, then collects metrics about the node again and again at a fixed interval
and keeps them in memory:

- **CPU** (`sysstatsmon.cpu_collector.CPUCollector`): load averages, usage time
  by state, forks, running and blocked processes, interrupts, and CPU time for
  each CPU from `<procPath>/stat`
- **Disk** (`sysstatsmon.disk_collector.DiskCollector`): IO time, weighted IO,
  average queue length, operation counts, bytes and times, and space used for
  each device
- **Host** (`sysstatsmon.host_collector.HostCollector`): uptime, tagged with the
  kernel and OS versions
- **Memory** (`sysstatsmon.memory_collector.MemoryCollector`): free, buffered,
  cached, slab, used, dirty, anonymous, page-cache and unevictable memory from
  `/proc/meminfo` (on Windows, free, used and percent used via `psutil`)
- **Network** (`sysstatsmon.net_collector.NetCollector`): receive and transmit
  counters for each interface from `<procPath>/net/dev`, with an optional
  regular expression that leaves interfaces out
- **OS features** (`sysstatsmon.osfeature_collector.OSFeatureCollector`): KTD,
  unified cgroup hierarchy, kernel module integrity, GPU support, and
  third-party kernel modules missing from a known-modules list

## Installation

```
pip install .
```

## Running

```
sysstatsmon path/to/system-stats-monitor.json [more.json ...]
```

Options:

- `--once`: run every collector once and exit
- `-v`, `--verbose`: log debug messages

Without `--once` the command collects at the configured interval until it gets
SIGINT or SIGTERM. It exits with status 1 if a configuration cannot be loaded.

## Configuration

```json
{
  "invokeInterval": "60s",
  "procPath": "/proc",
  "cpu": {
    "metricsConfigs": {
      "cpu/load_1m": {"displayName": "cpu/load_1m"},
      "cpu/usage_time": {"displayName": "cpu/usage_time"}
    }
  },
  "disk": {
    "includeRootBlk": true,
    "includeAllAttachedBlk": true,
    "lsblkTimeout": "5s",
    "metricsConfigs": {
      "disk/io_time": {"displayName": "disk/io_time"}
    }
  },
  "host": {
    "metricsConfigs": {"host/uptime": {"displayName": "host/uptime"}}
  },
  "memory": {
    "metricsConfigs": {"memory/bytes_used": {"displayName": "memory/bytes_used"}}
  },
  "osFeature": {
    "knownModulesConfigPath": "guestosconfig/known-modules.json",
    "metricsConfigs": {"system/os_feature": {"displayName": "system/os_feature"}}
  }
}
```

A collector runs only if its section has at least one entry under
`metricsConfigs`. A metric is recorded only if its entry has a non-empty
`displayName`; the names are the values of `sysstatsmon.metrics.MetricID`.

The `net` section is stricter: if it is present, its `metricsConfigs` must list
all sixteen `net/rx_*` and `net/tx_*` metrics (`net/rx_bytes`,
`net/rx_packets`, `net/rx_errors`, `net/rx_dropped`, `net/rx_fifo`,
`net/rx_frame`, `net/rx_compressed`, `net/rx_multicast`, `net/tx_bytes`,
`net/tx_packets`, `net/tx_errors`, `net/tx_dropped`, `net/tx_fifo`,
`net/tx_collisions`, `net/tx_carrier`, `net/tx_compressed`), otherwise a
`ConfigError` is raised. It may also set `excludeInterfaceRegexp`, e.g.
`"docker\\d+"`.

The defaults are an interval of `60s`, an `lsblk` timeout of `5s`, a proc path
of `/proc` on Linux (empty elsewhere), and a known-modules file of
`guestosconfig/known-modules.json`. A relative known-modules path is taken
relative to the directory that holds the configuration file. Durations use the
`1h2m3.5s` form (units `ns`, `us`, `ms`, `s`, `m`, `h`). The interval must be
positive, the `lsblk` timeout must be positive and no longer than the interval,
and on Linux the proc path must exist. With `includeRootBlk`, root block devices
are listed by running `lsblk`.

## Using it from Python

```python
from sysstatsmon.monitor import SystemStatsMonitor

monitor = SystemStatsMonitor("system-stats-monitor.json")
monitor.collect_once()
if monitor.cpu_collector is not None and monitor.cpu_collector.m_usage_time is not None:
    for series in monitor.cpu_collector.m_usage_time.list_metrics():
        print(series.labels, series.value)

monitor.start()   # collects in a background thread
# ...
monitor.stop()
```

Configuration can also be built directly with
`sysstatsmon.config.SystemStatsConfig.from_dict(...)`, followed by
`apply_configuration()` and `validate()`.

Each `Metric` keeps one value per set of tags: the last recorded value for
`Aggregation.LAST_VALUE` metrics, or the running sum for `Aggregation.SUM`
metrics. `Metric.list_metrics()` returns `MetricRepr` entries that hold the
labels and the value.

## What it does not do

- Metrics stay in memory in the process. There is no exporter: nothing is
  served over HTTP or pushed to a monitoring backend.
- It reports no problems, events or node conditions. `SystemStatsMonitor.start()`
  returns `None`, and the `Status`, `Event` and `Condition` types in
  `sysstatsmon.types` are only data classes.
- The OS-feature collector raises `RuntimeError` if `<procPath>/cmdline` or
  `<procPath>/modules` cannot be read; in the background loop this ends the
  monitor's thread.