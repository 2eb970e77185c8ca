# nodemetrics

`nodemetrics` reads host statistics from the Linux `/proc` and `/sys`
filesystems and turns them into metric samples. It can also read session
counts from systemd-logind over the system D-Bus. Every sample is a
`nodemetrics.helper.Metric` with these fields: `name` (a Prometheus-style
metric name such as `node_load1`), `help`, `value_type` (a `ValueType`:
`COUNTER`, `GAUGE` or `UNTYPED`), `value` and a `labels` dict.

The package has no third-party dependencies.

## Installation

```
pip install nodemetrics
```

To run the test suite:

```
pip install "nodemetrics[test]"
pytest
```

## Collectors

Each collector is a class with an `update()` method. The method reads the
system when it is called and returns a list of `Metric` objects. The
constructors take the root to read from, so you can point a collector at a
copy of `/proc` or `/sys`. Every constructor also takes an optional
`logging.Logger`.

| Module | Collector | Reads | Constructor options |
| --- | --- | --- | --- |
| `nodemetrics.loadavg` | `LoadavgCollector` | `<proc>/loadavg` | `proc_path="/proc"` |
| `nodemetrics.meminfo` | `MeminfoCollector` | `<proc>/meminfo` | `proc_path="/proc"` |
| `nodemetrics.meminfo_numa` | `MeminfoNumaCollector` | `<sys>/devices/system/node/node*/{meminfo,numastat}` | `sys_path="/sys"` |
| `nodemetrics.interrupts` | `InterruptsCollector` | `<proc>/interrupts` | `proc_path="/proc"` |
| `nodemetrics.ksmd` | `KsmdCollector` | `<sys>/kernel/mm/ksm/*` | `sys_path="/sys"` |
| `nodemetrics.filesystem` | `FilesystemCollector` | `<proc>/1/mounts` (falls back to `<proc>/mounts`) and `os.statvfs` | `proc_path`, `rootfs`, `ignored_mount_points`, `ignored_fs_types`, `mount_timeout=5.0` |
| `nodemetrics.hwmon` | `HwmonCollector` | `<sys>/class/hwmon/*` | `sys_path="/sys"` |
| `nodemetrics.ipvs` | `IpvsCollector` | `<proc>/net/ip_vs_stats`, `<proc>/net/ip_vs` | `proc_path`, `backend_labels` |
| `nodemetrics.mdadm` | `MdadmCollector` | `<proc>/mdstat` | `proc_path="/proc"` |
| `nodemetrics.netclass` | `NetClassCollector` | `<sys>/class/net/*` | `sys_path`, `ignored_devices="^$"` |
| `nodemetrics.logind` | `LogindCollector` | systemd-logind over the system D-Bus | `connect` |

```python
from nodemetrics.loadavg import LoadavgCollector

for metric in LoadavgCollector().update():
    print(metric.name, metric.value)
```

Some notes on particular collectors:

- `FilesystemCollector` skips mount points and filesystem types that match
  its two regular expressions. The defaults are `DEF_IGNORED_MOUNT_POINTS` and
  `DEF_IGNORED_FS_TYPES`. A `statvfs` call may take longer than
  `mount_timeout` seconds. When it does, the mount point is marked as stuck,
  and later calls report it with `device_error` set to 1 and do not stat it
  again. `get_stats()` returns the raw `FilesystemStats` records.
- `IpvsCollector` takes `backend_labels` as a comma-separated string. The
  string picks which of `FULL_BACKEND_LABELS` the backend metrics carry.
  Backends that share the same label values are summed. An unknown label
  raises `ValueError`.
- `NetClassCollector` skips devices whose name matches `ignored_devices`.
  `get_net_class_info()` returns the parsed `NetClassInterface` records.
- `HwmonCollector` names each chip with `hwmon_name()`. That method prefers
  the device path, then the `name` file, then the directory name.
  `chip_name()` reads the human-readable chip name.
- `LogindCollector` connects to the system bus by default. It uses
  `DBUS_SYSTEM_BUS_ADDRESS`, or `/var/run/dbus/system_bus_socket` if that
  variable is not set, and authenticates with `EXTERNAL`. You can pass your
  own `connect` callable instead. It must return a context manager that yields
  an object with `list_seats()`, `list_sessions()` and `get_session(entry)`.
  `collect_metrics(source)` builds the session metrics from any such object.

`HwmonCollector`, `IpvsCollector`, `MdadmCollector` and `NetClassCollector`
raise `nodemetrics.helper.NoDataError` when the files they read do not exist
on the host.

## Parsers

You can call the parsers on their own, for example on files captured from
another machine:

```python
from nodemetrics.loadavg import parse_load
from nodemetrics.meminfo import parse_mem_info

parse_load("0.21 0.37 0.39 1/719 19737")      # [0.21, 0.37, 0.39]

with open("/proc/meminfo") as fh:
    info = parse_mem_info(fh)
info["MemTotal_bytes"]
```

- `nodemetrics.loadavg.parse_load(data)`
- `nodemetrics.meminfo.parse_mem_info(lines)`
- `nodemetrics.interrupts.parse_interrupts(lines)` returns `Interrupt` records keyed by name.
- `nodemetrics.filesystem.parse_filesystem_labels(lines, rootfs="/")`
- `nodemetrics.meminfo_numa.parse_mem_info_numa(lines)`
- `nodemetrics.meminfo_numa.parse_mem_info_numa_stat(lines, node_number)`
- `nodemetrics.ipvs.parse_ipvs_stats(text)`
- `nodemetrics.ipvs.parse_ipvs_backend_status(lines)`
- `nodemetrics.ipvs.parse_ipvs_labels(label_string)`
- `nodemetrics.mdadm.parse_mdstat(text)`
- `nodemetrics.hwmon.explode_sensor_filename(filename)` and `clean_metric_name(name)`

When the input is malformed, the parsers raise `ValueError`.

## Helpers

`nodemetrics.helper` provides:

- `ValueType`, `Metric` and `NoDataError`.
- `build_fq_name(namespace, subsystem, name)`, which joins the non-empty parts with `_`.
- `bytes_to_string(data)`, which decodes up to the first NUL byte.
- `read_uint_from_file(path)`, which reads a single unsigned 64-bit integer.

## What it does not do

`nodemetrics` is a library only. It has no command-line program and no HTTP
server. It does not render metrics in the Prometheus text exposition format.
There is no registry that runs the collectors together. To publish the metrics,
pass the returned `Metric` objects to whatever exporter or storage you use.