import os
import threading
import time
from unittest import mock

import pytest

from nodemetrics.filesystem import (
    FilesystemCollector,
    FilesystemLabels,
    mount_point_details,
    parse_filesystem_labels,
    rootfs_strip_prefix,
)
from nodemetrics.helper import ValueType

_FAKE_STATVFS = os.statvfs_result((4096, 4096, 100, 40, 30, 1000, 600, 600, 0, 255))


def _write_mounts(root, content, name="1/mounts"):
    proc = root / "proc"
    target = proc / name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    return proc


def test_parse_too_few_fields():
    with pytest.raises(ValueError):
        parse_filesystem_labels(["hello world"])


def test_parse_escapes_space_and_tab():
    lines = [
        "/dev/sdb /mnt/a\\040b ext4 rw 0 0\n",
        "/dev/sdc /mnt/c\\011d xfs ro,relatime 0 0\n",
    ]
    labels = parse_filesystem_labels(lines)
    assert labels == [
        FilesystemLabels("/dev/sdb", "/mnt/a b", "ext4", "rw"),
        FilesystemLabels("/dev/sdc", "/mnt/c\td", "xfs", "ro,relatime"),
    ]


def test_mount_point_details(tmp_path):
    proc = _write_mounts(
        tmp_path,
        "rootfs / rootfs rw 0 0\n"
        "sysfs /sys sysfs rw,nosuid 0 0\n"
        "proc /proc proc rw 0 0\n"
        "tmpfs /run/user/1000 tmpfs rw 0 0\n"
        "/dev/sda /var/lib/volumes/[datastore]\\040volume-0000/disk.vmdk ext4 rw 0 0\n"
        "/dev/sda /var/lib/volumes/[datastore]\\011volume-0000/disk.vmdk ext4 rw 0 0\n",
    )
    mount_points = [fs.mount_point for fs in mount_point_details(proc)]
    assert mount_points == [
        "/",
        "/sys",
        "/proc",
        "/run/user/1000",
        "/var/lib/volumes/[datastore] volume-0000/disk.vmdk",
        "/var/lib/volumes/[datastore]\tvolume-0000/disk.vmdk",
    ]


def test_mounts_fallback(tmp_path):
    proc = _write_mounts(tmp_path, "/dev/sda1 / ext4 rw 0 0\n", name="mounts")
    assert [fs.mount_point for fs in mount_point_details(proc)] == ["/"]


def test_mount_point_details_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        mount_point_details(tmp_path / "proc")


def test_path_rootfs(tmp_path):
    proc = _write_mounts(
        tmp_path,
        "/dev/nvme1n0 /host ext4 rw 0 0\n"
        "/dev/nvme1n2 /host/media/volume1 ext4 rw 0 0\n"
        "/dev/nvme1n3 /host/media/volume2 ext4 rw 0 0\n"
        "tmpfs /dev/shm tmpfs rw 0 0\n"
        "tmpfs /run/lock tmpfs rw 0 0\n"
        "tmpfs /sys/fs/cgroup tmpfs ro 0 0\n",
    )
    mount_points = {fs.mount_point for fs in mount_point_details(proc, "/host")}
    assert mount_points == {
        "/",
        "/media/volume1",
        "/media/volume2",
        "/dev/shm",
        "/run/lock",
        "/sys/fs/cgroup",
    }


@pytest.mark.parametrize(
    "path, rootfs, expected",
    [
        ("/host", "/host", "/"),
        ("/host/media", "/host", "/media"),
        ("/dev/shm", "/host", "/dev/shm"),
        ("/data", "/", "/data"),
    ],
)
def test_rootfs_strip_prefix(path, rootfs, expected):
    assert rootfs_strip_prefix(path, rootfs) == expected


def test_get_stats_ignores_and_computes(tmp_path):
    proc = _write_mounts(
        tmp_path,
        "proc /proc proc rw 0 0\n"
        "udev /dev devtmpfs rw 0 0\n"
        "none /mnt/overlay overlay rw 0 0\n"
        "/dev/sda1 /data ext4 ro,relatime 0 0\n",
    )
    collector = FilesystemCollector(proc_path=proc, rootfs="/host")
    with mock.patch("os.statvfs", return_value=_FAKE_STATVFS) as statvfs:
        stats = collector.get_stats()
    statvfs.assert_called_once_with("/host/data")
    assert len(stats) == 1
    stat = stats[0]
    assert stat.labels.mount_point == "/data"
    assert stat.size == 409600.0
    assert stat.free == 163840.0
    assert stat.avail == 122880.0
    assert stat.files == 1000.0
    assert stat.files_free == 600.0
    assert stat.ro == 1.0
    assert stat.device_error == 0.0


def test_get_stats_statfs_error(tmp_path):
    proc = _write_mounts(tmp_path, "/dev/sda1 /data ext4 rw 0 0\n")
    collector = FilesystemCollector(proc_path=proc)
    with mock.patch("os.statvfs", side_effect=PermissionError("denied")):
        stats = collector.get_stats()
    assert [s.device_error for s in stats] == [1.0]
    assert stats[0].size == 0.0


def test_stuck_mount_reported_as_device_error(tmp_path):
    proc = _write_mounts(tmp_path, "/dev/sda1 /data ext4 rw 0 0\n")
    release = threading.Event()
    calls = []

    def slow_statvfs(path):
        calls.append(path)
        if len(calls) == 1:
            release.wait(5)
        return _FAKE_STATVFS

    collector = FilesystemCollector(proc_path=proc, mount_timeout=0.05)
    results = {}
    with mock.patch("os.statvfs", side_effect=slow_statvfs):
        worker = threading.Thread(target=lambda: results.update(first=collector.get_stats()))
        worker.start()
        time.sleep(0.4)
        stuck = collector.get_stats()
        release.set()
        worker.join(5)
        after = collector.get_stats()

    assert stuck[0].device_error == 1.0
    assert results["first"][0].device_error == 0.0
    assert after[0].device_error == 0.0
    assert after[0].size == 409600.0
    assert len(calls) == 2


def test_update_metrics(tmp_path):
    proc = _write_mounts(
        tmp_path,
        "/dev/sda1 /data ext4 rw 0 0\n"
        "/dev/sda1 /data ext4 rw 0 0\n"
        "/dev/sdb1 /broken xfs rw 0 0\n",
    )
    collector = FilesystemCollector(proc_path=proc)

    def fake_statvfs(path):
        if path == "/broken":
            raise OSError("broken")
        return _FAKE_STATVFS

    with mock.patch("os.statvfs", side_effect=fake_statvfs):
        metrics = collector.update()

    by_key = {(m.name, m.labels["mountpoint"]): m for m in metrics}
    assert len(metrics) == 8
    assert by_key[("node_filesystem_size_bytes", "/data")].value == 409600.0
    assert by_key[("node_filesystem_readonly", "/data")].value == 0.0
    assert by_key[("node_filesystem_device_error", "/data")].value == 0.0
    assert by_key[("node_filesystem_device_error", "/broken")].value == 1.0
    assert ("node_filesystem_size_bytes", "/broken") not in by_key
    assert by_key[("node_filesystem_files_free", "/data")].labels == {
        "device": "/dev/sda1",
        "mountpoint": "/data",
        "fstype": "ext4",
    }
    assert all(m.value_type is ValueType.GAUGE for m in metrics)