"""Filesystem collector reading mount points and their statvfs data."""

from __future__ import annotations

import logging
import os
import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .helper import NAMESPACE, Metric, ValueType, build_fq_name

DEF_IGNORED_MOUNT_POINTS = "^/(dev|proc|sys|var/lib/docker/.+)($|/)"
DEF_IGNORED_FS_TYPES = (
    "^(autofs|binfmt_misc|bpf|cgroup2?|configfs|debugfs|devpts|devtmpfs|fusectl|"
    "hugetlbfs|iso9660|mqueue|nsfs|overlay|proc|procfs|pstore|rpc_pipefs|securityfs|"
    "selinuxfs|squashfs|sysfs|tracefs)$"
)

_SUBSYSTEM = "filesystem"
_LABEL_NAMES = ("device", "mountpoint", "fstype")

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilesystemLabels:
    """Identity of one mounted filesystem."""

    device: str
    mount_point: str
    fs_type: str
    options: str = ""


@dataclass
class FilesystemStats:
    """Space and inode figures of one mounted filesystem."""

    labels: FilesystemLabels
    size: float = 0.0
    free: float = 0.0
    avail: float = 0.0
    files: float = 0.0
    files_free: float = 0.0
    ro: float = 0.0
    device_error: float = 0.0


def rootfs_strip_prefix(path: str, rootfs: str = "/") -> str:
    """Remove the rootfs prefix from a mount point seen from the host."""
    if rootfs == "/":
        return path
    stripped = path.removeprefix(rootfs)
    return stripped or "/"


def _rootfs_file_path(path: str, rootfs: str) -> str:
    return os.path.normpath(os.path.join(rootfs, path.lstrip("/")))


def parse_filesystem_labels(lines: Iterable[str], rootfs: str = "/") -> list[FilesystemLabels]:
    """Parse lines in the format of /proc/mounts."""
    filesystems = []
    for line in lines:
        line = line.rstrip("\n")
        parts = line.split()
        if len(parts) < 4:
            raise ValueError(f"malformed mount point information: {line!r}")
        # Undo the fstab(5) escaping of space and tab.
        mount_point = parts[1].replace("\\040", " ").replace("\\011", "\t")
        filesystems.append(
            FilesystemLabels(
                device=parts[0],
                mount_point=rootfs_strip_prefix(mount_point, rootfs),
                fs_type=parts[2],
                options=parts[3],
            )
        )
    return filesystems


def mount_point_details(
    proc_path: str | os.PathLike[str] = "/proc", rootfs: str = "/"
) -> list[FilesystemLabels]:
    """Read the mount table of PID 1, falling back to the system mount table."""
    proc = Path(proc_path)
    try:
        handle = open(proc / "1" / "mounts", encoding="utf-8")
    except FileNotFoundError as exc:
        _log.debug("Reading root mounts failed, falling back to system mounts err=%s", exc)
        handle = open(proc / "mounts", encoding="utf-8")
    with handle:
        return parse_filesystem_labels(handle, rootfs)


class FilesystemCollector:
    """Exposes filesystem fullness for every mounted filesystem."""

    def __init__(
        self,
        proc_path: str | os.PathLike[str] = "/proc",
        rootfs: str = "/",
        ignored_mount_points: str = DEF_IGNORED_MOUNT_POINTS,
        ignored_fs_types: str = DEF_IGNORED_FS_TYPES,
        mount_timeout: float = 5.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.proc_path = Path(proc_path)
        self.rootfs = rootfs
        self.ignored_mount_points = re.compile(ignored_mount_points)
        self.ignored_fs_types = re.compile(ignored_fs_types)
        self.mount_timeout = mount_timeout
        self.logger = logger or _log
        self._stuck_mounts: set[str] = set()
        self._lock = threading.Lock()

    def _mark_stuck(self, mount_point: str, success: threading.Event) -> None:
        with self._lock:
            if success.is_set():
                return
            self.logger.debug(
                "Mount point timed out, it is being labeled as stuck and will not be "
                "monitored mountpoint=%s",
                mount_point,
            )
            self._stuck_mounts.add(mount_point)

    def _statvfs(self, mount_point: str) -> os.statvfs_result:
        success = threading.Event()
        watcher = threading.Timer(self.mount_timeout, self._mark_stuck, (mount_point, success))
        watcher.daemon = True
        watcher.start()
        try:
            return os.statvfs(_rootfs_file_path(mount_point, self.rootfs))
        finally:
            with self._lock:
                success.set()
                watcher.cancel()
                if mount_point in self._stuck_mounts:
                    self.logger.debug(
                        "Mount point has recovered, monitoring will resume mountpoint=%s",
                        mount_point,
                    )
                    self._stuck_mounts.discard(mount_point)

    def get_stats(self) -> list[FilesystemStats]:
        """Return statistics for every mount point that is not ignored."""
        stats = []
        for labels in mount_point_details(self.proc_path, self.rootfs):
            if self.ignored_mount_points.search(labels.mount_point):
                self.logger.debug("Ignoring mount point mountpoint=%s", labels.mount_point)
                continue
            if self.ignored_fs_types.search(labels.fs_type):
                self.logger.debug("Ignoring fs type=%s", labels.fs_type)
                continue
            with self._lock:
                stuck = labels.mount_point in self._stuck_mounts
            if stuck:
                self.logger.debug(
                    "Mount point is in an unresponsive state mountpoint=%s", labels.mount_point
                )
                stats.append(FilesystemStats(labels, device_error=1.0))
                continue

            try:
                result = self._statvfs(labels.mount_point)
            except OSError as exc:
                self.logger.debug(
                    "Error on statfs() system call rootfs=%s err=%s",
                    _rootfs_file_path(labels.mount_point, self.rootfs),
                    exc,
                )
                stats.append(FilesystemStats(labels, device_error=1.0))
                continue

            block_size = float(result.f_bsize)
            stats.append(
                FilesystemStats(
                    labels,
                    size=float(result.f_blocks) * block_size,
                    free=float(result.f_bfree) * block_size,
                    avail=float(result.f_bavail) * block_size,
                    files=float(result.f_files),
                    files_free=float(result.f_ffree),
                    ro=1.0 if "ro" in labels.options.split(",") else 0.0,
                )
            )
        return stats

    def update(self) -> list[Metric]:
        """Return filesystem metrics, one set per distinct mount."""
        metrics = []
        seen: set[tuple[str, str, str]] = set()
        for stat in self.get_stats():
            key = (stat.labels.device, stat.labels.mount_point, stat.labels.fs_type)
            if key in seen:
                continue
            seen.add(key)
            labels = dict(zip(_LABEL_NAMES, key))

            def metric(name: str, help_text: str, value: float) -> Metric:
                return Metric(
                    build_fq_name(NAMESPACE, _SUBSYSTEM, name),
                    help_text,
                    ValueType.GAUGE,
                    value,
                    dict(labels),
                )

            metrics.append(
                metric(
                    "device_error",
                    "Whether an error occurred while getting statistics for the given device.",
                    stat.device_error,
                )
            )
            if stat.device_error > 0:
                continue
            metrics.extend(
                [
                    metric("size_bytes", "Filesystem size in bytes.", stat.size),
                    metric("free_bytes", "Filesystem free space in bytes.", stat.free),
                    metric(
                        "avail_bytes",
                        "Filesystem space available to non-root users in bytes.",
                        stat.avail,
                    ),
                    metric("files", "Filesystem total file nodes.", stat.files),
                    metric("files_free", "Filesystem total free file nodes.", stat.files_free),
                    metric("readonly", "Filesystem read-only status.", stat.ro),
                ]
            )
        return metrics