"""Software RAID collector reading /proc/mdstat."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from .helper import NAMESPACE, Metric, NoDataError, ValueType, build_fq_name

_STATUS_LINE = re.compile(r"([0-9]+) blocks .*\[([0-9]+)/([0-9]+)\] \[[U_]+\]")
_RECOVERY_LINE = re.compile(r"\(([0-9]+)/[0-9]+\)")
_COMPONENT_DEVICE = re.compile(r"(.*)\[[0-9]+\]")
_INTEGER = re.compile(r"[+-]?[0-9]+")

_SUBSYSTEM = "md"


@dataclass
class MdStat:
    """State and figures of one md device."""

    name: str
    activity_state: str
    disks_active: int
    disks_total: int
    disks_failed: int
    disks_spare: int
    blocks_total: int
    blocks_synced: int
    devices: list[str] = field(default_factory=list)


def _parse_int(text: str, context: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"unexpected {context}: invalid integer {text!r}")
    return int(text)


def _eval_status_line(device_line: str, status_line: str) -> tuple[int, int, int]:
    fields = status_line.split()
    if not fields:
        raise ValueError(f"unexpected statusLine {status_line!r}")
    size = _parse_int(fields[0], f"statusLine {status_line!r}")

    if "raid0" in device_line or "linear" in device_line:
        # Only the member disks carry a number in brackets on the device line.
        total = device_line.count("[")
        return total, total, size
    if "inactive" in device_line:
        return 0, 0, size

    match = _STATUS_LINE.search(status_line)
    if match is None:
        raise ValueError(f"couldn't find all the substring matches: {status_line}")
    return int(match.group(3)), int(match.group(2)), size


def _eval_recovery_line(line: str) -> int:
    match = _RECOVERY_LINE.search(line)
    if match is None:
        raise ValueError(f"unexpected recoveryLine: {line}")
    return int(match.group(1))


def _component_devices(fields: list[str]) -> list[str]:
    devices = []
    for item in fields[4:]:
        match = _COMPONENT_DEVICE.search(item)
        if match is not None:
            devices.append(match.group(1))
    return devices


def parse_mdstat(text: str) -> list[MdStat]:
    """Parse the contents of /proc/mdstat."""
    lines = text.split("\n")
    md_stats = []
    for index, line in enumerate(lines):
        if (
            not line.strip()
            or line.startswith(" ")
            or line.startswith("Personalities")
            or line.startswith("unused")
        ):
            continue
        fields = line.split()
        if len(fields) < 3:
            raise ValueError(f"not enough fields in mdline (expected at least 3): {line}")
        name = fields[0]
        state = fields[2]
        if len(lines) <= index + 3:
            raise ValueError(f"error parsing {name!r}: too few lines for md device")

        failed = line.count("(F)")
        spare = line.count("(S)")
        try:
            active, total, size = _eval_status_line(line, lines[index + 1])
        except ValueError as exc:
            raise ValueError(f"error parsing md device lines: {exc}") from exc

        sync_index = index + 2
        if "bitmap" in lines[sync_index]:
            sync_index += 1
        sync_line = lines[sync_index]

        synced = size
        recovering = "recovery" in sync_line
        resyncing = "resync" in sync_line
        checking = "check" in sync_line
        if recovering or resyncing or checking:
            if recovering:
                state = "recovering"
            elif checking:
                state = "checking"
            else:
                state = "resyncing"
            if "PENDING" in sync_line or "DELAYED" in sync_line:
                synced = 0
            else:
                try:
                    synced = _eval_recovery_line(sync_line)
                except ValueError as exc:
                    raise ValueError(
                        f"error parsing sync line in md device {name!r}: {exc}"
                    ) from exc

        md_stats.append(
            MdStat(
                name=name,
                activity_state=state,
                disks_active=active,
                disks_total=total,
                disks_failed=failed,
                disks_spare=spare,
                blocks_total=size,
                blocks_synced=synced,
                devices=_component_devices(fields),
            )
        )
    return md_stats


_STATE_HELP = "Indicates the state of md-device."
# Exposed state label -> activity state read from mdstat.
_STATES = (
    ("active", "active"),
    ("inactive", "inactive"),
    ("recovering", "recovering"),
    ("resync", "resyncing"),
    ("check", "checking"),
)


class MdadmCollector:
    """Exposes md RAID device statistics."""

    def __init__(
        self,
        proc_path: str | os.PathLike[str] = "/proc",
        logger: logging.Logger | None = None,
    ) -> None:
        self.proc_path = Path(proc_path)
        self.logger = logger or logging.getLogger(__name__)

    def update(self) -> list[Metric]:
        """Return disk, state and block metrics for every md device."""
        try:
            text = (self.proc_path / "mdstat").read_text(encoding="utf-8")
        except FileNotFoundError:
            self.logger.debug(
                "Not collecting mdstat, file does not exist file=%s", self.proc_path
            )
            raise NoDataError("mdstat not found") from None
        try:
            md_stats = parse_mdstat(text)
        except ValueError as exc:
            raise ValueError(f"error parsing mdstatus: {exc}") from exc

        def gauge(name: str, help_text: str, value: float, labels: dict[str, str]) -> Metric:
            return Metric(
                build_fq_name(NAMESPACE, _SUBSYSTEM, name), help_text, ValueType.GAUGE, value, labels
            )

        metrics = []
        for md in md_stats:
            self.logger.debug("collecting metrics for device device=%s", md.name)
            disks_help = "Number of active/failed/spare disks of device."
            metrics.append(
                gauge(
                    "disks_required",
                    "Total number of disks of device.",
                    float(md.disks_total),
                    {"device": md.name},
                )
            )
            for state, count in (
                ("active", md.disks_active),
                ("failed", md.disks_failed),
                ("spare", md.disks_spare),
            ):
                metrics.append(
                    gauge("disks", disks_help, float(count), {"device": md.name, "state": state})
                )
            for label, activity in _STATES:
                value = 1.0 if md.activity_state == activity else 0.0
                metrics.append(
                    gauge("state", _STATE_HELP, value, {"device": md.name, "state": label})
                )
            metrics.append(
                gauge(
                    "blocks",
                    "Total number of blocks on device.",
                    float(md.blocks_total),
                    {"device": md.name},
                )
            )
            metrics.append(
                gauge(
                    "blocks_synced",
                    "Number of blocks synced on device.",
                    float(md.blocks_synced),
                    {"device": md.name},
                )
            )
        return metrics