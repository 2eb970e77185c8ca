"""Network class collector reading /sys/class/net/<iface>."""

from __future__ import annotations

import errno
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from .helper import NAMESPACE, Metric, NoDataError, ValueType, build_fq_name

_SUBSYSTEM = "network"
_READ_SIZE = 128
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_SKIPPED_ERRNOS = {errno.ENOENT, errno.EACCES, errno.EPERM, errno.EINVAL, errno.EOPNOTSUPP}
_OCTAL = re.compile(r"0[0-7]+")


@dataclass
class NetClassInterface:
    """Attributes of one network interface as exposed by sysfs."""

    name: str
    address: str = ""
    broadcast: str = ""
    duplex: str = ""
    operstate: str = ""
    ifalias: str = ""
    addr_assign_type: int | None = None
    carrier: int | None = None
    carrier_changes: int | None = None
    carrier_up_count: int | None = None
    carrier_down_count: int | None = None
    dev_id: int | None = None
    dormant: int | None = None
    flags: int | None = None
    ifindex: int | None = None
    iflink: int | None = None
    link_mode: int | None = None
    mtu: int | None = None
    name_assign_type: int | None = None
    netdev_group: int | None = None
    speed: int | None = None
    tx_queue_len: int | None = None
    type: int | None = None


_STRING_FILES = {
    "address": "address",
    "broadcast": "broadcast",
    "duplex": "duplex",
    "operstate": "operstate",
    "ifalias": "ifalias",
}
_INT_FILES = {
    "addr_assign_type": "addr_assign_type",
    "carrier": "carrier",
    "carrier_changes": "carrier_changes",
    "carrier_up_count": "carrier_up_count",
    "carrier_down_count": "carrier_down_count",
    "dev_id": "dev_id",
    "dormant": "dormant",
    "flags": "flags",
    "ifindex": "ifindex",
    "iflink": "iflink",
    "link_mode": "link_mode",
    "mtu": "mtu",
    "name_assign_type": "name_assign_type",
    "netdev_group": "netdev_group",
    "speed": "speed",
    "tx_queue_len": "tx_queue_len",
    "type": "type",
}


def _parse_int(text: str) -> int | None:
    """Parse a signed 64-bit integer with an optional 0x, 0o, 0b or leading-0 base."""
    sign = 1
    body = text
    if body[:1] in ("+", "-"):
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    if not body or body[:1] in ("+", "-"):
        return None
    try:
        if _OCTAL.fullmatch(body):
            value = int(body, 8)
        else:
            value = int(body, 0)
    except ValueError:
        return None
    value *= sign
    if not _INT64_MIN <= value <= _INT64_MAX:
        return None
    return value


def _read_attribute(path: Path) -> str | None:
    """Read one sysfs attribute with a single read; None if it cannot be read."""
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError as exc:
        if exc.errno in _SKIPPED_ERRNOS:
            return None
        raise
    try:
        raw = os.read(fd, _READ_SIZE)
    except OSError as exc:
        if exc.errno in _SKIPPED_ERRNOS:
            return None
        raise
    finally:
        os.close(fd)
    return raw.decode("utf-8", errors="replace").strip()


def read_net_class_interface(path: str | os.PathLike[str]) -> NetClassInterface:
    """Read the attribute files of one interface directory."""
    path = Path(path)
    interface = NetClassInterface(name=path.name)
    for entry in sorted(os.scandir(path), key=lambda item: item.name):
        if not entry.is_file(follow_symlinks=False):
            continue
        if entry.name in _STRING_FILES:
            value = _read_attribute(Path(entry.path))
            if value is not None:
                setattr(interface, _STRING_FILES[entry.name], value)
        elif entry.name in _INT_FILES:
            value = _read_attribute(Path(entry.path))
            if value is not None:
                setattr(interface, _INT_FILES[entry.name], _parse_int(value))
    return interface


def _speed_bytes(megabits: int) -> int:
    # Integer division truncating toward zero.
    scaled = megabits * 1000 * 1000
    quotient = abs(scaled) // 8
    return -quotient if scaled < 0 else quotient


_FIELDS = (
    ("address_assign_type", "addr_assign_type", ValueType.GAUGE),
    ("carrier", "carrier", ValueType.GAUGE),
    ("carrier_changes_total", "carrier_changes", ValueType.COUNTER),
    ("carrier_up_changes_total", "carrier_up_count", ValueType.COUNTER),
    ("carrier_down_changes_total", "carrier_down_count", ValueType.COUNTER),
    ("device_id", "dev_id", ValueType.GAUGE),
    ("dormant", "dormant", ValueType.GAUGE),
    ("flags", "flags", ValueType.GAUGE),
    ("iface_id", "ifindex", ValueType.GAUGE),
    ("iface_link", "iflink", ValueType.GAUGE),
    ("iface_link_mode", "link_mode", ValueType.GAUGE),
    ("mtu_bytes", "mtu", ValueType.GAUGE),
    ("name_assign_type", "name_assign_type", ValueType.GAUGE),
    ("net_dev_group", "netdev_group", ValueType.GAUGE),
    ("speed_bytes", "speed", ValueType.GAUGE),
    ("transmit_queue_length", "tx_queue_len", ValueType.GAUGE),
    ("protocol_type", "type", ValueType.GAUGE),
)


def _field_metric(name: str, value: int, device: str, value_type: ValueType) -> Metric:
    return Metric(
        build_fq_name(NAMESPACE, _SUBSYSTEM, name),
        f"{name} value of /sys/class/net/<iface>.",
        value_type,
        float(value),
        {"device": device},
    )


class NetClassCollector:
    """Exposes network interface attributes from /sys/class/net."""

    def __init__(
        self,
        sys_path: str | os.PathLike[str] = "/sys",
        ignored_devices: str = "^$",
        logger: logging.Logger | None = None,
    ) -> None:
        self.sys_path = Path(sys_path)
        self.ignored_devices = re.compile(ignored_devices)
        self.logger = logger or logging.getLogger(__name__)

    def get_net_class_info(self) -> dict[str, NetClassInterface]:
        """Read every interface that is not ignored, keyed by device name."""
        base = self.sys_path / "class" / "net"
        devices = sorted(
            entry.name for entry in os.scandir(base) if not entry.is_file(follow_symlinks=False)
        )
        net_class = {}
        for device in devices:
            if self.ignored_devices.search(device):
                continue
            net_class[device] = read_net_class_interface(base / device)
        return net_class

    def update(self) -> list[Metric]:
        """Return the up, info and attribute metrics of every interface."""
        try:
            net_class = self.get_net_class_info()
        except (FileNotFoundError, PermissionError) as exc:
            self.logger.debug("Could not read netclass file err=%s", exc)
            raise NoDataError("netclass data not available") from exc
        except OSError as exc:
            raise OSError(f"could not get net class info: {exc}") from exc

        metrics = []
        for device, iface in net_class.items():
            metrics.append(
                Metric(
                    build_fq_name(NAMESPACE, _SUBSYSTEM, "up"),
                    "Value is 1 if operstate is 'up', 0 otherwise.",
                    ValueType.GAUGE,
                    1.0 if iface.operstate == "up" else 0.0,
                    {"device": iface.name},
                )
            )
            metrics.append(
                Metric(
                    build_fq_name(NAMESPACE, _SUBSYSTEM, "info"),
                    "Non-numeric data from /sys/class/net/<iface>, value is always 1.",
                    ValueType.GAUGE,
                    1.0,
                    {
                        "device": iface.name,
                        "address": iface.address,
                        "broadcast": iface.broadcast,
                        "duplex": iface.duplex,
                        "operstate": iface.operstate,
                        "ifalias": iface.ifalias,
                    },
                )
            )
            for name, attribute, value_type in _FIELDS:
                value = getattr(iface, attribute)
                if value is None:
                    continue
                if attribute == "speed":
                    value = _speed_bytes(value)
                metrics.append(_field_metric(name, value, iface.name, value_type))
        return metrics