"""IPVS collector reading /proc/net/ip_vs and /proc/net/ip_vs_stats."""

from __future__ import annotations

import ipaddress
import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .helper import NAMESPACE, Metric, NoDataError, ValueType, build_fq_name

LABEL_LOCAL_ADDRESS = "local_address"
LABEL_LOCAL_PORT = "local_port"
LABEL_REMOTE_ADDRESS = "remote_address"
LABEL_REMOTE_PORT = "remote_port"
LABEL_PROTO = "proto"
LABEL_LOCAL_MARK = "local_mark"

FULL_BACKEND_LABELS = (
    LABEL_LOCAL_ADDRESS,
    LABEL_LOCAL_PORT,
    LABEL_REMOTE_ADDRESS,
    LABEL_REMOTE_PORT,
    LABEL_PROTO,
    LABEL_LOCAL_MARK,
)

_SUBSYSTEM = "ipvs"
_UINT64_MAX = 2**64 - 1
_HEX = re.compile(r"[0-9a-fA-F]+")
_DECIMAL = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class IpvsStats:
    """Totals from the ip_vs_stats file."""

    connections: int
    incoming_packets: int
    outgoing_packets: int
    incoming_bytes: int
    outgoing_bytes: int


@dataclass(frozen=True)
class IpvsBackendStatus:
    """One real server entry of a virtual service."""

    local_address: str
    local_port: int
    local_mark: str
    proto: str
    remote_address: str
    remote_port: int
    active_conn: int
    inact_conn: int
    weight: int

    def label_value(self, label: str) -> str:
        """Return the value this backend has for a backend label."""
        values = {
            LABEL_LOCAL_ADDRESS: self.local_address,
            LABEL_LOCAL_PORT: str(self.local_port),
            LABEL_REMOTE_ADDRESS: self.remote_address,
            LABEL_REMOTE_PORT: str(self.remote_port),
            LABEL_PROTO: self.proto,
            LABEL_LOCAL_MARK: self.local_mark,
        }
        return values.get(label, "")


def parse_ipvs_labels(label_string: str) -> list[str]:
    """Parse a comma separated label list into the known labels, in canonical order."""
    requested = {label for label in label_string.split(",") if label}
    results = [label for label in FULL_BACKEND_LABELS if label in requested]
    unknown = sorted(requested.difference(FULL_BACKEND_LABELS))
    if unknown:
        raise ValueError(f'unknown IPVS backend labels: "{", ".join(unknown)}"')
    return results


def _parse_uint(text: str, pattern: re.Pattern[str], base: int) -> int:
    if not pattern.fullmatch(text):
        raise ValueError(f"invalid unsigned integer {text!r}")
    value = int(text, base)
    if value > _UINT64_MAX:
        raise ValueError(f"value {text!r} out of range")
    return value


def parse_ipvs_stats(text: str) -> IpvsStats:
    """Parse the contents of ip_vs_stats; the totals are hexadecimal."""
    lines = text.split("\n", 3)
    if len(lines) != 4:
        raise ValueError("ip_vs_stats corrupt: too short")
    fields = lines[2].split()
    if len(fields) != 5:
        raise ValueError("ip_vs_stats corrupt: unexpected number of fields")
    return IpvsStats(*(_parse_uint(item, _HEX, 16) for item in fields))


def _parse_ip_port(text: str) -> tuple[str, int]:
    if len(text) == 13:
        try:
            address = str(ipaddress.IPv4Address(bytes.fromhex(text[:8])))
        except ValueError as exc:
            raise ValueError(f"invalid IPv4 address: {text[:8]}") from exc
    elif len(text) == 46:
        try:
            parsed = ipaddress.ip_address(text[1:40])
        except ValueError as exc:
            raise ValueError(f"invalid IPv6 address: {text[1:40]}") from exc
        mapped = getattr(parsed, "ipv4_mapped", None)
        address = str(mapped if mapped is not None else parsed)
    else:
        raise ValueError(f"unexpected IP:Port: {text}")
    port_text = text[-4:]
    if not _HEX.fullmatch(port_text):
        raise ValueError(f"unexpected port string format: {port_text}")
    return address, int(port_text, 16)


def parse_ipvs_backend_status(lines: Iterable[str]) -> list[IpvsBackendStatus]:
    """Parse the lines of /proc/net/ip_vs into backend entries."""
    status = []
    proto = ""
    local_mark = ""
    local_address = ""
    local_port = 0
    for line in lines:
        fields = line.split()
        if not fields:
            continue
        head = fields[0]
        if head in ("IP", "Prot") or (len(fields) > 1 and fields[1] == "RemoteAddress:Port"):
            continue
        if head in ("TCP", "UDP"):
            if len(fields) < 2:
                continue
            proto = head
            local_mark = ""
            local_address, local_port = _parse_ip_port(fields[1])
        elif head == "FWM":
            if len(fields) < 2:
                continue
            proto = head
            local_mark = fields[1]
            local_address = ""
            local_port = 0
        elif head == "->":
            if len(fields) < 6:
                continue
            remote_address, remote_port = _parse_ip_port(fields[1])
            status.append(
                IpvsBackendStatus(
                    local_address=local_address,
                    local_port=local_port,
                    local_mark=local_mark,
                    proto=proto,
                    remote_address=remote_address,
                    remote_port=remote_port,
                    weight=_parse_uint(fields[3], _DECIMAL, 10),
                    active_conn=_parse_uint(fields[4], _DECIMAL, 10),
                    inact_conn=_parse_uint(fields[5], _DECIMAL, 10),
                )
            )
    return status


_TOTALS = (
    ("connections_total", "The total number of connections made.", "connections"),
    ("incoming_packets_total", "The total number of incoming packets.", "incoming_packets"),
    ("outgoing_packets_total", "The total number of outgoing packets.", "outgoing_packets"),
    ("incoming_bytes_total", "The total amount of incoming data.", "incoming_bytes"),
    ("outgoing_bytes_total", "The total amount of outgoing data.", "outgoing_bytes"),
)


class IpvsCollector:
    """Exposes IPVS totals and per-backend connection figures."""

    def __init__(
        self,
        proc_path: str | os.PathLike[str] = "/proc",
        backend_labels: str = ",".join(FULL_BACKEND_LABELS),
        logger: logging.Logger | None = None,
    ) -> None:
        self.backend_labels = parse_ipvs_labels(backend_labels)
        self.proc_path = Path(proc_path)
        self.logger = logger or logging.getLogger(__name__)

    def update(self) -> list[Metric]:
        """Return the IPVS totals followed by the aggregated backend metrics."""
        net = self.proc_path / "net"
        try:
            text = (net / "ip_vs_stats").read_text(encoding="utf-8")
        except FileNotFoundError:
            self.logger.debug("ipvs collector metrics are not available for this system")
            raise NoDataError("ipvs collector metrics are not available") from None
        stats = parse_ipvs_stats(text)

        metrics = [
            Metric(
                build_fq_name(NAMESPACE, _SUBSYSTEM, name),
                help_text,
                ValueType.COUNTER,
                float(getattr(stats, attribute)),
            )
            for name, help_text, attribute in _TOTALS
        ]

        with open(net / "ip_vs", encoding="utf-8") as handle:
            backends = parse_ipvs_backend_status(handle)

        sums: dict[tuple[str, ...], list[int]] = {}
        for backend in backends:
            key = tuple(backend.label_value(label) for label in self.backend_labels)
            totals = sums.setdefault(key, [0, 0, 0])
            totals[0] += backend.active_conn
            totals[1] += backend.inact_conn
            totals[2] += backend.weight

        for key, (active, inactive, weight) in sums.items():
            labels = dict(zip(self.backend_labels, key))
            for name, help_text, value in (
                (
                    "backend_connections_active",
                    "The current active connections by local and remote address.",
                    active,
                ),
                (
                    "backend_connections_inactive",
                    "The current inactive connections by local and remote address.",
                    inactive,
                ),
                (
                    "backend_weight",
                    "The current backend weight by local and remote address.",
                    weight,
                ),
            ):
                metrics.append(
                    Metric(
                        build_fq_name(NAMESPACE, _SUBSYSTEM, name),
                        help_text,
                        ValueType.GAUGE,
                        float(value),
                        dict(labels),
                    )
                )
        return metrics