"""Shared metric types and small file helpers used by the collectors."""

from __future__ import annotations

import enum
import os
import re
from dataclasses import dataclass, field

NAMESPACE = "node"

_UINT64_MAX = 2**64 - 1
_DIGITS = re.compile(r"[0-9]+")


class ValueType(enum.Enum):
    """Kind of value a metric sample carries."""

    COUNTER = "counter"
    GAUGE = "gauge"
    UNTYPED = "untyped"


@dataclass
class Metric:
    """A single metric sample with its descriptor and label values."""

    name: str
    help: str
    value_type: ValueType
    value: float
    labels: dict[str, str] = field(default_factory=dict)


class NoDataError(Exception):
    """Raised by a collector when the data it reads is not present on this system."""


def build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    """Join the non-empty parts with underscores; an empty name yields ''."""
    if not name:
        return ""
    return "_".join(part for part in (namespace, subsystem, name) if part)


def bytes_to_string(data: bytes) -> str:
    """Decode bytes up to the first NUL byte, or all of them if there is none."""
    end = data.find(b"\x00")
    if end >= 0:
        data = data[:end]
    return data.decode("utf-8", errors="replace")


def read_uint_from_file(path: str | os.PathLike[str]) -> int:
    """Read a file holding a single unsigned 64-bit decimal integer."""
    with open(path, encoding="utf-8") as handle:
        text = handle.read().strip()
    if not _DIGITS.fullmatch(text):
        raise ValueError(f"invalid unsigned integer {text!r} in {os.fspath(path)}")
    value = int(text)
    if value > _UINT64_MAX:
        raise ValueError(f"value {text!r} in {os.fspath(path)} out of range")
    return value