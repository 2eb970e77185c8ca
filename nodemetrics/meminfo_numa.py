"""Per-NUMA-node memory collector reading /sys/devices/system/node."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .helper import NAMESPACE, Metric, ValueType, build_fq_name

MEMINFO_NUMA_SUBSYSTEM = "memory_numa"

_NODE_RE = re.compile(r".*devices/system/node/node([0-9]*)")
_PARENS = re.compile(r"\((.*)\)")


@dataclass
class MeminfoMetric:
    """One memory figure of one NUMA node."""

    metric_name: str
    metric_type: ValueType
    numa_node: str
    value: float


def parse_mem_info_numa(lines: Iterable[str]) -> list[MeminfoMetric]:
    """Parse a node's meminfo file; kB values are converted to bytes."""
    mem_info = []
    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        parts = line.split()
        if len(parts) < 4:
            raise ValueError(f"invalid line in meminfo: {line}")
        try:
            value = float(parts[3])
        except ValueError as exc:
            raise ValueError(f"invalid value in meminfo: {exc}") from exc
        if len(parts) == 5 and parts[4] == "kB":
            value *= 1024
        elif len(parts) != 4:
            raise ValueError(f"invalid line in meminfo: {line}")
        metric = _PARENS.sub(r"_\1", parts[2].rstrip(":"))
        mem_info.append(MeminfoMetric(metric, ValueType.GAUGE, parts[1], value))
    return mem_info


def parse_mem_info_numa_stat(lines: Iterable[str], node_number: str) -> list[MeminfoMetric]:
    """Parse a node's numastat file into counters."""
    numa_stat = []
    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        parts = line.split()
        if len(parts) != 2:
            raise ValueError(f"line scan did not return 2 fields: {line}")
        try:
            value = float(parts[1])
        except ValueError as exc:
            raise ValueError(f"invalid value in numastat: {exc}") from exc
        numa_stat.append(
            MeminfoMetric(parts[0] + "_total", ValueType.COUNTER, node_number, value)
        )
    return numa_stat


def get_mem_info_numa(sys_path: str | os.PathLike[str] = "/sys") -> list[MeminfoMetric]:
    """Read meminfo and numastat of every NUMA node below the sys root."""
    nodes = sorted(
        Path(sys_path).glob("devices/system/node/node[0-9]*"), key=lambda node: str(node)
    )
    metrics: list[MeminfoMetric] = []
    for node in nodes:
        with open(node / "meminfo", encoding="utf-8") as handle:
            metrics.extend(parse_mem_info_numa(handle))

        match = _NODE_RE.search(node.as_posix())
        if match is None:
            raise ValueError(f"device node string didn't match regexp: {node}")
        with open(node / "numastat", encoding="utf-8") as handle:
            metrics.extend(parse_mem_info_numa_stat(handle, match.group(1)))
    return metrics


class MeminfoNumaCollector:
    """Exposes memory statistics per NUMA node."""

    def __init__(
        self,
        sys_path: str | os.PathLike[str] = "/sys",
        logger: logging.Logger | None = None,
    ) -> None:
        self.sys_path = Path(sys_path)
        self.logger = logger or logging.getLogger(__name__)

    def update(self) -> list[Metric]:
        """Return one metric per node and memory field."""
        return [
            Metric(
                build_fq_name(NAMESPACE, MEMINFO_NUMA_SUBSYSTEM, item.metric_name),
                f"Memory information field {item.metric_name}.",
                item.metric_type,
                item.value,
                {"node": item.numa_node},
            )
            for item in get_mem_info_numa(self.sys_path)
        ]