"""Memory collector reading /proc/meminfo."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from pathlib import Path

from .helper import NAMESPACE, Metric, ValueType, build_fq_name

MEMINFO_SUBSYSTEM = "memory"

_PARENS = re.compile(r"\((.*)\)")


def parse_mem_info(lines: Iterable[str]) -> dict[str, float]:
    """Parse meminfo lines into a mapping of metric key to value.

    Values carrying a unit are taken to be in kB and converted to bytes,
    with '_bytes' appended to their key.
    """
    mem_info: dict[str, float] = {}
    for line in lines:
        parts = line.split()
        if not parts:
            continue
        if len(parts) < 2:
            raise ValueError(f"invalid line in meminfo: {line}")
        try:
            value = float(parts[1])
        except ValueError as exc:
            raise ValueError(f"invalid value in meminfo: {exc}") from exc
        key = _PARENS.sub(r"_\1", parts[0][:-1])
        if len(parts) == 3:
            value *= 1024
            key += "_bytes"
        elif len(parts) != 2:
            raise ValueError(f"invalid line in meminfo: {line}")
        mem_info[key] = value
    return mem_info


class MeminfoCollector:
    """Exposes memory statistics."""

    def __init__(
        self,
        proc_path: str | os.PathLike[str] = "/proc",
        logger: logging.Logger | None = None,
    ) -> None:
        self.proc_path = Path(proc_path)
        self.logger = logger or logging.getLogger(__name__)

    def _get_mem_info(self) -> dict[str, float]:
        with open(self.proc_path / "meminfo", encoding="utf-8") as handle:
            return parse_mem_info(handle)

    def update(self) -> list[Metric]:
        """Return one metric per meminfo field."""
        mem_info = self._get_mem_info()
        self.logger.debug("Set node_mem memInfo=%s", mem_info)
        metrics = []
        for key, value in mem_info.items():
            value_type = ValueType.COUNTER if key.endswith("_total") else ValueType.GAUGE
            metrics.append(
                Metric(
                    build_fq_name(NAMESPACE, MEMINFO_SUBSYSTEM, key),
                    f"Memory information field {key}.",
                    value_type,
                    value,
                )
            )
        return metrics