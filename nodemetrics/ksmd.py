"""Kernel samepage merging collector reading /sys/kernel/mm/ksm."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .helper import NAMESPACE, Metric, ValueType, build_fq_name, read_uint_from_file

KSMD_FILES = (
    "full_scans",
    "merge_across_nodes",
    "pages_shared",
    "pages_sharing",
    "pages_to_scan",
    "pages_unshared",
    "pages_volatile",
    "run",
    "sleep_millisecs",
)

_SUBSYSTEM = "ksmd"


def canonical_metric_name(filename: str) -> str:
    """Map a ksm file name to the metric name it is exposed under."""
    if filename == "full_scans":
        return filename + "_total"
    if filename == "sleep_millisecs":
        return "sleep_seconds"
    return filename


class KsmdCollector:
    """Exposes the ksmd statistics files."""

    def __init__(
        self,
        sys_path: str | os.PathLike[str] = "/sys",
        logger: logging.Logger | None = None,
    ) -> None:
        self.sys_path = Path(sys_path)
        self.logger = logger or logging.getLogger(__name__)

    def update(self) -> list[Metric]:
        """Return one metric per ksm file."""
        base = self.sys_path / "kernel" / "mm" / "ksm"
        metrics = []
        for filename in KSMD_FILES:
            value: float = float(read_uint_from_file(base / filename))
            value_type = ValueType.GAUGE
            if filename == "full_scans":
                value_type = ValueType.COUNTER
            elif filename == "sleep_millisecs":
                value /= 1000
            metrics.append(
                Metric(
                    build_fq_name(NAMESPACE, _SUBSYSTEM, canonical_metric_name(filename)),
                    f"ksmd '{filename}' file.",
                    value_type,
                    value,
                )
            )
        return metrics