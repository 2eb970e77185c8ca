"""Load average collector reading /proc/loadavg."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .helper import NAMESPACE, Metric, ValueType


def parse_load(data: str) -> list[float]:
    """Parse the contents of /proc/loadavg into the 1m, 5m and 15m loads."""
    parts = data.split()
    if len(parts) < 3:
        raise ValueError("unexpected content in loadavg")
    loads = []
    for part in parts[:3]:
        try:
            loads.append(float(part))
        except ValueError as exc:
            raise ValueError(f"could not parse load '{part}': {exc}") from exc
    return loads


def get_load(proc_path: str | os.PathLike[str]) -> list[float]:
    """Read and parse the loadavg file below the given proc root."""
    return parse_load((Path(proc_path) / "loadavg").read_text(encoding="utf-8"))


_METRICS = (
    (f"{NAMESPACE}_load1", "1m load average."),
    (f"{NAMESPACE}_load5", "5m load average."),
    (f"{NAMESPACE}_load15", "15m load average."),
)


class LoadavgCollector:
    """Exposes the system load averages."""

    def __init__(
        self,
        proc_path: str | os.PathLike[str] = "/proc",
        logger: logging.Logger | None = None,
    ) -> None:
        self.proc_path = Path(proc_path)
        self.logger = logger or logging.getLogger(__name__)

    def update(self) -> list[Metric]:
        """Return the current load average metrics."""
        loads = get_load(self.proc_path)
        metrics = []
        for index, ((name, help_text), load) in enumerate(zip(_METRICS, loads)):
            self.logger.debug("return load index=%d load=%s", index, load)
            metrics.append(Metric(name, help_text, ValueType.GAUGE, load))
        return metrics