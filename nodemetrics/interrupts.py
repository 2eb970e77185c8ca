"""Interrupts collector reading /proc/interrupts."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .helper import NAMESPACE, Metric, ValueType

INTERRUPT_LABEL_NAMES = ("cpu", "type", "info", "devices")

_INTEGER = re.compile(r"[+-]?[0-9]+")


@dataclass
class Interrupt:
    """Per-CPU counts and description of one interrupt line."""

    info: str = ""
    devices: str = ""
    values: list[str] = field(default_factory=list)


def parse_interrupts(lines: Iterable[str]) -> dict[str, Interrupt]:
    """Parse /proc/interrupts lines into interrupts keyed by name."""
    iterator = iter(lines)
    try:
        header = next(iterator)
    except StopIteration:
        raise ValueError("interrupts empty") from None
    cpu_num = len(header.split())

    interrupts: dict[str, Interrupt] = {}
    for line in iterator:
        parts = line.split()
        if len(parts) < cpu_num + 2:
            continue
        name = parts[0][:-1]
        interrupt = Interrupt(values=parts[1 : cpu_num + 1])
        if _INTEGER.fullmatch(name):
            interrupt.info = parts[cpu_num + 1]
            interrupt.devices = " ".join(parts[cpu_num + 2 :])
        else:
            interrupt.info = " ".join(parts[cpu_num + 1 :])
        interrupts[name] = interrupt
    return interrupts


class InterruptsCollector:
    """Exposes per-CPU interrupt counters."""

    def __init__(
        self,
        proc_path: str | os.PathLike[str] = "/proc",
        logger: logging.Logger | None = None,
    ) -> None:
        self.proc_path = Path(proc_path)
        self.logger = logger or logging.getLogger(__name__)

    def _get_interrupts(self) -> dict[str, Interrupt]:
        with open(self.proc_path / "interrupts", encoding="utf-8") as handle:
            return parse_interrupts(handle)

    def update(self) -> list[Metric]:
        """Return one counter per interrupt and CPU."""
        metrics = []
        for name, interrupt in self._get_interrupts().items():
            for cpu, raw in enumerate(interrupt.values):
                try:
                    value = float(raw)
                except ValueError as exc:
                    raise ValueError(f"invalid value {raw} in interrupts: {exc}") from exc
                labels = dict(
                    zip(INTERRUPT_LABEL_NAMES, (str(cpu), name, interrupt.info, interrupt.devices))
                )
                metrics.append(
                    Metric(
                        f"{NAMESPACE}_interrupts_total",
                        "Interrupt details.",
                        ValueType.COUNTER,
                        value,
                        labels,
                    )
                )
        return metrics