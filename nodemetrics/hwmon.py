"""Hardware monitor collector reading /sys/class/hwmon (similar to lm-sensors)."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import NamedTuple

from .helper import Metric, NoDataError, ValueType

_INVALID_METRIC_CHARS = re.compile(r"[^a-z0-9:_]")
_FILENAME_FORMAT = re.compile(
    r"^(?P<type>[^0-9]+)(?P<id>[0-9]*)?(_(?P<property>.+))?$", re.DOTALL
)
_INT64_MAX = 2**63 - 1
_READ_SIZE = 128

SENSOR_TYPES = (
    "vrm",
    "beep_enable",
    "update_interval",
    "in",
    "cpu",
    "fan",
    "pwm",
    "temp",
    "curr",
    "power",
    "energy",
    "humidity",
    "intrusion",
)

_LABEL_NAMES = ("chip", "sensor")


class SensorName(NamedTuple):
    """The parts of a sensor file name: <type><num>_<property>."""

    type: str
    num: int
    property: str


def clean_metric_name(name: str) -> str:
    """Lower-case a name, replace invalid characters by '_' and trim '_'."""
    return _INVALID_METRIC_CHARS.sub("_", name.lower()).strip("_")


def explode_sensor_filename(filename: str) -> SensorName | None:
    """Split a sensor file name into type, number and property, or None."""
    match = _FILENAME_FORMAT.match(filename)
    if match is None:
        return None
    number = 0
    digits = match.group("id")
    if digits:
        number = int(digits)
        if number > _INT64_MAX:
            return None
    return SensorName(match.group("type"), number, match.group("property") or "")


def _read_value(path: Path) -> str | None:
    # Some broken drivers return EAGAIN forever, so do one plain read and bail on error.
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return None
    try:
        raw = os.read(fd, _READ_SIZE)
    except OSError:
        return None
    finally:
        os.close(fd)
    return raw.decode("utf-8", errors="replace").strip("\n")


def _parse_float(text: str | None) -> float | None:
    if not text or text != text.strip() or "_" in text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def collect_sensor_data(
    directory: str | os.PathLike[str], data: dict[str, dict[str, str]]
) -> dict[str, dict[str, str]]:
    """Read every known sensor file in a directory into data, keyed by sensor."""
    directory = Path(directory)
    for filename in sorted(os.listdir(directory)):
        parts = explode_sensor_filename(filename)
        if parts is None or parts.type not in SENSOR_TYPES:
            continue
        value = _read_value(directory / filename)
        if value is None:
            continue
        data.setdefault(f"{parts.type}{parts.num}", {})[parts.property] = value
    return data


def _element_metric(
    sensor_type: str, element: str, name: str, value: float, labels: dict[str, str]
) -> Metric:
    def gauge(metric_name: str, help_text: str, scaled: float) -> Metric:
        return Metric(metric_name, help_text, ValueType.GAUGE, scaled, dict(labels))

    # Fault, alarm and beep carry no unit.
    if element in ("fault", "alarm"):
        return gauge(name, f"Hardware sensor {element} status ({sensor_type})", value)
    if element == "beep":
        return gauge(name + "_enabled", "Hardware monitor sensor has beeping enabled", value)

    if sensor_type in ("in", "cpu"):
        return gauge(name + "_volts", f"Hardware monitor for voltage ({element})", value * 0.001)
    if sensor_type == "temp" and element != "type":
        element = element or "input"
        return gauge(
            name + "_celsius", f"Hardware monitor for temperature ({element})", value * 0.001
        )
    if sensor_type == "curr":
        return gauge(name + "_amps", f"Hardware monitor for current ({element})", value * 0.001)
    if sensor_type == "energy":
        return Metric(
            name + "_joule_total",
            f"Hardware monitor for joules used so far ({element})",
            ValueType.COUNTER,
            value / 1000000.0,
            dict(labels),
        )
    if sensor_type == "power" and element == "accuracy":
        return gauge(name, "Hardware monitor power meter accuracy, as a ratio", value / 1000000.0)
    if sensor_type == "power" and element in (
        "average_interval",
        "average_interval_min",
        "average_interval_max",
    ):
        return gauge(
            name + "_seconds",
            f"Hardware monitor power usage update interval ({element})",
            value * 0.001,
        )
    if sensor_type == "power":
        return gauge(
            name + "_watt",
            f"Hardware monitor for power usage in watts ({element})",
            value / 1000000.0,
        )
    if sensor_type == "humidity":
        return gauge(
            name,
            "Hardware monitor for humidity, as a ratio (multiply with 100.0 to get the "
            f"humidity as a percentage) ({element})",
            value / 1000000.0,
        )
    if sensor_type == "fan" and element in ("input", "min", "max", "target"):
        return gauge(
            name + "_rpm", f"Hardware monitor for fan revolutions per minute ({element})", value
        )
    return gauge(name, f"Hardware monitor {sensor_type} element {element}", value)


def _sensor_metrics(chip: str, sensor: str, sensor_data: dict[str, str]) -> list[Metric]:
    parts = explode_sensor_filename(sensor)
    sensor_type = parts.type if parts is not None else ""
    labels = dict(zip(_LABEL_NAMES, (chip, sensor)))
    metrics = []

    if "label" in sensor_data:
        label = clean_metric_name(sensor_data["label"])
        if label:
            metrics.append(
                Metric(
                    "node_hwmon_sensor_label",
                    "Label for given chip and sensor",
                    ValueType.GAUGE,
                    1.0,
                    {"chip": chip, "sensor": sensor, "label": label},
                )
            )

    if sensor_type == "beep_enable":
        value = 1.0 if sensor_data.get("") == "1" else 0.0
        metrics.append(
            Metric("node_hwmon_beep_enabled", "Hardware beep enabled", ValueType.GAUGE, value, labels)
        )
        return metrics
    if sensor_type == "vrm":
        value = _parse_float(sensor_data.get(""))
        if value is not None:
            metrics.append(
                Metric(
                    "node_hwmon_voltage_regulator_version",
                    "Hardware voltage regulator",
                    ValueType.GAUGE,
                    value,
                    labels,
                )
            )
        return metrics
    if sensor_type == "update_interval":
        value = _parse_float(sensor_data.get(""))
        if value is not None:
            metrics.append(
                Metric(
                    "node_hwmon_update_interval_seconds",
                    "Hardware monitor update interval",
                    ValueType.GAUGE,
                    value * 0.001,
                    labels,
                )
            )
        return metrics

    prefix = "node_hwmon_" + sensor_type
    for element, raw in sorted(sensor_data.items()):
        if element == "label":
            continue
        name = prefix
        if element == "input":
            # "input" is the value itself; only suffix it when a bare value exists too.
            if "" in sensor_data:
                name += "_input"
        elif element:
            name += "_" + clean_metric_name(element)
        value = _parse_float(raw)
        if value is None:
            continue
        metrics.append(_element_metric(sensor_type, element, name, value, labels))
    return metrics


class HwmonCollector:
    """Exposes hardware monitor sensors from /sys/class/hwmon."""

    def __init__(
        self,
        sys_path: str | os.PathLike[str] = "/sys",
        logger: logging.Logger | None = None,
    ) -> None:
        self.sys_path = Path(sys_path)
        self.logger = logger or logging.getLogger(__name__)

    def hwmon_name(self, directory: str | os.PathLike[str]) -> str:
        """Derive a stable name for a hwmon directory.

        Prefers the device path, then the name file, then the directory name.
        """
        directory = Path(directory)
        try:
            device_path: Path | None = (directory / "device").resolve(strict=True)
        except (OSError, RuntimeError):
            device_path = None
        if device_path is not None:
            dev_name = clean_metric_name(device_path.name)
            dev_type = clean_metric_name(device_path.parent.name)
            if dev_type and dev_name:
                return f"{dev_type}_{dev_name}"
            if dev_name:
                return dev_name

        try:
            raw_name = (directory / "name").read_text(encoding="utf-8", errors="replace")
        except OSError:
            raw_name = ""
        if raw_name:
            cleaned = clean_metric_name(raw_name)
            if cleaned:
                return cleaned

        real_dir = directory.resolve(strict=True)
        cleaned = clean_metric_name(real_dir.name)
        if cleaned:
            return cleaned
        raise ValueError(f"Could not derive a monitoring name for {directory}")

    def chip_name(self, directory: str | os.PathLike[str]) -> str:
        """Return the human-readable chip name from the directory's name file."""
        directory = Path(directory)
        raw_name = (directory / "name").read_text(encoding="utf-8", errors="replace")
        if raw_name:
            cleaned = clean_metric_name(raw_name)
            if cleaned:
                return cleaned
        raise ValueError(f"Could not derive a human-readable chip type for {directory}")

    def _update_hwmon(self, directory: Path) -> list[Metric]:
        chip = self.hwmon_name(directory)
        data: dict[str, dict[str, str]] = {}
        collect_sensor_data(directory, data)
        device = directory / "device"
        if device.exists():
            collect_sensor_data(device, data)

        metrics = []
        try:
            chip_name = self.chip_name(directory)
        except (OSError, ValueError):
            pass
        else:
            metrics.append(
                Metric(
                    "node_hwmon_chip_names",
                    "Annotation metric for human-readable chip names",
                    ValueType.GAUGE,
                    1.0,
                    {"chip": chip, "chip_name": chip_name},
                )
            )

        for sensor, sensor_data in sorted(data.items()):
            metrics.extend(_sensor_metrics(chip, sensor, sensor_data))
        return metrics

    def update(self) -> list[Metric]:
        """Return metrics for every hwmon device; raises the last device error, if any."""
        base = self.sys_path / "class" / "hwmon"
        try:
            entries = sorted(os.listdir(base))
        except FileNotFoundError:
            self.logger.debug("hwmon collector metrics are not available for this system")
            raise NoDataError("hwmon collector metrics are not available") from None

        metrics: list[Metric] = []
        last_error: Exception | None = None
        for entry in entries:
            path = base / entry
            if not path.is_dir():
                continue
            try:
                metrics.extend(self._update_hwmon(path))
            except (OSError, ValueError) as exc:
                last_error = exc
        if last_error is not None:
            raise last_error
        return metrics