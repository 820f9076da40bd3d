"""LibreHardwareMonitor sensor tree parsing.

The remote web server of LibreHardwareMonitor (``/data.json``) publishes a
nested tree of hardware, sensor groups and sensors whose exact shape varies
between releases and vendors. This module extracts the CPU temperature, a
global GPU temperature/load and per-device GPU readings from it using
keyword heuristics on the names along the path to each sensor.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import re
import time
from typing import Any, Callable, Mapping
from urllib.error import HTTPError
from urllib.request import urlopen

from system_monitor.cache import ExternalSourceCache
from system_monitor.config import SourcesConfig
from system_monitor.logging_utils import TRACE_LEVEL, LogThrottle

logger = logging.getLogger(__name__)

_NUMBER_PATTERN = re.compile(r"[+-]?\d+(?:\.\d+)?")

CPU_SENSOR_MARKERS = (
    "core #",
    "package",
    "tctl",
    "tdie",
    "ccd1",
    "ccd2",
    "ccd ",
    "core (smu)",
    "cpu package",
)
CPU_SECTION_MARKERS = ("cpu", "ryzen", "intel", "core", "package")
GPU_SECTION_MARKERS = ("gpu", "nvidia", "radeon", "graphics")
GPU_NAME_MARKERS = ("gpu", "graphics", "radeon", "nvidia", "geforce")
VENDOR_SENSOR_IDS = {"/gpu-nvidia/0/": "nvidia", "/gpu-amd/0/": "amd"}


def is_valid_temperature(value: float | None) -> bool:
    return value is not None and 0 < value < 150


def is_valid_load(value: float | None) -> bool:
    return value is not None and 0 <= value <= 100


def parse_sensor_value(value: Any) -> float | None:
    """Parse a sensor value such as ``45.0``, ``"45"`` or ``"45.0 °C"``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        pass
    match = _NUMBER_PATTERN.search(text)
    if match is None:
        return None
    return float(match.group())


def _first_text(node: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = node.get(key)
        if isinstance(value, str):
            return value
    return None


def _text_of(node: Mapping[str, Any]) -> str:
    return _first_text(node, "Text", "Name") or ""


def _name_of(node: Mapping[str, Any]) -> str | None:
    return _first_text(node, "Name", "Text")


def _identifier_of(node: Mapping[str, Any]) -> str:
    return _first_text(node, "Identifier", "Id") or ""


def _sensor_id_of(node: Mapping[str, Any]) -> str | None:
    return _first_text(node, "SensorId", "Identifier")


def _type_of(node: Mapping[str, Any]) -> str | None:
    return _first_text(node, "SensorType", "Type", "type")


def _value_of(node: Mapping[str, Any]) -> float | None:
    for key in ("Value", "value", "CurrentValue"):
        if key in node:
            return parse_sensor_value(node[key])
    return None


def looks_like_gpu_device(text: str) -> bool:
    lowered = text.lower()
    return (
        "nvidia" in lowered
        or "geforce" in lowered
        or "radeon" in lowered
        or ("amd" in lowered and "graphics" in lowered)
    )


def lookup_device(device_map: Mapping[str, float], queried_name: str | None) -> float | None:
    """Find the reading for a device whose name may be spelled differently.

    Tries an exact match, then a case-insensitive match, then a
    case-insensitive substring match in either direction, so that
    "NVIDIA GeForce GTX 1650" finds the key "GeForce GTX 1650".
    """
    if not device_map or not queried_name:
        return None
    key = queried_name.strip()
    if not key:
        return None
    if key in device_map:
        return device_map[key]
    key_lower = key.lower()
    for name, value in device_map.items():
        if name and name.strip().lower() == key_lower:
            return value
    for name, value in device_map.items():
        name_lower = name.strip().lower() if name else ""
        if name_lower and (name_lower in key_lower or key_lower in name_lower):
            return value
    return None


@dataclass(frozen=True)
class SensorReadings:
    """Result of one sensor tree parse.

    ``gpu_temps_by_name``/``gpu_loads_by_name`` are keyed by the device names
    found in the tree. ``gpu_temps_by_vendor``/``gpu_loads_by_vendor`` come
    from a flat ``Sensors`` list and are keyed by ``"nvidia"`` or ``"amd"``.
    """

    cpu_temp: float | None = None
    gpu_temp: float | None = None
    gpu_load: float | None = None
    gpu_temps_by_name: Mapping[str, float] = field(default_factory=dict)
    gpu_loads_by_name: Mapping[str, float] = field(default_factory=dict)
    gpu_temps_by_vendor: Mapping[str, float] = field(default_factory=dict)
    gpu_loads_by_vendor: Mapping[str, float] = field(default_factory=dict)

    def gpu_temperature_for(self, device_name: str | None) -> float | None:
        value = lookup_device(self.gpu_temps_by_name, device_name)
        if value is None:
            value = lookup_device(self.gpu_temps_by_vendor, device_name)
        return value

    def gpu_load_for(self, device_name: str | None) -> float | None:
        value = lookup_device(self.gpu_loads_by_name, device_name)
        if value is None:
            value = lookup_device(self.gpu_loads_by_vendor, device_name)
        return value


def _keep_max(current: float | None, value: float) -> float:
    return value if current is None or value > current else current


def _put_max(target: dict[str, float], key: str, value: float) -> None:
    target[key] = _keep_max(target.get(key), value)


@dataclass
class _Accumulator:
    cpu_temp: float | None = None
    gpu_temp: float | None = None
    gpu_load: float | None = None
    temps_by_name: dict[str, float] = field(default_factory=dict)
    loads_by_name: dict[str, float] = field(default_factory=dict)
    temps_by_vendor: dict[str, float] = field(default_factory=dict)
    loads_by_vendor: dict[str, float] = field(default_factory=dict)

    def freeze(self) -> SensorReadings:
        gpu_temp = self.gpu_temp
        if gpu_temp is None:
            per_device = [*self.temps_by_name.values(), *self.temps_by_vendor.values()]
            gpu_temp = max(per_device) if per_device else None
        gpu_load = self.gpu_load
        if gpu_load is None:
            per_device = [*self.loads_by_name.values(), *self.loads_by_vendor.values()]
            gpu_load = max(per_device) if per_device else None
        return SensorReadings(
            cpu_temp=self.cpu_temp,
            gpu_temp=gpu_temp,
            gpu_load=gpu_load,
            gpu_temps_by_name=dict(self.temps_by_name),
            gpu_loads_by_name=dict(self.loads_by_name),
            gpu_temps_by_vendor=dict(self.temps_by_vendor),
            gpu_loads_by_vendor=dict(self.loads_by_vendor),
        )


@dataclass(frozen=True)
class _PathContext:
    # Lowercase ancestor names only
    names: str = ""
    # Lowercase ancestor names and identifiers, used for classification
    combined: str = ""
    gpu_device: str | None = None


def _walk(node: Mapping[str, Any], context: _PathContext, acc: _Accumulator) -> _Accumulator:
    text = _text_of(node)
    own = text.lower()
    combined = f"{context.combined} {text} {_identifier_of(node)}".lower()
    sensor_type = _type_of(node)
    type_lower = sensor_type.lower() if sensor_type else None
    value = _value_of(node)
    children = node.get("Children")
    has_children = isinstance(children, list)

    next_gpu_device = context.gpu_device
    if has_children and text and looks_like_gpu_device(text):
        next_gpu_device = text.strip()

    is_cpu_sensor = any(marker in combined for marker in CPU_SENSOR_MARKERS)
    is_gpu_sensor = "gpu" in own or "graphics" in own
    names_gpu = "gpu" in combined or "graphics" in combined
    names_cpu_vendor = "ryzen" in combined or "intel" in combined
    cpu_section = any(marker in combined for marker in CPU_SECTION_MARKERS)
    is_cpu = (cpu_section and (not names_gpu or is_cpu_sensor)) or (
        type_lower == "temperature" and names_cpu_vendor and not is_gpu_sensor
    )
    is_gpu = (
        any(marker in combined for marker in GPU_SECTION_MARKERS)
        and "core #" not in combined
        and (is_gpu_sensor or not names_cpu_vendor)
    )
    is_temp = type_lower in ("temperature", "temp") or "temp" in combined
    is_load = type_lower == "load"

    if context.gpu_device:
        if is_temp and (is_gpu_sensor or is_gpu) and is_valid_temperature(value):
            _put_max(acc.temps_by_name, context.gpu_device, value)
        if is_load and is_gpu and is_valid_load(value):
            _put_max(acc.loads_by_name, context.gpu_device, value)

    if is_valid_temperature(value):
        untyped_cpu = sensor_type is None and ("package" in combined or "core" in combined)
        if is_temp or untyped_cpu:
            if is_cpu_sensor or (is_cpu and not is_gpu_sensor):
                acc.cpu_temp = _keep_max(acc.cpu_temp, value)
                logger.log(TRACE_LEVEL, "CPU temperature %.1f at %r", value, context.names)
            elif is_gpu_sensor or is_gpu:
                acc.gpu_temp = _keep_max(acc.gpu_temp, value)
                logger.log(TRACE_LEVEL, "GPU temperature %.1f at %r", value, context.names)

    if is_load and is_gpu and is_valid_load(value):
        acc.gpu_load = _keep_max(acc.gpu_load, value)

    if has_children:
        child_context = _PathContext(
            names=f"{context.names} {own}".strip(),
            combined=combined,
            gpu_device=next_gpu_device,
        )
        for child in children:
            if isinstance(child, dict):
                _walk(child, child_context, acc)
    return acc


def _scan_flat_sensors(sensors: list[Any], acc: _Accumulator) -> _Accumulator:
    for sensor in sensors:
        if not isinstance(sensor, dict):
            continue
        value = _value_of(sensor)
        if value is None:
            continue
        name = (_name_of(sensor) or "").lower()
        sensor_type = (_type_of(sensor) or "").lower()
        sensor_id = (_sensor_id_of(sensor) or "").lower()
        vendor = next(
            (key for marker, key in VENDOR_SENSOR_IDS.items() if marker in sensor_id),
            None,
        )
        names_gpu = any(marker in name for marker in GPU_NAME_MARKERS)
        if sensor_type == "temperature" and is_valid_temperature(value):
            if "cpu" in name and "gpu" not in name:
                acc.cpu_temp = _keep_max(acc.cpu_temp, value)
            if names_gpu:
                acc.gpu_temp = _keep_max(acc.gpu_temp, value)
            if vendor:
                _put_max(acc.temps_by_vendor, vendor, value)
        elif sensor_type == "load" and is_valid_load(value):
            if names_gpu:
                acc.gpu_load = _keep_max(acc.gpu_load, value)
            if vendor:
                _put_max(acc.loads_by_vendor, vendor, value)
    return acc


def _root_children(document: Any) -> list[Any]:
    if isinstance(document, list):
        return document
    if not isinstance(document, dict):
        return []
    children = document.get("Children")
    if isinstance(children, list) and children:
        return children
    if len(document) == 1:
        (wrapped,) = document.values()
        if isinstance(wrapped, dict):
            children = wrapped.get("Children")
            if isinstance(children, list):
                return children
    return []


def parse_sensor_tree(document: Any) -> SensorReadings:
    """Extract CPU/GPU readings from a sensor tree document.

    Accepts a bare list of nodes, ``{"Children": [...]}``, or an object
    whose only key wraps the tree, such as
    ``{"Computer": {"Children": [...]}}``. A flat
    top-level ``"Sensors"`` list is scanned as well. Any parse failure
    yields empty readings.
    """
    acc = _Accumulator()
    try:
        for child in _root_children(document):
            if isinstance(child, dict):
                _walk(child, _PathContext(), acc)
        if isinstance(document, dict) and isinstance(document.get("Sensors"), list):
            _scan_flat_sensors(document["Sensors"], acc)
    except Exception as exc:
        logger.debug("Failed to parse sensor tree: %s", exc)
        return SensorReadings()
    return acc.freeze()


@dataclass(frozen=True)
class SensorTreeStatus:
    reachable: bool
    cpu_temp: float | None
    gpu_temp: float | None
    gpu_load: float | None
    error: str | None
    http_ok: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "reachable": self.reachable,
            "cpu_temp_c": self.cpu_temp,
            "gpu_temp_c": self.gpu_temp,
            "gpu_load_pct": self.gpu_load,
            "error": self.error,
            "http_ok": self.http_ok,
        }


class SensorTreeSource:
    """Cached reader for the LibreHardwareMonitor remote web server."""

    def __init__(
        self,
        config: SourcesConfig,
        cache: ExternalSourceCache[SensorReadings] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.url = config.librehardwaremonitor_url
        self.timeout = config.request_timeout_s
        self.cache = cache or ExternalSourceCache(
            config.sensor_tree_ttl_ms, clock=clock, name="sensor tree"
        )
        self.last_error: str | None = None
        self.http_ok = False
        self._unreachable_log = LogThrottle(config.quiet_log_interval_s, clock=clock)
        self._no_temps_log = LogThrottle(config.quiet_log_interval_s, clock=clock)
        self.logger = logging.getLogger(self.__class__.__name__)
        if self.url:
            self.logger.info(
                "Sensor tree URL: %s (temperatures appear while the "
                "LibreHardwareMonitor remote web server is running)",
                self.url,
            )

    def readings(self) -> SensorReadings:
        if not self.url:
            return SensorReadings()
        return self.cache.get_or_fetch(self._fetch) or SensorReadings()

    def cpu_temperature(self) -> float | None:
        return self.readings().cpu_temp

    def status(self) -> SensorTreeStatus:
        readings = self.readings()
        return SensorTreeStatus(
            reachable=readings.cpu_temp is not None or readings.gpu_temp is not None,
            cpu_temp=readings.cpu_temp,
            gpu_temp=readings.gpu_temp,
            gpu_load=readings.gpu_load,
            error=self.last_error,
            http_ok=self.http_ok,
        )

    def top_level_keys(self) -> list[str]:
        """Top-level keys of the raw document, for diagnosing schema drift."""
        try:
            document = json.loads(self._request())
        except HTTPError as exc:
            return [f"HTTP {exc.code}"]
        except (OSError, ValueError) as exc:
            return [f"error: {exc}"]
        if isinstance(document, dict):
            return list(document.keys())
        return []

    def sample_text(self, max_chars: int = 4000) -> str:
        try:
            body = self._request()
        except HTTPError as exc:
            return f"HTTP {exc.code}"
        except (OSError, ValueError) as exc:
            return f"error: {exc}"
        if len(body) <= max_chars:
            return body
        return f"{body[:max_chars]}\n... (truncated, total {len(body)} chars)"

    def _request(self) -> str:
        if not self.url:
            raise ValueError("sensor tree URL not configured")
        with urlopen(self.url, timeout=self.timeout) as response:
            return response.read().decode("utf-8")

    def _fetch(self) -> SensorReadings | None:
        try:
            body = self._request()
        except HTTPError as exc:
            self.http_ok = False
            self.last_error = f"HTTP {exc.code}"
            self.logger.debug("Sensor tree returned status %s", exc.code)
            return None
        except OSError as exc:
            self.http_ok = False
            self.last_error = str(exc) or exc.__class__.__name__
            if self._unreachable_log.ready():
                self.logger.info(
                    "Sensor tree not reachable at %s (start LibreHardwareMonitor "
                    "and enable Options -> Remote web server -> Run): %s",
                    self.url,
                    self.last_error,
                )
            return None
        except UnicodeDecodeError as exc:
            self.http_ok = True
            self.last_error = f"invalid UTF-8: {exc.reason}"
            self.logger.debug("Sensor tree body is not UTF-8: %s", exc)
            return None
        self.http_ok = True
        self.last_error = None
        if self.logger.isEnabledFor(TRACE_LEVEL):
            self.logger.log(TRACE_LEVEL, "Sensor tree raw payload: %s", body)
        try:
            document = json.loads(body)
        except json.JSONDecodeError as exc:
            self.last_error = f"invalid JSON: {exc}"
            self.logger.debug("Failed to decode sensor tree JSON: %s", exc)
            return None
        readings = parse_sensor_tree(document)
        if readings.cpu_temp is not None or readings.gpu_temp is not None:
            self.logger.debug(
                "Sensor tree temps: CPU=%s °C, GPU=%s °C",
                readings.cpu_temp,
                readings.gpu_temp,
            )
        elif body and self._no_temps_log.ready():
            self.logger.warning(
                "Sensor tree returned %s chars but no temperatures were parsed; "
                "run with --sensor-status to inspect its structure.",
                len(body),
            )
        return readings
