from __future__ import annotations

from dataclasses import dataclass
import logging
import platform
import subprocess
import time
from typing import Callable

from system_monitor.cache import ExternalSourceCache
from system_monitor.commands import run_command
from system_monitor.config import SourcesConfig
from system_monitor.sensor_tree import is_valid_load, is_valid_temperature

THERMAL_ZONE_SCRIPT = (
    "try { $t = (Get-CimInstance -ClassName MSAcpi_ThermalZoneTemperature "
    "-Namespace root/wmi -ErrorAction Stop | Select-Object -First 1).CurrentTemperature; "
    "[math]::Round(($t/10.0)-273.15,1) } catch { '' }"
)


def _parse_float(text: str) -> float | None:
    try:
        return float(text.strip())
    except ValueError:
        return None


@dataclass(frozen=True)
class GpuReading:
    usage_pct: float | None = None
    temp_c: float | None = None

    @property
    def has_data(self) -> bool:
        return self.usage_pct is not None or self.temp_c is not None


class NvidiaSmiProbe:
    """NVIDIA utilization and temperature from ``nvidia-smi``.

    Output is read from a single CSV line such as ``"37, 61"``. A missing
    executable, a timeout or unparsable output all yield an empty reading,
    cached for the probe TTL like a successful one.
    """

    def __init__(
        self,
        config: SourcesConfig,
        cache: ExternalSourceCache[GpuReading] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.path = config.nvidia_smi_path
        self.timeout = config.nvidia_smi_timeout_s
        self.cache = cache or ExternalSourceCache(
            config.nvidia_smi_ttl_ms, clock=clock, name="nvidia-smi"
        )
        self.logger = logging.getLogger(self.__class__.__name__)

    def reading(self) -> GpuReading:
        return self.cache.get_or_fetch(self._query) or GpuReading()

    def _query(self) -> GpuReading:
        output = run_command(
            [
                self.path,
                "--query-gpu=utilization.gpu,temperature.gpu",
                "--format=csv,noheader,nounits",
            ],
            timeout=self.timeout,
            stderr=subprocess.STDOUT,
        )
        if not output or not output.strip():
            return GpuReading()
        line = output.strip().splitlines()[0]
        parts = line.split(",")
        if len(parts) < 2:
            self.logger.debug("Unexpected nvidia-smi output: %s", line)
            return GpuReading()
        usage = _parse_float(parts[0])
        temp = _parse_float(parts[1])
        return GpuReading(
            usage_pct=usage if is_valid_load(usage) else None,
            temp_c=temp if is_valid_temperature(temp) else None,
        )


class ThermalZoneProbe:
    """Last-resort CPU temperature from the Windows ACPI thermal zone.

    PowerShell takes around a second to start, so the result is cached for
    several ticks. Works only where the firmware exposes
    ``MSAcpi_ThermalZoneTemperature``; every other platform gets None.
    """

    def __init__(
        self,
        config: SourcesConfig,
        cache: ExternalSourceCache[float] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.path = config.powershell_path
        self.timeout = config.thermal_zone_timeout_s
        self.cache = cache or ExternalSourceCache(
            config.thermal_zone_ttl_ms, clock=clock, name="thermal zone"
        )
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def enabled(self) -> bool:
        return platform.system().lower() == "windows"

    def cpu_temperature(self) -> float | None:
        if not self.enabled:
            return None
        return self.cache.get_or_fetch(self._query)

    def _query(self) -> float | None:
        output = run_command(
            [self.path, "-NoProfile", "-NonInteractive", "-Command", THERMAL_ZONE_SCRIPT],
            timeout=self.timeout,
            stderr=subprocess.DEVNULL,
        )
        if not output or not output.strip():
            return None
        value = _parse_float(output.strip().splitlines()[0])
        if not is_valid_temperature(value):
            self.logger.debug("Discarding thermal zone reading: %s", output.strip())
            return None
        return round(value, 1)
