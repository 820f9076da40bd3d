from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Protocol, Sequence, TypeVar

from system_monitor.hardware import HardwareAccess
from system_monitor.models import (
    UNAVAILABLE,
    CpuStats,
    DiskStats,
    GpuStats,
    MemoryStats,
    NetworkStats,
    Sample,
    clamp_pct,
)
from system_monitor.probes import GpuReading, NvidiaSmiProbe, ThermalZoneProbe
from system_monitor.rates import RateSampler
from system_monitor.sensor_tree import SensorTreeSource, is_valid_temperature

T = TypeVar("T")


class CpuTemperatureSource(Protocol):
    def cpu_temperature(self) -> float | None: ...


def is_nvidia(name: str) -> bool:
    lowered = name.lower()
    return "nvidia" in lowered or "geforce" in lowered


def primary_gpu_index(names: Sequence[str]) -> int:
    """Index of the GPU that receives device-less readings.

    First NVIDIA card, else first AMD card, else the first device.
    """
    for index, name in enumerate(names):
        if is_nvidia(name or ""):
            return index
    for index, name in enumerate(names):
        lowered = (name or "").lower()
        if "amd" in lowered or "radeon" in lowered:
            return index
    return 0


class MetricReconciler:
    """Builds one :class:`Sample` per tick from all metric sources.

    Disk and network rates are derived from cumulative counters. CPU and
    GPU temperatures and GPU load are merged from the sensor tree, the
    ``nvidia-smi`` probe and the Windows thermal zone probe. Each metric
    category is collected independently so that one failing source only
    degrades its own part of the sample.

    Ticks must not overlap; the rate samplers and the CPU tick baseline are
    not safe for concurrent update.
    """

    def __init__(
        self,
        hardware: HardwareAccess,
        sensor_tree: SensorTreeSource,
        nvidia_smi: NvidiaSmiProbe,
        thermal_zone: ThermalZoneProbe,
        cpu_temperature_sources: Iterable[CpuTemperatureSource] | None = None,
        clock: Callable[[], float] = time.time,
        rate_clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.hardware = hardware
        self.sensor_tree = sensor_tree
        self.nvidia_smi = nvidia_smi
        self.thermal_zone = thermal_zone
        if cpu_temperature_sources is None:
            cpu_temperature_sources = (hardware, sensor_tree, thermal_zone)
        self.cpu_temperature_sources = list(cpu_temperature_sources)
        self._clock = clock
        self.disk_read = RateSampler(rate_clock)
        self.disk_write = RateSampler(rate_clock)
        self.net_recv = RateSampler(rate_clock)
        self.net_sent = RateSampler(rate_clock)
        self._previous_ticks: tuple[float, ...] | None = None
        self.logger = logging.getLogger(self.__class__.__name__)
        self.prime()

    def prime(self) -> None:
        """Record the CPU tick and byte counter baselines."""
        self._previous_ticks = self.hardware.cpu_ticks()
        try:
            read_total, write_total = self._disk_totals()
            self.disk_read.sample(lambda: read_total)
            self.disk_write.sample(lambda: write_total)
        except Exception as exc:
            self.logger.debug("Failed to prime disk counters: %s", exc)
        try:
            recv_total, sent_total = self._net_totals()
            self.net_recv.sample(lambda: recv_total)
            self.net_sent.sample(lambda: sent_total)
        except Exception as exc:
            self.logger.debug("Failed to prime network counters: %s", exc)

    def collect(self) -> Sample:
        self.logger.debug("Collecting sample.")
        ts = int(self._clock() * 1000)
        cpu = self._isolated("CPU", self._collect_cpu, CpuStats.placeholder)
        memory = self._isolated("Memory", self._collect_memory, MemoryStats.placeholder)
        gpus = self._isolated("GPU", self._collect_gpus, lambda: (GpuStats.unavailable(),))
        disk = self._isolated("Disk", self._collect_disk, DiskStats.placeholder)
        network = self._isolated("Network", self._collect_network, NetworkStats.placeholder)
        return Sample(ts=ts, cpu=cpu, memory=memory, disk=disk, network=network, gpus=gpus)

    def _isolated(self, label: str, collect: Callable[[], T], placeholder: Callable[[], T]) -> T:
        try:
            return collect()
        except Exception as exc:
            self.logger.warning("%s stats failed, using placeholder: %s", label, exc)
            return placeholder()

    def _collect_cpu(self) -> CpuStats:
        usage = self._cpu_usage(self.hardware.cpu_ticks())
        return CpuStats(
            name=self.hardware.cpu_name(),
            usage_pct=usage,
            logical_cores=self.hardware.logical_cpu_count(),
            temp_c=self.cpu_temperature(),
        )

    def _cpu_usage(self, ticks: tuple[float, ...] | None) -> float:
        previous = self._previous_ticks
        self._previous_ticks = ticks
        if previous is None or ticks is None or len(previous) != len(ticks):
            return 0.0
        total_delta = sum(current - before for current, before in zip(ticks, previous))
        if total_delta <= 0:
            return 0.0
        idle = self.hardware.idle_tick_index
        idle_delta = ticks[idle] - previous[idle]
        return clamp_pct(100.0 * (1.0 - idle_delta / total_delta))

    def cpu_temperature(self) -> float | None:
        for source in self.cpu_temperature_sources:
            try:
                value = source.cpu_temperature()
            except Exception as exc:
                self.logger.debug(
                    "CPU temperature source %s failed: %s", source.__class__.__name__, exc
                )
                continue
            if is_valid_temperature(value):
                return value
        return None

    def _collect_memory(self) -> MemoryStats:
        memory = self.hardware.memory()
        usage = 100.0 * memory.used_b / memory.total_b if memory.total_b > 0 else 0.0
        return MemoryStats(
            total_b=memory.total_b,
            used_b=memory.used_b,
            available_b=memory.available_b,
            usage_pct=clamp_pct(usage),
        )

    def _collect_gpus(self) -> tuple[GpuStats, ...]:
        devices = self.hardware.graphics_devices()
        if not devices:
            return (GpuStats.unavailable(),)
        readings = self.sensor_tree.readings()
        names = [device.name or "" for device in devices]
        primary = primary_gpu_index(names)
        vendor_reading = (
            self.nvidia_smi.reading() if any(is_nvidia(name) for name in names) else GpuReading()
        )

        gpus = []
        for index, (device, name) in enumerate(zip(devices, names)):
            temp = readings.gpu_temperature_for(name)
            usage = readings.gpu_load_for(name)
            if is_nvidia(name) and vendor_reading.has_data:
                if vendor_reading.usage_pct is not None:
                    usage = vendor_reading.usage_pct
                if vendor_reading.temp_c is not None:
                    temp = vendor_reading.temp_c
            if index == primary:
                if temp is None:
                    temp = readings.gpu_temp
                if usage is None:
                    usage = readings.gpu_load
            gpus.append(
                GpuStats(
                    name=name or UNAVAILABLE,
                    usage_pct=clamp_pct(usage) if usage is not None else 0.0,
                    vram_used_b=0,
                    vram_total_b=device.vram_total_b,
                    temp_c=temp,
                )
            )
        return tuple(gpus)

    def _disk_totals(self) -> tuple[int, int]:
        counters = self.hardware.disk_counters()
        return (
            sum(disk.read_b for disk in counters),
            sum(disk.write_b for disk in counters),
        )

    def _net_totals(self) -> tuple[int, int]:
        counters = [nic for nic in self.hardware.net_counters() if not nic.is_loopback]
        return (
            sum(nic.recv_b for nic in counters),
            sum(nic.sent_b for nic in counters),
        )

    def _collect_disk(self) -> DiskStats:
        read_total, write_total = self._disk_totals()
        space = self.hardware.disk_space()
        usage = 100.0 * space.used_b / space.total_b if space.total_b > 0 else 0.0
        return DiskStats(
            read_bps=self.disk_read.sample(lambda: read_total),
            write_bps=self.disk_write.sample(lambda: write_total),
            total_b=space.total_b,
            used_b=space.used_b,
            usage_pct=clamp_pct(usage),
        )

    def _collect_network(self) -> NetworkStats:
        recv_total, sent_total = self._net_totals()
        return NetworkStats(
            download_bps=self.net_recv.sample(lambda: recv_total),
            upload_bps=self.net_sent.sample(lambda: sent_total),
            received_b=recv_total,
            sent_b=sent_total,
        )
