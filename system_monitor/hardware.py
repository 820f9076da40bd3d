from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import os
from pathlib import Path
import platform
import re
import shlex
import subprocess

import psutil

from system_monitor.commands import run_command
from system_monitor.config import SourcesConfig
from system_monitor.models import UNAVAILABLE
from system_monitor.sensor_tree import is_valid_temperature

# Chips and labels that report the CPU package rather than a board sensor
CPU_SENSOR_CHIPS = ("coretemp", "k10temp", "zenpower", "cpu_thermal", "cpu-thermal", "acpitz")
CPU_PACKAGE_LABELS = ("package id 0", "tctl", "tdie")
# Linux already counts guest time inside user and nice
GUEST_TICK_FIELDS = ("guest", "guest_nice")

GPU_PCI_CLASSES = ("vga compatible controller", "3d controller", "display controller")
_BRACKETED = re.compile(r"\[([^\]]+)\]")


@dataclass(frozen=True)
class GraphicsDevice:
    name: str
    vram_total_b: int = 0


@dataclass(frozen=True)
class DiskCounters:
    name: str
    read_b: int
    write_b: int


@dataclass(frozen=True)
class NetCounters:
    name: str
    recv_b: int
    sent_b: int

    @property
    def is_loopback(self) -> bool:
        return self.name == "lo" or "loopback" in self.name.lower()


@dataclass(frozen=True)
class MemoryTotals:
    total_b: int
    available_b: int

    @property
    def used_b(self) -> int:
        return self.total_b - self.available_b


@dataclass(frozen=True)
class DiskSpace:
    total_b: int
    used_b: int


def _short_vendor(vendor: str) -> str:
    lowered = vendor.lower()
    if "nvidia" in lowered:
        return "NVIDIA"
    if "advanced micro devices" in lowered or "amd" in lowered or "ati" in lowered.split():
        return "AMD"
    if "intel" in lowered:
        return "Intel"
    return vendor.replace(" Corporation", "").replace(", Inc.", "").strip()


def parse_lspci_graphics(output: str) -> list[tuple[str, str]]:
    """Return ``(slot, display name)`` for each graphics row of ``lspci -mm``."""
    devices: list[tuple[str, str]] = []
    for line in output.splitlines():
        try:
            fields = shlex.split(line)
        except ValueError:
            continue
        if len(fields) < 4 or fields[1].lower() not in GPU_PCI_CLASSES:
            continue
        slot, vendor, device = fields[0], fields[2], fields[3]
        bracketed = _BRACKETED.findall(device)
        model = bracketed[-1] if bracketed else device
        devices.append((slot, f"{_short_vendor(vendor)} {model}".strip()))
    return devices


def _host_tick_fields(times) -> list[str]:
    return [name for name in times._fields if name not in GUEST_TICK_FIELDS]


class HardwareAccess:
    """Raw counter reads used by the reconciler, backed by psutil."""

    def __init__(self, config: SourcesConfig) -> None:
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)
        self._cpu_name: str | None = None
        self.idle_tick_index = _host_tick_fields(psutil.cpu_times()).index("idle")

    def cpu_ticks(self) -> tuple[float, ...] | None:
        try:
            times = psutil.cpu_times()
        except (OSError, psutil.Error) as exc:
            self.logger.debug("Failed to read CPU times: %s", exc)
            return None
        return tuple(getattr(times, name) for name in _host_tick_fields(times))

    def cpu_name(self) -> str:
        if self._cpu_name is None:
            self._cpu_name = self._detect_cpu_name() or UNAVAILABLE
        return self._cpu_name

    def _detect_cpu_name(self) -> str | None:
        if platform.system().lower() == "linux":
            cpuinfo = self._read_file("/proc/cpuinfo")
            if cpuinfo:
                for line in cpuinfo.splitlines():
                    if line.lower().startswith("model name") and ":" in line:
                        return line.split(":", 1)[1].strip() or None
        name = platform.processor().strip()
        return name or None

    def logical_cpu_count(self) -> int:
        return psutil.cpu_count(logical=True) or 0

    def memory(self) -> MemoryTotals:
        vm = psutil.virtual_memory()
        return MemoryTotals(total_b=int(vm.total), available_b=int(vm.available))

    def disk_counters(self) -> list[DiskCounters]:
        counters = psutil.disk_io_counters(perdisk=True) or {}
        whole_devices = self._block_devices()
        return [
            DiskCounters(name=name, read_b=int(io.read_bytes), write_b=int(io.write_bytes))
            for name, io in counters.items()
            if whole_devices is None or name in whole_devices
        ]

    def _block_devices(self) -> set[str] | None:
        # Partitions repeat their parent disk's bytes on Linux
        if platform.system().lower() != "linux":
            return None
        try:
            return set(os.listdir("/sys/block"))
        except OSError:
            return None

    def disk_space(self) -> DiskSpace:
        total, used = self._sum_partitions(psutil.disk_partitions(all=False))
        if total == 0:
            total, used = self._sum_partitions(psutil.disk_partitions(all=True))
        return DiskSpace(total_b=total, used_b=used)

    def _sum_partitions(self, partitions: list) -> tuple[int, int]:
        total = 0
        used = 0
        seen: set[str] = set()
        for part in partitions:
            # Read-only squashfs mounts (snap packages) are always 100% used
            if part.fstype == "squashfs" or part.device in seen:
                continue
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except OSError:
                continue
            seen.add(part.device)
            total += int(usage.total)
            used += int(usage.used)
        return total, used

    def net_counters(self) -> list[NetCounters]:
        counters = psutil.net_io_counters(pernic=True) or {}
        return [
            NetCounters(name=name, recv_b=int(io.bytes_recv), sent_b=int(io.bytes_sent))
            for name, io in counters.items()
        ]

    def graphics_devices(self) -> list[GraphicsDevice]:
        system = platform.system().lower()
        if system == "linux":
            return self._graphics_devices_linux()
        if system == "windows":
            return self._graphics_devices_windows()
        return []

    def _graphics_devices_linux(self) -> list[GraphicsDevice]:
        output = run_command([self.config.lspci_path, "-mm"], timeout=5)
        if not output:
            return []
        vram = self._drm_vram_by_slot()
        devices = []
        for slot, name in parse_lspci_graphics(output):
            vram_total = next(
                (size for pci_addr, size in vram.items() if pci_addr.endswith(slot)),
                0,
            )
            devices.append(GraphicsDevice(name=name, vram_total_b=vram_total))
        return devices

    def _drm_vram_by_slot(self) -> dict[str, int]:
        vram: dict[str, int] = {}
        for card in sorted(Path("/sys/class/drm").glob("card[0-9]*")):
            if "-" in card.name:
                continue
            raw = self._read_file(str(card / "device" / "mem_info_vram_total"))
            if not raw:
                continue
            try:
                vram[(card / "device").resolve().name] = int(raw.strip())
            except (OSError, ValueError):
                continue
        return vram

    def _graphics_devices_windows(self) -> list[GraphicsDevice]:
        output = run_command(
            [
                self.config.powershell_path,
                "-Command",
                "Get-CimInstance Win32_VideoController | "
                "Select-Object Name, AdapterRAM | ConvertTo-Json",
            ],
            timeout=10,
            stderr=subprocess.DEVNULL,
        )
        if not output:
            return []
        try:
            data = json.loads(output)
        except json.JSONDecodeError:
            self.logger.debug("Failed to parse Win32_VideoController JSON.")
            return []
        if isinstance(data, dict):
            data = [data]
        devices = []
        for controller in data:
            if not isinstance(controller, dict):
                continue
            name = (controller.get("Name") or "").strip()
            adapter_ram = controller.get("AdapterRAM")
            vram_total = adapter_ram if isinstance(adapter_ram, int) and adapter_ram > 0 else 0
            devices.append(GraphicsDevice(name=name, vram_total_b=vram_total))
        return devices

    def native_cpu_temperature(self) -> float | None:
        if not hasattr(psutil, "sensors_temperatures"):
            return None
        try:
            temps = psutil.sensors_temperatures(fahrenheit=False)
        except (OSError, psutil.Error) as exc:
            self.logger.debug("Failed to read temperature sensors: %s", exc)
            return None
        if not temps:
            return None
        chips = [name for name in CPU_SENSOR_CHIPS if name in temps]
        for chip in chips:
            entries = temps[chip]
            preferred = [
                e for e in entries if (e.label or "").lower() in CPU_PACKAGE_LABELS
            ]
            for entry in preferred + list(entries):
                if is_valid_temperature(entry.current):
                    return round(float(entry.current), 1)
        return None

    def cpu_temperature(self) -> float | None:
        return self.native_cpu_temperature()

    def _read_file(self, path: str) -> str | None:
        """Read a file and return its contents, or None if it doesn't exist."""
        try:
            return Path(path).read_text()
        except (FileNotFoundError, PermissionError, OSError):
            return None
