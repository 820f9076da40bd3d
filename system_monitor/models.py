from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

UNAVAILABLE = "N/A"


def clamp_pct(value: float) -> float:
    return round(max(0.0, min(100.0, float(value))), 2)


@dataclass(frozen=True)
class CpuStats:
    name: str
    usage_pct: float
    logical_cores: int
    temp_c: float | None = None

    @classmethod
    def placeholder(cls) -> CpuStats:
        return cls(name=UNAVAILABLE, usage_pct=0.0, logical_cores=0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "usage_pct": self.usage_pct,
            "logical_cores": self.logical_cores,
            "temp_c": self.temp_c,
        }


@dataclass(frozen=True)
class MemoryStats:
    total_b: int
    used_b: int
    available_b: int
    usage_pct: float

    @classmethod
    def placeholder(cls) -> MemoryStats:
        return cls(total_b=0, used_b=0, available_b=0, usage_pct=0.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_b": self.total_b,
            "used_b": self.used_b,
            "available_b": self.available_b,
            "usage_pct": self.usage_pct,
        }


@dataclass(frozen=True)
class GpuStats:
    name: str
    usage_pct: float = 0.0
    vram_used_b: int = 0
    vram_total_b: int = 0
    temp_c: float | None = None

    @classmethod
    def unavailable(cls) -> GpuStats:
        return cls(name=UNAVAILABLE)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "usage_pct": self.usage_pct,
            "vram_used_b": self.vram_used_b,
            "vram_total_b": self.vram_total_b,
            "temp_c": self.temp_c,
        }


@dataclass(frozen=True)
class DiskStats:
    read_bps: int
    write_bps: int
    total_b: int
    used_b: int
    usage_pct: float

    @classmethod
    def placeholder(cls) -> DiskStats:
        return cls(read_bps=0, write_bps=0, total_b=0, used_b=0, usage_pct=0.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "read_bps": self.read_bps,
            "write_bps": self.write_bps,
            "total_b": self.total_b,
            "used_b": self.used_b,
            "usage_pct": self.usage_pct,
        }


@dataclass(frozen=True)
class NetworkStats:
    download_bps: int
    upload_bps: int
    received_b: int
    sent_b: int

    @classmethod
    def placeholder(cls) -> NetworkStats:
        return cls(download_bps=0, upload_bps=0, received_b=0, sent_b=0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "download_bps": self.download_bps,
            "upload_bps": self.upload_bps,
            "received_b": self.received_b,
            "sent_b": self.sent_b,
        }


@dataclass(frozen=True)
class Sample:
    """One tick of reconciled host metrics."""

    ts: int
    cpu: CpuStats
    memory: MemoryStats
    disk: DiskStats
    network: NetworkStats
    gpus: tuple[GpuStats, ...] = field(default_factory=tuple)

    @property
    def gpu(self) -> GpuStats | None:
        return self.gpus[0] if self.gpus else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ts": self.ts,
            "cpu": self.cpu.to_dict(),
            "memory": self.memory.to_dict(),
            "gpu": self.gpu.to_dict() if self.gpu else None,
            "gpus": [gpu.to_dict() for gpu in self.gpus],
            "disk": self.disk.to_dict(),
            "network": self.network.to_dict(),
        }


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    name: str
    cpu_pct: float
    memory_b: int
    disk_read_b: int
    disk_write_b: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "name": self.name,
            "cpu_pct": self.cpu_pct,
            "memory_b": self.memory_b,
            "disk_read_b": self.disk_read_b,
            "disk_write_b": self.disk_write_b,
        }
