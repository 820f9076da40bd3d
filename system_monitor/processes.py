from __future__ import annotations

import logging
import time

import psutil

from system_monitor.models import ProcessInfo

SORT_KEYS = ("cpu", "memory", "disk")
DEFAULT_LIMIT = 25
MAX_LIMIT = 100

logger = logging.getLogger(__name__)


def _process_info(proc: psutil.Process, now: float, cpu_count: int) -> ProcessInfo:
    info = proc.info
    name = info.get("name") or f"[{proc.pid}]"

    cpu_pct = 0.0
    cpu_times = info.get("cpu_times")
    create_time = info.get("create_time")
    if cpu_times is not None and create_time:
        age = now - create_time
        if age > 0:
            busy = cpu_times.user + cpu_times.system
            cpu_pct = 100.0 * busy / age / max(1, cpu_count)

    memory_info = info.get("memory_info")
    io = info.get("io_counters")
    return ProcessInfo(
        pid=proc.pid,
        name=name,
        cpu_pct=round(max(0.0, min(100.0, cpu_pct)), 2),
        memory_b=max(0, int(memory_info.rss)) if memory_info is not None else 0,
        disk_read_b=max(0, int(io.read_bytes)) if io is not None else 0,
        disk_write_b=max(0, int(io.write_bytes)) if io is not None else 0,
    )


def top_processes(sort: str = "cpu", limit: int = DEFAULT_LIMIT) -> list[ProcessInfo]:
    """Top processes by lifetime CPU share, resident memory, or disk I/O."""
    sort = sort.lower() if sort and sort.lower() in SORT_KEYS else "cpu"
    limit = max(1, min(MAX_LIMIT, limit))
    now = time.time()
    cpu_count = psutil.cpu_count(logical=True) or 1

    processes: list[ProcessInfo] = []
    attrs = ["name", "cpu_times", "create_time", "memory_info", "io_counters"]
    for proc in psutil.process_iter(attrs, ad_value=None):
        if proc.pid <= 0:
            continue
        try:
            processes.append(_process_info(proc, now, cpu_count))
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue

    if sort == "memory":
        processes.sort(key=lambda p: p.memory_b, reverse=True)
    elif sort == "disk":
        processes.sort(key=lambda p: p.disk_read_b + p.disk_write_b, reverse=True)
    else:
        processes.sort(key=lambda p: p.cpu_pct, reverse=True)
    logger.debug("Listed %s processes sorted by %s", len(processes), sort)
    return processes[:limit]
