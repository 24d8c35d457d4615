"""Shared dataclasses for hardware detection."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class Platform(str, Enum):
    DARWIN = "darwin"
    LINUX = "linux"
    WINDOWS = "windows"
    UNKNOWN = "unknown"  # generic detection only


class RuntimeEnvironment(str, Enum):
    PROCESS = "process"  # full OS access
    SANDBOXED = "sandboxed"  # no subprocess or file access (wasm interpreters)


@dataclass(frozen=True)
class CpuInfo:
    id: str
    vendor_id: str
    model_name: str
    core_count: int
    efficiency_core_count: int
    thread_count: int
    clock_speed_hz: int
    architecture: str  # "x64", "arm64", ...

    @property
    def performance_core_count(self) -> int:
        return self.core_count - self.efficiency_core_count


@dataclass(frozen=True)
class SystemInfo:
    platform: Platform
    cpus: tuple[CpuInfo, ...]
    total_memory_bytes: int
    runtime_environment: RuntimeEnvironment = RuntimeEnvironment.PROCESS
    diagnostics: tuple[str, ...] = field(default=(), compare=False)

    def __post_init__(self) -> None:
        if not self.cpus:
            raise ValueError("SystemInfo needs at least one CPU")


@dataclass(frozen=True)
class GpuInfo:
    id: str
    name: str
    library: str  # "cuda", "rocm", "metal", ...
    total_memory_bytes: int
    free_memory_bytes: int
    minimum_memory_bytes: int = 0
    driver_major: int = 0
    driver_minor: int = 0
    compute: str = ""
    variant: str = ""

    @property
    def available_bytes(self) -> int:
        """Free memory the planner may allocate into."""
        return max(self.free_memory_bytes - self.minimum_memory_bytes, 0)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GpuInfo:
        total = int(data["total_memory_bytes"])
        free = int(data.get("free_memory_bytes", total))
        return cls(
            id=str(data.get("id", "0")),
            name=str(data.get("name", "")),
            library=str(data.get("library", "")),
            total_memory_bytes=total,
            free_memory_bytes=min(free, total),
            minimum_memory_bytes=int(data.get("minimum_memory_bytes", 0)),
            driver_major=int(data.get("driver_major", 0)),
            driver_minor=int(data.get("driver_minor", 0)),
            compute=str(data.get("compute", "")),
            variant=str(data.get("variant", "")),
        )


def make_cpu(
    *,
    id: str,
    vendor_id: str,
    model_name: str,
    core_count: int,
    thread_count: int,
    efficiency_core_count: int = 0,
    clock_speed_hz: int | float = 0,
    architecture: str = "",
) -> CpuInfo:
    """Build a ``CpuInfo`` with its counting invariants enforced.

    Core count is at least 1, threads at least the core count, and the
    efficiency count is clipped into ``[0, core_count]``.
    """
    cores = max(int(core_count), 1)
    threads = max(int(thread_count), cores)
    efficiency = min(max(int(efficiency_core_count), 0), cores)
    return CpuInfo(
        id=id,
        vendor_id=vendor_id or "Unknown",
        model_name=model_name or "Unknown CPU",
        core_count=cores,
        efficiency_core_count=efficiency,
        thread_count=threads,
        clock_speed_hz=max(int(clock_speed_hz), 0),
        architecture=architecture,
    )
