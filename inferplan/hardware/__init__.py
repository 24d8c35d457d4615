"""CPU topology detection for inferplan.

GPUs are not discovered here; callers supply ``GpuInfo`` descriptors.
"""

from __future__ import annotations

from ._probes import Probes, default_probes
from ._types import CpuInfo, GpuInfo, Platform, RuntimeEnvironment, SystemInfo
from ._unified import detect_system

__all__ = [
    "CpuInfo",
    "GpuInfo",
    "Platform",
    "Probes",
    "RuntimeEnvironment",
    "SystemInfo",
    "default_probes",
    "detect_system",
]
