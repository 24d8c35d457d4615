"""Unified CPU topology detection."""

from __future__ import annotations

import logging
import sys

from ..config import DEFAULT_CONFIG, PlannerConfig
from ..errors import ProbeUnavailable, UnrecognizedFormat
from ._cpu import detect_generic_cpus, detect_sandboxed_cpus
from ._darwin import detect_darwin_cpus
from ._linux import detect_linux_cpus
from ._probes import Probes, default_probes
from ._types import CpuInfo, Platform, RuntimeEnvironment, SystemInfo
from ._windows import detect_windows_cpus

logger = logging.getLogger(__name__)

_SANDBOXED_PLATFORMS = ("emscripten", "wasi")


def resolve_platform(sys_platform: str) -> Platform:
    if sys_platform == "darwin":
        return Platform.DARWIN
    if sys_platform.startswith("linux"):
        return Platform.LINUX
    if sys_platform in ("win32", "cygwin"):
        return Platform.WINDOWS
    return Platform.UNKNOWN


def _detect_cpus(
    platform: Platform, probes: Probes, diagnostics: list[str], config: PlannerConfig
) -> list[CpuInfo]:
    if platform is Platform.DARWIN:
        return detect_darwin_cpus(probes, diagnostics)
    if platform is Platform.LINUX:
        return detect_linux_cpus(probes, diagnostics, config)
    if platform is Platform.WINDOWS:
        return detect_windows_cpus(probes, diagnostics)
    return detect_generic_cpus(probes, diagnostics)


def detect_system(
    probes: Probes | None = None,
    config: PlannerConfig = DEFAULT_CONFIG,
    platform_name: str | None = None,
) -> SystemInfo:
    """Describe the host's CPUs and memory.

    Tries the strategy for the current OS and falls back to generic
    detection on any probe failure; never raises for missing data.

    Args:
        probes: OS probes to use. Defaults to the real OS.
        config: Planner configuration (probe timeout, heuristic ratio).
        platform_name: Override for ``sys.platform``.
    """
    sys_platform = platform_name or sys.platform

    if sys_platform in _SANDBOXED_PLATFORMS:
        return SystemInfo(
            platform=Platform.UNKNOWN,
            cpus=tuple(detect_sandboxed_cpus()),
            total_memory_bytes=0,
            runtime_environment=RuntimeEnvironment.SANDBOXED,
            diagnostics=(f"{sys_platform}: no OS access, logical CPU count only",),
        )

    probes = probes or default_probes(config)
    platform = resolve_platform(sys_platform)
    diagnostics: list[str] = []

    try:
        cpus = _detect_cpus(platform, probes, diagnostics, config)
    except (ProbeUnavailable, UnrecognizedFormat) as exc:
        diagnostics.append(f"{platform.value}: falling back to generic detection ({exc})")
        cpus = detect_generic_cpus(probes, diagnostics)
    except Exception as exc:
        logger.warning("CPU detection failed unexpectedly, using generic detection: %s", exc)
        diagnostics.append(f"{platform.value}: detection failed ({exc})")
        cpus = detect_generic_cpus(probes, diagnostics)

    try:
        total_memory = int(probes.total_memory())
    except Exception as exc:
        diagnostics.append(f"memory: total RAM unavailable ({exc})")
        total_memory = 0

    if diagnostics:
        logger.debug("detection diagnostics: %s", diagnostics)

    return SystemInfo(
        platform=platform,
        cpus=tuple(cpus),
        total_memory_bytes=total_memory,
        runtime_environment=RuntimeEnvironment.PROCESS,
        diagnostics=tuple(diagnostics),
    )
