"""Linux CPU detection from /proc/cpuinfo and the sysfs CPU tree."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from ..config import PlannerConfig
from ..errors import ProbeUnavailable, UnrecognizedFormat
from ._efficiency import (
    apply_package_clock_heuristic,
    efficiency_from_core_clocks,
    efficiency_from_smt_mixture,
    efficiency_from_totals,
)
from ._probes import Probes, normalize_architecture
from ._types import CpuInfo, make_cpu

logger = logging.getLogger(__name__)

CPUINFO_PATH = "/proc/cpuinfo"
SYSFS_CPU_ROOT = "/sys/devices/system/cpu"
# Hybrid Intel kernels list the E-core logical CPUs here
CPU_ATOM_LIST = "/sys/devices/cpu_atom/cpus"

_CPU_DIR = re.compile(r"^cpu(\d+)$")

# ARM "CPU implementer" codes
_ARM_IMPLEMENTERS: dict[str, str] = {
    "0x41": "ARM",
    "0x42": "Broadcom",
    "0x43": "Cavium",
    "0x48": "HiSilicon",
    "0x4e": "NVIDIA",
    "0x51": "Qualcomm",
    "0x61": "Apple",
    "0xc0": "Ampere",
}


@dataclass(frozen=True)
class SysfsCpu:
    package: str
    core: str
    max_freq_hz: int = 0  # 0 when cpufreq is not exposed


@dataclass
class _Package:
    id: str
    vendor_id: str = ""
    model_name: str = ""
    mhz: float = 0.0
    siblings: int = 0
    cpu_cores: int = 0
    logical: list[int] = field(default_factory=list)
    cores: dict[str, list[int]] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


def parse_proc_cpuinfo(text: str) -> tuple[list[dict[str, str]], dict[str, str]]:
    """Split /proc/cpuinfo into per-processor blocks.

    Returns ``(processors, extras)`` where ``extras`` holds keys from blocks
    that describe no processor (ARM kernels print ``Hardware`` there).
    """
    processors: list[dict[str, str]] = []
    extras: dict[str, str] = {}
    block: dict[str, str] = {}

    def flush() -> None:
        if "processor" in block and block["processor"].isdigit():
            processors.append(dict(block))
        else:
            extras.update(block)
        block.clear()

    for line in text.splitlines():
        if not line.strip():
            if block:
                flush()
            continue
        key, sep, value = line.partition(":")
        if not sep:
            continue
        block[key.strip()] = value.strip()
    if block:
        flush()

    if not processors:
        raise UnrecognizedFormat("no processor entries in /proc/cpuinfo")
    return processors, extras


def parse_cpulist(text: str) -> set[int]:
    """Parse the kernel cpulist format, e.g. ``0-3,8,10-11``."""
    cpus: set[int] = set()
    for part in text.strip().split(","):
        part = part.strip()
        if not part:
            continue
        start, sep, end = part.partition("-")
        try:
            if sep:
                cpus.update(range(int(start), int(end) + 1))
            else:
                cpus.add(int(start))
        except ValueError as exc:
            raise UnrecognizedFormat(f"bad cpulist entry {part!r}") from exc
    return cpus


def _to_int(value: str | None) -> int:
    try:
        return int(value) if value is not None else 0
    except ValueError:
        return 0


def _to_float(value: str | None) -> float:
    try:
        return float(value) if value is not None else 0.0
    except ValueError:
        return 0.0


# ---------------------------------------------------------------------------
# Probing
# ---------------------------------------------------------------------------


def read_sysfs_topology(probes: Probes, diagnostics: list[str]) -> dict[int, SysfsCpu]:
    """Per-logical-CPU topology from sysfs. Missing files are skipped."""
    try:
        entries = probes.listdir(SYSFS_CPU_ROOT)
    except ProbeUnavailable as exc:
        diagnostics.append(f"linux: sysfs topology unavailable ({exc})")
        return {}

    topology: dict[int, SysfsCpu] = {}
    skipped = 0
    for entry in entries:
        match = _CPU_DIR.match(entry)
        if not match:
            continue
        base = f"{SYSFS_CPU_ROOT}/{entry}"
        try:
            package = probes.read(f"{base}/topology/physical_package_id").strip()
            core = probes.read(f"{base}/topology/core_id").strip()
        except ProbeUnavailable:
            skipped += 1
            continue
        try:
            max_freq_hz = _to_int(probes.read(f"{base}/cpufreq/cpuinfo_max_freq").strip()) * 1000
        except ProbeUnavailable:
            max_freq_hz = 0
        if package == "-1":
            package = "0"
        topology[int(match.group(1))] = SysfsCpu(package=package, core=core, max_freq_hz=max_freq_hz)

    if skipped:
        diagnostics.append(f"linux: no topology files for {skipped} CPU(s)")
    return topology


def _read_atom_cpus(probes: Probes, diagnostics: list[str]) -> set[int] | None:
    try:
        text = probes.read(CPU_ATOM_LIST)
    except ProbeUnavailable:
        return None
    try:
        return parse_cpulist(text)
    except UnrecognizedFormat as exc:
        diagnostics.append(f"linux: {exc}")
        return None


# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------


def detect_linux_cpus(
    probes: Probes, diagnostics: list[str], config: PlannerConfig
) -> list[CpuInfo]:
    processors: list[dict[str, str]] = []
    extras: dict[str, str] = {}
    try:
        processors, extras = parse_proc_cpuinfo(probes.read(CPUINFO_PATH))
    except (ProbeUnavailable, UnrecognizedFormat) as exc:
        diagnostics.append(f"linux: {CPUINFO_PATH} unusable ({exc})")

    topology = read_sysfs_topology(probes, diagnostics)
    if not processors and not topology:
        raise ProbeUnavailable("neither /proc/cpuinfo nor sysfs topology is readable")

    packages = _group_packages(processors, extras, topology)
    atom_cpus = _read_atom_cpus(probes, diagnostics)
    arch = normalize_architecture(probes.machine())

    cpus = [
        _build_cpu(pkg, topology, atom_cpus, arch, config) for pkg in packages.values()
    ]
    if len(cpus) < 2:
        return cpus
    if all(_has_max_freq(pkg, topology) for pkg in packages.values()):
        return apply_package_clock_heuristic(cpus, config.efficiency_clock_ratio)
    diagnostics.append("linux: no cpufreq max clock for every package, cross-package clocks skipped")
    return cpus


def _has_max_freq(pkg: _Package, topology: dict[int, SysfsCpu]) -> bool:
    return all(i in topology and topology[i].max_freq_hz > 0 for i in pkg.logical)


def _group_packages(
    processors: list[dict[str, str]],
    extras: dict[str, str],
    topology: dict[int, SysfsCpu],
) -> dict[str, _Package]:
    by_index = {_to_int(p["processor"]): p for p in processors}
    packages: dict[str, _Package] = {}

    for index in sorted(set(by_index) | set(topology)):
        proc = by_index.get(index, {})
        topo = topology.get(index)

        package_id = proc.get("physical id") or (topo.package if topo else "0")
        core_id = proc.get("core id") or (topo.core if topo else None)

        pkg = packages.get(package_id)
        if pkg is None:
            pkg = packages[package_id] = _Package(id=package_id)
        pkg.logical.append(index)
        if core_id is not None:
            pkg.cores.setdefault(core_id, []).append(index)

        if not pkg.vendor_id:
            pkg.vendor_id = proc.get("vendor_id") or _ARM_IMPLEMENTERS.get(
                proc.get("CPU implementer", "").lower(), ""
            )
        if not pkg.model_name:
            pkg.model_name = proc.get("model name") or extras.get("Hardware", "")
        pkg.mhz = max(pkg.mhz, _to_float(proc.get("cpu MHz")))
        pkg.siblings = max(pkg.siblings, _to_int(proc.get("siblings")))
        pkg.cpu_cores = max(pkg.cpu_cores, _to_int(proc.get("cpu cores")))

    return packages


def _build_cpu(
    pkg: _Package,
    topology: dict[int, SysfsCpu],
    atom_cpus: set[int] | None,
    arch: str,
    config: PlannerConfig,
) -> CpuInfo:
    core_count = len(pkg.cores) or pkg.cpu_cores or len(pkg.logical)
    thread_count = pkg.siblings or len(pkg.logical)

    freqs = [topology[i].max_freq_hz for i in pkg.logical if i in topology]
    clock_hz = max(freqs) if freqs and max(freqs) > 0 else int(pkg.mhz * 1_000_000)

    efficiency = _infer_package_efficiency(pkg, topology, atom_cpus, core_count, thread_count, config)
    logger.debug(
        "linux: package %s cores=%d efficiency=%d threads=%d",
        pkg.id,
        core_count,
        efficiency,
        thread_count,
    )
    return make_cpu(
        id=pkg.id,
        vendor_id=pkg.vendor_id,
        model_name=pkg.model_name,
        core_count=core_count,
        efficiency_core_count=efficiency,
        thread_count=thread_count,
        clock_speed_hz=clock_hz,
        architecture=arch,
    )


def _infer_package_efficiency(
    pkg: _Package,
    topology: dict[int, SysfsCpu],
    atom_cpus: set[int] | None,
    core_count: int,
    thread_count: int,
    config: PlannerConfig,
) -> int:
    if atom_cpus is not None and pkg.cores:
        return sum(1 for members in pkg.cores.values() if set(members) <= atom_cpus)

    if pkg.cores:
        core_clocks = [
            max((topology[i].max_freq_hz if i in topology else 0) for i in members)
            for members in pkg.cores.values()
        ]
        if all(hz > 0 for hz in core_clocks):
            return efficiency_from_core_clocks(core_clocks, config.efficiency_clock_ratio)
        return efficiency_from_smt_mixture(
            [len(members) for members in pkg.cores.values()], pkg.vendor_id
        )

    return efficiency_from_totals(core_count, thread_count, pkg.vendor_id)
