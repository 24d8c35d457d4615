"""macOS CPU detection via sysctl."""

from __future__ import annotations

import logging
import math

from ..errors import ProbeUnavailable, UnrecognizedFormat
from ._efficiency import efficiency_from_totals
from ._probes import Probes, normalize_architecture, vendor_from_brand
from ._types import CpuInfo, make_cpu

logger = logging.getLogger(__name__)


class _Sysctl:
    """Reads sysctl keys, recording every miss as a diagnostic."""

    def __init__(self, probes: Probes, diagnostics: list[str]) -> None:
        self._probes = probes
        self._diagnostics = diagnostics
        self.answered = 0

    def text(self, key: str) -> str | None:
        try:
            value = self._probes.run(["sysctl", "-n", key]).strip()
        except ProbeUnavailable as exc:
            self._diagnostics.append(f"darwin: sysctl {key} unavailable ({exc})")
            return None
        self.answered += 1
        return value

    def integer(self, *keys: str) -> int | None:
        """First key that yields an integer."""
        for key in keys:
            value = self.text(key)
            if value is None:
                continue
            try:
                return int(value)
            except ValueError:
                exc = UnrecognizedFormat(f"sysctl {key} returned {value!r}")
                self._diagnostics.append(f"darwin: {exc}")
        return None


def detect_darwin_cpus(probes: Probes, diagnostics: list[str]) -> list[CpuInfo]:
    sysctl = _Sysctl(probes, diagnostics)

    perf_cores = sysctl.integer("hw.perflevel0.physicalcpu")
    efficiency_cores = sysctl.integer("hw.perflevel1.physicalcpu")
    physical_cores = sysctl.integer("hw.physicalcpu")
    threads = sysctl.integer("machdep.cpu.thread_count", "hw.logicalcpu")
    brand = sysctl.text("machdep.cpu.brand_string") or ""
    freq = sysctl.integer("hw.cpufrequency_max", "hw.cpufrequency") or 0

    if sysctl.answered == 0:
        raise ProbeUnavailable("sysctl answered no queries")

    arch = normalize_architecture(probes.machine())
    if arch == "x64" and "Apple" in brand:
        # Rosetta reports x86_64 for translated processes
        if sysctl.text("sysctl.proc_translated") == "1":
            arch = "arm64"

    vendor = vendor_from_brand(brand)
    if vendor == "Unknown" and arch == "arm64":
        vendor = "Apple"

    if threads is None:
        threads = probes.logical_cpu_count() or 0

    if perf_cores:
        cores = perf_cores + (efficiency_cores or 0)
    elif physical_cores:
        cores = physical_cores
    else:
        cores = math.ceil(threads / 2) if threads else 1

    if efficiency_cores is None:
        efficiency_cores = efficiency_from_totals(cores, threads, vendor)

    logger.debug(
        "darwin: %s cores=%d efficiency=%d threads=%d", brand, cores, efficiency_cores, threads
    )
    return [
        make_cpu(
            id="0",
            vendor_id=vendor,
            model_name=brand or f"{vendor} {arch.upper()}",
            core_count=cores,
            efficiency_core_count=efficiency_cores,
            thread_count=threads,
            clock_speed_hz=freq,
            architecture=arch,
        )
    ]
