"""Efficiency-core inference heuristics.

Only macOS reports efficiency cores directly (``hw.perflevel1``).  Everywhere
else they are inferred from indirect signals, and every heuristic here
returns 0 when the signal is ambiguous: undercounting efficiency cores costs
a little throughput, overcounting starves the inference thread pool.

Rules, in the order strategies apply them:

1. Per-core clock clusters.  Within one package, physical cores whose max
   clock is below ``ratio * fastest core`` are efficiency cores.  Requires a
   known clock for every core.
2. SMT mixture.  On Intel parts, a package whose cores report a mixture of
   2-thread and 1-thread cores has efficiency cores on the 1-thread side.
   From totals alone, ``E = 2 * cores - threads`` when
   ``cores < threads < 2 * cores``.
3. Cross-package clocks.  A package whose max clock is below ``ratio``
   times the fastest package is all efficiency cores, provided every
   package reports a max clock and the slow package's model name differs
   from every fast package's.  Identical sockets are never split.  On Linux
   the rule only runs when sysfs cpufreq gives every package a max clock;
   ``cpu MHz`` in /proc/cpuinfo is the current clock and drops on idle.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Sequence

from ._types import CpuInfo

logger = logging.getLogger(__name__)

_MIXED_CORE_VENDORS = ("GenuineIntel", "Intel")


def is_mixed_core_vendor(vendor_id: str) -> bool:
    return any(v.lower() in vendor_id.lower() for v in _MIXED_CORE_VENDORS)


def efficiency_from_core_clocks(core_max_hz: Sequence[int], ratio: float) -> int:
    if len(core_max_hz) < 2 or any(hz <= 0 for hz in core_max_hz):
        return 0
    threshold = max(core_max_hz) * ratio
    return sum(1 for hz in core_max_hz if hz < threshold)


def efficiency_from_smt_mixture(threads_per_core: Sequence[int], vendor_id: str) -> int:
    if not is_mixed_core_vendor(vendor_id):
        return 0
    if set(threads_per_core) != {1, 2}:
        return 0
    return sum(1 for t in threads_per_core if t == 1)


def efficiency_from_totals(cores: int, threads: int, vendor_id: str) -> int:
    # P-cores carry two threads, E-cores one: threads = 2P + E, cores = P + E
    if not is_mixed_core_vendor(vendor_id):
        return 0
    if cores < threads < 2 * cores:
        return 2 * cores - threads
    return 0


def apply_package_clock_heuristic(cpus: Sequence[CpuInfo], ratio: float) -> list[CpuInfo]:
    """Mark slow packages as efficiency-only (rule 3)."""
    result = list(cpus)
    if len(result) < 2 or any(cpu.clock_speed_hz <= 0 for cpu in result):
        return result

    threshold = max(cpu.clock_speed_hz for cpu in result) * ratio
    fast_models = {cpu.model_name for cpu in result if cpu.clock_speed_hz >= threshold}
    for i, cpu in enumerate(result):
        if cpu.clock_speed_hz >= threshold or cpu.efficiency_core_count:
            continue
        if cpu.model_name in fast_models:
            # same part as a fast socket: the clock gap is not a core type
            continue
        logger.debug(
            "package %s at %d Hz is below %.0f Hz; treating its cores as efficiency cores",
            cpu.id,
            cpu.clock_speed_hz,
            threshold,
        )
        result[i] = dataclasses.replace(cpu, efficiency_core_count=cpu.core_count)
    return result
