"""Generic CPU detection used when no OS-specific strategy applies."""

from __future__ import annotations

import logging
import math
import os
import platform

from ._efficiency import efficiency_from_totals
from ._probes import Probes, normalize_architecture, vendor_from_brand
from ._types import CpuInfo, make_cpu

logger = logging.getLogger(__name__)


def _get_cpu_brand() -> str:
    return platform.processor() or platform.machine() or "Generic CPU"


def detect_generic_cpus(probes: Probes, diagnostics: list[str]) -> list[CpuInfo]:
    """Single-package description from psutil core counts."""
    threads = 0
    cores = 0
    try:
        threads = probes.logical_cpu_count() or 0
        cores = probes.physical_cpu_count() or 0
    except Exception as exc:
        diagnostics.append(f"generic: core count query failed ({exc})")

    if not threads:
        threads = os.cpu_count() or 1
        diagnostics.append("generic: logical CPU count from os.cpu_count()")
    if not cores:
        # Assume two threads per core
        cores = math.ceil(threads / 2)
        diagnostics.append("generic: physical core count estimated from threads")

    brand = _get_cpu_brand()
    vendor = vendor_from_brand(brand)
    return [
        make_cpu(
            id="0",
            vendor_id=vendor,
            model_name=brand,
            core_count=cores,
            efficiency_core_count=efficiency_from_totals(cores, threads, vendor),
            thread_count=threads,
            architecture=normalize_architecture(probes.machine()),
        )
    ]


def detect_sandboxed_cpus() -> list[CpuInfo]:
    """Logical processor count only; no subprocess or file access."""
    count = os.cpu_count() or 1
    return [
        make_cpu(
            id="0",
            vendor_id="Unknown",
            model_name="Generic CPU",
            core_count=count,
            thread_count=count,
            architecture=normalize_architecture(platform.machine()),
        )
    ]
