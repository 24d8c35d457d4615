"""Planner configuration.

A ``PlannerConfig`` is an ordinary value passed to the functions that need
it.  ``PlannerConfig.from_env()`` builds one from ``INFERPLAN_*`` variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Callable, Mapping

logger = logging.getLogger(__name__)

_ENV_VARS: dict[str, str] = {
    "probe_timeout_s": "INFERPLAN_PROBE_TIMEOUT",
    "min_context_length": "INFERPLAN_MIN_CONTEXT",
    "host_memory_reserve": "INFERPLAN_HOST_RESERVE",
    "gpu_overhead_bytes": "INFERPLAN_GPU_OVERHEAD",
    "efficiency_clock_ratio": "INFERPLAN_EFFICIENCY_CLOCK_RATIO",
}


@dataclass(frozen=True)
class PlannerConfig:
    probe_timeout_s: float = 5.0  # per subprocess probe
    min_context_length: int = 512  # context clamping floor
    host_memory_reserve: float = 0.15  # fraction of RAM kept for the OS
    gpu_overhead_bytes: int = 0  # on top of each GPU's minimum_memory_bytes
    efficiency_clock_ratio: float = 0.8

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> PlannerConfig:
        """Build a config from ``INFERPLAN_*`` variables.

        Unparsable or out-of-range values are logged and ignored.
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        values: dict[str, object] = {}
        for f in fields(cls):
            var = _ENV_VARS[f.name]
            raw = env.get(var)
            if raw is None or not raw.strip():
                continue
            default = getattr(defaults, f.name)
            parse: Callable[[str], object] = int if isinstance(default, int) else float
            try:
                value = parse(raw.strip())
            except ValueError:
                logger.warning("Ignoring %s=%r: not a valid %s", var, raw, parse.__name__)
                continue
            if not _in_range(f.name, value):
                logger.warning("Ignoring %s=%r: out of range", var, raw)
                continue
            values[f.name] = value
        return cls(**values)


def _in_range(name: str, value: object) -> bool:
    if name in ("host_memory_reserve", "efficiency_clock_ratio"):
        return 0.0 <= float(value) < 1.0  # type: ignore[arg-type]
    if name == "min_context_length":
        return int(value) >= 1  # type: ignore[call-overload]
    return float(value) >= 0  # type: ignore[arg-type]


DEFAULT_CONFIG = PlannerConfig()
