"""inferplan: local LLM inference resource planner.

Entry points::

    system = detect_system()
    threads = compute_optimal_threads(system)
    estimate = plan_placement(model, gpus, system.total_memory_bytes, options)
    launch = optimal_config(system, model, gpus, options)
"""

from __future__ import annotations

from .config import PlannerConfig
from .errors import PlannerError, ProbeUnavailable, UnrecognizedFormat, UnsupportedConfiguration
from .hardware import CpuInfo, GpuInfo, Platform, RuntimeEnvironment, SystemInfo, detect_system
from .placement import (
    GpuPlacement,
    InferenceConfig,
    MemoryEstimate,
    ModelInfo,
    PlacementOptions,
    optimal_config,
    plan_placement,
)
from .threads import ThreadRecommendation, UseCase, compute_optimal_threads, recommend_threads

__version__ = "0.3.0"

__all__ = [
    "CpuInfo",
    "GpuInfo",
    "GpuPlacement",
    "InferenceConfig",
    "MemoryEstimate",
    "ModelInfo",
    "PlacementOptions",
    "Platform",
    "PlannerConfig",
    "PlannerError",
    "ProbeUnavailable",
    "RuntimeEnvironment",
    "SystemInfo",
    "ThreadRecommendation",
    "UnrecognizedFormat",
    "UnsupportedConfiguration",
    "UseCase",
    "compute_optimal_threads",
    "detect_system",
    "optimal_config",
    "plan_placement",
    "recommend_threads",
]
