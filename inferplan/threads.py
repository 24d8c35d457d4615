"""Inference thread-count calculation.

Only performance cores are counted: efficiency cores slow down the uniform
matrix kernels inference runs, so leaving them out of the pool is faster.
Multi-socket systems are summed across sockets.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from .hardware import SystemInfo

logger = logging.getLogger(__name__)


class UseCase(str, Enum):
    INFERENCE = "inference"
    TRAINING = "training"
    SERVING = "serving"


@dataclass(frozen=True)
class ThreadRecommendation:
    recommended: int
    minimum: int
    maximum: int
    reasoning: str


def compute_optimal_threads(system: SystemInfo) -> int:
    """Sum of performance cores across all CPUs, at least 1."""
    performance_cores = sum(cpu.core_count - cpu.efficiency_core_count for cpu in system.cpus)
    return max(performance_cores, 1)


def validate_thread_count(
    requested: int,
    system: SystemInfo,
    max_threads_per_core: int = 2,
) -> int:
    """Clamp a user-requested thread count to what the host can use well."""
    optimal = compute_optimal_threads(system)
    total_cores = sum(cpu.core_count for cpu in system.cpus)
    limit = max(min(optimal, total_cores * max_threads_per_core), 1)

    if requested > limit:
        logger.warning(
            "Requested %d threads exceeds maximum %d (optimal: %d, core-based: %d), capping",
            requested,
            limit,
            optimal,
            total_cores * max_threads_per_core,
        )
        return limit
    return max(requested, 1)


def recommend_threads(
    system: SystemInfo,
    use_case: UseCase | str = UseCase.INFERENCE,
) -> ThreadRecommendation:
    use_case = UseCase(use_case)
    optimal = compute_optimal_threads(system)
    logical = max(sum(cpu.thread_count for cpu in system.cpus), 1)

    if use_case is UseCase.TRAINING:
        recommended = max(min(int(optimal * 1.5), logical), 1)
        return ThreadRecommendation(
            recommended=recommended,
            minimum=1,
            maximum=max(min(logical, optimal * 2), recommended),
            reasoning=f"Using up to {recommended} threads for training throughput",
        )

    if use_case is UseCase.SERVING:
        recommended = max(1, optimal // 2)
        return ThreadRecommendation(
            recommended=recommended,
            minimum=1,
            maximum=optimal,
            reasoning=f"Using {recommended} threads to allow concurrent request processing",
        )

    return ThreadRecommendation(
        recommended=optimal,
        minimum=1,
        maximum=optimal,
        reasoning=f"Using {optimal} performance cores for optimal inference latency",
    )
