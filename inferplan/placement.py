"""Model placement across GPUs and CPU.

Estimates how many transformer blocks of a model fit on each GPU for a
given context length and KV-cache quantization, and how many stay on the
CPU.  Pure computation: no subprocess calls, no file I/O, no state kept
between calls.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Sequence

from .config import DEFAULT_CONFIG, PlannerConfig
from .errors import UnsupportedConfiguration
from .hardware import GpuInfo, SystemInfo
from .threads import compute_optimal_threads, validate_thread_count

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Inputs & result dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelInfo:
    block_count: int
    train_ctx: int
    head_count_max: int
    head_count_kv_min: int
    model_size_bytes: int
    supports_flash_attention: bool = False
    kv_cache_types: frozenset[str] = frozenset({"f16"})
    embedding_length: int = 0  # 0 = unknown, head dimension defaults to 128

    def supports_kv_cache_type(self, tag: str) -> bool:
        return tag.lower() in {t.lower() for t in self.kv_cache_types}


@dataclass(frozen=True)
class PlacementOptions:
    context_length: int = 4096  # per sequence
    kv_cache_type: str = "f16"
    max_gpus: int | None = None  # None = every GPU, 0 = CPU only
    flash_attention: bool = True
    num_parallel: int = 1  # concurrent sequences sharing the KV cache
    num_gpu_layers: int | None = None  # cap on offloaded blocks, None = automatic
    num_threads: int = 0  # 0 = automatic


@dataclass(frozen=True)
class GpuPlacement:
    gpu_id: str
    name: str
    library: str
    block_count: int
    bytes_used: int


@dataclass(frozen=True)
class MemoryEstimate:
    gpu_placements: tuple[GpuPlacement, ...]
    cpu_blocks: int
    block_count: int
    vram_usage_bytes: int
    ram_usage_bytes: int
    total_size_bytes: int
    context_length: int
    kv_cache_type: str
    flash_attention: bool
    fits_completely: bool
    fits_host_memory: bool

    @property
    def gpu_blocks(self) -> int:
        return sum(p.block_count for p in self.gpu_placements)

    @property
    def tensor_split(self) -> str:
        """Per-GPU block counts as ``"20,12"``; empty for a single GPU."""
        if len(self.gpu_placements) < 2:
            return ""
        return ",".join(str(p.block_count) for p in self.gpu_placements)


@dataclass(frozen=True)
class InferenceConfig:
    """Launch settings for one model on one host."""

    num_threads: int
    context_length: int
    num_gpu_layers: int
    kv_cache_type: str
    flash_attention: bool
    num_parallel: int
    estimate: MemoryEstimate


# ---------------------------------------------------------------------------
# Reference tables
# ---------------------------------------------------------------------------

# Bytes per KV-cache element, widest first.  Quantized formats store 32
# values per block plus the block scale (and minimum for the _1 variants).
_KV_CACHE_BYTES_PER_ELEMENT: dict[str, float] = {
    "f32": 4.0,
    "f16": 2.0,
    "bf16": 2.0,
    "q8_0": 34 / 32,
    "q5_1": 24 / 32,
    "q5_0": 22 / 32,
    "q4_1": 20 / 32,
    "q4_0": 18 / 32,
}

_DEFAULT_HEAD_DIM = 128
_FALLBACK_BLOCK_BYTES = 300 * 1024 * 1024  # when the model size is unknown
_ATTENTION_SCORE_BYTES = 4  # f32 scores
_FLASH_ATTENTION_MIN_COMPUTE = 7  # CUDA compute capability major
_FLASH_ATTENTION_LIBRARIES = ("metal", "rocm")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def kv_cache_bytes_per_element(tag: str) -> float:
    try:
        return _KV_CACHE_BYTES_PER_ELEMENT[tag.lower()]
    except KeyError:
        raise UnsupportedConfiguration(f"unknown KV cache type {tag!r}") from None


def resolve_kv_cache_type(model: ModelInfo, requested: str) -> str:
    """Requested tag if usable, else the narrowest tag the model supports."""
    tag = requested.lower()
    if tag in _KV_CACHE_BYTES_PER_ELEMENT and model.supports_kv_cache_type(tag):
        return tag

    supported = [t for t in _KV_CACHE_BYTES_PER_ELEMENT if model.supports_kv_cache_type(t)]
    if not supported:
        raise UnsupportedConfiguration("model supports no KV cache type")
    fallback = min(supported, key=lambda t: _KV_CACHE_BYTES_PER_ELEMENT[t])
    logger.warning("KV cache type %r not supported by model, using %r", requested, fallback)
    return fallback


def _compute_major(compute: str) -> int | None:
    match = re.match(r"^\s*(\d+)(?:\.\d+)?\s*$", compute or "")
    return int(match.group(1)) if match else None


def gpu_supports_flash_attention(gpu: GpuInfo) -> bool:
    library = gpu.library.lower()
    if library in _FLASH_ATTENTION_LIBRARIES:
        return True
    if library == "cuda":
        major = _compute_major(gpu.compute)
        if major is None:
            major = gpu.driver_major
        return major >= _FLASH_ATTENTION_MIN_COMPUTE
    return False


def flash_attention_supported(gpus: Sequence[GpuInfo]) -> bool:
    """True when every GPU can run flash attention (vacuously for none)."""
    return all(gpu_supports_flash_attention(gpu) for gpu in gpus)


def validate_context_size(requested: int, train_ctx: int) -> int:
    """Cap a per-sequence context length at the model's trained context."""
    if requested <= 0:
        raise UnsupportedConfiguration(f"context length must be positive, got {requested}")
    if 0 < train_ctx < requested:
        logger.warning(
            "Requested context size %d too large for model (train_ctx: %d), capping",
            requested,
            train_ctx,
        )
        return train_ctx
    return requested


def _head_dim(model: ModelInfo) -> int:
    if model.embedding_length > 0 and model.head_count_max > 0:
        return max(model.embedding_length // model.head_count_max, 1)
    return _DEFAULT_HEAD_DIM


@dataclass(frozen=True)
class _Footprint:
    context_length: int
    weight_bytes: int
    kv_bytes: int
    attention_bytes: int  # this block's share of the attention working buffer

    @property
    def block_bytes(self) -> int:
        return self.weight_bytes + self.kv_bytes + self.attention_bytes


def _footprint(
    model: ModelInfo,
    context_length: int,
    kv_width: float,
    flash_attention: bool,
    num_parallel: int,
) -> _Footprint:
    if model.model_size_bytes > 0:
        weight_bytes = model.model_size_bytes // model.block_count
    else:
        weight_bytes = _FALLBACK_BLOCK_BYTES

    kv_heads = model.head_count_kv_min or model.head_count_max or 1
    heads = model.head_count_max or kv_heads
    head_dim = _head_dim(model)

    # key + value for every cached token of every sequence
    kv_bytes = math.ceil(2 * kv_heads * head_dim * context_length * num_parallel * kv_width)

    if flash_attention:
        # tiled: one row of output per token, never the full score matrix
        attention_total = heads * context_length * head_dim * _ATTENTION_SCORE_BYTES
    else:
        attention_total = heads * context_length * context_length * _ATTENTION_SCORE_BYTES
    # the working buffer is reused layer by layer; each block carries its share
    attention_bytes = -(-attention_total // model.block_count)

    return _Footprint(
        context_length=context_length,
        weight_bytes=weight_bytes,
        kv_bytes=kv_bytes,
        attention_bytes=attention_bytes,
    )


def _pack(
    candidates: Sequence[GpuInfo],
    block_bytes: int,
    blocks: int,
    overhead: int,
) -> list[int]:
    """Greedy whole-block counts per GPU, largest budget first."""
    remaining = blocks
    counts: list[int] = []
    for gpu in candidates:
        budget = gpu.available_bytes - overhead
        count = 0
        if remaining > 0 and budget >= block_bytes:
            count = min(remaining, budget // block_bytes)
        counts.append(count)
        remaining -= count
    return counts


def _select_candidates(
    gpus: Sequence[GpuInfo], max_gpus: int | None, overhead: int
) -> list[GpuInfo]:
    # sorted() is stable, so equal budgets keep caller order
    ordered = sorted(gpus, key=lambda g: g.available_bytes - overhead, reverse=True)
    if max_gpus is not None:
        ordered = ordered[:max_gpus]
    return ordered


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def plan_placement(
    model: ModelInfo,
    gpus: Sequence[GpuInfo],
    total_host_memory: int,
    options: PlacementOptions = PlacementOptions(),
    config: PlannerConfig = DEFAULT_CONFIG,
) -> MemoryEstimate:
    """Plan how a model's blocks are split between GPUs and the CPU.

    Blocks are assigned greedily, whole blocks only, to GPUs in order of
    descending free budget, sized at the requested context.  When the
    blocks left on the CPU do not fit in host RAM the context length is
    halved, down to ``config.min_context_length``.  Clamping shrinks the
    footprint of every block but never moves blocks between devices, so
    more VRAM never means fewer blocks on a GPU.

    Raises:
        UnsupportedConfiguration: the model supports no KV cache type, or
            the options ask for a non-positive context, block count or
            parallelism, or a negative GPU count.
    """
    if model.block_count <= 0:
        raise UnsupportedConfiguration(f"model has {model.block_count} blocks")
    if options.num_parallel < 1:
        raise UnsupportedConfiguration(f"num_parallel must be >= 1, got {options.num_parallel}")
    if options.max_gpus is not None and options.max_gpus < 0:
        raise UnsupportedConfiguration(f"max_gpus must be >= 0, got {options.max_gpus}")

    context_length = validate_context_size(options.context_length, model.train_ctx)
    kv_cache_type = resolve_kv_cache_type(model, options.kv_cache_type)
    kv_width = kv_cache_bytes_per_element(kv_cache_type)

    overhead = config.gpu_overhead_bytes
    candidates = _select_candidates(gpus, options.max_gpus, overhead)
    flash_attention = (
        options.flash_attention
        and model.supports_flash_attention
        and flash_attention_supported(candidates)
    )

    offloadable = model.block_count
    if options.num_gpu_layers is not None and options.num_gpu_layers >= 0:
        offloadable = min(offloadable, options.num_gpu_layers)

    footprint = _footprint(model, context_length, kv_width, flash_attention, options.num_parallel)
    counts = _pack(candidates, footprint.block_bytes, offloadable, overhead)
    cpu_blocks = model.block_count - sum(counts)

    usable_ram = int(max(total_host_memory, 0) * (1.0 - config.host_memory_reserve))
    floor = min(config.min_context_length, context_length)

    while True:
        ram_usage = cpu_blocks * footprint.block_bytes
        if total_host_memory <= 0:
            # RAM unknown: nothing to clamp against
            fits_host_memory = cpu_blocks == 0
            break
        fits_host_memory = ram_usage <= usable_ram
        if fits_host_memory or context_length <= floor:
            break

        reduced = max(context_length // 2, floor)
        logger.info(
            "CPU blocks need %d bytes but %d usable; reducing context %d -> %d",
            ram_usage,
            usable_ram,
            context_length,
            reduced,
        )
        context_length = reduced
        footprint = _footprint(
            model, context_length, kv_width, flash_attention, options.num_parallel
        )

    placements = tuple(
        GpuPlacement(
            gpu_id=gpu.id,
            name=gpu.name,
            library=gpu.library,
            block_count=count,
            bytes_used=count * footprint.block_bytes,
        )
        for gpu, count in zip(candidates, counts)
    )
    estimate = MemoryEstimate(
        gpu_placements=placements,
        cpu_blocks=cpu_blocks,
        block_count=model.block_count,
        vram_usage_bytes=sum(p.bytes_used for p in placements),
        ram_usage_bytes=ram_usage,
        total_size_bytes=model.block_count * footprint.block_bytes,
        context_length=context_length,
        kv_cache_type=kv_cache_type,
        flash_attention=flash_attention,
        fits_completely=cpu_blocks == 0,
        fits_host_memory=fits_host_memory,
    )
    logger.debug(
        "placement: gpu_blocks=%d cpu_blocks=%d vram=%d ctx=%d kv=%s flash=%s",
        estimate.gpu_blocks,
        estimate.cpu_blocks,
        estimate.vram_usage_bytes,
        estimate.context_length,
        estimate.kv_cache_type,
        estimate.flash_attention,
    )
    return estimate


# ---------------------------------------------------------------------------
# Combined launch configuration
# ---------------------------------------------------------------------------


def optimal_config(
    system: SystemInfo,
    model: ModelInfo,
    gpus: Sequence[GpuInfo],
    options: PlacementOptions = PlacementOptions(),
    config: PlannerConfig = DEFAULT_CONFIG,
) -> InferenceConfig:
    """Everything a runner needs to launch ``model`` on this host.

    Automatic settings (``num_threads == 0``, ``num_gpu_layers is None``)
    are filled from the detected CPUs and the placement estimate.
    """
    if options.num_threads > 0:
        num_threads = validate_thread_count(options.num_threads, system)
    else:
        num_threads = compute_optimal_threads(system)

    estimate = plan_placement(model, gpus, system.total_memory_bytes, options, config)

    if options.num_gpu_layers is not None and options.num_gpu_layers >= 0:
        num_gpu_layers = min(options.num_gpu_layers, estimate.gpu_blocks)
    else:
        num_gpu_layers = estimate.gpu_blocks

    return InferenceConfig(
        num_threads=num_threads,
        context_length=estimate.context_length,
        num_gpu_layers=num_gpu_layers,
        kv_cache_type=estimate.kv_cache_type,
        flash_attention=estimate.flash_attention,
        num_parallel=options.num_parallel,
        estimate=estimate,
    )
