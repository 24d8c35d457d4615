"""
inferplan command-line interface.

Usage::

    inferplan detect
    inferplan threads --use-case serving
    inferplan plan --blocks 32 --model-size-gb 4.1 --gpus gpus.json
"""

from __future__ import annotations

import dataclasses
import json as json_mod
import logging
from enum import Enum

import click

from . import __version__
from .config import PlannerConfig
from .errors import UnsupportedConfiguration
from .hardware import GpuInfo, detect_system
from .placement import InferenceConfig, ModelInfo, PlacementOptions, optimal_config
from .threads import UseCase, compute_optimal_threads, recommend_threads

logger = logging.getLogger(__name__)

_GIB = 1024**3


def _serialize(obj: object) -> object:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    return str(obj)


def _dump(payload: object) -> None:
    click.echo(json_mod.dumps(payload, indent=2, default=_serialize))


def _gib(n: int) -> str:
    return f"{n / _GIB:.2f} GB"


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="inferplan")
@click.pass_context
def main(ctx: click.Context) -> None:
    """inferplan: plan local LLM inference resources."""
    ctx.obj = PlannerConfig.from_env()


# ---------------------------------------------------------------------------
# detect
# ---------------------------------------------------------------------------


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def detect(config: PlannerConfig, as_json: bool) -> None:
    """Detect CPU topology and host memory."""
    system = detect_system(config=config)
    threads = compute_optimal_threads(system)

    if as_json:
        _dump({"system": dataclasses.asdict(system), "optimal_threads": threads})
        return

    click.secho("\n  System\n", bold=True)
    click.echo(f"    Platform: {system.platform.value} ({system.runtime_environment.value})")
    click.echo(f"    Memory: {_gib(system.total_memory_bytes)}")
    for cpu in system.cpus:
        click.echo()
        click.secho(f"  CPU {cpu.id}", bold=True)
        click.echo(f"    {cpu.model_name} ({cpu.vendor_id}, {cpu.architecture})")
        click.echo(
            f"    Cores: {cpu.core_count} "
            f"({cpu.performance_core_count} performance, {cpu.efficiency_core_count} efficiency)"
        )
        click.echo(f"    Threads: {cpu.thread_count}")
        if cpu.clock_speed_hz:
            click.echo(f"    Clock: {cpu.clock_speed_hz / 1e6:.0f} MHz")

    click.echo()
    click.echo(f"  Optimal inference threads: {threads}")

    if system.diagnostics:
        click.echo()
        click.secho("  Diagnostics", bold=True, fg="yellow")
        for d in system.diagnostics:
            click.echo(f"    • {d}")


# ---------------------------------------------------------------------------
# threads
# ---------------------------------------------------------------------------


@main.command()
@click.option(
    "--use-case",
    type=click.Choice([u.value for u in UseCase]),
    default=UseCase.INFERENCE.value,
    help="Workload to size the thread pool for (default: inference).",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def threads(config: PlannerConfig, use_case: str, as_json: bool) -> None:
    """Recommend a thread count for this host."""
    rec = recommend_threads(detect_system(config=config), use_case)
    if as_json:
        _dump(dataclasses.asdict(rec))
        return
    click.echo(f"{rec.recommended} threads (min {rec.minimum}, max {rec.maximum})")
    click.echo(f"  {rec.reasoning}")


# ---------------------------------------------------------------------------
# plan
# ---------------------------------------------------------------------------


def _load_gpus(path: str | None) -> list[GpuInfo]:
    if path is None:
        return []
    with open(path) as f:
        data = json_mod.load(f)
    if isinstance(data, dict):
        data = data.get("gpus", [])
    try:
        return [GpuInfo.from_dict(item) for item in data]
    except (KeyError, TypeError, ValueError) as exc:
        raise click.BadParameter(f"invalid GPU description: {exc}", param_hint="--gpus") from exc


def _print_launch(launch: InferenceConfig) -> None:
    estimate = launch.estimate
    click.secho("\n  Placement\n", bold=True)
    for p in estimate.gpu_placements:
        click.echo(f"    [{p.gpu_id}] {p.name} ({p.library}): {p.block_count} blocks, {_gib(p.bytes_used)}")
    click.echo(f"    CPU: {estimate.cpu_blocks} blocks, {_gib(estimate.ram_usage_bytes)}")
    if estimate.tensor_split:
        click.echo(f"    Tensor split: {estimate.tensor_split}")
    click.echo()
    click.echo(f"  Threads: {launch.num_threads}")
    click.echo(f"  GPU layers: {launch.num_gpu_layers}")
    click.echo(f"  Context: {estimate.context_length} tokens")
    click.echo(f"  KV cache: {estimate.kv_cache_type}")
    click.echo(f"  Flash attention: {'on' if estimate.flash_attention else 'off'}")
    click.echo(f"  VRAM: {_gib(estimate.vram_usage_bytes)} of {_gib(estimate.total_size_bytes)} total")
    if estimate.fits_completely:
        click.secho("  Fits completely on GPU", fg="green")
    elif estimate.fits_host_memory:
        click.secho(f"  Partial offload: {estimate.cpu_blocks} blocks run on CPU", fg="yellow")
    else:
        click.secho("  Does not fit in host memory even at minimum context", fg="red")


@main.command()
@click.option("--blocks", type=int, required=True, help="Transformer block count.")
@click.option("--model-size-gb", type=float, required=True, help="Weight size in GB.")
@click.option("--train-ctx", type=int, default=0, help="Trained context length (0 = unknown).")
@click.option("--heads", type=int, default=32, help="Attention head count.")
@click.option("--kv-heads", type=int, default=0, help="KV head count (0 = same as --heads).")
@click.option("--embedding", type=int, default=0, help="Embedding length (0 = unknown).")
@click.option(
    "--kv-types",
    default="f16",
    help="Comma-separated KV cache types the model supports (default: f16).",
)
@click.option("--flash/--no-flash", default=True, help="Allow flash attention.")
@click.option("--model-flash/--no-model-flash", default=True, help="Model supports flash attention.")
@click.option("--ctx", "context_length", type=int, default=4096, help="Requested context length.")
@click.option("--kv-type", default="f16", help="Requested KV cache type.")
@click.option("--max-gpus", type=int, default=None, help="Use at most this many GPUs.")
@click.option("--parallel", type=int, default=1, help="Concurrent sequences.")
@click.option("--threads", "num_threads", type=int, default=0, help="Thread count (0 = automatic).")
@click.option(
    "--gpus",
    "gpus_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON file listing GPU descriptors.",
)
@click.option(
    "--host-memory-gb",
    type=float,
    default=None,
    help="Host RAM in GB (default: detected).",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def plan(
    config: PlannerConfig,
    blocks: int,
    model_size_gb: float,
    train_ctx: int,
    heads: int,
    kv_heads: int,
    embedding: int,
    kv_types: str,
    flash: bool,
    model_flash: bool,
    context_length: int,
    kv_type: str,
    max_gpus: int | None,
    parallel: int,
    num_threads: int,
    gpus_path: str | None,
    host_memory_gb: float | None,
    as_json: bool,
) -> None:
    """Plan threads, context and the GPU/CPU split for a model."""
    model = ModelInfo(
        block_count=blocks,
        train_ctx=train_ctx,
        head_count_max=heads,
        head_count_kv_min=kv_heads,
        model_size_bytes=int(model_size_gb * _GIB),
        supports_flash_attention=model_flash,
        kv_cache_types=frozenset(t.strip() for t in kv_types.split(",") if t.strip()),
        embedding_length=embedding,
    )
    options = PlacementOptions(
        context_length=context_length,
        kv_cache_type=kv_type,
        max_gpus=max_gpus,
        flash_attention=flash,
        num_parallel=parallel,
        num_threads=num_threads,
    )
    gpus = _load_gpus(gpus_path)

    system = detect_system(config=config)
    if host_memory_gb is not None:
        system = dataclasses.replace(system, total_memory_bytes=int(host_memory_gb * _GIB))

    try:
        launch = optimal_config(system, model, gpus, options, config)
    except UnsupportedConfiguration as exc:
        raise click.UsageError(str(exc)) from exc

    if as_json:
        estimate = launch.estimate
        _dump(
            {
                **dataclasses.asdict(estimate),
                "gpu_blocks": estimate.gpu_blocks,
                "tensor_split": estimate.tensor_split,
                "num_threads": launch.num_threads,
                "num_gpu_layers": launch.num_gpu_layers,
            }
        )
        return
    _print_launch(launch)
