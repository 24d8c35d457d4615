"""Swappable OS probes used by the detection strategies.

Each strategy receives a ``Probes`` bundle instead of touching the OS
directly, so tests can inject canned command output and file contents.
Every probe raises ``ProbeUnavailable`` when it cannot answer.
"""

from __future__ import annotations

import os
import platform
import subprocess
from dataclasses import dataclass
from typing import Callable, Sequence

from ..config import DEFAULT_CONFIG, PlannerConfig
from ..errors import ProbeUnavailable


@dataclass(frozen=True)
class Probes:
    run: Callable[[Sequence[str]], str]
    read: Callable[[str], str]
    listdir: Callable[[str], list[str]]
    logical_cpu_count: Callable[[], int | None]
    physical_cpu_count: Callable[[], int | None]
    machine: Callable[[], str]
    total_memory: Callable[[], int]


def make_run(timeout: float) -> Callable[[Sequence[str]], str]:
    def run(cmd: Sequence[str]) -> str:
        try:
            result = subprocess.run(
                list(cmd),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError as exc:
            raise ProbeUnavailable(f"{cmd[0]} not found") from exc
        except subprocess.TimeoutExpired as exc:
            raise ProbeUnavailable(f"{cmd[0]} timed out") from exc
        except OSError as exc:
            raise ProbeUnavailable(f"{cmd[0]} failed: {exc}") from exc
        if result.returncode != 0:
            raise ProbeUnavailable(f"{' '.join(cmd)} exited with {result.returncode}")
        if not result.stdout.strip():
            raise ProbeUnavailable(f"{' '.join(cmd)} returned nothing")
        return result.stdout

    return run


def read_text(path: str) -> str:
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return f.read()
    except OSError as exc:
        raise ProbeUnavailable(f"cannot read {path}: {exc.strerror or exc}") from exc


def list_dir(path: str) -> list[str]:
    try:
        return sorted(os.listdir(path))
    except OSError as exc:
        raise ProbeUnavailable(f"cannot list {path}: {exc.strerror or exc}") from exc


def _psutil_count(logical: bool) -> int | None:
    import psutil

    return psutil.cpu_count(logical=logical)


def _total_memory() -> int:
    import psutil

    return int(psutil.virtual_memory().total)


def default_probes(config: PlannerConfig = DEFAULT_CONFIG) -> Probes:
    """Probes backed by the real OS."""
    return Probes(
        run=make_run(config.probe_timeout_s),
        read=read_text,
        listdir=list_dir,
        logical_cpu_count=lambda: _psutil_count(True),
        physical_cpu_count=lambda: _psutil_count(False),
        machine=platform.machine,
        total_memory=_total_memory,
    )


def normalize_architecture(machine: str) -> str:
    """Map ``platform.machine()`` spellings to ``x64``, ``arm64``, ..."""
    raw = (machine or "").strip().lower()
    if raw in ("x86_64", "amd64", "x64"):
        return "x64"
    if raw in ("aarch64", "arm64", "armv8l"):
        return "arm64"
    if raw in ("i386", "i486", "i586", "i686", "x86"):
        return "x86"
    if raw.startswith("armv7") or raw.startswith("armv6") or raw == "arm":
        return "arm"
    return raw or "unknown"


def vendor_from_brand(brand: str) -> str:
    if "Intel" in brand:
        return "Intel"
    if "AMD" in brand:
        return "AMD"
    if "Apple" in brand:
        return "Apple"
    if "ARM" in brand:
        return "ARM"
    return "Unknown"
