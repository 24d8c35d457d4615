"""Shared fixtures: canned OS probes for the detection strategies."""

from __future__ import annotations

from typing import Callable, Mapping, Sequence

import pytest

from inferplan.errors import ProbeUnavailable
from inferplan.hardware import Probes


def build_probes(
    commands: Mapping[tuple[str, ...], str] | None = None,
    files: Mapping[str, str] | None = None,
    dirs: Mapping[str, list[str]] | None = None,
    logical: int | None = 8,
    physical: int | None = 4,
    machine: str = "x86_64",
    memory: int | Exception = 16 * 1024**3,
) -> Probes:
    commands = dict(commands or {})
    files = dict(files or {})
    dirs = dict(dirs or {})

    def run(cmd: Sequence[str]) -> str:
        try:
            return commands[tuple(cmd)]
        except KeyError:
            raise ProbeUnavailable(f"{cmd[0]} not found") from None

    def read(path: str) -> str:
        try:
            return files[path]
        except KeyError:
            raise ProbeUnavailable(f"cannot read {path}") from None

    def listdir(path: str) -> list[str]:
        try:
            return sorted(dirs[path])
        except KeyError:
            raise ProbeUnavailable(f"cannot list {path}") from None

    def total_memory() -> int:
        if isinstance(memory, Exception):
            raise memory
        return memory

    return Probes(
        run=run,
        read=read,
        listdir=listdir,
        logical_cpu_count=lambda: logical,
        physical_cpu_count=lambda: physical,
        machine=lambda: machine,
        total_memory=total_memory,
    )


@pytest.fixture
def make_probes() -> Callable[..., Probes]:
    return build_probes
