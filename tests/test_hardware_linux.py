"""Tests for inferplan.hardware._linux — /proc/cpuinfo and sysfs detection."""

from __future__ import annotations

import pytest

from inferplan.config import PlannerConfig
from inferplan.errors import ProbeUnavailable, UnrecognizedFormat
from inferplan.hardware import Platform, SystemInfo
from inferplan.hardware._linux import (
    CPU_ATOM_LIST,
    CPUINFO_PATH,
    SYSFS_CPU_ROOT,
    detect_linux_cpus,
    parse_cpulist,
    parse_proc_cpuinfo,
    read_sysfs_topology,
)
from inferplan.threads import compute_optimal_threads

_CONFIG = PlannerConfig()


def _cpuinfo(entries: list[dict[str, object]]) -> str:
    blocks = []
    for entry in entries:
        blocks.append("\n".join(f"{k}\t: {v}" for k, v in entry.items()))
    return "\n\n".join(blocks) + "\n"


def _x86_entries(
    vendor: str,
    model: str,
    package: int,
    cores: int,
    threads_per_core: int,
    mhz: float,
    first_index: int = 0,
) -> list[dict[str, object]]:
    entries = []
    index = first_index
    for t in range(threads_per_core):
        for c in range(cores):
            entries.append(
                {
                    "processor": index,
                    "vendor_id": vendor,
                    "model name": model,
                    "cpu MHz": mhz,
                    "physical id": package,
                    "siblings": cores * threads_per_core,
                    "core id": c,
                    "cpu cores": cores,
                }
            )
            index += 1
    return entries


def _alder_lake_cpuinfo() -> str:
    # i7-12700K: cpus 0-15 are 8 P-cores with HT, cpus 16-19 are 4 E-cores
    entries = []
    for i in range(20):
        core = i // 2 if i < 16 else i - 8
        entries.append(
            {
                "processor": i,
                "vendor_id": "GenuineIntel",
                "model name": "12th Gen Intel(R) Core(TM) i7-12700K",
                "cpu MHz": "3600.000",
                "physical id": 0,
                "siblings": 20,
                "core id": core,
                "cpu cores": 12,
            }
        )
    return _cpuinfo(entries)


def _alder_lake_sysfs(with_freq: bool = True) -> tuple[dict[str, str], dict[str, list[str]]]:
    files: dict[str, str] = {}
    for i in range(20):
        base = f"{SYSFS_CPU_ROOT}/cpu{i}"
        files[f"{base}/topology/physical_package_id"] = "0\n"
        files[f"{base}/topology/core_id"] = f"{i // 2 if i < 16 else i - 8}\n"
        if with_freq:
            files[f"{base}/cpufreq/cpuinfo_max_freq"] = "4900000\n" if i < 16 else "3800000\n"
    dirs = {SYSFS_CPU_ROOT: [f"cpu{i}" for i in range(20)] + ["cpufreq", "cpuidle", "online"]}
    return files, dirs


def _packages_sysfs(max_khz: list[int], cores: int) -> tuple[dict[str, str], dict[str, list[str]]]:
    # one thread per core, numbered like _x86_entries(..., threads_per_core=1)
    files: dict[str, str] = {}
    names = []
    for package, khz in enumerate(max_khz):
        for i in range(package * cores, (package + 1) * cores):
            base = f"{SYSFS_CPU_ROOT}/cpu{i}"
            files[f"{base}/topology/physical_package_id"] = f"{package}\n"
            files[f"{base}/topology/core_id"] = f"{i % cores}\n"
            files[f"{base}/cpufreq/cpuinfo_max_freq"] = f"{khz}\n"
            names.append(f"cpu{i}")
    return files, {SYSFS_CPU_ROOT: names}


# ---------------------------------------------------------------------------
# parse_proc_cpuinfo
# ---------------------------------------------------------------------------


class TestParseProcCpuinfo:
    def test_splits_processor_blocks(self) -> None:
        text = _cpuinfo(_x86_entries("AuthenticAMD", "AMD Ryzen 7 5800X", 0, 2, 1, 3800.0))
        processors, extras = parse_proc_cpuinfo(text)
        assert len(processors) == 2
        assert processors[1]["processor"] == "1"
        assert processors[0]["model name"] == "AMD Ryzen 7 5800X"
        assert extras == {}

    def test_trailing_hardware_block_goes_to_extras(self) -> None:
        text = (
            "processor\t: 0\nBogoMIPS\t: 108.00\nCPU implementer\t: 0x41\n\n"
            "Hardware\t: BCM2835\nRevision\t: c03111\n"
        )
        processors, extras = parse_proc_cpuinfo(text)
        assert len(processors) == 1
        assert extras["Hardware"] == "BCM2835"

    def test_no_processors_raises(self) -> None:
        with pytest.raises(UnrecognizedFormat):
            parse_proc_cpuinfo("garbage without colons\n")

    def test_empty_raises(self) -> None:
        with pytest.raises(UnrecognizedFormat):
            parse_proc_cpuinfo("")


# ---------------------------------------------------------------------------
# parse_cpulist
# ---------------------------------------------------------------------------


class TestParseCpulist:
    def test_ranges_and_singles(self) -> None:
        assert parse_cpulist("0-3,8,10-11\n") == {0, 1, 2, 3, 8, 10, 11}

    def test_empty(self) -> None:
        assert parse_cpulist("\n") == set()

    def test_bad_entry_raises(self) -> None:
        with pytest.raises(UnrecognizedFormat):
            parse_cpulist("0-x")


# ---------------------------------------------------------------------------
# read_sysfs_topology
# ---------------------------------------------------------------------------


class TestReadSysfsTopology:
    def test_reads_package_core_and_freq(self, make_probes) -> None:
        files, dirs = _alder_lake_sysfs()
        diagnostics: list[str] = []
        topology = read_sysfs_topology(make_probes(files=files, dirs=dirs), diagnostics)
        assert len(topology) == 20
        assert topology[0].max_freq_hz == 4_900_000_000
        assert topology[19].core == "11"
        assert diagnostics == []

    def test_unlistable_root_is_empty(self, make_probes) -> None:
        diagnostics: list[str] = []
        assert read_sysfs_topology(make_probes(), diagnostics) == {}
        assert diagnostics[0].startswith("linux: sysfs topology unavailable")

    def test_missing_topology_files_counted(self, make_probes) -> None:
        dirs = {SYSFS_CPU_ROOT: ["cpu0", "cpu1"]}
        files = {
            f"{SYSFS_CPU_ROOT}/cpu0/topology/physical_package_id": "-1",
            f"{SYSFS_CPU_ROOT}/cpu0/topology/core_id": "0",
        }
        diagnostics: list[str] = []
        topology = read_sysfs_topology(make_probes(files=files, dirs=dirs), diagnostics)
        assert list(topology) == [0]
        assert topology[0].package == "0"
        assert topology[0].max_freq_hz == 0
        assert "no topology files for 1 CPU(s)" in diagnostics[0]


# ---------------------------------------------------------------------------
# detect_linux_cpus
# ---------------------------------------------------------------------------


class TestDetectLinuxCpus:
    def test_amd_desktop_has_no_efficiency_cores(self, make_probes) -> None:
        text = _cpuinfo(_x86_entries("AuthenticAMD", "AMD Ryzen 7 5800X", 0, 8, 2, 3800.0))
        diagnostics: list[str] = []
        cpus = detect_linux_cpus(make_probes(files={CPUINFO_PATH: text}), diagnostics, _CONFIG)

        assert len(cpus) == 1
        cpu = cpus[0]
        assert cpu.vendor_id == "AuthenticAMD"
        assert cpu.model_name == "AMD Ryzen 7 5800X"
        assert cpu.core_count == 8
        assert cpu.thread_count == 16
        assert cpu.efficiency_core_count == 0
        assert cpu.clock_speed_hz == 3_800_000_000
        assert cpu.architecture == "x64"
        assert any("sysfs topology unavailable" in d for d in diagnostics)

    def test_hybrid_intel_from_core_clocks(self, make_probes) -> None:
        files, dirs = _alder_lake_sysfs()
        files[CPUINFO_PATH] = _alder_lake_cpuinfo()
        cpus = detect_linux_cpus(make_probes(files=files, dirs=dirs), [], _CONFIG)

        cpu = cpus[0]
        assert cpu.core_count == 12
        assert cpu.thread_count == 20
        assert cpu.efficiency_core_count == 4
        assert cpu.clock_speed_hz == 4_900_000_000

    def test_hybrid_intel_from_atom_list(self, make_probes) -> None:
        files, dirs = _alder_lake_sysfs(with_freq=False)
        files[CPUINFO_PATH] = _alder_lake_cpuinfo()
        files[CPU_ATOM_LIST] = "16-19\n"
        cpus = detect_linux_cpus(make_probes(files=files, dirs=dirs), [], _CONFIG)

        assert cpus[0].efficiency_core_count == 4
        assert cpus[0].clock_speed_hz == 3_600_000_000

    def test_hybrid_intel_from_smt_mixture(self, make_probes) -> None:
        files = {CPUINFO_PATH: _alder_lake_cpuinfo()}
        cpus = detect_linux_cpus(make_probes(files=files), [], _CONFIG)
        assert cpus[0].efficiency_core_count == 4

    def test_bad_atom_list_is_ignored(self, make_probes) -> None:
        files, dirs = _alder_lake_sysfs()
        files[CPUINFO_PATH] = _alder_lake_cpuinfo()
        files[CPU_ATOM_LIST] = "sixteen"
        diagnostics: list[str] = []
        cpus = detect_linux_cpus(make_probes(files=files, dirs=dirs), diagnostics, _CONFIG)
        assert cpus[0].efficiency_core_count == 4
        assert any("bad cpulist entry" in d for d in diagnostics)

    def test_dual_socket_xeon(self, make_probes) -> None:
        model = "Intel(R) Xeon(R) Platinum 8280 CPU @ 2.70GHz"
        entries = _x86_entries("GenuineIntel", model, 0, 28, 2, 2700.0)
        entries += _x86_entries("GenuineIntel", model, 1, 28, 2, 2700.0, first_index=56)
        cpus = detect_linux_cpus(make_probes(files={CPUINFO_PATH: _cpuinfo(entries)}), [], _CONFIG)

        assert [c.id for c in cpus] == ["0", "1"]
        assert all(c.core_count == 28 for c in cpus)
        assert all(c.thread_count == 56 for c in cpus)
        assert all(c.efficiency_core_count == 0 for c in cpus)

    def test_slow_package_marked_efficiency(self, make_probes) -> None:
        files, dirs = _packages_sysfs([4_000_000, 2_000_000], cores=4)
        entries = _x86_entries("GenuineIntel", "Fast", 0, 4, 1, 4000.0)
        entries += _x86_entries("GenuineIntel", "Slow", 1, 4, 1, 2000.0, first_index=4)
        files[CPUINFO_PATH] = _cpuinfo(entries)
        cpus = detect_linux_cpus(make_probes(files=files, dirs=dirs), [], _CONFIG)

        assert cpus[0].clock_speed_hz == 4_000_000_000
        assert cpus[1].clock_speed_hz == 2_000_000_000
        assert cpus[0].efficiency_core_count == 0
        assert cpus[1].efficiency_core_count == 4

    def test_idle_socket_without_cpufreq_keeps_its_cores(self, make_probes) -> None:
        # cpu MHz is the current clock: an idle socket reads low
        model = "Intel(R) Xeon(R) Gold 6134 CPU @ 3.20GHz"
        entries = _x86_entries("GenuineIntel", model, 0, 4, 2, 3400.0)
        entries += _x86_entries("GenuineIntel", model, 1, 4, 2, 1200.0, first_index=8)
        diagnostics: list[str] = []
        cpus = detect_linux_cpus(
            make_probes(files={CPUINFO_PATH: _cpuinfo(entries)}), diagnostics, _CONFIG
        )

        assert [c.efficiency_core_count for c in cpus] == [0, 0]
        system = SystemInfo(platform=Platform.LINUX, cpus=tuple(cpus), total_memory_bytes=0)
        assert compute_optimal_threads(system) == 8
        assert any("cross-package clocks skipped" in d for d in diagnostics)

    def test_partial_cpufreq_skips_cross_package_rule(self, make_probes) -> None:
        files, dirs = _packages_sysfs([4_000_000, 2_000_000], cores=4)
        for i in range(4, 8):
            del files[f"{SYSFS_CPU_ROOT}/cpu{i}/cpufreq/cpuinfo_max_freq"]
        entries = _x86_entries("GenuineIntel", "Fast", 0, 4, 1, 4000.0)
        entries += _x86_entries("GenuineIntel", "Slow", 1, 4, 1, 800.0, first_index=4)
        files[CPUINFO_PATH] = _cpuinfo(entries)
        cpus = detect_linux_cpus(make_probes(files=files, dirs=dirs), [], _CONFIG)

        assert [c.efficiency_core_count for c in cpus] == [0, 0]

    def test_identical_sockets_with_different_max_clocks_not_split(self, make_probes) -> None:
        files, dirs = _packages_sysfs([3_400_000, 2_000_000], cores=4)
        entries = _x86_entries("GenuineIntel", "Xeon", 0, 4, 1, 3400.0)
        entries += _x86_entries("GenuineIntel", "Xeon", 1, 4, 1, 2000.0, first_index=4)
        files[CPUINFO_PATH] = _cpuinfo(entries)
        cpus = detect_linux_cpus(make_probes(files=files, dirs=dirs), [], _CONFIG)

        assert [c.efficiency_core_count for c in cpus] == [0, 0]

    def test_arm_board_from_sysfs_topology(self, make_probes) -> None:
        cpuinfo = "".join(
            f"processor\t: {i}\nBogoMIPS\t: 108.00\nCPU implementer\t: 0x41\n\n" for i in range(4)
        ) + "Hardware\t: BCM2835\n"
        files = {CPUINFO_PATH: cpuinfo}
        for i in range(4):
            base = f"{SYSFS_CPU_ROOT}/cpu{i}"
            files[f"{base}/topology/physical_package_id"] = "0"
            files[f"{base}/topology/core_id"] = str(i)
            files[f"{base}/cpufreq/cpuinfo_max_freq"] = "1500000"
        dirs = {SYSFS_CPU_ROOT: ["cpu0", "cpu1", "cpu2", "cpu3"]}

        cpus = detect_linux_cpus(
            make_probes(files=files, dirs=dirs, machine="aarch64"), [], _CONFIG
        )
        cpu = cpus[0]
        assert cpu.vendor_id == "ARM"
        assert cpu.model_name == "BCM2835"
        assert cpu.architecture == "arm64"
        assert cpu.core_count == 4
        assert cpu.thread_count == 4
        assert cpu.efficiency_core_count == 0
        assert cpu.clock_speed_hz == 1_500_000_000

    def test_sysfs_only(self, make_probes) -> None:
        files, dirs = _alder_lake_sysfs()
        diagnostics: list[str] = []
        cpus = detect_linux_cpus(make_probes(files=files, dirs=dirs), diagnostics, _CONFIG)

        assert cpus[0].core_count == 12
        assert cpus[0].thread_count == 20
        assert cpus[0].vendor_id == "Unknown"
        assert any("/proc/cpuinfo unusable" in d for d in diagnostics)

    def test_nothing_readable_raises(self, make_probes) -> None:
        with pytest.raises(ProbeUnavailable):
            detect_linux_cpus(make_probes(), [], _CONFIG)
