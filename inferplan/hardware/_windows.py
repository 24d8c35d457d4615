"""Windows CPU detection via WMI (wmic, then PowerShell CIM)."""

from __future__ import annotations

import csv
import io
import logging

from ..errors import ProbeUnavailable, UnrecognizedFormat
from ._efficiency import efficiency_from_totals
from ._probes import Probes, normalize_architecture, vendor_from_brand
from ._types import CpuInfo, make_cpu

logger = logging.getLogger(__name__)

_COLUMNS = ("Manufacturer", "MaxClockSpeed", "Name", "NumberOfCores", "NumberOfLogicalProcessors")

WMIC_COMMAND = [
    "wmic",
    "cpu",
    "get",
    ",".join(_COLUMNS),
    "/format:csv",
]

# wmic is absent from current Windows builds; CIM returns the same columns
POWERSHELL_COMMAND = [
    "powershell",
    "-NoProfile",
    "-NonInteractive",
    "-Command",
    "Get-CimInstance Win32_Processor | Select-Object "
    + ",".join(_COLUMNS)
    + " | ConvertTo-Csv -NoTypeInformation",
]


def parse_wmi_csv(text: str) -> list[dict[str, str]]:
    """Parse WMI CSV output into one row per CPU package.

    Handles both ``wmic /format:csv`` (leading ``Node`` column, ``\\r\\r\\n``
    line endings) and PowerShell ``ConvertTo-Csv`` (quoted fields).
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        raise UnrecognizedFormat("empty WMI output")

    reader = csv.DictReader(io.StringIO("\n".join(lines)))
    header = [h.strip() for h in (reader.fieldnames or [])]
    missing = [c for c in ("Name", "NumberOfCores") if c not in header]
    if missing:
        raise UnrecognizedFormat(f"WMI output lacks columns {missing}")

    rows = []
    for row in reader:
        cleaned = {(k or "").strip(): (v or "").strip() for k, v in row.items()}
        if cleaned.get("Name") == "Name":
            continue  # repeated header
        rows.append(cleaned)
    if not rows:
        raise UnrecognizedFormat("WMI output has a header but no rows")
    return rows


def _query(probes: Probes, diagnostics: list[str]) -> list[dict[str, str]]:
    for source, command in (("wmic", WMIC_COMMAND), ("powershell", POWERSHELL_COMMAND)):
        try:
            return parse_wmi_csv(probes.run(command))
        except (ProbeUnavailable, UnrecognizedFormat) as exc:
            diagnostics.append(f"windows: {source} query failed ({exc})")
    raise ProbeUnavailable("no WMI query succeeded")


def _int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def detect_windows_cpus(probes: Probes, diagnostics: list[str]) -> list[CpuInfo]:
    rows = _query(probes, diagnostics)
    arch = normalize_architecture(probes.machine())

    cpus: list[CpuInfo] = []
    for i, row in enumerate(rows):
        name = row.get("Name", "")
        manufacturer = row.get("Manufacturer", "") or vendor_from_brand(name)
        cores = _int(row.get("NumberOfCores", ""))
        threads = _int(row.get("NumberOfLogicalProcessors", "")) or cores
        if cores <= 0:
            diagnostics.append(f"windows: package {i} reports no cores; skipped")
            continue
        cpus.append(
            make_cpu(
                id=str(i),
                vendor_id=manufacturer,
                model_name=name,
                core_count=cores,
                efficiency_core_count=efficiency_from_totals(cores, threads, manufacturer),
                thread_count=threads,
                clock_speed_hz=_int(row.get("MaxClockSpeed", "")) * 1_000_000,  # MHz
                architecture=arch,
            )
        )

    if not cpus:
        raise UnrecognizedFormat("WMI rows contained no usable CPU")
    logger.debug("windows: detected %d package(s)", len(cpus))
    return cpus
