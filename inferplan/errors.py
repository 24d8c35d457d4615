"""Error taxonomy for the resource planner."""

from __future__ import annotations


class PlannerError(Exception):
    """Base class for inferplan errors."""


class ProbeUnavailable(PlannerError):
    """An OS probe failed or returned nothing.

    Always recovered inside the detector; never escapes ``detect_system``.
    """


class UnrecognizedFormat(PlannerError):
    """Probe output could not be parsed."""


class UnsupportedConfiguration(PlannerError, ValueError):
    """The caller asked for a placement that cannot be computed."""
