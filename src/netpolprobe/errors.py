"""Error taxonomy shared by the compiler, the probe runners and the comparator."""

from __future__ import annotations


class NetpolProbeError(Exception):
    """Base class for all netpolprobe errors."""


class ValidationError(NetpolProbeError, ValueError):
    """Malformed policy or topology input. Compilation halts on the first one."""


class InfrastructureError(NetpolProbeError):
    """A live probe could not be carried out (agent unreachable, pod missing, ...).

    Never a policy verdict: cells that only ever saw this error are Unknown.
    """


class ComparisonPreconditionError(NetpolProbeError):
    """Two truth tables do not share the same shape and cannot be compared."""
