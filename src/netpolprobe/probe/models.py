"""Probe data models — what to probe, one job per cell, and what came back."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from typing import Protocol as TypingProtocol
from typing import runtime_checkable

from netpolprobe.errors import ValidationError
from netpolprobe.topology.models import Protocol, Workload


class ProbeMode(enum.Enum):
    """How the source addresses the destination."""

    SERVICE_NAME = "service-name"
    SERVICE_IP = "service-ip"
    POD_IP = "pod-ip"


class JobOutcome(enum.Enum):
    """Three-way classification reported by an execution agent."""

    SUCCESS = "success"
    REFUSED_OR_TIMEOUT = "refused-or-timeout"
    INFRASTRUCTURE_ERROR = "infrastructure-error"


@dataclass(frozen=True)
class ProbeSpec:
    """One (port, protocol, mode) combination to probe across a topology."""

    port: int
    protocol: Protocol
    mode: ProbeMode = ProbeMode.SERVICE_NAME

    def __post_init__(self) -> None:
        if not isinstance(self.protocol, Protocol):
            raise ValidationError(f"Probe requires a protocol, got {self.protocol!r}")
        if not 1 <= self.port <= 65535:
            raise ValidationError(f"Probe port {self.port} out of range")


@dataclass(frozen=True)
class ProbeJob:
    """A single connectivity attempt from ``source`` to ``destination``."""

    source: Workload
    destination: Workload
    port: int
    protocol: Protocol
    mode: ProbeMode

    @property
    def address(self) -> str:
        """Destination address for the configured probe mode."""
        if self.mode is ProbeMode.SERVICE_NAME:
            return self.destination.service_name
        if self.mode is ProbeMode.SERVICE_IP and self.destination.service_ip:
            return self.destination.service_ip
        return self.destination.ip

    @property
    def cell(self) -> tuple[str, str]:
        return (self.source.key, self.destination.key)


@dataclass(frozen=True)
class JobResult:
    """What an execution agent observed for one job."""

    outcome: JobOutcome
    latency: float = 0.0
    detail: str = ""


@runtime_checkable
class ExecutionAgent(TypingProtocol):
    """Protocol for anything that can carry out one real connectivity attempt."""

    def execute(self, job: ProbeJob, timeout: float) -> JobResult:
        """Attempt the connection within ``timeout`` seconds.

        May raise InfrastructureError instead of returning an
        INFRASTRUCTURE_ERROR result.
        """
        ...


class CancelToken:
    """Run-scoped cancellation shared by every job of a probe run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns True if cancelled meanwhile."""
        return self._event.wait(timeout=timeout)
