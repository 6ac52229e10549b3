"""Policy data models — immutable dataclasses mirroring the NetworkPolicy API."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Union

from netpolprobe.topology.models import Protocol


class Direction(enum.Enum):
    """Traffic direction a rule or policy type applies to."""

    INGRESS = "Ingress"
    EGRESS = "Egress"


class Operator(enum.Enum):
    """Label selector requirement operators."""

    IN = "In"
    NOT_IN = "NotIn"
    EXISTS = "Exists"
    DOES_NOT_EXIST = "DoesNotExist"


@dataclass(frozen=True)
class Requirement:
    """One ``matchExpressions`` entry.

    ``operator`` is kept as the raw string so that an unsupported operator can
    reach the selector algebra, which treats it as a non-match.
    """

    key: str
    operator: str
    values: tuple[str, ...] = ()


@dataclass(frozen=True)
class LabelSelector:
    """A conjunction of label requirements. The empty selector matches everything."""

    match_labels: Mapping[str, str] = field(default_factory=dict)
    match_expressions: tuple[Requirement, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "match_labels", MappingProxyType(dict(self.match_labels)))
        object.__setattr__(self, "match_expressions", tuple(self.match_expressions))

    def __hash__(self) -> int:
        return hash((tuple(sorted(self.match_labels.items())), self.match_expressions))

    @property
    def is_empty(self) -> bool:
        return not self.match_labels and not self.match_expressions

    def describe(self) -> str:
        if self.is_empty:
            return "all"
        parts = [f"{k}={v}" for k, v in sorted(self.match_labels.items())]
        for req in self.match_expressions:
            if req.values:
                parts.append(f"{req.key} {req.operator} ({', '.join(req.values)})")
            else:
                parts.append(f"{req.key} {req.operator}")
        return ", ".join(parts)


@dataclass(frozen=True)
class PodPeer:
    """Selects workloads by pod and namespace labels.

    A missing selector matches everything on its side. ``namespace`` is filled
    in by the compiler when ``namespace_selector`` is absent: such a peer only
    ever selects pods in the policy's own namespace.
    """

    pod_selector: LabelSelector | None = None
    namespace_selector: LabelSelector | None = None
    namespace: str | None = None


@dataclass(frozen=True)
class IPBlockPeer:
    """Selects addresses inside ``cidr`` and outside every ``except_cidrs`` entry."""

    cidr: str
    except_cidrs: tuple[str, ...] = ()


PeerMatcher = Union[PodPeer, IPBlockPeer]


@dataclass(frozen=True)
class PortMatcher:
    """One ``ports`` entry. A port of None means every port of the protocol."""

    protocol: Protocol = Protocol.TCP
    port: int | str | None = None
    end_port: int | None = None


@dataclass(frozen=True)
class PolicyRule:
    """Peers and ports combine as OR-of-ORs; an empty list matches everything."""

    peers: tuple[PeerMatcher, ...] = ()
    ports: tuple[PortMatcher, ...] = ()


@dataclass(frozen=True)
class NetworkPolicy:
    """A raw declarative policy, already parsed from its manifest."""

    name: str
    namespace: str
    pod_selector: LabelSelector | None
    policy_types: tuple[Direction, ...] = (Direction.INGRESS,)
    ingress: tuple[PolicyRule, ...] = ()
    egress: tuple[PolicyRule, ...] = ()

    @property
    def ref(self) -> str:
        return f"{self.namespace or '<none>'}/{self.name or '<unnamed>'}"

    def rules_for(self, direction: Direction) -> tuple[PolicyRule, ...]:
        return self.ingress if direction is Direction.INGRESS else self.egress
