"""Policy model compiler — folds raw policies into a per-workload rule index.

Each policy compiles on its own into a contribution: the rules it adds, per
direction, to every workload its pod selector targets. Contributions are then
merged with a pure fold, so the resulting model does not depend on the order
the policies were supplied in.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from functools import reduce
from types import MappingProxyType

from netpolprobe.errors import ValidationError
from netpolprobe.policy.models import (
    Direction,
    IPBlockPeer,
    NetworkPolicy,
    PodPeer,
    PolicyRule,
)
from netpolprobe.policy.selector import (
    matches_labels,
    validate_ip_block,
    validate_selector,
)
from netpolprobe.topology.models import Topology

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledRule:
    """A rule with namespace scoping resolved, tagged with where it came from."""

    policy: str
    direction: Direction
    index: int
    rule: PolicyRule

    @property
    def origin(self) -> tuple[str, str, int]:
        return (self.policy, self.direction.value, self.index)


@dataclass(frozen=True)
class DirectionPolicy:
    """Isolation flag and rule union for one workload in one direction."""

    isolated: bool = False
    rules: tuple[CompiledRule, ...] = ()


@dataclass(frozen=True)
class TargetPolicy:
    """Everything the model knows about one workload."""

    ingress: DirectionPolicy = field(default_factory=DirectionPolicy)
    egress: DirectionPolicy = field(default_factory=DirectionPolicy)

    def direction(self, direction: Direction) -> DirectionPolicy:
        return self.ingress if direction is Direction.INGRESS else self.egress


_NOT_ISOLATED = TargetPolicy()

# workload key -> direction -> rules contributed
_Contribution = Mapping[str, Mapping[Direction, tuple[CompiledRule, ...]]]


@dataclass(frozen=True)
class PolicyModel:
    """Compiled per-workload isolation and rules. Read-only once built."""

    targets: Mapping[str, TargetPolicy]
    policies: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "targets", MappingProxyType(dict(self.targets)))

    def __hash__(self) -> int:
        return hash((tuple(sorted(self.targets.items())), self.policies))

    def target(self, workload_key: str) -> TargetPolicy:
        """Policy for a workload; workloads with no matching policy are not isolated."""
        return self.targets.get(workload_key, _NOT_ISOLATED)

    def is_isolated(self, workload_key: str, direction: Direction) -> bool:
        return self.target(workload_key).direction(direction).isolated


def compile_model(policies: Iterable[NetworkPolicy], topology: Topology) -> PolicyModel:
    """Validate and compile ``policies`` against ``topology``.

    Raises ValidationError on the first invalid policy; nothing is skipped.
    """
    policy_list = list(policies)
    seen: set[tuple[str, str]] = set()
    for policy in policy_list:
        validate_policy(policy)
        ident = (policy.namespace, policy.name)
        if ident in seen:
            raise ValidationError(f"Duplicate policy {policy.ref}")
        seen.add(ident)

    contributions = [_contribute(policy, topology) for policy in policy_list]
    merged = reduce(_merge, contributions, {})

    targets: dict[str, TargetPolicy] = {}
    for key, by_direction in merged.items():
        targets[key] = TargetPolicy(
            ingress=_direction_policy(by_direction, Direction.INGRESS),
            egress=_direction_policy(by_direction, Direction.EGRESS),
        )

    logger.debug(
        "Compiled %d policies into %d targeted workloads",
        len(policy_list),
        len(targets),
    )
    return PolicyModel(
        targets=targets,
        policies=tuple(sorted(p.ref for p in policy_list)),
    )


def validate_policy(policy: NetworkPolicy) -> None:
    """Raise ValidationError if ``policy`` cannot be compiled faithfully."""
    ref = policy.ref
    if not policy.name:
        raise ValidationError(f"Policy {ref}: missing name")
    if not policy.namespace:
        raise ValidationError(f"Policy {ref}: missing namespace")
    if policy.pod_selector is None:
        raise ValidationError(f"Policy {ref}: missing pod selector")
    if not policy.policy_types:
        raise ValidationError(f"Policy {ref}: no policy types declared")
    if len(set(policy.policy_types)) != len(policy.policy_types):
        raise ValidationError(f"Policy {ref}: duplicate policy types")

    validate_selector(policy.pod_selector, f"Policy {ref} podSelector")

    for direction in Direction:
        for i, rule in enumerate(policy.rules_for(direction)):
            context = f"Policy {ref} {direction.value.lower()}[{i}]"
            _validate_rule(rule, context)


def _validate_rule(rule: PolicyRule, context: str) -> None:
    for peer in rule.peers:
        if isinstance(peer, PodPeer):
            if peer.pod_selector is not None:
                validate_selector(peer.pod_selector, f"{context} podSelector")
            if peer.namespace_selector is not None:
                validate_selector(peer.namespace_selector, f"{context} namespaceSelector")
        elif isinstance(peer, IPBlockPeer):
            validate_ip_block(peer, f"{context} ipBlock")
        else:
            raise ValidationError(f"{context}: unknown peer kind {type(peer).__name__}")

    for port in rule.ports:
        if isinstance(port.port, int):
            if not 1 <= port.port <= 65535:
                raise ValidationError(f"{context}: port {port.port} out of range")
            if port.end_port is not None and port.end_port < port.port:
                raise ValidationError(
                    f"{context}: endPort {port.end_port} is below port {port.port}"
                )
        elif isinstance(port.port, str):
            if not port.port:
                raise ValidationError(f"{context}: empty named port")
            if port.end_port is not None:
                raise ValidationError(
                    f"{context}: endPort cannot be combined with named port {port.port!r}"
                )
        elif port.end_port is not None:
            raise ValidationError(f"{context}: endPort requires a numeric port")


def _scope_rule(rule: PolicyRule, namespace: str) -> PolicyRule:
    """Pin pod peers without a namespace selector to the policy's namespace."""
    peers = tuple(
        PodPeer(
            pod_selector=peer.pod_selector,
            namespace_selector=None,
            namespace=namespace,
        )
        if isinstance(peer, PodPeer) and peer.namespace_selector is None
        else peer
        for peer in rule.peers
    )
    return PolicyRule(peers=peers, ports=rule.ports)


def _contribute(policy: NetworkPolicy, topology: Topology) -> _Contribution:
    compiled: dict[Direction, tuple[CompiledRule, ...]] = {}
    for direction in policy.policy_types:
        compiled[direction] = tuple(
            CompiledRule(
                policy=policy.ref,
                direction=direction,
                index=i,
                rule=_scope_rule(rule, policy.namespace),
            )
            for i, rule in enumerate(policy.rules_for(direction))
        )

    contribution: dict[str, Mapping[Direction, tuple[CompiledRule, ...]]] = {}
    for workload in topology:
        if workload.namespace != policy.namespace:
            continue
        if matches_labels(policy.pod_selector, workload.labels):
            contribution[workload.key] = compiled
    return contribution


def _merge(left: _Contribution, right: _Contribution) -> _Contribution:
    merged: dict[str, dict[Direction, tuple[CompiledRule, ...]]] = {
        key: dict(by_direction) for key, by_direction in left.items()
    }
    for key, by_direction in right.items():
        slot = merged.setdefault(key, {})
        for direction, rules in by_direction.items():
            slot[direction] = slot.get(direction, ()) + rules
    return merged


def _direction_policy(
    by_direction: Mapping[Direction, tuple[CompiledRule, ...]],
    direction: Direction,
) -> DirectionPolicy:
    if direction not in by_direction:
        return DirectionPolicy()
    rules = tuple(sorted(by_direction[direction], key=lambda r: r.origin))
    return DirectionPolicy(isolated=True, rules=rules)
