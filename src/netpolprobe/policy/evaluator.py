"""Policy evaluator — hot path, decides allow/deny for one traffic sample."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from netpolprobe.policy.compiler import CompiledRule, DirectionPolicy, PolicyModel
from netpolprobe.policy.models import PortMatcher
from netpolprobe.policy.selector import matches_peer
from netpolprobe.topology.models import (
    Namespace,
    Protocol,
    Topology,
    TrafficSample,
    Workload,
)


class Connectivity(enum.Enum):
    """Verdict for one truth table cell."""

    ALLOWED = "allowed"
    DENIED = "denied"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DirectionVerdict:
    """Outcome of one side of the check.

    ``matched_rules`` lists every rule that granted the traffic; it is empty
    both when the side is not isolated and when nothing matched.
    """

    allowed: bool
    isolated: bool
    matched_rules: tuple[CompiledRule, ...] = ()


@dataclass(frozen=True)
class TrafficVerdict:
    """Egress check at the source combined with the ingress check at the destination."""

    egress: DirectionVerdict
    ingress: DirectionVerdict

    @property
    def connectivity(self) -> Connectivity:
        if self.egress.allowed and self.ingress.allowed:
            return Connectivity.ALLOWED
        return Connectivity.DENIED


def evaluate(sample: TrafficSample, model: PolicyModel, topology: Topology) -> Connectivity:
    """Return ALLOWED iff both the source's egress and the destination's ingress permit."""
    return evaluate_traffic(sample, model, topology).connectivity


def evaluate_traffic(
    sample: TrafficSample,
    model: PolicyModel,
    topology: Topology,
) -> TrafficVerdict:
    """Evaluate both directions of ``sample`` and keep the rules that matched."""
    src, dst = sample.source, sample.destination

    egress = _check(
        model.target(src.key).egress,
        peer=dst,
        topology=topology,
        destination=dst,
        protocol=sample.protocol,
        port=sample.port,
    )
    ingress = _check(
        model.target(dst.key).ingress,
        peer=src,
        topology=topology,
        destination=dst,
        protocol=sample.protocol,
        port=sample.port,
    )
    return TrafficVerdict(egress=egress, ingress=ingress)


def _check(
    policy: DirectionPolicy,
    peer: Workload,
    topology: Topology,
    destination: Workload,
    protocol: Protocol,
    port: int,
) -> DirectionVerdict:
    if not policy.isolated:
        return DirectionVerdict(allowed=True, isolated=False)

    peer_ns = topology.namespace(peer.namespace)
    matched = tuple(
        cr
        for cr in policy.rules
        if _any_peer_matches(cr, peer, peer_ns)
        and _any_port_matches(cr.rule.ports, destination, protocol, port)
    )
    return DirectionVerdict(allowed=bool(matched), isolated=True, matched_rules=matched)


def _any_peer_matches(cr: CompiledRule, peer: Workload, peer_ns: Namespace) -> bool:
    if not cr.rule.peers:
        return True
    return any(matches_peer(p, peer, peer_ns) for p in cr.rule.peers)


def _any_port_matches(
    ports: tuple[PortMatcher, ...],
    destination: Workload,
    protocol: Protocol,
    port: int,
) -> bool:
    if not ports:
        return True
    return any(matches_port(pm, destination, protocol, port) for pm in ports)


def matches_port(
    matcher: PortMatcher,
    destination: Workload,
    protocol: Protocol,
    port: int,
) -> bool:
    """Match one port entry. Named ports resolve against the destination's ports.

    Both ingress and egress rules restrict the destination's ports, so the
    destination's container-port table is used for either direction. A name
    that does not resolve simply does not match.
    """
    if matcher.protocol != protocol:
        return False
    if matcher.port is None:
        return True
    if isinstance(matcher.port, str):
        resolved = destination.resolve_named_port(matcher.port, protocol)
        return resolved is not None and resolved == port
    if matcher.end_port is not None:
        return matcher.port <= port <= matcher.end_port
    return matcher.port == port

