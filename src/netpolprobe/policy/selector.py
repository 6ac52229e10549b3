"""Selector algebra — label selectors, peer matchers and ipBlock matching.

Everything here is pure. A malformed requirement never raises at match time;
it simply fails to match, so a broken selector can only ever deny.
"""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Mapping

from netpolprobe.errors import ValidationError
from netpolprobe.policy.models import (
    IPBlockPeer,
    LabelSelector,
    Operator,
    PeerMatcher,
    PodPeer,
    Requirement,
)
from netpolprobe.topology.models import Namespace, Workload

logger = logging.getLogger(__name__)

_OPERATORS = {op.value: op for op in Operator}


def matches_labels(selector: LabelSelector | None, labels: Mapping[str, str]) -> bool:
    """Return True if every requirement of ``selector`` holds for ``labels``.

    A missing or empty selector matches every label set, including the empty one.
    """
    if selector is None:
        return True
    for key, value in selector.match_labels.items():
        if labels.get(key) != value:
            return False
    return all(_matches_requirement(req, labels) for req in selector.match_expressions)


def _matches_requirement(req: Requirement, labels: Mapping[str, str]) -> bool:
    op = _OPERATORS.get(req.operator)
    if op is None:
        logger.warning("Unsupported selector operator %r on key %r", req.operator, req.key)
        return False

    if op is Operator.IN:
        return req.key in labels and labels[req.key] in req.values
    if op is Operator.NOT_IN:
        return req.key not in labels or labels[req.key] not in req.values
    if op is Operator.EXISTS:
        return req.key in labels
    if op is Operator.DOES_NOT_EXIST:
        return req.key not in labels
    return False


def matches_peer(peer: PeerMatcher, workload: Workload, namespace: Namespace) -> bool:
    """Return True if ``peer`` selects ``workload`` living in ``namespace``."""
    if isinstance(peer, PodPeer):
        if peer.namespace is not None and peer.namespace != namespace.name:
            return False
        return matches_labels(peer.namespace_selector, namespace.labels) and matches_labels(
            peer.pod_selector, workload.labels
        )
    if isinstance(peer, IPBlockPeer):
        return matches_ip_block(peer, workload.ip)
    raise TypeError(f"Unknown peer matcher kind: {type(peer).__name__}")


def matches_ip_block(block: IPBlockPeer, ip: str) -> bool:
    """True if ``ip`` is inside the block's CIDR and outside all its exceptions."""
    try:
        addr = ipaddress.ip_address(ip)
        network = ipaddress.ip_network(block.cidr, strict=False)
    except ValueError:
        return False

    if addr.version != network.version or addr not in network:
        return False

    for excluded in block.except_cidrs:
        try:
            except_net = ipaddress.ip_network(excluded, strict=False)
        except ValueError:
            # An unparseable exception could have excluded this address
            return False
        if addr.version == except_net.version and addr in except_net:
            return False
    return True


def validate_selector(selector: LabelSelector, context: str) -> None:
    """Raise ValidationError if ``selector`` cannot be evaluated faithfully."""
    for req in selector.match_expressions:
        op = _OPERATORS.get(req.operator)
        if op is None:
            raise ValidationError(
                f"{context}: unsupported operator {req.operator!r} for key {req.key!r}"
            )
        if not req.key:
            raise ValidationError(f"{context}: selector requirement with empty key")
        if op in (Operator.IN, Operator.NOT_IN) and not req.values:
            raise ValidationError(
                f"{context}: operator {req.operator} on key {req.key!r} requires values"
            )
        if op in (Operator.EXISTS, Operator.DOES_NOT_EXIST) and req.values:
            raise ValidationError(
                f"{context}: operator {req.operator} on key {req.key!r} takes no values"
            )


def validate_ip_block(block: IPBlockPeer, context: str) -> None:
    """Raise ValidationError for an unparseable CIDR or an exception outside it."""
    try:
        network = ipaddress.ip_network(block.cidr, strict=False)
    except ValueError:
        raise ValidationError(f"{context}: invalid CIDR {block.cidr!r}") from None

    for excluded in block.except_cidrs:
        try:
            except_net = ipaddress.ip_network(excluded, strict=False)
        except ValueError:
            raise ValidationError(f"{context}: invalid except CIDR {excluded!r}") from None
        if except_net.version != network.version or not except_net.subnet_of(network):
            raise ValidationError(
                f"{context}: except CIDR {excluded} is not within {block.cidr}"
            )
