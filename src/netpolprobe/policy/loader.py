"""Load NetworkPolicy objects from Kubernetes YAML manifests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from netpolprobe.errors import ValidationError
from netpolprobe.policy.models import (
    Direction,
    IPBlockPeer,
    LabelSelector,
    NetworkPolicy,
    PeerMatcher,
    PodPeer,
    PolicyRule,
    PortMatcher,
    Requirement,
)
from netpolprobe.topology.models import Protocol

_YAML_SUFFIXES = (".yaml", ".yml")
_LIST_KINDS = ("List", "NetworkPolicyList")


def load_policies(path: str | Path) -> list[NetworkPolicy]:
    """Load every NetworkPolicy from a YAML file, or from every YAML file in a directory."""
    p = Path(path)
    if p.is_dir():
        policies: list[NetworkPolicy] = []
        for child in sorted(p.iterdir()):
            if child.suffix in _YAML_SUFFIXES:
                policies.extend(load_policies(child))
        return policies
    return load_policies_from_string(p.read_text(encoding="utf-8"))


def load_policies_from_string(text: str) -> list[NetworkPolicy]:
    """Parse a (possibly multi-document) YAML string into NetworkPolicy objects."""
    try:
        documents = list(yaml.safe_load_all(text))
    except yaml.YAMLError as exc:
        raise ValidationError(f"Invalid policy YAML: {exc}") from exc

    policies: list[NetworkPolicy] = []
    for doc in documents:
        if doc is None:
            continue
        if not isinstance(doc, dict):
            raise ValidationError("Policy YAML documents must be mappings")
        if doc.get("kind") in _LIST_KINDS:
            for item in doc.get("items") or []:
                policies.append(parse_policy(item))
        else:
            policies.append(parse_policy(doc))
    return policies


def parse_policy(data: Any) -> NetworkPolicy:
    """Build a NetworkPolicy from one decoded manifest.

    ``policyTypes`` defaults the way the API server does: Ingress always,
    plus Egress when the spec carries an ``egress`` section.
    """
    if not isinstance(data, dict):
        raise ValidationError("NetworkPolicy must be a mapping")
    kind = data.get("kind", "NetworkPolicy")
    if kind != "NetworkPolicy":
        raise ValidationError(f"Unsupported kind: {kind}")

    metadata = data.get("metadata") or {}
    spec = data.get("spec")
    name = metadata.get("name", "")
    if not isinstance(spec, dict):
        raise ValidationError(f"NetworkPolicy {name or '<unnamed>'}: missing spec")

    pod_selector = (
        _parse_selector(spec["podSelector"], name) if "podSelector" in spec else None
    )

    raw_types = spec.get("policyTypes")
    if raw_types is None:
        types = [Direction.INGRESS]
        if "egress" in spec:
            types.append(Direction.EGRESS)
    else:
        types = [_parse_direction(t, name) for t in raw_types]

    return NetworkPolicy(
        name=name,
        namespace=metadata.get("namespace", ""),
        pod_selector=pod_selector,
        policy_types=tuple(types),
        ingress=tuple(_parse_rule(r, "from", name) for r in spec.get("ingress") or []),
        egress=tuple(_parse_rule(r, "to", name) for r in spec.get("egress") or []),
    )


def _parse_direction(value: Any, name: str) -> Direction:
    try:
        return Direction(value)
    except ValueError:
        raise ValidationError(f"NetworkPolicy {name}: unknown policy type {value!r}") from None


def _parse_selector(data: Any, name: str) -> LabelSelector:
    if data is None:
        return LabelSelector()
    if not isinstance(data, dict):
        raise ValidationError(f"NetworkPolicy {name}: selector must be a mapping")

    expressions = []
    for expr in data.get("matchExpressions") or []:
        if not isinstance(expr, dict) or "key" not in expr or "operator" not in expr:
            raise ValidationError(f"NetworkPolicy {name}: unparseable selector expression")
        expressions.append(
            Requirement(
                key=str(expr["key"]),
                operator=str(expr["operator"]),
                values=tuple(str(v) for v in expr.get("values") or ()),
            )
        )

    labels = {str(k): str(v) for k, v in (data.get("matchLabels") or {}).items()}
    return LabelSelector(match_labels=labels, match_expressions=tuple(expressions))


def _parse_rule(data: Any, peers_key: str, name: str) -> PolicyRule:
    if data is None:
        return PolicyRule()
    if not isinstance(data, dict):
        raise ValidationError(f"NetworkPolicy {name}: rule must be a mapping")
    return PolicyRule(
        peers=tuple(_parse_peer(p, name) for p in data.get(peers_key) or []),
        ports=tuple(_parse_port(p, name) for p in data.get("ports") or []),
    )


def _parse_peer(data: Any, name: str) -> PeerMatcher:
    if not isinstance(data, dict):
        raise ValidationError(f"NetworkPolicy {name}: peer must be a mapping")

    has_ip_block = "ipBlock" in data
    has_selectors = "podSelector" in data or "namespaceSelector" in data
    if has_ip_block and has_selectors:
        raise ValidationError(
            f"NetworkPolicy {name}: peer cannot combine ipBlock with selectors"
        )

    if has_ip_block:
        block = data["ipBlock"] or {}
        if "cidr" not in block:
            raise ValidationError(f"NetworkPolicy {name}: ipBlock requires a cidr")
        return IPBlockPeer(
            cidr=str(block["cidr"]),
            except_cidrs=tuple(str(c) for c in block.get("except") or ()),
        )

    if not has_selectors:
        raise ValidationError(f"NetworkPolicy {name}: empty peer")

    return PodPeer(
        pod_selector=(
            _parse_selector(data["podSelector"], name) if "podSelector" in data else None
        ),
        namespace_selector=(
            _parse_selector(data["namespaceSelector"], name)
            if "namespaceSelector" in data
            else None
        ),
    )


def _parse_port(data: Any, name: str) -> PortMatcher:
    if not isinstance(data, dict):
        raise ValidationError(f"NetworkPolicy {name}: port entry must be a mapping")

    port = data.get("port")
    if port is not None and not isinstance(port, int):
        port = str(port)
        if port.isdigit():
            port = int(port)

    end_port = data.get("endPort")
    if end_port is not None:
        try:
            end_port = int(end_port)
        except (TypeError, ValueError):
            raise ValidationError(
                f"NetworkPolicy {name}: endPort must be numeric, got {end_port!r}"
            ) from None

    return PortMatcher(
        protocol=Protocol.parse(data.get("protocol", "TCP")),
        port=port,
        end_port=end_port,
    )
