"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from netpolprobe.policy.models import (
    Direction,
    LabelSelector,
    NetworkPolicy,
    PodPeer,
    PolicyRule,
)
from netpolprobe.topology.models import ContainerPort, Namespace, Protocol, Topology, Workload


@pytest.fixture
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def topology_path(fixtures_dir: Path) -> Path:
    return fixtures_dir / "topology.yaml"


@pytest.fixture
def policies_path(fixtures_dir: Path) -> Path:
    return fixtures_dir / "policies.yaml"


@pytest.fixture
def abc_topology() -> Topology:
    """Three pods in namespace ``x``; ``b`` serves a named ``http`` port on 8080."""
    return Topology(
        workloads=[
            Workload(namespace="x", name="a", ip="10.0.0.1", labels={"pod": "a"}),
            Workload(
                namespace="x",
                name="b",
                ip="10.0.0.2",
                labels={"pod": "b"},
                ports=(ContainerPort(port=8080, protocol=Protocol.TCP, name="http"),),
            ),
            Workload(namespace="x", name="c", ip="10.0.0.3", labels={"pod": "c"}),
        ],
        namespaces=[Namespace(name="x", labels={"ns": "x"})],
    )


@pytest.fixture
def allow_a_to_b() -> NetworkPolicy:
    return NetworkPolicy(
        name="allow-a-to-b",
        namespace="x",
        pod_selector=LabelSelector(match_labels={"pod": "b"}),
        policy_types=(Direction.INGRESS,),
        ingress=(
            PolicyRule(peers=(PodPeer(pod_selector=LabelSelector(match_labels={"pod": "a"})),)),
        ),
    )


@pytest.fixture
def deny_ingress_to_b() -> NetworkPolicy:
    return NetworkPolicy(
        name="deny-ingress-to-b",
        namespace="x",
        pod_selector=LabelSelector(match_labels={"pod": "b"}),
        policy_types=(Direction.INGRESS,),
        ingress=(),
    )
