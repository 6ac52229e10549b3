"""Topology data models — namespaces, workloads and traffic samples."""

from __future__ import annotations

import enum
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from netpolprobe.errors import ValidationError


class Protocol(enum.Enum):
    """Transport protocols a NetworkPolicy port entry can name."""

    TCP = "TCP"
    UDP = "UDP"
    SCTP = "SCTP"

    @classmethod
    def parse(cls, value: str | Protocol) -> Protocol:
        """Case-insensitive lookup; raises ValidationError on unknown names."""
        if isinstance(value, Protocol):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValidationError(f"Unsupported protocol: {value!r}") from None


@dataclass(frozen=True)
class ContainerPort:
    """A port exposed by a workload, optionally named."""

    port: int
    protocol: Protocol = Protocol.TCP
    name: str = ""


@dataclass(frozen=True)
class Namespace:
    """A namespace and its labels. Never embeds workloads."""

    name: str
    labels: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))

    def __hash__(self) -> int:
        return hash((self.name, tuple(sorted(self.labels.items()))))


@dataclass(frozen=True)
class Workload:
    """A network-addressable unit of deployment (a pod)."""

    namespace: str
    name: str
    ip: str
    labels: Mapping[str, str] = field(default_factory=dict)
    ports: tuple[ContainerPort, ...] = ()
    service_ip: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))
        object.__setattr__(self, "ports", tuple(self.ports))

    def __hash__(self) -> int:
        return hash(self.key)

    @property
    def key(self) -> str:
        """Stable identity used as a truth table row/column label."""
        return f"{self.namespace}/{self.name}"

    @property
    def service_name(self) -> str:
        """DNS name of the per-pod service used by service-name probes."""
        return f"s-{self.namespace}-{self.name}.{self.namespace}.svc.cluster.local"

    def resolve_named_port(self, name: str, protocol: Protocol) -> int | None:
        """Look up a named container port. Name and protocol must both match."""
        for cp in self.ports:
            if cp.name and cp.name == name and cp.protocol == protocol:
                return cp.port
        return None


@dataclass(frozen=True)
class TrafficSample:
    """One flow to evaluate: source workload to destination workload on a port."""

    source: Workload
    destination: Workload
    protocol: Protocol
    port: int

    def __post_init__(self) -> None:
        # Protocol is required; callers must not rely on a TCP default here.
        if not isinstance(self.protocol, Protocol):
            raise ValueError(f"Traffic sample requires a Protocol, got {self.protocol!r}")


class Topology:
    """Read-only snapshot of namespaces and workloads for one evaluation run.

    Workload iteration order is insertion order and doubles as the row and
    column order of every truth table built from this topology.
    """

    def __init__(
        self,
        workloads: Iterable[Workload],
        namespaces: Iterable[Namespace] = (),
    ) -> None:
        self._namespaces: dict[str, Namespace] = {}
        for ns in namespaces:
            if ns.name in self._namespaces:
                raise ValidationError(f"Duplicate namespace: {ns.name}")
            self._namespaces[ns.name] = ns

        self._workloads: dict[str, Workload] = {}
        for wl in workloads:
            if wl.key in self._workloads:
                raise ValidationError(f"Duplicate workload: {wl.key}")
            self._workloads[wl.key] = wl
            # Undeclared namespaces exist implicitly, without labels
            if wl.namespace not in self._namespaces:
                self._namespaces[wl.namespace] = Namespace(name=wl.namespace)

    @classmethod
    def generate(
        cls,
        namespaces: Iterable[str] = ("x", "y", "z"),
        pods: Iterable[str] = ("a", "b", "c"),
        ports: Iterable[int] = (80, 81),
        protocols: Iterable[Protocol] = (Protocol.TCP, Protocol.UDP),
    ) -> Topology:
        """Build a synthetic namespaces x pods topology.

        Namespaces are labelled ``ns=<name>`` and pods ``pod=<name>``; each pod
        serves every port/protocol under the name ``serve-<port>-<protocol>``.
        """
        ns_names = list(namespaces)
        pod_names = list(pods)
        if not ns_names or not pod_names:
            raise ValidationError("Found 0 namespaces or pods, must have at least 1 of each")

        container_ports = tuple(
            ContainerPort(
                port=port,
                protocol=proto,
                name=f"serve-{port}-{proto.value.lower()}",
            )
            for port in ports
            for proto in protocols
        )
        ns_objs = [Namespace(name=ns, labels={"ns": ns}) for ns in ns_names]
        workloads = [
            Workload(
                namespace=ns,
                name=pod,
                ip=f"192.168.{i + 1}.{j + 1}",
                labels={"pod": pod},
                ports=container_ports,
            )
            for i, ns in enumerate(ns_names)
            for j, pod in enumerate(pod_names)
        ]
        return cls(workloads, ns_objs)

    @property
    def workloads(self) -> tuple[Workload, ...]:
        return tuple(self._workloads.values())

    @property
    def namespaces(self) -> tuple[Namespace, ...]:
        return tuple(self._namespaces.values())

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(self._workloads)

    def workload(self, key: str) -> Workload:
        try:
            return self._workloads[key]
        except KeyError:
            raise KeyError(f"Unknown workload: {key}") from None

    def namespace(self, name: str) -> Namespace:
        try:
            return self._namespaces[name]
        except KeyError:
            raise KeyError(f"Unknown namespace: {name}") from None

    def __iter__(self) -> Iterator[Workload]:
        return iter(self._workloads.values())

    def __len__(self) -> int:
        return len(self._workloads)

    def __contains__(self, key: object) -> bool:
        return key in self._workloads
