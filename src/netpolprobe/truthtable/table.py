"""Truth tables — connectivity matrices for one (port, protocol) combination."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor

from netpolprobe.config import DEFAULT_WORKERS
from netpolprobe.policy.compiler import PolicyModel
from netpolprobe.policy.evaluator import Connectivity, TrafficVerdict, evaluate_traffic
from netpolprobe.topology.models import Protocol, Topology, TrafficSample

logger = logging.getLogger(__name__)

Pair = tuple[str, str]


def probe_pairs(topology: Topology, ignore_loopback: bool = False) -> Iterator[Pair]:
    """Yield (source, destination) keys in row-major topology order."""
    for src in topology.keys:
        for dst in topology.keys:
            if ignore_loopback and src == dst:
                continue
            yield (src, dst)


class TruthTable:
    """Matrix of verdicts, rows are sources and columns are destinations.

    Every present cell starts out UNKNOWN and may be recorded exactly once by
    the builder or runner that owns the table. Self-pairs are absent entirely
    when the table was created with ``ignore_loopback``.
    """

    def __init__(
        self,
        port: int,
        protocol: Protocol,
        sources: tuple[str, ...],
        destinations: tuple[str, ...],
        pairs: list[Pair],
    ) -> None:
        self.port = port
        self.protocol = protocol
        self.sources = sources
        self.destinations = destinations
        self._cells: dict[Pair, Connectivity] = {p: Connectivity.UNKNOWN for p in pairs}
        self._ingress: dict[Pair, Connectivity] = {}
        self._egress: dict[Pair, Connectivity] = {}
        self._recorded: set[Pair] = set()

    @classmethod
    def for_topology(
        cls,
        topology: Topology,
        port: int,
        protocol: Protocol,
        ignore_loopback: bool = False,
    ) -> TruthTable:
        return cls(
            port=port,
            protocol=protocol,
            sources=topology.keys,
            destinations=topology.keys,
            pairs=list(probe_pairs(topology, ignore_loopback)),
        )

    @property
    def pairs(self) -> tuple[Pair, ...]:
        return tuple(self._cells)

    @property
    def has_components(self) -> bool:
        """Whether per-direction (ingress/egress) verdicts were recorded."""
        return bool(self._ingress)

    @property
    def is_complete(self) -> bool:
        return len(self._recorded) == len(self._cells)

    def get(self, source: str, destination: str) -> Connectivity | None:
        """Verdict for a cell, or None if the cell is not part of the table."""
        return self._cells.get((source, destination))

    def get_component(self, source: str, destination: str, component: str) -> Connectivity | None:
        if component == "combined":
            return self.get(source, destination)
        if component == "ingress":
            return self._ingress.get((source, destination))
        if component == "egress":
            return self._egress.get((source, destination))
        raise ValueError(f"Unknown component: {component}")

    def record(self, source: str, destination: str, value: Connectivity) -> None:
        pair = (source, destination)
        if pair not in self._cells:
            raise KeyError(f"Cell {source} -> {destination} is not part of this table")
        if pair in self._recorded:
            raise RuntimeError(f"Cell {source} -> {destination} recorded twice")
        self._cells[pair] = value
        self._recorded.add(pair)

    def record_verdict(self, source: str, destination: str, verdict: TrafficVerdict) -> None:
        """Record a simulated verdict along with its ingress and egress halves."""
        self.record(source, destination, verdict.connectivity)
        pair = (source, destination)
        self._ingress[pair] = _as_connectivity(verdict.ingress.allowed)
        self._egress[pair] = _as_connectivity(verdict.egress.allowed)

    def counts(self) -> Counter[Connectivity]:
        return Counter(self._cells.values())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TruthTable):
            return NotImplemented
        return (
            self.port == other.port
            and self.protocol == other.protocol
            and self.sources == other.sources
            and self.destinations == other.destinations
            and self._cells == other._cells
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"TruthTable(port={self.port}, protocol={self.protocol.value}, "
            f"cells={len(self._cells)})"
        )


def _as_connectivity(allowed: bool) -> Connectivity:
    return Connectivity.ALLOWED if allowed else Connectivity.DENIED


def build_expected_table(
    model: PolicyModel,
    topology: Topology,
    port: int,
    protocol: Protocol,
    ignore_loopback: bool = False,
    workers: int | None = None,
) -> TruthTable:
    """Evaluate every cell of the topology's matrix against ``model``.

    Cells are computed on a bounded thread pool; the table's ordering comes
    from the topology, never from completion order.
    """
    table = TruthTable.for_topology(topology, port, protocol, ignore_loopback)
    max_workers = workers if workers is not None else DEFAULT_WORKERS

    def _cell(pair: Pair) -> tuple[Pair, TrafficVerdict]:
        src, dst = pair
        sample = TrafficSample(
            source=topology.workload(src),
            destination=topology.workload(dst),
            protocol=protocol,
            port=port,
        )
        return pair, evaluate_traffic(sample, model, topology)

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        for (src, dst), verdict in pool.map(_cell, table.pairs):
            table.record_verdict(src, dst, verdict)

    logger.debug(
        "Built expected table for %d/%s: %s",
        port,
        protocol.value,
        dict(table.counts()),
    )
    return table
