"""Compare an expected truth table with an observed one."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from netpolprobe.errors import ComparisonPreconditionError
from netpolprobe.policy.evaluator import Connectivity
from netpolprobe.truthtable.table import Pair, TruthTable


class CellStatus(enum.Enum):
    """Per-cell comparison outcome."""

    MATCH = "match"
    MISMATCH = "mismatch"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ComparisonResult:
    """Per-cell agreement flags plus aggregate counts. Read-only."""

    port: int
    protocol: str
    cells: Mapping[Pair, CellStatus]

    def __post_init__(self) -> None:
        object.__setattr__(self, "cells", MappingProxyType(dict(self.cells)))

    @property
    def matched(self) -> int:
        return self._count(CellStatus.MATCH)

    @property
    def mismatched(self) -> int:
        return self._count(CellStatus.MISMATCH)

    @property
    def unknown(self) -> int:
        return self._count(CellStatus.UNKNOWN)

    @property
    def mismatches(self) -> list[Pair]:
        return [pair for pair, status in self.cells.items() if status is CellStatus.MISMATCH]

    @property
    def ok(self) -> bool:
        """True when no cell disagrees. Unknown cells do not count either way."""
        return self.mismatched == 0

    def status(self, source: str, destination: str) -> CellStatus | None:
        return self.cells.get((source, destination))

    def _count(self, status: CellStatus) -> int:
        return sum(1 for s in self.cells.values() if s is status)


def compare(expected: TruthTable, observed: TruthTable) -> ComparisonResult:
    """Diff two tables of identical shape.

    An UNKNOWN observed cell is a gap, counted apart from matches and
    mismatches. Tables of different shape raise ComparisonPreconditionError.
    """
    _check_shape(expected, observed)

    cells: dict[Pair, CellStatus] = {}
    for src, dst in expected.pairs:
        want = expected.get(src, dst)
        got = observed.get(src, dst)
        if got is Connectivity.UNKNOWN or want is Connectivity.UNKNOWN:
            cells[(src, dst)] = CellStatus.UNKNOWN
        elif want is got:
            cells[(src, dst)] = CellStatus.MATCH
        else:
            cells[(src, dst)] = CellStatus.MISMATCH

    return ComparisonResult(
        port=expected.port,
        protocol=expected.protocol.value,
        cells=cells,
    )


def _check_shape(expected: TruthTable, observed: TruthTable) -> None:
    if (expected.port, expected.protocol) != (observed.port, observed.protocol):
        raise ComparisonPreconditionError(
            f"Tables probe different targets: {expected.port}/{expected.protocol.value} "
            f"vs {observed.port}/{observed.protocol.value}"
        )
    if expected.sources != observed.sources:
        raise ComparisonPreconditionError(
            f"Source ordering differs: {len(expected.sources)} vs {len(observed.sources)} rows"
        )
    if expected.destinations != observed.destinations:
        raise ComparisonPreconditionError(
            f"Destination ordering differs: {len(expected.destinations)} vs "
            f"{len(observed.destinations)} columns"
        )
    if set(expected.pairs) != set(observed.pairs):
        raise ComparisonPreconditionError("Tables do not contain the same cells")
