"""Tests for truth table comparison."""

from __future__ import annotations

import pytest

from netpolprobe.errors import ComparisonPreconditionError
from netpolprobe.policy.evaluator import Connectivity
from netpolprobe.topology.models import Protocol, Topology
from netpolprobe.truthtable.compare import CellStatus, compare
from netpolprobe.truthtable.table import TruthTable


def _table(topology: Topology, value: Connectivity = Connectivity.ALLOWED, **overrides) -> TruthTable:
    """Table with every cell set to ``value`` except ``overrides`` ("src|dst" -> verdict)."""
    table = TruthTable.for_topology(topology, 80, Protocol.TCP)
    for src, dst in table.pairs:
        table.record(src, dst, overrides.get(f"{src}|{dst}", value))
    return table


def test_single_mismatch(abc_topology):
    expected = _table(abc_topology)
    observed = _table(abc_topology, **{"x/a|x/b": Connectivity.DENIED})

    result = compare(expected, observed)
    assert result.mismatched == 1
    assert result.matched == 8
    assert result.unknown == 0
    assert result.mismatches == [("x/a", "x/b")]
    assert result.status("x/a", "x/b") is CellStatus.MISMATCH
    assert not result.ok


def test_unknown_is_a_gap_not_a_verdict(abc_topology):
    expected = _table(abc_topology, Connectivity.DENIED)
    observed = _table(abc_topology, Connectivity.DENIED, **{"x/c|x/a": Connectivity.UNKNOWN})

    result = compare(expected, observed)
    assert result.unknown == 1
    assert result.mismatched == 0
    assert result.matched == 8
    assert result.ok


def test_dimension_mismatch_raises(abc_topology):
    smaller = Topology(abc_topology.workloads[:2], abc_topology.namespaces)
    with pytest.raises(ComparisonPreconditionError):
        compare(_table(abc_topology), _table(smaller))


def test_ordering_mismatch_raises(abc_topology):
    reordered = Topology(tuple(reversed(abc_topology.workloads)), abc_topology.namespaces)
    with pytest.raises(ComparisonPreconditionError, match="ordering"):
        compare(_table(abc_topology), _table(reordered))


def test_loopback_shape_mismatch_raises(abc_topology):
    no_loopback = TruthTable.for_topology(abc_topology, 80, Protocol.TCP, ignore_loopback=True)
    with pytest.raises(ComparisonPreconditionError, match="same cells"):
        compare(_table(abc_topology), no_loopback)


def test_port_mismatch_raises(abc_topology):
    other = TruthTable.for_topology(abc_topology, 81, Protocol.TCP)
    with pytest.raises(ComparisonPreconditionError, match="different targets"):
        compare(_table(abc_topology), other)
