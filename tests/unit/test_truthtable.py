"""Tests for truth table construction."""

from __future__ import annotations

import pytest

from netpolprobe.policy.compiler import compile_model
from netpolprobe.policy.evaluator import Connectivity
from netpolprobe.topology.models import Protocol
from netpolprobe.truthtable.table import TruthTable, build_expected_table, probe_pairs


def test_full_cross_product(abc_topology):
    model = compile_model([], abc_topology)
    table = build_expected_table(model, abc_topology, 80, Protocol.TCP, workers=2)
    assert len(table.pairs) == 9
    assert table.sources == table.destinations == ("x/a", "x/b", "x/c")
    assert table.get("x/a", "x/a") is Connectivity.ALLOWED
    assert table.is_complete
    assert table.counts()[Connectivity.ALLOWED] == 9


def test_ignore_loopback_drops_self_pairs(abc_topology):
    model = compile_model([], abc_topology)
    table = build_expected_table(model, abc_topology, 80, Protocol.TCP, ignore_loopback=True, workers=2)
    assert len(table.pairs) == 6
    assert all(src != dst for src, dst in table.pairs)
    assert table.get("x/b", "x/b") is None


def test_cells_follow_policy(abc_topology, allow_a_to_b):
    model = compile_model([allow_a_to_b], abc_topology)
    table = build_expected_table(model, abc_topology, 80, Protocol.TCP, workers=3)
    assert table.get("x/a", "x/b") is Connectivity.ALLOWED
    assert table.get("x/c", "x/b") is Connectivity.DENIED
    assert table.get("x/b", "x/b") is Connectivity.DENIED
    assert table.get_component("x/c", "x/b", "ingress") is Connectivity.DENIED
    assert table.get_component("x/c", "x/b", "egress") is Connectivity.ALLOWED


def test_build_is_deterministic(abc_topology, allow_a_to_b, deny_ingress_to_b):
    model = compile_model([allow_a_to_b, deny_ingress_to_b], abc_topology)
    first = build_expected_table(model, abc_topology, 80, Protocol.TCP, workers=1)
    for workers in (2, 4, 8):
        assert build_expected_table(model, abc_topology, 80, Protocol.TCP, workers=workers) == first


def test_probe_pairs_order(abc_topology):
    pairs = list(probe_pairs(abc_topology))
    assert pairs[:3] == [("x/a", "x/a"), ("x/a", "x/b"), ("x/a", "x/c")]


def test_record_twice_is_an_error(abc_topology):
    table = TruthTable.for_topology(abc_topology, 80, Protocol.TCP)
    assert table.get("x/a", "x/b") is Connectivity.UNKNOWN
    table.record("x/a", "x/b", Connectivity.DENIED)
    with pytest.raises(RuntimeError, match="twice"):
        table.record("x/a", "x/b", Connectivity.ALLOWED)


def test_record_outside_table(abc_topology):
    table = TruthTable.for_topology(abc_topology, 80, Protocol.TCP, ignore_loopback=True)
    with pytest.raises(KeyError):
        table.record("x/a", "x/a", Connectivity.ALLOWED)


def test_builder_ignores_environment(abc_topology, monkeypatch):
    monkeypatch.setenv("NETPOLPROBE_WORKERS", "not-a-number")
    model = compile_model([], abc_topology)
    table = build_expected_table(model, abc_topology, 80, Protocol.TCP)
    assert table.counts()[Connectivity.ALLOWED] == 9
