"""Renderers — fixed-width text grids built from Rich tables."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from io import StringIO

from rich import box
from rich.console import Console, RenderableType
from rich.table import Table

from netpolprobe.policy.compiler import CompiledRule, PolicyModel
from netpolprobe.policy.evaluator import Connectivity
from netpolprobe.policy.models import IPBlockPeer, PodPeer, PortMatcher
from netpolprobe.topology.models import Topology
from netpolprobe.truthtable.compare import CellStatus, compare
from netpolprobe.truthtable.table import TruthTable

_SYMBOLS = {
    Connectivity.ALLOWED: ".",
    Connectivity.DENIED: "X",
    Connectivity.UNKNOWN: "?",
}

_DIFF_SYMBOLS = {
    CellStatus.MATCH: ".",
    CellStatus.MISMATCH: "X",
    CellStatus.UNKNOWN: "?",
}


def render_table(table: TruthTable, component: str = "combined") -> str:
    """Render one table: rows are sources, columns are destinations.

    ``.`` allowed, ``X`` denied, ``?`` unknown, blank for omitted self-pairs.
    """
    title = f"{table.port}/{table.protocol.value}"
    if component != "combined":
        title = f"{title} ({component})"

    def cell(src: str, dst: str) -> str:
        value = table.get_component(src, dst, component)
        return "" if value is None else _SYMBOLS[value]

    grid = _grid(title, table.sources, table.destinations, cell)
    counts = table.counts()
    summary = (
        f"allowed: {counts[Connectivity.ALLOWED]}  "
        f"denied: {counts[Connectivity.DENIED]}  "
        f"unknown: {counts[Connectivity.UNKNOWN]}"
    )
    return _to_text(grid, table.destinations) + summary + "\n"


def render_tables(tables: Iterable[TruthTable], component: str = "combined") -> str:
    """One grid per probed (port, protocol) combination."""
    return "\n".join(render_table(t, component) for t in tables)


def render_diff(expected: TruthTable, observed: TruthTable) -> str:
    """Render agreement between two tables of the same shape.

    ``.`` agreement, ``X`` mismatch, ``?`` observed unknown. Raises
    ComparisonPreconditionError when the tables cannot be compared.
    """
    result = compare(expected, observed)

    def cell(src: str, dst: str) -> str:
        status = result.status(src, dst)
        return "" if status is None else _DIFF_SYMBOLS[status]

    title = f"{expected.port}/{expected.protocol.value} expected vs observed"
    grid = _grid(title, expected.sources, expected.destinations, cell)
    summary = (
        f"correct: {result.matched}  wrong: {result.mismatched}  "
        f"unknown: {result.unknown}"
    )
    lines = [summary]
    for src, dst in result.mismatches:
        want = expected.get(src, dst)
        got = observed.get(src, dst)
        lines.append(
            f"  {src} -> {dst}: expected {want.value if want else '-'}, "
            f"observed {got.value if got else '-'}"
        )
    return _to_text(grid, expected.destinations) + "\n".join(lines) + "\n"


def render_topology(topology: Topology) -> str:
    """Tabulate workloads with their labels, IPs and container ports."""
    table = Table(title="Resources", box=box.ASCII, show_lines=False)
    table.add_column("Workload", no_wrap=True)
    table.add_column("IP", no_wrap=True)
    table.add_column("Pod labels")
    table.add_column("Namespace labels")
    table.add_column("Ports")

    for wl in topology:
        ns = topology.namespace(wl.namespace)
        ports = ", ".join(
            f"{cp.name + '=' if cp.name else ''}{cp.port}/{cp.protocol.value}"
            for cp in wl.ports
        )
        table.add_row(
            wl.key,
            wl.ip,
            _format_labels(wl.labels),
            _format_labels(ns.labels),
            ports,
        )
    return _to_text(table, width=160)


def explain_model(model: PolicyModel) -> str:
    """Tabulate isolation and the rule union for every targeted workload."""
    table = Table(title="Policies", box=box.ASCII, show_lines=True)
    table.add_column("Target", no_wrap=True)
    table.add_column("Direction")
    table.add_column("Isolated")
    table.add_column("Rules")

    for key in sorted(model.targets):
        target = model.targets[key]
        for name, direction in (("Ingress", target.ingress), ("Egress", target.egress)):
            if not direction.isolated:
                table.add_row(key, name, "no", "all allowed")
                continue
            rules = "\n".join(_describe_rule(cr) for cr in direction.rules) or "all denied"
            table.add_row(key, name, "yes", rules)
    return _to_text(table, width=160)


def _describe_rule(cr: CompiledRule) -> str:
    peers = "; ".join(_describe_peer(p) for p in cr.rule.peers) or "all peers"
    ports = ", ".join(_describe_port(p) for p in cr.rule.ports) or "all ports"
    return f"{cr.policy}#{cr.index}: {peers} on {ports}"


def _describe_peer(peer: PodPeer | IPBlockPeer) -> str:
    if isinstance(peer, IPBlockPeer):
        if peer.except_cidrs:
            return f"ip {peer.cidr} except {', '.join(peer.except_cidrs)}"
        return f"ip {peer.cidr}"
    if peer.namespace is not None:
        ns = f"ns={peer.namespace}"
    elif peer.namespace_selector is None:
        ns = "ns=all"
    else:
        ns = f"ns[{peer.namespace_selector.describe()}]"
    pods = "all" if peer.pod_selector is None else peer.pod_selector.describe()
    return f"{ns} pods[{pods}]"


def _describe_port(pm: PortMatcher) -> str:
    if pm.port is None:
        return f"all/{pm.protocol.value}"
    if pm.end_port is not None:
        return f"{pm.port}-{pm.end_port}/{pm.protocol.value}"
    return f"{pm.port}/{pm.protocol.value}"


def _format_labels(labels: Mapping[str, str]) -> str:
    return ", ".join(f"{k}={v}" for k, v in sorted(labels.items()))


def _grid(
    title: str,
    sources: Sequence[str],
    destinations: Sequence[str],
    cell: Callable[[str, str], str],
) -> Table:
    table = Table(title=title, box=box.ASCII, show_lines=False, min_width=len(title) + 4)
    table.add_column("", no_wrap=True)
    for dst in destinations:
        table.add_column(dst, justify="center", no_wrap=True)
    for src in sources:
        table.add_row(src, *(cell(src, dst) for dst in destinations))
    return table


def _to_text(renderable: RenderableType, columns: Iterable[str] = (), width: int | None = None) -> str:
    if width is None:
        cols = list(columns)
        widest = max((len(c) for c in cols), default=10)
        width = max(80, (widest + 3) * (len(cols) + 1) + 1)
    buf = StringIO()
    console = Console(
        file=buf,
        width=width,
        color_system=None,
        force_terminal=False,
        highlight=False,
        markup=False,
        emoji=False,
    )
    console.print(renderable)
    return buf.getvalue()
