"""Options and input loading shared by the simulate and probe commands."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import click

from netpolprobe.config import ProbeSettings
from netpolprobe.errors import ValidationError
from netpolprobe.policy.loader import load_policies
from netpolprobe.policy.models import NetworkPolicy
from netpolprobe.topology.loader import load_topology
from netpolprobe.topology.models import Protocol, Topology


_INPUT_OPTIONS = [
    click.option(
        "--topology",
        "-t",
        "topology_path",
        type=click.Path(exists=True, dir_okay=False),
        help="YAML topology file; if omitted, a synthetic one is generated.",
    ),
    click.option(
        "--namespaces",
        default="x,y,z",
        show_default=True,
        help="Namespaces of the generated topology (comma separated).",
    ),
    click.option(
        "--pods",
        default="a,b,c",
        show_default=True,
        help="Pods per namespace of the generated topology (comma separated).",
    ),
    click.option(
        "--policy",
        "-p",
        "policy_paths",
        multiple=True,
        type=click.Path(exists=True),
        help="NetworkPolicy YAML file or directory (repeatable).",
    ),
    click.option(
        "--port",
        "ports",
        multiple=True,
        type=click.IntRange(1, 65535),
        default=(80,),
        show_default=True,
        help="Port to probe (repeatable).",
    ),
    click.option(
        "--protocol",
        "protocols",
        multiple=True,
        type=click.Choice([p.value for p in Protocol], case_sensitive=False),
        default=(Protocol.TCP.value,),
        show_default=True,
        help="Protocol to probe (repeatable).",
    ),
    click.option(
        "--ignore-loopback",
        is_flag=True,
        help="Leave self-pairs out of the truth tables.",
    ),
]


def topology_and_policy_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the options that describe what to evaluate."""
    for option in reversed(_INPUT_OPTIONS):
        func = option(func)
    return func


def load_settings() -> ProbeSettings:
    """Settings from the environment, with bad values reported as usage errors."""
    try:
        return ProbeSettings.load()
    except ValidationError as exc:
        raise click.ClickException(str(exc)) from exc


def split_csv(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def load_inputs(
    topology_path: str | None,
    namespaces: str,
    pods: str,
    policy_paths: tuple[str, ...],
    ports: tuple[int, ...],
    protocols: list[Protocol],
    settings: ProbeSettings,
) -> tuple[Topology, list[NetworkPolicy]]:
    """Load the topology and every policy, raising click errors on bad input."""
    try:
        if topology_path:
            topology = load_topology(topology_path)
        else:
            topology = Topology.generate(
                namespaces=split_csv(namespaces),
                pods=split_csv(pods),
                ports=ports,
                protocols=protocols,
            )

        policies: list[NetworkPolicy] = []
        for path in (*settings.policy_dirs, *policy_paths):
            policies.extend(load_policies(path))
    except ValidationError as exc:
        raise click.ClickException(str(exc)) from exc

    return topology, policies


def parse_protocols(values: tuple[str, ...]) -> list[Protocol]:
    return [Protocol.parse(v) for v in values]
