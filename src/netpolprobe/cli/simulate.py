"""CLI command: netpolprobe simulate — expected truth tables, no cluster needed."""

from __future__ import annotations

import click
from rich.console import Console

from netpolprobe.cli.common import (
    load_inputs,
    load_settings,
    parse_protocols,
    topology_and_policy_options,
)
from netpolprobe.errors import ValidationError
from netpolprobe.policy.compiler import compile_model
from netpolprobe.probe.models import ProbeSpec
from netpolprobe.probe.runner import SimulatedRunner
from netpolprobe.truthtable.render import explain_model, render_table, render_topology

console = Console(stderr=True)


@click.command()
@topology_and_policy_options
@click.option(
    "--explain",
    is_flag=True,
    help="Also print compiled policies, resources and ingress/egress tables.",
)
@click.pass_context
def simulate(
    ctx: click.Context,
    topology_path: str | None,
    namespaces: str,
    pods: str,
    policy_paths: tuple[str, ...],
    ports: tuple[int, ...],
    protocols: tuple[str, ...],
    ignore_loopback: bool,
    explain: bool,
) -> None:
    """Compute the connectivity the policies should allow."""
    settings = load_settings()
    parsed_protocols = parse_protocols(protocols)
    topology, policies = load_inputs(
        topology_path, namespaces, pods, policy_paths, ports, parsed_protocols, settings
    )

    try:
        model = compile_model(policies, topology)
    except ValidationError as exc:
        raise click.ClickException(str(exc)) from exc

    console.print(
        f"[bold]netpolprobe[/bold] simulating {len(topology)} workloads "
        f"with {len(policies)} policies\n"
    )

    if explain:
        click.echo(explain_model(model))
        click.echo(render_topology(topology))

    runner = SimulatedRunner(model, workers=settings.workers)
    for port in ports:
        for protocol in parsed_protocols:
            table = runner.run(topology, ProbeSpec(port=port, protocol=protocol), ignore_loopback)
            click.echo(render_table(table))
            if explain:
                click.echo(render_table(table, component="ingress"))
                click.echo(render_table(table, component="egress"))
