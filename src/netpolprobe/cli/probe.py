"""CLI command: netpolprobe probe — compare expected and observed connectivity."""

from __future__ import annotations

import signal
import sys

import click
from rich.console import Console

from netpolprobe.cli.common import (
    load_inputs,
    load_settings,
    parse_protocols,
    topology_and_policy_options,
)
from netpolprobe.errors import InfrastructureError, ValidationError
from netpolprobe.policy.compiler import compile_model
from netpolprobe.policy.evaluator import Connectivity
from netpolprobe.policy.models import NetworkPolicy
from netpolprobe.probe.kubectl import KubectlAgent, KubectlPolicyClient
from netpolprobe.probe.models import CancelToken, ProbeJob, ProbeMode, ProbeSpec
from netpolprobe.probe.runner import LiveRunner, SimulatedRunner
from netpolprobe.truthtable.compare import compare
from netpolprobe.truthtable.render import render_diff, render_table

console = Console(stderr=True)

_VERDICT_COLORS = {
    Connectivity.ALLOWED: "green",
    Connectivity.DENIED: "red",
    Connectivity.UNKNOWN: "yellow",
}


def merge_policies(
    cluster: list[NetworkPolicy], local: list[NetworkPolicy]
) -> list[NetworkPolicy]:
    """Cluster policies plus local files; a local file replaces the cluster copy of the same policy."""
    merged = {(p.namespace, p.name): p for p in cluster}
    for policy in local:
        merged[(policy.namespace, policy.name)] = policy
    return list(merged.values())


@click.command()
@topology_and_policy_options
@click.option(
    "--mode",
    type=click.Choice([m.value for m in ProbeMode]),
    default=ProbeMode.SERVICE_NAME.value,
    show_default=True,
    help="How sources address destinations; pod-ip and service-ip need --topology.",
)
@click.option("--kube-context", default=None, help="kubectl context to use.")
@click.option("--timeout", type=float, default=None, help="Per-job timeout in seconds.")
@click.option("--retries", type=click.IntRange(0), default=None, help="Retries per job.")
@click.option("--workers", type=click.IntRange(1), default=None, help="Concurrent jobs.")
@click.option(
    "--read-cluster-policies/--no-read-cluster-policies",
    default=True,
    show_default=True,
    help="Include the policies already present in the probed namespaces.",
)
@click.option("--apply", "apply_policies", is_flag=True, help="Create the --policy files in the cluster first.")
@click.option(
    "--policy-creation-wait",
    type=click.IntRange(0),
    default=15,
    show_default=True,
    help="Seconds to wait after --apply so the network plugin can catch up.",
)
@click.option("--noisy", is_flag=True, help="Print every probe result as it arrives.")
@click.pass_context
def probe(
    ctx: click.Context,
    topology_path: str | None,
    namespaces: str,
    pods: str,
    policy_paths: tuple[str, ...],
    ports: tuple[int, ...],
    protocols: tuple[str, ...],
    ignore_loopback: bool,
    mode: str,
    kube_context: str | None,
    timeout: float | None,
    retries: int | None,
    workers: int | None,
    read_cluster_policies: bool,
    apply_policies: bool,
    policy_creation_wait: int,
    noisy: bool,
) -> None:
    """Run live connectivity probes and compare them with the policies."""
    probe_mode = ProbeMode(mode)
    if probe_mode is not ProbeMode.SERVICE_NAME and not topology_path:
        # Generated topologies carry made-up addresses
        raise click.UsageError(f"--mode {mode} requires --topology with real addresses")

    settings = load_settings()
    if kube_context is not None:
        settings.kube_context = kube_context
    if timeout is not None:
        settings.job_timeout = timeout
    if retries is not None:
        settings.retries = retries
    if workers is not None:
        settings.workers = workers

    parsed_protocols = parse_protocols(protocols)
    topology, local_policies = load_inputs(
        topology_path, namespaces, pods, policy_paths, ports, parsed_protocols, settings
    )

    cancel = CancelToken()

    def _signal_handler(signum: int, frame: object) -> None:
        console.print("\n[dim]Cancelling probes...[/dim]")
        cancel.cancel()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    client = KubectlPolicyClient(kube_context=settings.kube_context)
    cluster_policies: list[NetworkPolicy] = []
    try:
        if apply_policies:
            for path in policy_paths:
                client.apply(path)
            if policy_paths and policy_creation_wait:
                console.print(f"  Waiting {policy_creation_wait}s for policies to take effect")
                cancel.wait(policy_creation_wait)
        if read_cluster_policies:
            cluster_policies = client.read_policies(ns.name for ns in topology.namespaces)
    except (InfrastructureError, ValidationError) as exc:
        raise click.ClickException(str(exc)) from exc

    policies = merge_policies(cluster_policies, local_policies)
    try:
        model = compile_model(policies, topology)
    except ValidationError as exc:
        raise click.ClickException(str(exc)) from exc

    console.print(
        f"[bold]netpolprobe[/bold] probing {len(topology)} workloads "
        f"with {len(policies)} policies (context: "
        f"[cyan]{settings.kube_context or 'default'}[/cyan])"
    )
    console.print("  Press Ctrl+C to stop; unfinished cells are reported as unknown.\n")

    def on_result(job: ProbeJob, verdict: Connectivity) -> None:
        color = _VERDICT_COLORS[verdict]
        console.print(
            f"  [dim]{job.source.key}[/dim] → [blue]{job.destination.key}"
            f":{job.port}/{job.protocol.value}[/blue] [{color}]{verdict.value}[/{color}]"
        )

    simulated = SimulatedRunner(model, workers=settings.workers)
    live = LiveRunner(
        KubectlAgent(kube_context=settings.kube_context),
        settings=settings,
        on_result=on_result if noisy else None,
    )

    wrong = 0
    unknown = 0
    total = 0
    for port in ports:
        for protocol in parsed_protocols:
            if cancel.cancelled:
                break
            spec = ProbeSpec(port=port, protocol=protocol, mode=probe_mode)
            expected = simulated.run(topology, spec, ignore_loopback)
            observed = live.run(topology, spec, ignore_loopback, cancel=cancel)

            click.echo(render_table(expected))
            click.echo(render_table(observed))
            click.echo(render_diff(expected, observed))
            result = compare(expected, observed)
            wrong += result.mismatched
            unknown += result.unknown
            total += len(result.cells)

    if unknown:
        console.print(f"\n[yellow]{unknown} of {total} cell(s) could not be tested[/yellow]")
    if wrong:
        console.print(f"\n[red]{wrong} cell(s) disagree with the policies[/red]")
        sys.exit(1)
    if unknown == total:
        console.print("\n[red]Nothing was tested; check cluster access and probe pods.[/red]")
        sys.exit(1)
    if unknown:
        console.print("\n[green]Every tested cell matches the policies.[/green]")
    else:
        console.print("\n[green]Observed connectivity matches the policies.[/green]")
