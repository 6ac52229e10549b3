"""CLI entry point — Click group with global options."""

from __future__ import annotations

import logging

import click

from netpolprobe import __version__


@click.group()
@click.version_option(version=__version__, prog_name="netpolprobe")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """netpolprobe — predict and verify Kubernetes network policy connectivity."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _register_commands() -> None:
    from netpolprobe.cli.probe import probe  # noqa: F811
    from netpolprobe.cli.recipes import recipes  # noqa: F811
    from netpolprobe.cli.simulate import simulate  # noqa: F811

    main.add_command(simulate)
    main.add_command(probe)
    main.add_command(recipes)


_register_commands()
