"""CLI command: netpolprobe recipes — walk through the built-in policy recipes."""

from __future__ import annotations

import click

from netpolprobe.recipes import ALL_RECIPES, get_recipe
from netpolprobe.truthtable.render import explain_model, render_table, render_topology


@click.command()
@click.argument("names", nargs=-1)
@click.option("--list", "list_only", is_flag=True, help="Only list recipe names.")
def recipes(names: tuple[str, ...], list_only: bool) -> None:
    """Show policies, resources and expected results for built-in recipes."""
    try:
        selected = [get_recipe(n) for n in names] if names else list(ALL_RECIPES)
    except KeyError as exc:
        raise click.BadParameter(str(exc.args[0]), param_hint="NAMES") from exc

    for recipe in selected:
        if list_only:
            click.echo(f"{recipe.name}: {recipe.description}")
            continue

        table = recipe.run_probe()
        click.echo(f"Recipe {recipe.name}: {recipe.description}\n")
        click.echo(f"Policies:\n{explain_model(recipe.model())}")
        click.echo(f"Resources:\n{render_topology(recipe.resources)}")
        click.echo(f"Results:\n{render_table(table)}")
        click.echo(f"Ingress:\n{render_table(table, component='ingress')}")
        click.echo(f"Egress:\n{render_table(table, component='egress')}")
        click.echo("\n")
