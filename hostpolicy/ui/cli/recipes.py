"""
CLI commands for the recipe ledger.

Thin wrappers over ``hostpolicy.core.persistence.recipe_db``.
"""

from __future__ import annotations

import json
import sys
from datetime import UTC, datetime

import click

from hostpolicy.core.persistence.recipe_db import RecipeDB, RecipeDBError


def _open_db(ctx: click.Context) -> RecipeDB:
    from hostpolicy.core.config.loader import ConfigError, load_config

    try:
        config = load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)
    db = RecipeDB(config.state.recipe_db)
    try:
        db.load()
    except RecipeDBError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)
    return db


def _when(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


@click.group()
def recipes() -> None:
    """Recipes — inspect the installed software recipe ledger."""


@recipes.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_recipes(ctx: click.Context, as_json: bool) -> None:
    """List recorded recipes."""
    rows = _open_db(ctx).all()

    if as_json:
        click.echo(json.dumps([r.model_dump(mode="json", by_alias=True) for r in rows], indent=2))
        return

    if not rows:
        click.echo("No recipes recorded.")
        return

    click.secho(f"📜 Recipes ({len(rows)}):", fg="cyan", bold=True)
    for r in rows:
        mark = "✅" if r.success else "❌"
        click.echo(f"   {mark} {r.name}  {r.version_string}  ({_when(r.install_time)})")


@recipes.command("show")
@click.argument("name")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show_recipe(ctx: click.Context, name: str, as_json: bool) -> None:
    """Show one recorded recipe."""
    recipe = _open_db(ctx).get(name)
    if recipe is None:
        click.secho(f"❌ Recipe not recorded: {name}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(recipe.model_dump(mode="json", by_alias=True), indent=2))
        return

    click.secho(f"📜 {recipe.name}", fg="cyan", bold=True)
    click.echo(f"   Version:   {recipe.version_string}")
    click.echo(f"   Installed: {_when(recipe.install_time)}")
    click.echo(f"   Success:   {recipe.success}")
