"""
hostpolicy agent — CLI entrypoint.

Usage:
    python -m hostpolicy.main --help
    python -m hostpolicy.main run
    python -m hostpolicy.main serve --interval 600
    python -m hostpolicy.main config check
"""

from __future__ import annotations

import json
import logging
import os
import signal
import sys
import threading
from pathlib import Path

import click

from hostpolicy import __version__
from hostpolicy.core.observability.logging_config import (
    DEFAULT_FILE_MAX_BYTES,
    parse_component_levels,
    setup_logging,
)

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="hostpolicy")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to agent.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """hostpolicy — reconcile packages, repositories and recipes on this host."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    service = ctx.invoked_subcommand == "serve"
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("HPA_LOG_LEVEL", "INFO" if service else "WARNING")

    try:
        max_bytes = int(os.environ.get("HPA_LOG_FILE_MAX_BYTES", DEFAULT_FILE_MAX_BYTES))
    except ValueError:
        max_bytes = DEFAULT_FILE_MAX_BYTES

    setup_logging(
        level=level,
        log_file=os.environ.get("HPA_LOG_FILE"),
        log_file_level=os.environ.get("HPA_LOG_FILE_LEVEL"),
        service=service,
        component_levels=parse_component_levels(os.environ.get("HPA_LOG_LEVELS")),
        file_max_bytes=max_bytes,
    )


# ── Helpers ─────────────────────────────────────────────────────


def _load_config(ctx: click.Context):
    from hostpolicy.core.config.loader import ConfigError, load_config

    try:
        return load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)


def _capabilities(ctx: click.Context, config):
    """Probe the host once per process (tests may preset ctx.obj)."""
    caps = ctx.obj.get("capabilities")
    if caps is None:
        from hostpolicy.adapters.registry import HostCapabilities, default_managers

        caps = HostCapabilities.probe(
            default_managers(timeout=config.execution.command_timeout),
            allow=config.managers,
        )
        ctx.obj["capabilities"] = caps
    return caps


def _print_plan(result) -> None:
    from hostpolicy.core.services.policy.changes import Changes

    policy = result.policy
    click.secho("\n📋 Effective policy", fg="cyan", bold=True)
    click.echo(f"   Packages:     {len(policy.packages)}")
    click.echo(f"   Repositories: {len(policy.repositories)}")
    click.echo(f"   Recipes:      {len(policy.recipes)}")
    for warning in result.source_warnings:
        click.secho(f"   ⚠️  {warning}", fg="yellow")

    if not result.changes:
        click.echo("\n   No package manager present.")
    for name, changes in result.changes.items():
        click.secho(f"\n   {name}", fg="white", bold=True)
        if not isinstance(changes, Changes):
            click.secho(f"     ❌ {changes}", fg="red")
            continue
        if changes.empty:
            click.echo("     ✓ up to date")
            continue
        for label, names in (
            ("install", changes.to_install),
            ("upgrade", changes.to_upgrade),
            ("remove", changes.to_remove),
        ):
            if names:
                click.echo(f"     {label}: {', '.join(names)}")
    click.echo()


# ── Commands ────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--dry-run", is_flag=True, help="Plan but don't execute.")
@click.pass_context
def run(ctx: click.Context, as_json: bool, dry_run: bool) -> None:
    """Run one reconciliation pass."""
    from hostpolicy.core.reliability.tasker import Tasker
    from hostpolicy.core.use_cases.run import plan_run, run_once

    config = _load_config(ctx)
    caps = _capabilities(ctx, config)

    if dry_run:
        plan = plan_run(config, caps)
        if as_json:
            click.echo(json.dumps(plan.to_dict(), indent=2))
        else:
            _print_plan(plan)
        return

    cancel = threading.Event()
    tasker = Tasker()
    try:
        report = tasker.enqueue("reconcile", lambda: run_once(config, caps, cancel=cancel)).result()
    except KeyboardInterrupt:
        cancel.set()
        click.secho("\n⚠️  Cancelled", fg="yellow", err=True)
        sys.exit(130)
    finally:
        tasker.close(wait=not cancel.is_set())

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        sys.exit(0 if report.ok else 1)

    for warning in report.source_warnings:
        click.secho(f"⚠️  {warning}", fg="yellow")
    if report.ok:
        click.secho("✅ Host matches policy", fg="green", bold=True)
        return
    click.secho("❌ Reconciliation finished with errors:", fg="red", bold=True)
    click.echo(report.format_errors())
    sys.exit(1)


@cli.command()
@click.option("--interval", default=600.0, type=float, show_default=True, help="Seconds between runs.")
@click.option("--once", is_flag=True, help="Run a single pass and exit.")
@click.pass_context
def serve(ctx: click.Context, interval: float, once: bool) -> None:
    """Run reconciliation passes on a fixed interval."""
    from hostpolicy.core.reliability.tasker import Tasker
    from hostpolicy.core.use_cases.run import run_once

    config = _load_config(ctx)
    caps = _capabilities(ctx, config)
    cancel = threading.Event()

    def _stop(signum, _frame) -> None:
        logger.warning("Received signal %s, stopping", signum)
        cancel.set()

    previous = None
    if threading.current_thread() is threading.main_thread():
        previous = signal.signal(signal.SIGTERM, _stop)

    tasker = Tasker()
    failures = 0
    try:
        while not cancel.is_set():
            future = tasker.enqueue("reconcile", lambda: run_once(config, caps, cancel=cancel))
            try:
                report = future.result()
            except Exception:
                logger.exception("Reconciliation run crashed")
                failures += 1
            else:
                if not report.ok:
                    failures += 1
            if once:
                break
            cancel.wait(interval)
    except KeyboardInterrupt:
        cancel.set()
    finally:
        tasker.close(wait=True)
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)

    if once and failures:
        sys.exit(1)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def managers(ctx: click.Context, as_json: bool) -> None:
    """Show the package managers present on this host."""
    config = _load_config(ctx)
    caps = _capabilities(ctx, config)

    if as_json:
        click.echo(json.dumps(caps.to_dict(), indent=2))
        return

    if not caps.managers:
        click.secho("⚠️  No package manager detected", fg="yellow")
        return
    click.secho("📦 Package Managers:", fg="cyan", bold=True)
    for m in caps.managers:
        click.echo(f"   ✅ {m.name} ({m.kind.value})")


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, as_json: bool) -> None:
    """Show the merged policy and the changes a run would make."""
    from hostpolicy.core.use_cases.run import plan_run

    config = _load_config(ctx)
    result = plan_run(config, _capabilities(ctx, config))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return
    _print_plan(result)


@cli.group()
def config() -> None:
    """Agent configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate agent.yml configuration."""
    from hostpolicy.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.config is not None  # guaranteed when valid
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   Instance:    {result.config.instance or '-'}")
        click.echo(f"   Local:       {result.config.policy.local_path or '-'}")
        click.echo(f"   Remote:      {result.config.remote.endpoint or '-'}")
        click.echo(f"   Recipe DB:   {result.config.state.recipe_db}")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)


# ── Sub-groups ──────────────────────────────────────────────────

from hostpolicy.ui.cli.recipes import recipes  # noqa: E402

cli.add_command(recipes)


if __name__ == "__main__":
    cli()
