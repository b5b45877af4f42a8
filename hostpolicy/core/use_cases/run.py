"""
Run use case — one reconciliation run.

    fetch local + remote policy ─▶ merge ─▶ apply packages ─▶ apply recipes

A failing source is logged and treated as absent. Package managers and
recipes are independent: every error ends up in the ``RunReport`` and
nothing stops the run early.
"""

from __future__ import annotations

import logging
import threading
import urllib.request
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from hostpolicy.adapters.registry import HostCapabilities
from hostpolicy.adapters.shell.command import Runner, run_command
from hostpolicy.core.config.loader import AgentConfig
from hostpolicy.core.errors import HostPolicyError
from hostpolicy.core.models.policy import EffectivePolicy, SoftwareRecipe
from hostpolicy.core.persistence.recipe_db import RecipeDB, RecipeDBError
from hostpolicy.core.services.policy.changes import Changes
from hostpolicy.core.services.policy.executor import PolicyExecutor, PolicyReport
from hostpolicy.core.services.policy.merge import merge
from hostpolicy.core.services.recipes.installer import install_recipe
from hostpolicy.core.services.sources import (
    PolicySourceError,
    load_local_policy,
    lookup_remote_policy,
)

logger = logging.getLogger(__name__)


@dataclass
class RecipeOutcome:
    name: str
    action: str = ""
    error: str = ""


@dataclass
class RunReport:
    """Result of one reconciliation run."""

    policy: EffectivePolicy = field(default_factory=EffectivePolicy)
    packages: PolicyReport = field(default_factory=PolicyReport)
    recipes: list[RecipeOutcome] = field(default_factory=list)
    source_warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def format_errors(self) -> str:
        return ",\n".join(self.errors)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "ok": self.ok,
            "errors": self.errors,
            "source_warnings": self.source_warnings,
            "packages": self.packages.to_dict(),
            "recipes": [
                {"name": r.name, "action": r.action, "error": r.error} for r in self.recipes
            ],
            "policy": {
                "packages": len(self.policy.packages),
                "repositories": len(self.policy.repositories),
                "recipes": len(self.policy.recipes),
            },
        }


def collect_policy(
    config: AgentConfig, *, opener: Any = urllib.request.urlopen
) -> tuple[EffectivePolicy, list[str]]:
    """Fetch both sources and merge them.

    Returns:
        The effective policy and one warning per failing source.
    """
    warnings: list[str] = []

    try:
        local = load_local_policy(config.policy.local_path)
    except PolicySourceError as e:
        logger.error("Local policy unavailable: %s", e)
        warnings.append(f"local policy: {e}")
        local = None

    try:
        remote = lookup_remote_policy(
            config.remote.endpoint,
            config.instance,
            timeout=config.remote.timeout,
            opener=opener,
        )
    except PolicySourceError as e:
        logger.error("Remote policy unavailable: %s", e)
        warnings.append(f"remote policy: {e}")
        remote = None

    policy = merge(local, remote)
    logger.info(
        "Effective policy: %d packages, %d repositories, %d recipes",
        len(policy.packages), len(policy.repositories), len(policy.recipes),
    )
    return policy, warnings


def apply_recipes(
    recipes: list[SoftwareRecipe],
    db: RecipeDB,
    config: AgentConfig,
    *,
    runner: Runner = run_command,
    opener: Any = urllib.request.urlopen,
    cancel: threading.Event | None = None,
) -> list[RecipeOutcome]:
    """Apply every recipe; one failure never blocks the others."""

    def one(recipe: SoftwareRecipe) -> RecipeOutcome:
        try:
            result = install_recipe(
                recipe,
                db,
                work_dir=config.state.work_dir,
                runner=runner,
                opener=opener,
                cancel=cancel,
                step_timeout=config.execution.step_timeout,
            )
        except HostPolicyError as e:
            logger.error("Error installing software recipe %s: %s", recipe.name, e)
            return RecipeOutcome(name=recipe.name, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error installing software recipe %s", recipe.name)
            return RecipeOutcome(name=recipe.name, error=f"unexpected error: {e}")
        return RecipeOutcome(name=recipe.name, action=result.action.value)

    workers = config.execution.recipe_workers
    if workers > 1 and len(recipes) > 1:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="recipe") as pool:
            return list(pool.map(one, recipes))
    return [one(r) for r in recipes]


def run_once(
    config: AgentConfig,
    capabilities: HostCapabilities,
    *,
    cancel: threading.Event | None = None,
    db: RecipeDB | None = None,
    executor: PolicyExecutor | None = None,
    runner: Runner = run_command,
    opener: Any = urllib.request.urlopen,
    sleeper: Callable[[float], object] | None = None,
) -> RunReport:
    """Run one full reconciliation.

    Args:
        config: Agent configuration.
        capabilities: Package managers present on the host.
        cancel: Optional cancellation event, threaded through every step.
        db: Recipe ledger (default: ``config.state.recipe_db``).
        executor: Policy executor (default: built from config).
        runner: Subprocess runner for recipe steps.
        opener: URL opener for remote lookup, keys and artifacts.
        sleeper: Replaces the wait between retries (tests).
    """
    policy, warnings = collect_policy(config, opener=opener)
    report = RunReport(policy=policy, source_warnings=warnings)

    executor = executor or PolicyExecutor(capabilities, config, sleeper=sleeper, opener=opener)
    report.packages = executor.apply(policy, cancel=cancel)
    report.errors.extend(report.packages.errors)

    recipes = [sr.recipe for sr in policy.recipes]
    if recipes:
        db = db or RecipeDB(config.state.recipe_db)
        try:
            db.load()
        except RecipeDBError as e:
            logger.error("Recipe ledger unusable, skipping recipes: %s", e)
            report.errors.append(f"recipes: {e}")
        else:
            report.recipes = apply_recipes(
                recipes, db, config, runner=runner, opener=opener, cancel=cancel
            )
            report.errors.extend(
                f"recipe {r.name}: {r.error}" for r in report.recipes if r.error
            )

    if report.ok:
        logger.info("Reconciliation run finished without errors")
    else:
        logger.error("Reconciliation run finished with errors:\n%s", report.format_errors())
    return report


@dataclass
class PlanReport:
    """The merged policy and per-manager changes, nothing applied."""

    policy: EffectivePolicy
    changes: dict[str, Changes | str]
    source_warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy": self.policy.to_document().model_dump(mode="json", by_alias=True),
            "changes": {
                name: c.to_dict() if isinstance(c, Changes) else {"error": c}
                for name, c in self.changes.items()
            },
            "source_warnings": self.source_warnings,
        }


def plan_run(
    config: AgentConfig,
    capabilities: HostCapabilities,
    *,
    cancel: threading.Event | None = None,
    executor: PolicyExecutor | None = None,
    opener: Any = urllib.request.urlopen,
) -> PlanReport:
    """Merge sources and plan changes without applying them."""
    policy, warnings = collect_policy(config, opener=opener)
    executor = executor or PolicyExecutor(capabilities, config, opener=opener)
    return PlanReport(
        policy=policy,
        changes=executor.preview(policy, cancel=cancel),
        source_warnings=warnings,
    )
