"""
Recipe installer — bring one software recipe to its desired state.

    ledger          desired     version         action
    ─────────────   ─────────   ─────────────   ──────────────────────────
    absent          INSTALLED   —               install steps, record
    absent          UPDATED     —               install steps, record
    installed(v)    UPDATED     requested > v   update steps, record
    installed(v)    UPDATED     requested ≤ v   nothing
    installed(v)    INSTALLED   any             nothing
    any             REMOVED     —               nothing (not supported)

Steps run in a fresh run directory that is removed afterwards. The
ledger is only written once every step has succeeded.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
import time
import urllib.request
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from hostpolicy.adapters.shell.command import Runner, run_command
from hostpolicy.core.errors import OperationCancelled
from hostpolicy.core.models.policy import DesiredState, SoftwareRecipe
from hostpolicy.core.models.recipe import Recipe, RecipeVersionError, parse_version
from hostpolicy.core.persistence.recipe_db import RecipeDB
from hostpolicy.core.services.recipes.artifacts import Opener, fetch_artifacts
from hostpolicy.core.services.recipes.errors import RecipeError, RecipeStepError
from hostpolicy.core.services.recipes.steps import StepContext, run_step, step_type

logger = logging.getLogger(__name__)


class RecipeAction(str, Enum):
    INSTALL = "install"
    UPDATE = "update"
    SKIP = "skip"


@dataclass
class RecipeResult:
    """What ``install_recipe`` did for one recipe."""

    name: str
    action: RecipeAction
    recorded: Recipe | None = None


def decide(recipe: SoftwareRecipe, current: Recipe | None) -> RecipeAction:
    """Pick the action for ``recipe`` given its ledger row (if any)."""
    if recipe.desired_state == DesiredState.REMOVED:
        return RecipeAction.SKIP
    if current is None:
        return RecipeAction.INSTALL
    if recipe.desired_state == DesiredState.UPDATED and current.is_older_than(recipe.version):
        return RecipeAction.UPDATE
    return RecipeAction.SKIP


def _create_run_dir(recipe: SoftwareRecipe, run_id: str, work_dir: str | None) -> Path:
    name = f"{recipe.name}_{recipe.version}" if recipe.version else recipe.name
    # recipe names may contain path separators
    name = name.replace("/", "_").replace("\\", "_")
    try:
        if work_dir:
            Path(work_dir).mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"{name}_{run_id}_", dir=work_dir))
    except OSError as e:
        raise RecipeError(f"recipe {recipe.name}: cannot create run directory: {e}") from e


def install_recipe(
    recipe: SoftwareRecipe,
    db: RecipeDB,
    *,
    work_dir: str | None = None,
    runner: Runner = run_command,
    opener: Opener = urllib.request.urlopen,
    cancel: threading.Event | None = None,
    step_timeout: float = 3600,
) -> RecipeResult:
    """Apply one software recipe.

    Args:
        recipe: The recipe from the effective policy.
        db: The ledger; read for the current version, written on success.
        work_dir: Parent of the run directory (None = system temp dir).
        runner: Subprocess runner for command steps.
        opener: URL opener for artifact downloads.
        cancel: Checked between steps.
        step_timeout: Timeout of each subprocess step.

    Raises:
        RecipeError: Artifact or step failure, or an invalid version.
            The ledger is left unchanged.
        RecipeDBError: The ledger cannot be read or written.
    """
    if recipe.version:
        try:
            parse_version(recipe.version)
        except RecipeVersionError as e:
            raise RecipeError(f"recipe {recipe.name}: {e}") from e

    if recipe.desired_state == DesiredState.REMOVED:
        logger.info("Recipe %s: removal is not supported, skipping", recipe.name)
        return RecipeResult(name=recipe.name, action=RecipeAction.SKIP)

    current = db.get(recipe.name)
    action = decide(recipe, current)
    if action == RecipeAction.SKIP:
        logger.debug(
            "Skipping software recipe %s (installed version %s)",
            recipe.name, current.version_string if current else "-",
        )
        return RecipeResult(name=recipe.name, action=action)

    if action == RecipeAction.UPDATE:
        logger.info(
            "Upgrading software recipe %s from version %s to %s",
            recipe.name, current.version_string if current else "-", recipe.version,
        )
        steps = recipe.update_steps
    else:
        logger.info("Installing software recipe %s", recipe.name)
        steps = recipe.install_steps

    run_id = f"run_{time.time_ns()}"
    run_dir = _create_run_dir(recipe, run_id, work_dir)
    try:
        artifacts = fetch_artifacts(recipe.artifacts, run_dir, opener=opener)

        env = dict(os.environ)
        env.update(
            {
                "RECIPE_NAME": recipe.name,
                "RECIPE_VERSION": recipe.version,
                "RUNID": run_id,
            }
        )
        env.update({aid: str(path) for aid, path in artifacts.items()})

        for i, step in enumerate(steps):
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"recipe {recipe.name} cancelled before step {i}")
            step_dir = run_dir / f"step{i:02d}"
            try:
                step_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise RecipeStepError(f"error creating directory for step {i}: {e}") from e
            logger.debug("Recipe %s: running step %d (%s)", recipe.name, i, step.kind)
            ctx = StepContext(
                step_dir=step_dir,
                artifacts=artifacts,
                env=env,
                runner=runner,
                timeout=step_timeout,
                cancel=cancel,
            )
            try:
                run_step(step, ctx)
            except RecipeStepError as e:
                raise RecipeStepError(f"error running step {i} ({step_type(step)}): {e}") from e
    finally:
        try:
            shutil.rmtree(run_dir)
        except OSError as e:
            logger.warning("Failed to remove recipe working directory %s: %s", run_dir, e)

    logger.info("All steps completed successfully, marking recipe %s as installed", recipe.name)
    recorded = db.add(recipe.name, recipe.version, success=True)
    return RecipeResult(name=recipe.name, action=action, recorded=recorded)
