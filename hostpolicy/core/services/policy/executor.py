"""
Policy executor — apply an effective policy to every present manager.

Per manager, in order:

    1. repository sync   render the repo file (and apt keyring), write if changed
    2. reconcile         list inventory → plan → install / upgrade / remove

Step 2 runs inside a bounded retry so a flaky inventory listing gets
another chance. Install and remove go through the repair flow:

    ATTEMPT ──fail──▶ DETECT ──known signature──▶ REPAIR ──▶ RETRY ──fail──┐
       │                 │                                    │           │
       ok              unknown ─────────────────────────────────────────▶ FALLBACK
       ▼                                                      ok          (one package
     DONE ◀───────────────────────────────────────────────────┘            at a time)

Errors never stop the pass: each one is recorded against its manager and
the next operation (or manager) carries on.
"""

from __future__ import annotations

import logging
import threading
import urllib.request
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from hostpolicy.adapters.base import PackageManager, PackageManagerError, Repair
from hostpolicy.adapters.registry import HostCapabilities
from hostpolicy.core.config.loader import AgentConfig
from hostpolicy.core.errors import OperationCancelled
from hostpolicy.core.models.policy import EffectivePolicy, Manager
from hostpolicy.core.reliability.retry import retry_call
from hostpolicy.core.services.policy.changes import Changes, plan
from hostpolicy.core.services.policy.keyring import Opener, sync_keyring
from hostpolicy.core.services.policy.merge import ManagerPolicy, split_by_manager
from hostpolicy.core.services.policy.repositories import RepoTarget, repo_targets

logger = logging.getLogger(__name__)


# ── Repair flow ─────────────────────────────────────────────────


class ApplyPhase(str, Enum):
    ATTEMPT = "attempt"
    DETECT = "detect"
    REPAIR = "repair"
    RETRY = "retry"
    FALLBACK = "fallback"
    DONE = "done"


@dataclass
class ApplyOutcome:
    """Result of one install or remove batch."""

    op: str
    names: list[str]
    phases: list[ApplyPhase] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    repair: str = ""

    @property
    def ok(self) -> bool:
        return not self.errors


_VERBS = {"install": "installing", "remove": "removing"}


def apply_with_repair(
    manager: PackageManager,
    op: str,
    names: Sequence[str],
    *,
    cancel: threading.Event | None = None,
) -> ApplyOutcome:
    """Run ``manager.<op>(names)`` through the repair flow.

    Args:
        manager: The adapter to drive.
        op: "install" or "remove".
        names: The whole batch.
        cancel: Checked before every per-package fallback call.
    """
    call: Callable[..., None] = getattr(manager, op)
    outcome = ApplyOutcome(op=op, names=list(names))
    verb = _VERBS.get(op, op)

    outcome.phases.append(ApplyPhase.ATTEMPT)
    logger.info("%s: %s packages %s", manager.name, verb.capitalize(), outcome.names)
    try:
        call(outcome.names, cancel=cancel)
        outcome.phases.append(ApplyPhase.DONE)
        return outcome
    except PackageManagerError as e:
        logger.error("%s: error %s packages: %s", manager.name, verb, e)
        error = e

    outcome.phases.append(ApplyPhase.DETECT)
    repair: Repair | None = manager.diagnose(error)
    extra_args: tuple[str, ...] = ()
    if repair is not None:
        outcome.repair = repair.description
        outcome.phases.append(ApplyPhase.REPAIR)
        logger.info("%s: repairing (%s)", manager.name, repair.description)
        manager.run_repair(repair, cancel=cancel)
        extra_args = repair.extra_args

        outcome.phases.append(ApplyPhase.RETRY)
        try:
            call(outcome.names, extra_args=extra_args, cancel=cancel)
            outcome.phases.append(ApplyPhase.DONE)
            return outcome
        except PackageManagerError as e:
            logger.error("%s: retry after repair failed: %s", manager.name, e)

    outcome.phases.append(ApplyPhase.FALLBACK)
    logger.info("%s: trying to %s packages individually", manager.name, op)
    for name in outcome.names:
        if cancel is not None and cancel.is_set():
            outcome.errors.append(f"{verb} {manager.name} packages cancelled before {name}")
            break
        try:
            call([name], extra_args=extra_args, cancel=cancel)
        except PackageManagerError as e:
            outcome.errors.append(f"Error {verb} {manager.name} package {name}: {e}")
    if outcome.errors:
        logger.error("%s: error %s packages individually:\n%s", manager.name, verb, "\n".join(outcome.errors))
    outcome.phases.append(ApplyPhase.DONE)
    return outcome


# ── Reports ─────────────────────────────────────────────────────


@dataclass
class ManagerReport:
    """What happened for one package manager."""

    manager: str
    repositories_changed: bool = False
    changes: Changes | None = None
    outcomes: list[ApplyOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "manager": self.manager,
            "repositories_changed": self.repositories_changed,
            "changes": self.changes.to_dict() if self.changes else None,
            "outcomes": [
                {
                    "op": o.op,
                    "names": o.names,
                    "phases": [p.value for p in o.phases],
                    "repair": o.repair,
                    "errors": o.errors,
                }
                for o in self.outcomes
            ],
            "errors": self.errors,
        }


@dataclass
class PolicyReport:
    """Per-manager results of one policy application."""

    managers: list[ManagerReport] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return [f"{m.manager}: {e}" for m in self.managers for e in m.errors]

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "managers": [m.to_dict() for m in self.managers]}


# ── Executor ────────────────────────────────────────────────────


class PolicyExecutor:
    """Applies an EffectivePolicy to the managers in ``capabilities``."""

    def __init__(
        self,
        capabilities: HostCapabilities,
        config: AgentConfig,
        *,
        targets: dict[Manager, RepoTarget] | None = None,
        sleeper: Callable[[float], object] | None = None,
        opener: Opener = urllib.request.urlopen,
    ):
        self._capabilities = capabilities
        self._config = config
        self._targets = targets if targets is not None else repo_targets(config.repositories)
        self._sleeper = sleeper
        self._opener = opener

    def apply(self, policy: EffectivePolicy, *, cancel: threading.Event | None = None) -> PolicyReport:
        """Sync repositories and reconcile packages for every present manager."""
        parts = split_by_manager(policy, self._capabilities.kinds)
        managers = list(self._capabilities.managers)
        if not managers:
            logger.info("No package manager present, nothing to apply")
            return PolicyReport()

        def run(manager: PackageManager) -> ManagerReport:
            try:
                return self._apply_manager(manager, parts[manager.kind], cancel)
            except Exception as e:
                logger.exception("%s: unexpected error applying policy", manager.name)
                return ManagerReport(manager=manager.name, errors=[f"unexpected error: {e}"])

        if self._config.execution.parallel_managers and len(managers) > 1:
            with ThreadPoolExecutor(max_workers=len(managers), thread_name_prefix="manager") as pool:
                reports = list(pool.map(run, managers))
        else:
            reports = [run(m) for m in managers]
        return PolicyReport(managers=reports)

    def preview(
        self, policy: EffectivePolicy, *, cancel: threading.Event | None = None
    ) -> dict[str, Changes | str]:
        """Plan every manager's changes without applying anything.

        Returns:
            Manager name → Changes, or an error string when the
            inventory could not be listed.
        """
        parts = split_by_manager(policy, self._capabilities.kinds)
        result: dict[str, Changes | str] = {}
        for manager in self._capabilities.managers:
            part = parts[manager.kind]
            if not part.has_package_work:
                result[manager.name] = Changes()
                continue
            try:
                result[manager.name] = self._plan(manager, part, cancel)
            except PackageManagerError as e:
                result[manager.name] = str(e)
        return result

    # ── Per manager ─────────────────────────────────────────────

    def _apply_manager(
        self, manager: PackageManager, part: ManagerPolicy, cancel: threading.Event | None
    ) -> ManagerReport:
        report = ManagerReport(manager=manager.name)
        self._sync_repositories(manager, part, report)

        if not part.has_package_work:
            logger.debug("%s: no package changes requested", manager.name)
            return report

        try:
            changes, outcomes, errors = retry_call(
                lambda: self._reconcile(manager, part, cancel),
                attempts=self._config.retry.attempts,
                interval=self._config.retry.interval_seconds,
                description=f"performing {manager.name} changes",
                cancel=cancel,
                sleeper=self._sleeper,
                retry_on=(PackageManagerError,),
            )
        except OperationCancelled as e:
            report.errors.append(str(e))
            return report
        except PackageManagerError as e:
            report.errors.append(f"error performing {manager.name} changes: {e}")
            return report

        report.changes = changes
        report.outcomes = outcomes
        report.errors.extend(errors)
        return report

    def _sync_repositories(
        self, manager: PackageManager, part: ManagerPolicy, report: ManagerReport
    ) -> None:
        target = self._targets.get(manager.kind)
        if target is None:
            return
        if target.keyring:
            keys = [r.apt.gpg_key for r in part.repositories if r.apt is not None and r.apt.gpg_key]
            if keys:
                try:
                    sync_keyring(keys, target.keyring, opener=self._opener)
                except OSError as e:
                    logger.error("Error writing gpg keyring %s: %s", target.keyring, e)
                    report.errors.append(f"error writing {manager.name} keyring: {e}")
        try:
            report.repositories_changed = target.sync(part.repositories)
        except OSError as e:
            logger.error("Error writing %s repo file: %s", manager.name, e)
            report.errors.append(f"error writing {manager.name} repo file: {e}")

    def _plan(
        self, manager: PackageManager, part: ManagerPolicy, cancel: threading.Event | None
    ) -> Changes:
        installed = manager.list_installed(cancel=cancel)
        upgradable = manager.list_upgradable(cancel=cancel) if part.update else []
        return plan(installed, upgradable, part.install, part.remove, part.update)

    def _reconcile(
        self, manager: PackageManager, part: ManagerPolicy, cancel: threading.Event | None
    ) -> tuple[Changes, list[ApplyOutcome], list[str]]:
        """One attempt. Raises only when the inventory cannot be listed."""
        changes = self._plan(manager, part, cancel)
        outcomes: list[ApplyOutcome] = []
        errors: list[str] = []

        if changes.to_install:
            try:
                manager.refresh(cancel=cancel)
            except PackageManagerError as e:
                logger.error("%s: error refreshing package index: %s", manager.name, e)
            outcome = apply_with_repair(manager, "install", changes.to_install, cancel=cancel)
            outcomes.append(outcome)
            if outcome.errors:
                errors.append(f"error installing {manager.name} packages: " + "\n".join(outcome.errors))
        else:
            logger.debug("%s: no packages to install", manager.name)

        if changes.to_upgrade:
            logger.info("%s: Upgrading packages %s", manager.name, changes.to_upgrade)
            try:
                manager.install(changes.to_upgrade, cancel=cancel)
            except PackageManagerError as e:
                logger.error("%s: error upgrading packages: %s", manager.name, e)
                errors.append(f"error upgrading {manager.name} packages: {e}")
        else:
            logger.debug("%s: no packages to upgrade", manager.name)

        if changes.to_remove:
            outcome = apply_with_repair(manager, "remove", changes.to_remove, cancel=cancel)
            outcomes.append(outcome)
            if outcome.errors:
                errors.append(f"error removing {manager.name} packages: " + "\n".join(outcome.errors))
        else:
            logger.debug("%s: no packages to remove", manager.name)

        return changes, outcomes, errors
