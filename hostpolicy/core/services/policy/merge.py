"""
Policy merge — combine the local declaration with the remote lookup.

Remote entries always win identity conflicts. Local entries are only
appended when the remote side has nothing with the same identity:

    packages       name
    repositories   "yum-<id>" / "zypper-<id>" (apt and goo never conflict)
    recipes        name

Output order is remote entries first, then the surviving local ones,
each in their original order. Recipe names are unique in the result:
within one source the first recipe of a name is kept. Nothing here
touches the network or disk.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from hostpolicy.core.models.policy import (
    DesiredState,
    EffectivePolicy,
    Manager,
    PackageRepository,
    PolicyDocument,
    SourcedPackage,
    SourcedRepository,
    SourcedSoftwareRecipe,
)

logger = logging.getLogger(__name__)

LOCAL_SOURCE = "local"
REMOTE_SOURCE = "remote"


def merge(local: PolicyDocument | None, remote: EffectivePolicy | None) -> EffectivePolicy:
    """Merge the two policy sources into one effective policy.

    Args:
        local: The local declaration, or None when absent/unreadable.
        remote: The remote lookup result, or None when absent/unreachable.

    Returns:
        A new EffectivePolicy. Both sources absent gives an empty policy.
    """
    base = remote.model_copy(deep=True) if remote is not None else EffectivePolicy()
    base.recipes = _unique_recipes(base.recipes, REMOTE_SOURCE)
    if local is None:
        return base

    package_names = {sp.package.name for sp in base.packages}
    repo_ids = {sr.repository.identity for sr in base.repositories} - {""}
    recipe_names = {sr.recipe.name for sr in base.recipes}

    for pkg in local.packages:
        if pkg.name in package_names:
            logger.debug("Local package %s overridden by remote policy", pkg.name)
            continue
        base.packages.append(SourcedPackage(source=LOCAL_SOURCE, package=pkg))

    for repo in local.package_repositories:
        identity = repo.identity
        if identity and identity in repo_ids:
            logger.debug("Local repository %s overridden by remote policy", identity)
            continue
        base.repositories.append(SourcedRepository(source=LOCAL_SOURCE, repository=repo))

    local_recipes = [SourcedSoftwareRecipe(source=LOCAL_SOURCE, recipe=r) for r in local.software_recipes]
    for sr in _unique_recipes(local_recipes, LOCAL_SOURCE):
        if sr.recipe.name in recipe_names:
            logger.debug("Local recipe %s overridden by remote policy", sr.recipe.name)
            continue
        base.recipes.append(sr)

    return base


def _unique_recipes(
    recipes: list[SourcedSoftwareRecipe], source: str
) -> list[SourcedSoftwareRecipe]:
    """Keep the first recipe of each name; a name must never run twice."""
    seen: set[str] = set()
    unique = []
    for sr in recipes:
        if sr.recipe.name in seen:
            logger.warning("Ignoring duplicate %s recipe %s", source, sr.recipe.name)
            continue
        seen.add(sr.recipe.name)
        unique.append(sr)
    return unique


@dataclass
class ManagerPolicy:
    """The slice of an effective policy one package manager applies."""

    manager: Manager
    install: list[str] = field(default_factory=list)
    remove: list[str] = field(default_factory=list)
    update: list[str] = field(default_factory=list)
    repositories: list[PackageRepository] = field(default_factory=list)

    @property
    def has_package_work(self) -> bool:
        return bool(self.install or self.remove or self.update)


def split_by_manager(
    policy: EffectivePolicy, managers: Iterable[Manager]
) -> dict[Manager, ManagerPolicy]:
    """Group packages and repositories per present manager.

    ``ANY`` packages fan out to every manager in ``managers``; packages
    and repositories for a manager that is not present are dropped.
    Every present manager gets an entry, even an empty one, so its repo
    file is still rewritten.
    """
    present = [m for m in managers if m != Manager.ANY]
    slices = {m: ManagerPolicy(manager=m) for m in present}

    for sp in policy.packages:
        pkg = sp.package
        targets = present if pkg.manager == Manager.ANY else [pkg.manager]
        for target in targets:
            part = slices.get(target)
            if part is None:
                logger.debug("Skipping %s: %s is not present", pkg.name, target.value)
                continue
            if pkg.desired_state == DesiredState.REMOVED:
                part.remove.append(pkg.name)
            elif pkg.desired_state == DesiredState.UPDATED:
                part.update.append(pkg.name)
            else:
                part.install.append(pkg.name)

    for sr in policy.repositories:
        part = slices.get(sr.repository.manager)
        if part is not None:
            part.repositories.append(sr.repository)

    return slices
