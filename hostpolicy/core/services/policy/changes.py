"""
Change planner — the minimal action set for one package manager.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass, field

from hostpolicy.core.models.package import PkgInfo


@dataclass
class Changes:
    """Sorted, pairwise disjoint package name lists."""

    to_install: list[str] = field(default_factory=list)
    to_upgrade: list[str] = field(default_factory=list)
    to_remove: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.to_install or self.to_upgrade or self.to_remove)

    def to_dict(self) -> dict[str, list[str]]:
        return asdict(self)


def plan(
    installed: Iterable[PkgInfo],
    upgradable: Iterable[PkgInfo],
    want_install: Iterable[str],
    want_remove: Iterable[str],
    want_update: Iterable[str],
) -> Changes:
    """Compute what has to change to reach the desired state.

    * wanted installed but absent → install
    * wanted removed and present → remove
    * wanted updated: upgradable → upgrade, absent → install, else nothing

    Duplicate names collapse. A name that ends up both removed and
    upgraded is only removed.
    """
    installed_set = {p.name for p in installed}
    upgradable_set = {p.name for p in upgradable}

    to_install = {n for n in want_install if n not in installed_set}
    to_remove = {n for n in want_remove if n in installed_set}
    to_upgrade: set[str] = set()

    for name in want_update:
        if name in upgradable_set:
            to_upgrade.add(name)
        elif name not in installed_set:
            to_install.add(name)

    to_upgrade -= to_install | to_remove

    return Changes(
        to_install=sorted(to_install),
        to_upgrade=sorted(to_upgrade),
        to_remove=sorted(to_remove),
    )
