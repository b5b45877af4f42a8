"""
Host capabilities — which package managers exist on this host.

Presence is probed once at start-up and the resulting
``HostCapabilities`` is passed explicitly to the policy executor.
Nothing reads manager presence from process-wide flags.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from hostpolicy.adapters.base import PackageManager
from hostpolicy.adapters.packages.apt import AptManager
from hostpolicy.adapters.packages.googet import GooGetManager
from hostpolicy.adapters.packages.yum import YumManager
from hostpolicy.adapters.packages.zypper import ZypperManager
from hostpolicy.adapters.shell.command import Runner, run_command
from hostpolicy.core.models.policy import Manager

logger = logging.getLogger(__name__)


def default_managers(runner: Runner = run_command, timeout: int = 1800) -> list[PackageManager]:
    """One instance of every built-in adapter, in application order."""
    return [
        GooGetManager(runner=runner, timeout=timeout),
        AptManager(runner=runner, timeout=timeout),
        YumManager(runner=runner, timeout=timeout),
        ZypperManager(runner=runner, timeout=timeout),
    ]


@dataclass(frozen=True)
class HostCapabilities:
    """The package managers present on the host, in application order."""

    managers: tuple[PackageManager, ...] = ()

    @classmethod
    def probe(
        cls,
        candidates: Iterable[PackageManager],
        allow: Iterable[str] | None = None,
    ) -> HostCapabilities:
        """Keep the candidates whose tool is available.

        Args:
            candidates: Adapters to probe.
            allow: Optional allow-list of adapter names.
        """
        allowed = set(allow) if allow is not None else None
        present = []
        for manager in candidates:
            if allowed is not None and manager.name not in allowed:
                logger.debug("Package manager %s disabled by config", manager.name)
                continue
            try:
                available = manager.is_available()
            except Exception as e:
                logger.warning("Probing %s failed: %s", manager.name, e)
                available = False
            if available:
                present.append(manager)
        logger.info("Package managers present: %s", [m.name for m in present] or "none")
        return cls(managers=tuple(present))

    @property
    def kinds(self) -> list[Manager]:
        return [m.kind for m in self.managers]

    def get(self, kind: Manager) -> PackageManager | None:
        for manager in self.managers:
            if manager.kind == kind:
                return manager
        return None

    def has(self, kind: Manager) -> bool:
        return self.get(kind) is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "managers": [
                {"name": m.name, "kind": m.kind.value, "type": m.__class__.__name__}
                for m in self.managers
            ],
        }
