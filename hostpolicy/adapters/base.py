"""
Package manager base — the contract between the policy executor and
the OS package tools.

The executor only talks to package managers through this interface,
never to apt/yum/zypper/googet directly, so its loop is the same for
every manager and tests can swap in ``MockPackageManager``.

To add a package manager:
    1. Subclass PackageManager
    2. Set ``kind`` and implement name, is_available, list_installed,
       list_upgradable, install, remove
    3. Optionally override refresh and diagnose
    4. Add it to ``default_managers`` in the registry
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass

from hostpolicy.adapters.shell.command import CommandResult, Runner, run_command
from hostpolicy.core.errors import HostPolicyError
from hostpolicy.core.models.package import PkgInfo
from hostpolicy.core.models.policy import Manager

logger = logging.getLogger(__name__)


class PackageManagerError(HostPolicyError):
    """A package manager command failed."""

    def __init__(self, message: str, result: CommandResult | None = None):
        super().__init__(message)
        self.result = result

    @property
    def output(self) -> str:
        """Combined command output, used to detect repairable failures."""
        if self.result is None:
            return str(self)
        return self.result.output

    @property
    def stderr(self) -> str:
        if self.result is None:
            return str(self)
        return self.result.stderr


@dataclass(frozen=True)
class Repair:
    """A known fix for a transient package manager failure.

    ``commands`` run once before the retry; ``extra_args`` are appended
    to the retried command.
    """

    description: str
    commands: tuple[tuple[str, ...], ...] = ()
    extra_args: tuple[str, ...] = ()


class PackageManager(ABC):
    """Abstract base class for all package manager adapters."""

    kind: Manager = Manager.ANY

    def __init__(self, runner: Runner = run_command, timeout: int = 1800):
        self._runner = runner
        self._timeout = timeout

    @property
    @abstractmethod
    def name(self) -> str:
        """Adapter identifier (e.g. 'apt', 'yum')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the underlying tool exists on this host. Never raises."""

    @abstractmethod
    def list_installed(self, cancel: threading.Event | None = None) -> list[PkgInfo]:
        """Packages currently installed."""

    @abstractmethod
    def list_upgradable(self, cancel: threading.Event | None = None) -> list[PkgInfo]:
        """Installed packages with a newer version available."""

    @abstractmethod
    def install(
        self,
        names: Sequence[str],
        *,
        extra_args: Sequence[str] = (),
        cancel: threading.Event | None = None,
    ) -> None:
        """Install (or upgrade to latest) ``names``.

        Raises:
            PackageManagerError: The command failed.
        """

    @abstractmethod
    def remove(
        self,
        names: Sequence[str],
        *,
        extra_args: Sequence[str] = (),
        cancel: threading.Event | None = None,
    ) -> None:
        """Remove ``names``.

        Raises:
            PackageManagerError: The command failed.
        """

    def refresh(self, cancel: threading.Event | None = None) -> None:
        """Refresh package indexes before installing. No-op by default."""

    def diagnose(self, error: PackageManagerError) -> Repair | None:
        """Match ``error`` against known transient failure signatures."""
        return None

    def run_repair(self, repair: Repair, cancel: threading.Event | None = None) -> None:
        """Run the repair commands. Failures are logged, not raised."""
        for cmd in repair.commands:
            result = self._runner(list(cmd), timeout=self._timeout, cancel=cancel)
            if not result.ok:
                logger.warning("%s repair command failed: %s", self.name, result.describe())

    def _run(
        self,
        args: Sequence[str],
        *,
        cancel: threading.Event | None = None,
        env: dict[str, str] | None = None,
        ok_codes: Sequence[int] = (0,),
    ) -> CommandResult:
        """Run a command, raising PackageManagerError on failure."""
        result = self._runner(list(args), env=env, timeout=self._timeout, cancel=cancel)
        if result.error or result.returncode not in ok_codes:
            raise PackageManagerError(f"{self.name}: {result.describe()}", result)
        return result

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
