"""
Mock package manager — in-memory test double for the policy executor.

Keeps an installed/upgradable inventory in dictionaries, applies
install/remove to it, and can be told to fail specific operations
(optionally with output that matches a repair signature).
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from hostpolicy.adapters.base import PackageManager, PackageManagerError, Repair
from hostpolicy.core.models.package import PkgInfo
from hostpolicy.core.models.policy import Manager


@dataclass
class _Failure:
    op: str
    names: frozenset[str] | None
    output: str
    times: int | None
    unless_args: tuple[str, ...] = ()

    def matches(self, op: str, names: Sequence[str], extra_args: Sequence[str]) -> bool:
        if op != self.op or self.times == 0:
            return False
        if self.unless_args and any(a in extra_args for a in self.unless_args):
            return False
        return self.names is None or bool(self.names.intersection(names))


@dataclass
class MockCall:
    op: str
    names: tuple[str, ...] = ()
    extra_args: tuple[str, ...] = ()


@dataclass
class _Signature:
    text: str
    repair: Repair = field(default_factory=lambda: Repair(description="mock repair"))


class MockPackageManager(PackageManager):
    """Universal mock package manager for testing.

    By default every operation succeeds and mutates the in-memory
    inventory.
    """

    def __init__(
        self,
        kind: Manager = Manager.APT,
        *,
        adapter_name: str | None = None,
        installed: Iterable[str] = (),
        upgradable: Iterable[str] = (),
        available: bool = True,
    ):
        super().__init__()
        self.kind = kind
        self._name = adapter_name or f"mock-{kind.value.lower()}"
        self._available = available
        self.installed: dict[str, PkgInfo] = {n: PkgInfo(name=n, version="1.0") for n in installed}
        self.upgradable: dict[str, PkgInfo] = {n: PkgInfo(name=n, version="2.0") for n in upgradable}
        self.calls: list[MockCall] = []
        self.repairs_run: list[Repair] = []
        self.list_error: str | None = None
        self._failures: list[_Failure] = []
        self._signatures: list[_Signature] = []

    @property
    def name(self) -> str:
        return self._name

    def is_available(self) -> bool:
        return self._available

    # ── Configuration ───────────────────────────────────────────

    def fail(
        self,
        op: str,
        *,
        names: Iterable[str] | None = None,
        output: str = "mock failure",
        times: int | None = None,
        unless_args: Sequence[str] = (),
    ) -> None:
        """Make ``op`` ("install", "remove", "refresh") fail.

        Args:
            names: Fail only batches containing one of these names.
            output: Error output (match it with ``add_repair``).
            times: Fail this many times, then succeed (None = always).
            unless_args: Succeed when any of these extra args is passed.
        """
        self._failures.append(
            _Failure(
                op=op,
                names=frozenset(names) if names is not None else None,
                output=output,
                times=times,
                unless_args=tuple(unless_args),
            )
        )

    def add_repair(self, signature: str, repair: Repair | None = None) -> None:
        """Diagnose errors whose output contains ``signature``."""
        self._signatures.append(
            _Signature(text=signature, repair=repair or Repair(description="mock repair"))
        )

    def calls_for(self, op: str) -> list[MockCall]:
        return [c for c in self.calls if c.op == op]

    # ── PackageManager ──────────────────────────────────────────

    def list_installed(self, cancel: threading.Event | None = None) -> list[PkgInfo]:
        self.calls.append(MockCall(op="list_installed"))
        if self.list_error:
            raise PackageManagerError(self.list_error)
        return list(self.installed.values())

    def list_upgradable(self, cancel: threading.Event | None = None) -> list[PkgInfo]:
        self.calls.append(MockCall(op="list_upgradable"))
        if self.list_error:
            raise PackageManagerError(self.list_error)
        return list(self.upgradable.values())

    def refresh(self, cancel: threading.Event | None = None) -> None:
        self.calls.append(MockCall(op="refresh"))
        self._maybe_fail("refresh", (), ())

    def install(
        self,
        names: Sequence[str],
        *,
        extra_args: Sequence[str] = (),
        cancel: threading.Event | None = None,
    ) -> None:
        self.calls.append(MockCall(op="install", names=tuple(names), extra_args=tuple(extra_args)))
        self._maybe_fail("install", names, extra_args)
        for n in names:
            self.installed[n] = PkgInfo(name=n, version="2.0")
            self.upgradable.pop(n, None)

    def remove(
        self,
        names: Sequence[str],
        *,
        extra_args: Sequence[str] = (),
        cancel: threading.Event | None = None,
    ) -> None:
        self.calls.append(MockCall(op="remove", names=tuple(names), extra_args=tuple(extra_args)))
        self._maybe_fail("remove", names, extra_args)
        for n in names:
            self.installed.pop(n, None)
            self.upgradable.pop(n, None)

    def diagnose(self, error: PackageManagerError) -> Repair | None:
        for sig in self._signatures:
            if sig.text in error.output:
                return sig.repair
        return None

    def run_repair(self, repair: Repair, cancel: threading.Event | None = None) -> None:
        self.repairs_run.append(repair)

    def _maybe_fail(self, op: str, names: Sequence[str], extra_args: Sequence[str]) -> None:
        for failure in self._failures:
            if failure.matches(op, names, extra_args):
                if failure.times is not None:
                    failure.times -= 1
                raise PackageManagerError(f"{self.name}: {failure.output}")
