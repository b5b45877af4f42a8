"""
GooGet adapter — Windows packages managed by googet.exe.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Sequence
from pathlib import Path

from hostpolicy.adapters.base import PackageManager
from hostpolicy.core.models.package import PkgInfo
from hostpolicy.core.models.policy import Manager

GOOGET = os.path.join(os.environ.get("GooGetRoot", "C:/ProgramData/GooGet"), "googet.exe")


def parse_googet_installed(output: str) -> list[PkgInfo]:
    """Parse ``googet installed``::

        Installed Packages:
        foo.x86_64 1.2.3@4
    """
    pkgs = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) != 2:
            continue
        name, sep, arch = fields[0].partition(".")
        if not sep:
            continue
        pkgs.append(PkgInfo(name=name, arch=arch, version=fields[1]))
    return pkgs


def parse_googet_updates(output: str) -> list[PkgInfo]:
    """Parse ``googet update`` (answered 'no' by a closed stdin)::

        Searching for available updates...
        foo.noarch, 3.5.4@1 --> 3.6.7@1 from repo
    """
    pkgs = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 4:
            continue
        name, sep, arch = fields[0].partition(".")
        if not sep:
            continue
        pkgs.append(PkgInfo(name=name, arch=arch.strip(","), version=fields[3]))
    return pkgs


class GooGetManager(PackageManager):
    """GooGet packages (Windows)."""

    kind = Manager.GOO

    @property
    def name(self) -> str:
        return "googet"

    def is_available(self) -> bool:
        return Path(GOOGET).exists()

    def list_installed(self, cancel: threading.Event | None = None) -> list[PkgInfo]:
        result = self._run([GOOGET, "installed"], cancel=cancel)
        return parse_googet_installed(result.stdout)

    def list_upgradable(self, cancel: threading.Event | None = None) -> list[PkgInfo]:
        result = self._run([GOOGET, "update"], cancel=cancel)
        return parse_googet_updates(result.stdout)

    def install(
        self,
        names: Sequence[str],
        *,
        extra_args: Sequence[str] = (),
        cancel: threading.Event | None = None,
    ) -> None:
        self._run([GOOGET, "-noconfirm", *extra_args, "install", *names], cancel=cancel)

    def remove(
        self,
        names: Sequence[str],
        *,
        extra_args: Sequence[str] = (),
        cancel: threading.Event | None = None,
    ) -> None:
        self._run([GOOGET, "-noconfirm", *extra_args, "remove", *names], cancel=cancel)
