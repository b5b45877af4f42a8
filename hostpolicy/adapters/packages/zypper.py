"""
Zypper adapter — rpm for inventory, zypper for changes.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from pathlib import Path

from hostpolicy.adapters.base import PackageManager
from hostpolicy.adapters.packages.rpm import RPM_QUERY_ARGS, RPMQUERY, parse_rpm_installed
from hostpolicy.core.models.package import PkgInfo
from hostpolicy.core.models.policy import Manager

ZYPPER = "/usr/bin/zypper"


def parse_zypper_updates(output: str) -> list[PkgInfo]:
    """Parse the ``zypper list-updates`` table::

        S | Repository         | Name | Current Version | Available Version | Arch
        --+--------------------+------+-----------------+-------------------+-------
        v | SLES12-SP3-Updates | at   | 3.1.14-7.3      | 3.1.14-8.3.1      | x86_64
    """
    pkgs = []
    for line in output.splitlines():
        cols = [c.strip() for c in line.split("|")]
        if len(cols) != 6 or cols[0] != "v":
            continue
        pkgs.append(PkgInfo(name=cols[2], arch=cols[5], version=cols[4]))
    return pkgs


class ZypperManager(PackageManager):
    """SUSE packages."""

    kind = Manager.ZYPPER

    @property
    def name(self) -> str:
        return "zypper"

    def is_available(self) -> bool:
        return Path(ZYPPER).exists()

    def list_installed(self, cancel: threading.Event | None = None) -> list[PkgInfo]:
        result = self._run([RPMQUERY, *RPM_QUERY_ARGS], cancel=cancel)
        return parse_rpm_installed(result.stdout)

    def list_upgradable(self, cancel: threading.Event | None = None) -> list[PkgInfo]:
        result = self._run([ZYPPER, "--gpg-auto-import-keys", "-q", "list-updates"], cancel=cancel)
        return parse_zypper_updates(result.stdout)

    def install(
        self,
        names: Sequence[str],
        *,
        extra_args: Sequence[str] = (),
        cancel: threading.Event | None = None,
    ) -> None:
        self._run(
            [
                ZYPPER,
                "--gpg-auto-import-keys",
                "--non-interactive",
                "install",
                "--auto-agree-with-licenses",
                *extra_args,
                *names,
            ],
            cancel=cancel,
        )

    def remove(
        self,
        names: Sequence[str],
        *,
        extra_args: Sequence[str] = (),
        cancel: threading.Event | None = None,
    ) -> None:
        self._run([ZYPPER, "--non-interactive", "remove", *extra_args, *names], cancel=cancel)
