"""
Apt adapter — dpkg-query for inventory, apt-get for changes.

Two failures are known to be repairable in place:

- an interrupted dpkg run ("... run 'dpkg --configure -a' ...") is
  fixed by running ``dpkg --configure -a`` and retrying;
- a transaction that downgrades packages is retried with
  ``--allow-downgrades``.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Sequence
from pathlib import Path

from hostpolicy.adapters.base import PackageManager, PackageManagerError, Repair
from hostpolicy.core.models.package import PkgInfo
from hostpolicy.core.models.policy import Manager

APT_GET = "/usr/bin/apt-get"
DPKG = "/usr/bin/dpkg"
DPKG_QUERY = "/usr/bin/dpkg-query"

_DPKG_QUERY_ARGS = ["-W", "-f", "${Package} ${Architecture} ${Version} ${db:Status-Status}\n"]
_UPGRADABLE_ARGS = ["dist-upgrade", "--just-print", "-qq"]

DPKG_INTERRUPTED_SIGNATURE = "dpkg --configure -a"
DOWNGRADE_SIGNATURE = "E: Packages were downgraded and -y was used without --allow-downgrades."
ALLOW_DOWNGRADES = "--allow-downgrades"


def parse_dpkg_query(output: str) -> list[PkgInfo]:
    """Parse ``dpkg-query -W`` output, keeping only installed packages.

    Lines look like ``bash amd64 5.1-6 installed``.
    """
    pkgs = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) != 4 or fields[3] != "installed":
            continue
        pkgs.append(PkgInfo(name=fields[0], arch=fields[1], version=fields[2]))
    return pkgs


def parse_apt_updates(output: str) -> list[PkgInfo]:
    """Parse ``apt-get --just-print`` output into upgradable packages.

    Only ``Inst`` lines carrying the currently installed version in
    brackets are upgrades; lines without it are new dependencies::

        Inst google-cloud-sdk [245.0.0-0] (246.0.0-0 cloud-sdk-stretch:cloud-sdk-stretch [all])
        Inst firmware-linux-free (3.4 Debian:9.9/stable [all]) []
    """
    pkgs = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 5 or fields[0] != "Inst":
            continue
        fields = fields[1:]
        if not fields[1].startswith("["):
            continue
        fields = [fields[0], *fields[2:]]
        if "[]" in fields[-1]:
            fields = fields[:-1]
        if not fields[1].startswith("(") or not fields[-1].endswith(")"):
            continue
        version = fields[1].lstrip("(")
        arch = fields[-1].strip("[])")
        pkgs.append(PkgInfo(name=fields[0], arch=arch, version=version))
    return pkgs


class AptManager(PackageManager):
    """Debian/Ubuntu packages."""

    kind = Manager.APT

    @property
    def name(self) -> str:
        return "apt"

    def is_available(self) -> bool:
        return Path(APT_GET).exists() and Path(DPKG_QUERY).exists()

    def _env(self) -> dict[str, str]:
        env = os.environ.copy()
        env["DEBIAN_FRONTEND"] = "noninteractive"
        return env

    def list_installed(self, cancel: threading.Event | None = None) -> list[PkgInfo]:
        result = self._run([DPKG_QUERY, *_DPKG_QUERY_ARGS], cancel=cancel)
        return parse_dpkg_query(result.stdout)

    def list_upgradable(self, cancel: threading.Event | None = None) -> list[PkgInfo]:
        result = self._run([APT_GET, *_UPGRADABLE_ARGS], cancel=cancel, env=self._env())
        return parse_apt_updates(result.stdout)

    def refresh(self, cancel: threading.Event | None = None) -> None:
        self._run([APT_GET, "update"], cancel=cancel, env=self._env())

    def install(
        self,
        names: Sequence[str],
        *,
        extra_args: Sequence[str] = (),
        cancel: threading.Event | None = None,
    ) -> None:
        self._run([APT_GET, "install", "-y", *extra_args, *names], cancel=cancel, env=self._env())

    def remove(
        self,
        names: Sequence[str],
        *,
        extra_args: Sequence[str] = (),
        cancel: threading.Event | None = None,
    ) -> None:
        self._run([APT_GET, "remove", "-y", *extra_args, *names], cancel=cancel, env=self._env())

    def diagnose(self, error: PackageManagerError) -> Repair | None:
        output = error.output
        if DPKG_INTERRUPTED_SIGNATURE in output:
            return Repair(
                description="interrupted dpkg run",
                commands=((DPKG, "--configure", "-a"),),
            )
        if DOWNGRADE_SIGNATURE in error.stderr:
            return Repair(description="downgrade requires flag", extra_args=(ALLOW_DOWNGRADES,))
        return None
