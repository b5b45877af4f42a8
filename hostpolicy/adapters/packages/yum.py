"""
Yum adapter — rpm for inventory, yum for changes.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from pathlib import Path

from hostpolicy.adapters.base import PackageManager
from hostpolicy.adapters.packages.rpm import RPM_QUERY_ARGS, RPMQUERY, parse_rpm_installed
from hostpolicy.core.models.package import PkgInfo
from hostpolicy.core.models.policy import Manager

YUM = "/usr/bin/yum"

# yum check-update exits 100 when updates are available
_CHECK_UPDATE_UPDATES = 100


def parse_yum_check_update(output: str) -> list[PkgInfo]:
    """Parse ``yum check-update`` output.

    Update lines are ``name.arch  version  repo``; the obsoletes
    section that may follow is ignored::

        bash.x86_64        4.2.46-35.el7_9        updates
    """
    pkgs = []
    for line in output.splitlines():
        if line.startswith("Obsoleting Packages"):
            break
        fields = line.split()
        if len(fields) != 3 or "." not in fields[0]:
            continue
        name, _, arch = fields[0].rpartition(".")
        pkgs.append(PkgInfo(name=name, arch=arch, version=fields[1]))
    return pkgs


class YumManager(PackageManager):
    """RHEL/CentOS/Fedora packages."""

    kind = Manager.YUM

    @property
    def name(self) -> str:
        return "yum"

    def is_available(self) -> bool:
        return Path(YUM).exists()

    def list_installed(self, cancel: threading.Event | None = None) -> list[PkgInfo]:
        result = self._run([RPMQUERY, *RPM_QUERY_ARGS], cancel=cancel)
        return parse_rpm_installed(result.stdout)

    def list_upgradable(self, cancel: threading.Event | None = None) -> list[PkgInfo]:
        result = self._run(
            [YUM, "check-update", "--assumeyes", "--quiet"],
            cancel=cancel,
            ok_codes=(0, _CHECK_UPDATE_UPDATES),
        )
        if result.returncode == 0:
            return []
        return parse_yum_check_update(result.stdout)

    def install(
        self,
        names: Sequence[str],
        *,
        extra_args: Sequence[str] = (),
        cancel: threading.Event | None = None,
    ) -> None:
        self._run([YUM, "install", "--assumeyes", *extra_args, *names], cancel=cancel)

    def remove(
        self,
        names: Sequence[str],
        *,
        extra_args: Sequence[str] = (),
        cancel: threading.Event | None = None,
    ) -> None:
        self._run([YUM, "remove", "--assumeyes", *extra_args, *names], cancel=cancel)
