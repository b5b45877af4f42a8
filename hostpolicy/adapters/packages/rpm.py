"""
Rpm inventory — installed package listing shared by yum and zypper.
"""

from __future__ import annotations

from hostpolicy.core.models.package import PkgInfo

RPM = "/usr/bin/rpm"
RPMQUERY = "/usr/bin/rpmquery"
RPM_QUERY_ARGS = ["--queryformat", "%{NAME} %{ARCH} %{VERSION}-%{RELEASE}\n", "-a"]


def parse_rpm_installed(output: str) -> list[PkgInfo]:
    """Parse ``rpmquery -a`` output (``name arch version-release``)."""
    pkgs = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) != 3:
            continue
        pkgs.append(PkgInfo(name=fields[0], arch=fields[1], version=fields[2]))
    return pkgs
