"""
Repository files — render each manager's native repo file.

Every file starts with the same header line so an operator can tell
which files the agent owns:

    # Repo file managed by hostpolicy agent

Files are written through ``write_if_changed`` so an unchanged policy
never touches the disk.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from hostpolicy.core.config.loader import RepositoryPaths
from hostpolicy.core.models.policy import (
    AptRepository,
    ArchiveType,
    GooRepository,
    Manager,
    PackageRepository,
    YumRepository,
    ZypperRepository,
)
from hostpolicy.core.persistence.files import write_if_changed

logger = logging.getLogger(__name__)

REPO_FILE_HEADER = "# Repo file managed by hostpolicy agent\n"

OS_RELEASE = "/etc/os-release"

_ARCHIVE_TYPES = {ArchiveType.DEB: "deb", ArchiveType.DEB_SRC: "deb-src"}

# First release of each distro whose apt accepts a per-source signed-by keyring
_SIGNED_BY_MIN_VERSION = {"debian": 12.0, "ubuntu": 24.0}


# ── OS detection ────────────────────────────────────────────────


def read_os_release(path: str = OS_RELEASE) -> dict[str, str]:
    """Parse an os-release file into a dict. Missing or unreadable file → empty dict."""
    info: dict[str, str] = {}
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return info
    for line in text.splitlines():
        key, sep, value = line.strip().partition("=")
        if not sep or key.startswith("#"):
            continue
        info[key] = value.strip().strip('"').strip("'")
    return info


def should_use_signed_by(os_release: dict[str, str]) -> bool:
    """Whether apt source lines should carry ``[signed-by=...]``."""
    short_name = os_release.get("ID", "").lower()
    minimum = _SIGNED_BY_MIN_VERSION.get(short_name)
    if minimum is None:
        return False
    try:
        version = float(os_release.get("VERSION_ID", ""))
    except ValueError:
        version = 0.0
    return version >= minimum


# ── Renderers ───────────────────────────────────────────────────


def apt_repo_line(repo: AptRepository, signed_by: str | None = None) -> str:
    parts = [_ARCHIVE_TYPES.get(repo.archive_type, "deb")]
    if signed_by:
        parts.append(f"[signed-by={signed_by}]")
    parts += [repo.uri, repo.distribution, *repo.components]
    return " ".join(parts)


def render_apt_repositories(repos: Sequence[AptRepository], signed_by: str | None = None) -> str:
    """One source line per repository::

        deb [signed-by=/etc/apt/trusted.gpg.d/x.gpg] http://repo/ stable main
    """
    out = [REPO_FILE_HEADER]
    for repo in repos:
        out.append(f"\n{apt_repo_line(repo, signed_by)}\n")
    return "".join(out)


def _render_rpm_style(repos: Sequence[YumRepository | ZypperRepository]) -> str:
    out = [REPO_FILE_HEADER]
    for repo in repos:
        out.append(f"\n[{repo.id}]\n")
        out.append(f"name={repo.display_name or repo.id}\n")
        out.append(f"baseurl={repo.base_url}\n")
        out.append("enabled=1\ngpgcheck=1\nrepo_gpgcheck=1\n")
        if repo.gpg_keys:
            out.append(f"gpgkey={repo.gpg_keys[0]}\n")
            for key in repo.gpg_keys[1:]:
                out.append(f"       {key}\n")
    return "".join(out)


def render_yum_repositories(repos: Sequence[YumRepository]) -> str:
    """INI sections, one per repository, extra gpg keys on continuation lines."""
    return _render_rpm_style(repos)


def render_zypper_repositories(repos: Sequence[ZypperRepository]) -> str:
    return _render_rpm_style(repos)


def render_goo_repositories(repos: Sequence[GooRepository]) -> str:
    """YAML list of ``name``/``url`` entries."""
    out = [REPO_FILE_HEADER]
    for repo in repos:
        out.append(f"\n- name: {repo.name}\n  url: {repo.url}\n")
    return "".join(out)


# ── Targets ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class RepoTarget:
    """Where and how one manager's repositories are written.

    ``keyring`` is only set for apt: the file that collects the GPG keys
    named by apt repositories.
    """

    path: str
    render: Callable[[Sequence[PackageRepository]], str]
    keyring: str | None = None

    def sync(self, repos: Sequence[PackageRepository]) -> bool:
        """Render and write the repo file. Returns True when it changed."""
        return write_if_changed(self.render(repos), self.path)


def repo_targets(
    paths: RepositoryPaths, *, use_signed_by: bool | None = None
) -> dict[Manager, RepoTarget]:
    """Build the repo target of every manager from configured paths.

    Args:
        paths: Configured repo file locations.
        use_signed_by: Force the apt signed-by decision; None reads
            /etc/os-release.
    """
    if use_signed_by is None:
        use_signed_by = should_use_signed_by(read_os_release())
    signed_by = paths.apt_keyring if use_signed_by else None

    def apt(repos: Sequence[PackageRepository]) -> str:
        return render_apt_repositories([r.apt for r in repos if r.apt is not None], signed_by)

    def yum(repos: Sequence[PackageRepository]) -> str:
        return render_yum_repositories([r.yum for r in repos if r.yum is not None])

    def zypper(repos: Sequence[PackageRepository]) -> str:
        return render_zypper_repositories([r.zypper for r in repos if r.zypper is not None])

    def goo(repos: Sequence[PackageRepository]) -> str:
        return render_goo_repositories([r.goo for r in repos if r.goo is not None])

    return {
        Manager.APT: RepoTarget(path=paths.apt_file, render=apt, keyring=paths.apt_keyring),
        Manager.YUM: RepoTarget(path=paths.yum_file, render=yum),
        Manager.ZYPPER: RepoTarget(path=paths.zypper_file, render=zypper),
        Manager.GOO: RepoTarget(path=paths.goo_file, render=goo),
    }
