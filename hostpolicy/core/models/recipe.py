"""
Recipe ledger row — the installed version of one software recipe.

Versions are dotted integers (``1``, ``1.2``, ``1.2.3.4``). They are
stored as integer tuples so ordering is numeric, not lexical: ``1.10``
is newer than ``1.9``. Shorter versions compare as if zero-padded, so
``1.2`` and ``1.2.0`` are equal.
"""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict, Field

from hostpolicy.core.errors import HostPolicyError

MAX_VERSION_PARTS = 4


class RecipeVersionError(HostPolicyError, ValueError):
    """Raised for a version string that is not ``N(.N)*``."""


def parse_version(version: str) -> tuple[int, ...]:
    """Parse ``"1.2.3"`` into ``(1, 2, 3)``.

    An empty string is version ``0``.

    Raises:
        RecipeVersionError: Non-numeric parts, negative numbers, or more
            than four components.
    """
    if version == "":
        return (0,)
    parts = version.split(".")
    if len(parts) > MAX_VERSION_PARTS:
        raise RecipeVersionError(f"invalid version string {version!r}: too many components")
    numbers: list[int] = []
    for part in parts:
        if not (part.isascii() and part.isdigit()):
            raise RecipeVersionError(f"invalid version string {version!r}")
        numbers.append(int(part))
    return tuple(numbers)


def compare_versions(a: tuple[int, ...], b: tuple[int, ...]) -> int:
    """Three-way compare with zero padding. Returns -1, 0 or 1."""
    width = max(len(a), len(b))
    left = a + (0,) * (width - len(a))
    right = b + (0,) * (width - len(b))
    return (left > right) - (left < right)


def format_version(version: tuple[int, ...]) -> str:
    return ".".join(str(n) for n in version)


class Recipe(BaseModel):
    """Ledger entry. Serialized with the on-disk key names."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="Name")
    version: tuple[int, ...] = Field(default=(0,), alias="Version")
    install_time: int = Field(default_factory=lambda: int(time.time()), alias="InstallTime")
    success: bool = Field(default=True, alias="Success")

    @property
    def version_string(self) -> str:
        return format_version(self.version)

    def is_older_than(self, version: str) -> bool:
        """Whether ``version`` is strictly newer than the recorded one.

        An empty or malformed ``version`` is never newer.
        """
        if not version:
            return False
        try:
            requested = parse_version(version)
        except RecipeVersionError:
            return False
        return compare_versions(requested, self.version) > 0
