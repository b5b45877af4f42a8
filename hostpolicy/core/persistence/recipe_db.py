"""
Recipe ledger — which software recipes are installed, at which version.

Stored as a JSON array::

    [{"Name": "foo", "Version": [1, 2], "InstallTime": 1700000000, "Success": true}]

The file is loaded once and kept in memory. Every ``add`` rewrites the
whole table atomically, so a crash mid-write leaves the previous ledger
intact. A ledger that exists but cannot be parsed makes the store
unusable; it is never silently reset.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from hostpolicy.core.errors import HostPolicyError
from hostpolicy.core.models.recipe import Recipe, parse_version
from hostpolicy.core.persistence.files import atomic_write

logger = logging.getLogger(__name__)

_LEDGER = TypeAdapter(list[Recipe])


class RecipeDBError(HostPolicyError):
    """The ledger file cannot be read, parsed or written."""


class RecipeDB:
    """File-backed recipe ledger. Safe to share between threads."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._recipes: dict[str, Recipe] | None = None

    def load(self) -> None:
        """Read the ledger file (once).

        Raises:
            RecipeDBError: The file exists but is unreadable or invalid.
        """
        with self._lock:
            self._ensure_loaded()

    def get(self, name: str) -> Recipe | None:
        with self._lock:
            return self._ensure_loaded().get(name)

    def all(self) -> list[Recipe]:
        """Every ledger row, sorted by name."""
        with self._lock:
            recipes = self._ensure_loaded()
            return [recipes[n] for n in sorted(recipes)]

    def add(self, name: str, version: str, success: bool = True) -> Recipe:
        """Record ``name`` at ``version`` and flush the ledger.

        Replaces any earlier row for ``name``.

        Raises:
            RecipeVersionError: Malformed version; nothing is recorded.
            RecipeDBError: The ledger could not be written; the in-memory
                table is left as it was.
        """
        parsed = parse_version(version)
        recipe = Recipe(name=name, version=parsed, install_time=int(time.time()), success=success)
        with self._lock:
            recipes = self._ensure_loaded()
            updated = dict(recipes)
            updated[name] = recipe
            self._save(updated)
            self._recipes = updated
        logger.info("Recorded recipe %s version %s", name, recipe.version_string)
        return recipe

    # ── Internal ────────────────────────────────────────────────

    def _ensure_loaded(self) -> dict[str, Recipe]:
        if self._recipes is None:
            self._recipes = self._read()
        return self._recipes

    def _read(self) -> dict[str, Recipe]:
        if not self.path.is_file():
            logger.debug("No recipe ledger at %s — starting empty", self.path)
            return {}
        try:
            raw = self.path.read_bytes()
        except OSError as e:
            raise RecipeDBError(f"Cannot read recipe ledger {self.path}: {e}") from e
        try:
            rows = _LEDGER.validate_json(raw)
        except ValidationError as e:
            raise RecipeDBError(f"Corrupt recipe ledger {self.path}: {e}") from e
        logger.debug("Loaded %d recipe(s) from %s", len(rows), self.path)
        return {r.name: r for r in rows}

    def _save(self, recipes: dict[str, Recipe]) -> None:
        rows = [recipes[n].model_dump(mode="json", by_alias=True) for n in sorted(recipes)]
        data = json.dumps(rows, indent=2).encode("utf-8") + b"\n"
        try:
            atomic_write(self.path, data)
        except OSError as e:
            raise RecipeDBError(f"Cannot write recipe ledger {self.path}: {e}") from e
