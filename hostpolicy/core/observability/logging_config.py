"""
Logging configuration — one setup for the CLI and the service loop.

Called once at startup by main.py. Every module logs through
``logging.getLogger(__name__)``, so component names follow the package:

    hostpolicy.adapters.packages.apt        package manager commands
    hostpolicy.core.services.policy         merge, repo files, executor
    hostpolicy.core.services.recipes        recipe steps and artifacts

Levels are resolved in precedence order:
    CLI flag  >  HPA_LOG_LEVEL env var  >  WARNING (INFO under ``serve``)

HPA_LOG_LEVELS overrides single components, e.g.
``adapters=DEBUG,core.services.recipes=INFO``; names without the
``hostpolicy.`` prefix get it added.

Optional file output via HPA_LOG_FILE / HPA_LOG_FILE_LEVEL. The file
rotates at HPA_LOG_FILE_MAX_BYTES (default 10 MiB, 5 backups).
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from collections.abc import Mapping

ROOT_LOGGER = "hostpolicy"

# ── Format strings ──────────────────────────────────────────────

_FMT_MINIMAL = "%(message)s"

_FMT_VERBOSE = "%(asctime)s [%(name)s] %(message)s"
_DATEFMT_VERBOSE = "%H:%M:%S"

# Manager and recipe workers run in named threads ("manager_0", "recipe_1")
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(threadName)s %(name)s:%(lineno)d  %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"

# The service manager's journal adds its own timestamps
_FMT_SERVICE = "%(levelname)s %(threadName)s %(name)s: %(message)s"

_FMT_FILE = "%(asctime)s %(levelname)-5s %(threadName)s %(name)s:%(lineno)d  %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

DEFAULT_FILE_MAX_BYTES = 10 * 1024 * 1024
FILE_BACKUP_COUNT = 5


class _ComponentFilter(logging.Filter):
    """Pass records at the handler's base level, or at their component's level."""

    def __init__(self, level: int, components: Mapping[str, int]):
        super().__init__()
        self.level = level
        # longest prefix last so the most specific component wins
        self.components = sorted(components.items(), key=lambda kv: len(kv[0]))

    def filter(self, record: logging.LogRecord) -> bool:
        threshold = self.level
        for name, level in self.components:
            if record.name == name or record.name.startswith(f"{name}."):
                threshold = level
        return record.levelno >= threshold


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    *,
    service: bool = False,
    component_levels: Mapping[str, str] | None = None,
    file_max_bytes: int = DEFAULT_FILE_MAX_BYTES,
) -> None:
    """Configure Python logging for the entire process.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a rotating log file.
        log_file_level: Optional separate level for the log file.
            Defaults to the same as ``level``.
        service: Use the service format (no timestamps, thread names)
            regardless of level.
        component_levels: Logger name → level overrides, applied to
            every handler.
        file_max_bytes: Rotation size of ``log_file``; 0 disables rotation.
    """
    numeric_level = _parse_level(level)
    components = {name: _parse_level(lvl) for name, lvl in (component_levels or {}).items()}
    lowest_component = min(components.values(), default=logging.CRITICAL)

    # ── Console handler (stderr) ────────────────────────────────
    if service:
        fmt, datefmt = _FMT_SERVICE, None
    elif numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_DEBUG
    elif numeric_level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT_VERBOSE
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(min(numeric_level, lowest_component))
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    if components:
        console.addFilter(_ComponentFilter(numeric_level, components))

    # ── Root logger ─────────────────────────────────────────────
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    effective_level = numeric_level

    # ── File handler (optional) ─────────────────────────────────
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)

        fh = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=file_max_bytes,
            backupCount=FILE_BACKUP_COUNT if file_max_bytes else 0,
            encoding="utf-8",
        )
        fh.setLevel(min(file_level, lowest_component))
        fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        if components:
            fh.addFilter(_ComponentFilter(file_level, components))
        root.addHandler(fh)

    # ── Component overrides ─────────────────────────────────────
    for name, numeric in components.items():
        logging.getLogger(name).setLevel(numeric)

    root.setLevel(effective_level)
    logging.raiseExceptions = False


def parse_component_levels(spec: str | None) -> dict[str, str]:
    """Parse ``"adapters=DEBUG,core.services.recipes=INFO"`` into a mapping.

    Names are made absolute under ``hostpolicy``. Malformed items are
    ignored.
    """
    levels: dict[str, str] = {}
    for item in (spec or "").split(","):
        name, sep, level = item.strip().partition("=")
        name, level = name.strip(), level.strip()
        if not sep or not name or not level:
            continue
        if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
            name = f"{ROOT_LOGGER}.{name}"
        levels[name] = level.upper()
    return levels


def _parse_level(level: str | None) -> int:
    """Convert a level name string to its numeric constant."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
