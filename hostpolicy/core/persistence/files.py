"""
Atomic file writes — temp file in the target directory, then rename.

A crash before the rename leaves the previous file untouched; the temp
file is removed on any failure.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write(path: Path, data: bytes, *, mode: int | None = None) -> None:
    """Replace ``path`` with ``data`` atomically.

    Args:
        path: Target file. Parent directories are created when missing.
        data: New content.
        mode: Optional permission bits for the new file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    logger.debug("Wrote %s (%d bytes)", path, len(data))


def sha256_file(path: Path) -> str | None:
    """Hex SHA-256 of a file, or None when it does not exist."""
    try:
        with open(path, "rb") as f:
            return hashlib.file_digest(f, "sha256").hexdigest()
    except FileNotFoundError:
        return None


def write_if_changed(content: bytes | str, path: Path | str) -> bool:
    """Write ``content`` to ``path`` only when the digest differs.

    Returns:
        True when the file was (re)written, False when it already held
        identical content.
    """
    path = Path(path)
    data = content.encode("utf-8") if isinstance(content, str) else content
    if sha256_file(path) == hashlib.sha256(data).hexdigest():
        logger.debug("%s unchanged", path)
        return False
    logger.info("Writing %s", path)
    atomic_write(path, data)
    return True
