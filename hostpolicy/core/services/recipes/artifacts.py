"""
Recipe artifacts — download every artifact before the first step runs.

Only http and https are supported. When an artifact carries a checksum
(hex SHA-256) the download is verified before it is moved into place.
"""

from __future__ import annotations

import hashlib
import logging
import os
import posixpath
import tempfile
import urllib.parse
import urllib.request
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from hostpolicy.core.models.policy import Artifact
from hostpolicy.core.services.recipes.errors import ArtifactError

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024
_SUPPORTED_SCHEMES = ("http", "https")

Opener = Callable[..., Any]


def storage_path(directory: Path, artifact_id: str, extension: str) -> Path:
    return directory / f"{artifact_id}{extension}"


def fetch_artifact(
    artifact: Artifact,
    directory: Path,
    *,
    opener: Opener = urllib.request.urlopen,
    timeout: float = 300,
) -> Path:
    """Download one artifact into ``directory`` as ``<id><ext>``.

    Raises:
        ArtifactError: Unsupported source, network failure or checksum
            mismatch. No partial file is left behind.
    """
    if artifact.remote is None:
        raise ArtifactError(f"unknown artifact type for artifact {artifact.id!r}")

    uri = urllib.parse.urlsplit(artifact.remote.uri)
    if uri.scheme not in _SUPPORTED_SCHEMES:
        raise ArtifactError(
            f"error fetching artifact {artifact.id!r}: unsupported protocol scheme {uri.scheme!r}"
        )
    if uri.scheme == "http" and not artifact.remote.checksum and not artifact.allow_insecure:
        logger.warning("Artifact %s is fetched over plain http without a checksum", artifact.id)

    target = storage_path(directory, artifact.id, posixpath.splitext(uri.path)[1])
    expected = artifact.remote.checksum.strip().lower()

    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=f".{artifact.id}_", suffix=".part")
    tmp = Path(tmp_path)
    digest = hashlib.sha256()
    try:
        with os.fdopen(fd, "wb") as out:
            try:
                with opener(artifact.remote.uri, timeout=timeout) as resp:
                    while chunk := resp.read(_CHUNK):
                        digest.update(chunk)
                        out.write(chunk)
            except Exception as e:
                raise ArtifactError(f"error fetching artifact {artifact.id!r}: {e}") from e
        if expected and digest.hexdigest() != expected:
            raise ArtifactError(
                f"checksum mismatch for artifact {artifact.id!r}: "
                f"expected {expected}, got {digest.hexdigest()}"
            )
        os.replace(tmp, target)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise

    logger.debug("Fetched artifact %s → %s", artifact.id, target)
    return target


def fetch_artifacts(
    artifacts: Sequence[Artifact],
    directory: Path,
    *,
    opener: Opener = urllib.request.urlopen,
) -> dict[str, Path]:
    """Download all artifacts. The first failure aborts.

    Returns:
        Artifact id → local path.
    """
    local: dict[str, Path] = {}
    for artifact in artifacts:
        logger.debug("Downloading artifact %s", artifact.id)
        local[artifact.id] = fetch_artifact(artifact, directory, opener=opener)
    return local
