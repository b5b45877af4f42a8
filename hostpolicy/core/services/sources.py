"""
Policy sources — the local declaration file and the remote lookup.

Both readers raise ``PolicySourceError``; the run use case logs it and
treats that source as absent.
"""

from __future__ import annotations

import json
import logging
import platform
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from hostpolicy.core.errors import HostPolicyError
from hostpolicy.core.models.policy import EffectivePolicy, PolicyDocument
from hostpolicy.core.services.policy.merge import REMOTE_SOURCE
from hostpolicy.core.services.policy.repositories import read_os_release

logger = logging.getLogger(__name__)

_MAX_RESPONSE = 16 * 1024 * 1024


class PolicySourceError(HostPolicyError):
    """A policy source could not be read or parsed."""


def parse_policy_document(data: Any, origin: str) -> PolicyDocument:
    """Validate already-decoded data into a PolicyDocument.

    Raises:
        PolicySourceError: Not a mapping, or invalid content.
    """
    if data is None:
        return PolicyDocument()
    if not isinstance(data, dict):
        raise PolicySourceError(f"Expected a mapping in {origin}, got {type(data).__name__}")
    try:
        return PolicyDocument.model_validate(data)
    except ValidationError as e:
        raise PolicySourceError(f"Invalid policy in {origin}: {e}") from e


def load_local_policy(path: str | Path | None) -> PolicyDocument | None:
    """Read the local declaration (YAML or JSON).

    Returns:
        The document, or None when no path is configured or the file
        does not exist.

    Raises:
        PolicySourceError: Unreadable or invalid file.
    """
    if not path:
        return None
    path = Path(path)
    if not path.is_file():
        logger.debug("No local policy at %s", path)
        return None
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise PolicySourceError(f"Cannot read {path}: {e}") from e
    try:
        # JSON is a subset of YAML
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise PolicySourceError(f"Invalid local policy {path}: {e}") from e
    document = parse_policy_document(data, str(path))
    logger.info(
        "Loaded local policy from %s (%d packages, %d repositories, %d recipes)",
        path,
        len(document.packages),
        len(document.package_repositories),
        len(document.software_recipes),
    )
    return document


def lookup_request(instance: str, os_release: dict[str, str] | None = None) -> dict[str, str]:
    """Body of the remote lookup request."""
    info = read_os_release() if os_release is None else os_release
    return {
        "instance": instance,
        "osShortName": info.get("ID", ""),
        "osVersion": info.get("VERSION_ID", ""),
        "osArchitecture": platform.machine(),
    }


def lookup_remote_policy(
    endpoint: str,
    instance: str,
    *,
    timeout: float = 30.0,
    opener: Any = urllib.request.urlopen,
    os_release: dict[str, str] | None = None,
) -> EffectivePolicy | None:
    """POST the lookup request and parse the returned policy document.

    Returns:
        The remote policy, or None when no endpoint is configured.

    Raises:
        PolicySourceError: Network failure, HTTP error or invalid body.
    """
    if not endpoint:
        return None

    body = json.dumps(lookup_request(instance, os_release)).encode("utf-8")
    logger.debug("Remote policy lookup %s: %s", endpoint, body.decode("utf-8"))
    request = urllib.request.Request(
        endpoint,
        data=body,
        headers={"Content-Type": "application/json", "Accept": "application/json"},
        method="POST",
    )
    try:
        with opener(request, timeout=timeout) as resp:
            raw = resp.read(_MAX_RESPONSE + 1)
    except urllib.error.HTTPError as e:
        raise PolicySourceError(f"Remote lookup failed: HTTP {e.code} {e.reason}") from e
    except Exception as e:
        raise PolicySourceError(f"Remote lookup failed: {e}") from e
    if len(raw) > _MAX_RESPONSE:
        raise PolicySourceError("Remote lookup response too large")

    try:
        data = json.loads(raw) if raw.strip() else None
    except ValueError as e:
        raise PolicySourceError(f"Remote lookup returned invalid JSON: {e}") from e

    document = parse_policy_document(data, endpoint)
    return EffectivePolicy.from_document(document, REMOTE_SOURCE)
