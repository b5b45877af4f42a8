"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

import io
from pathlib import Path

import pytest

from hostpolicy.adapters.mock import MockPackageManager
from hostpolicy.adapters.registry import HostCapabilities
from hostpolicy.core.config.loader import AgentConfig
from hostpolicy.core.models.policy import Manager


class FakeResponse(io.BytesIO):
    """Minimal urlopen() response."""

    def __init__(self, data: bytes, headers: dict[str, str] | None = None):
        super().__init__(data)
        self.headers = headers or {}


class FakeOpener:
    """Stands in for ``urllib.request.urlopen``.

    Maps URLs to bytes (or to an exception instance to raise) and
    records every request.
    """

    def __init__(self, responses: dict[str, bytes | Exception] | None = None):
        self.responses = dict(responses or {})
        self.requests: list = []

    def __call__(self, request, timeout=None):
        self.requests.append(request)
        url = request if isinstance(request, str) else request.full_url
        body = self.responses.get(url)
        if body is None:
            raise OSError(f"connection refused: {url}")
        if isinstance(body, Exception):
            raise body
        return FakeResponse(body)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def agent_config(tmp_path: Path) -> AgentConfig:
    """An AgentConfig whose every path lives under tmp_path."""
    repos = tmp_path / "repos"
    return AgentConfig.model_validate(
        {
            "instance": "test-instance",
            "state": {
                "recipe_db": str(tmp_path / "state" / "recipedb.json"),
                "work_dir": str(tmp_path / "work"),
            },
            "repositories": {
                "apt_file": str(repos / "apt.list"),
                "apt_keyring": str(repos / "apt.gpg"),
                "yum_file": str(repos / "yum.repo"),
                "zypper_file": str(repos / "zypper.repo"),
                "goo_file": str(repos / "goo.repo"),
            },
            "retry": {"attempts": 2, "interval_seconds": 0},
        }
    )


@pytest.fixture
def mock_apt() -> MockPackageManager:
    return MockPackageManager(Manager.APT, adapter_name="apt")


@pytest.fixture
def mock_yum() -> MockPackageManager:
    return MockPackageManager(Manager.YUM, adapter_name="yum")


@pytest.fixture
def capabilities(mock_apt, mock_yum) -> HostCapabilities:
    return HostCapabilities(managers=(mock_apt, mock_yum))


@pytest.fixture
def fake_opener() -> FakeOpener:
    return FakeOpener()
