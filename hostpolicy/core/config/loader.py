"""
Configuration loader — reads agent.yml into an ``AgentConfig``.

The agent runs with sane defaults when no config file exists, so a
missing file is not an error. A file that exists but does not parse,
or does not validate, is.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from hostpolicy.core.errors import HostPolicyError

logger = logging.getLogger(__name__)

AGENT_CONFIG_FILE = "agent.yml"

REPO_FILE_NAME = "hostpolicy_managed"


class ConfigError(HostPolicyError):
    """Raised when agent configuration is invalid."""


class PolicyConfig(BaseModel):
    local_path: str | None = None


class RemoteConfig(BaseModel):
    endpoint: str = ""
    timeout: float = 30.0


class StateConfig(BaseModel):
    recipe_db: str = "/var/lib/hostpolicy/recipedb.json"
    work_dir: str | None = None  # None = system temp dir


class RepositoryPaths(BaseModel):
    apt_file: str = f"/etc/apt/sources.list.d/{REPO_FILE_NAME}.list"
    apt_keyring: str = f"/etc/apt/trusted.gpg.d/{REPO_FILE_NAME}.gpg"
    yum_file: str = f"/etc/yum.repos.d/{REPO_FILE_NAME}.repo"
    zypper_file: str = f"/etc/zypp/repos.d/{REPO_FILE_NAME}.repo"
    goo_file: str = f"C:/ProgramData/GooGet/repos/{REPO_FILE_NAME}.repo"


class RetryConfig(BaseModel):
    attempts: int = Field(default=3, ge=1)
    interval_seconds: float = Field(default=60.0, ge=0)


class ExecutionConfig(BaseModel):
    command_timeout: int = Field(default=1800, gt=0)
    step_timeout: int = Field(default=3600, gt=0)
    parallel_managers: bool = False
    recipe_workers: int = Field(default=1, ge=1)


class AgentConfig(BaseModel):
    """Root agent configuration — loaded from agent.yml."""

    version: int = 1
    instance: str = ""
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    repositories: RepositoryPaths = Field(default_factory=RepositoryPaths)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    managers: list[str] | None = None  # None = every adapter available on the host


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for agent.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to agent.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / AGENT_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def load_config(path: Path | None = None) -> AgentConfig:
    """Load and validate agent configuration.

    Args:
        path: Explicit path to agent.yml. If None, searches upward and
            falls back to defaults when nothing is found.

    Returns:
        Validated AgentConfig with environment overrides applied.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    if path is None:
        path = find_config_file()
        if path is None:
            logger.debug("No %s found — using defaults", AGENT_CONFIG_FILE)
            return _apply_env(AgentConfig())
    elif not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading agent config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under an "agent" key or be flat
    agent_data = data.get("agent", data) if "agent" in data else data

    try:
        config = AgentConfig.model_validate(agent_data)
    except Exception as e:
        raise ConfigError(f"Invalid agent configuration: {e}") from e

    logger.info("Loaded agent config from %s", path)
    return _apply_env(config)


def _apply_env(config: AgentConfig) -> AgentConfig:
    """Apply environment variable overrides."""
    endpoint = os.environ.get("HPA_REMOTE_ENDPOINT")
    if endpoint is not None:
        config.remote.endpoint = endpoint
    return config
