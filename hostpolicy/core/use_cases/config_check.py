"""
Config check use case — validate agent.yml and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from hostpolicy.core.config.loader import (
    AGENT_CONFIG_FILE,
    AgentConfig,
    ConfigError,
    find_config_file,
    load_config,
)
from hostpolicy.core.services.sources import PolicySourceError, load_local_policy


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    config: AgentConfig | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "config": self.config.model_dump(mode="json") if self.config else None,
        }


def check_config(config_path: Path | None = None) -> ConfigCheckResult:
    """Validate the agent configuration and the local policy it points to.

    Args:
        config_path: Optional explicit path to agent.yml.
    """
    result = ConfigCheckResult()

    if config_path is None:
        config_path = find_config_file()
        if config_path is None:
            result.warnings.append(f"No {AGENT_CONFIG_FILE} found, using defaults.")
    result.config_path = config_path

    try:
        config = load_config(config_path)
    except ConfigError as e:
        result.errors.append(str(e))
        return result
    result.config = config

    if not config.remote.endpoint and not config.policy.local_path:
        result.warnings.append("No policy source configured (policy.local_path, remote.endpoint).")

    if config.remote.endpoint and not config.instance:
        result.warnings.append("remote.endpoint is set but instance is empty.")

    if config.policy.local_path:
        if not Path(config.policy.local_path).is_file():
            result.warnings.append(f"Local policy file not found: {config.policy.local_path}")
        else:
            try:
                load_local_policy(config.policy.local_path)
            except PolicySourceError as e:
                result.errors.append(str(e))

    result.valid = not result.errors
    return result
