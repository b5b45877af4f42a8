"""
Tests for the config loader and the config check use case.
"""

import textwrap
from pathlib import Path

import pytest

from hostpolicy.core.config.loader import (
    AgentConfig,
    ConfigError,
    find_config_file,
    load_config,
)
from hostpolicy.core.use_cases.config_check import check_config

# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def valid_agent_yml(tmp_path: Path) -> Path:
    content = textwrap.dedent("""\
        instance: web-01
        policy:
          local_path: /etc/hostpolicy/policy.yml
        remote:
          endpoint: https://policy.example.com/lookup
          timeout: 10
        retry:
          attempts: 5
          interval_seconds: 1
        execution:
          parallel_managers: true
          recipe_workers: 4
        managers: [apt]
    """)
    path = tmp_path / "agent.yml"
    path.write_text(content)
    return path


@pytest.fixture
def wrapped_agent_yml(tmp_path: Path) -> Path:
    path = tmp_path / "agent.yml"
    path.write_text("agent:\n  instance: wrapped\n")
    return path


# ── Loader ──────────────────────────────────────────────────────────


class TestLoadConfig:
    def test_load_valid_config(self, valid_agent_yml: Path):
        config = load_config(valid_agent_yml)
        assert config.instance == "web-01"
        assert config.remote.timeout == 10
        assert config.retry.attempts == 5
        assert config.execution.parallel_managers is True
        assert config.execution.recipe_workers == 4
        assert config.managers == ["apt"]

    def test_defaults(self):
        config = AgentConfig()
        assert config.retry.attempts == 3
        assert config.retry.interval_seconds == 60
        assert config.execution.parallel_managers is False
        assert config.managers is None
        assert config.state.recipe_db.endswith("recipedb.json")

    def test_load_wrapped_format(self, wrapped_agent_yml: Path):
        assert load_config(wrapped_agent_yml).instance == "wrapped"

    def test_empty_file_is_defaults(self, tmp_path: Path):
        path = tmp_path / "agent.yml"
        path.write_text("")
        assert load_config(path) == AgentConfig()

    def test_missing_explicit_file_raises(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yml")

    def test_invalid_yaml_raises(self, tmp_path: Path):
        path = tmp_path / "agent.yml"
        path.write_text("instance: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_non_mapping_raises(self, tmp_path: Path):
        path = tmp_path / "agent.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="Expected a YAML mapping"):
            load_config(path)

    def test_invalid_values_raise(self, tmp_path: Path):
        path = tmp_path / "agent.yml"
        path.write_text("retry:\n  attempts: 0\n")
        with pytest.raises(ConfigError, match="Invalid agent configuration"):
            load_config(path)

    def test_undecodable_file_raises(self, tmp_path: Path):
        path = tmp_path / "agent.yml"
        path.write_bytes(b"instance: caf\xe9\n")
        with pytest.raises(ConfigError, match="Cannot read"):
            load_config(path)

    def test_auto_search_falls_back_to_defaults(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("HPA_REMOTE_ENDPOINT", raising=False)
        assert find_config_file(tmp_path) is None
        assert load_config() == AgentConfig()

    def test_auto_search_walks_up(self, valid_agent_yml: Path, monkeypatch: pytest.MonkeyPatch):
        nested = valid_agent_yml.parent / "a" / "b"
        nested.mkdir(parents=True)
        assert find_config_file(nested) == valid_agent_yml.resolve()

    def test_env_override(self, valid_agent_yml: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("HPA_REMOTE_ENDPOINT", "https://override/")
        assert load_config(valid_agent_yml).remote.endpoint == "https://override/"


# ── Config check ────────────────────────────────────────────────────


class TestCheckConfig:
    def test_valid_with_warnings(self, valid_agent_yml: Path):
        result = check_config(valid_agent_yml)
        assert result.valid
        assert any("Local policy file not found" in w for w in result.warnings)

    def test_invalid(self, tmp_path: Path):
        path = tmp_path / "agent.yml"
        path.write_text("- nope\n")
        result = check_config(path)
        assert not result.valid
        assert result.errors

    def test_no_sources_warns(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("HPA_REMOTE_ENDPOINT", raising=False)
        path = tmp_path / "agent.yml"
        path.write_text("instance: x\n")
        result = check_config(path)
        assert result.valid
        assert any("No policy source configured" in w for w in result.warnings)

    def test_invalid_local_policy_is_error(self, tmp_path: Path):
        policy = tmp_path / "policy.yml"
        policy.write_text("packages:\n  - manager: apt\n")  # name missing
        path = tmp_path / "agent.yml"
        path.write_text(f"policy:\n  local_path: {policy}\n")
        result = check_config(path)
        assert not result.valid
        assert "Invalid policy" in result.errors[0]

    def test_to_dict(self, valid_agent_yml: Path):
        data = check_config(valid_agent_yml).to_dict()
        assert data["valid"] is True
        assert data["config"]["instance"] == "web-01"
