"""
Tests for the run use case — sources, packages and recipes end to end.
"""

import json
from pathlib import Path

import pytest

from hostpolicy.adapters.registry import HostCapabilities
from hostpolicy.core.persistence.recipe_db import RecipeDB
from hostpolicy.core.use_cases.run import collect_policy, plan_run, run_once

ENDPOINT = "https://policy.example.com/lookup"


@pytest.fixture
def local_policy(tmp_path: Path, agent_config) -> Path:
    path = tmp_path / "policy.json"
    agent_config.policy.local_path = str(path)
    return path


def _write(path: Path, doc: dict) -> None:
    path.write_text(json.dumps(doc))


class TestCollectPolicy:
    def test_merges_sources(self, agent_config, local_policy, fake_opener):
        _write(local_policy, {"packages": [{"name": "a"}, {"name": "b", "desiredState": "REMOVED"}]})
        agent_config.remote.endpoint = ENDPOINT
        fake_opener.responses[ENDPOINT] = json.dumps({"packages": [{"name": "b"}]}).encode()

        policy, warnings = collect_policy(agent_config, opener=fake_opener)
        assert warnings == []
        assert [(p.source, p.package.name) for p in policy.packages] == [("remote", "b"), ("local", "a")]

    def test_failing_remote_is_warning(self, agent_config, local_policy, fake_opener):
        _write(local_policy, {"packages": [{"name": "a"}]})
        agent_config.remote.endpoint = ENDPOINT
        policy, warnings = collect_policy(agent_config, opener=fake_opener)
        assert [p.package.name for p in policy.packages] == ["a"]
        assert len(warnings) == 1
        assert warnings[0].startswith("remote policy:")

    def test_failing_local_is_warning(self, agent_config, local_policy, fake_opener):
        local_policy.write_text("- not a mapping\n")
        policy, warnings = collect_policy(agent_config, opener=fake_opener)
        assert policy.is_empty
        assert warnings[0].startswith("local policy:")


class TestRunOnce:
    def test_packages_and_recipes(self, agent_config, local_policy, capabilities, mock_apt, mock_yum, tmp_path):
        marker = tmp_path / "ran"
        _write(
            local_policy,
            {
                "packages": [{"name": "curl"}, {"name": "htop", "manager": "YUM"}],
                "softwareRecipes": [
                    {
                        "name": "tool",
                        "version": "1.2",
                        "installSteps": [
                            {"scriptRun": {"script": f"touch {marker}", "interpreter": "SHELL"}}
                        ],
                    }
                ],
            },
        )
        report = run_once(agent_config, capabilities, sleeper=lambda _s: None)
        assert report.ok, report.format_errors()
        assert "curl" in mock_apt.installed
        assert set(mock_yum.installed) == {"curl", "htop"}
        assert marker.exists()
        assert [(r.name, r.action) for r in report.recipes] == [("tool", "install")]
        assert RecipeDB(agent_config.state.recipe_db).get("tool").version == (1, 2)

    def test_second_run_changes_nothing(self, agent_config, local_policy, capabilities, mock_apt):
        _write(local_policy, {"packages": [{"name": "curl"}], "softwareRecipes": [{"name": "tool"}]})
        run_once(agent_config, capabilities, sleeper=lambda _s: None)
        mock_apt.calls.clear()
        report = run_once(agent_config, capabilities, sleeper=lambda _s: None)
        assert report.ok
        assert mock_apt.calls_for("install") == []
        assert [r.action for r in report.recipes] == ["skip"]

    def test_errors_collected(self, agent_config, local_policy, capabilities, mock_apt, mock_yum):
        _write(
            local_policy,
            {
                "packages": [{"name": "curl"}],
                "softwareRecipes": [
                    {"name": "bad", "installSteps": [{"scriptRun": {"script": "exit 2", "interpreter": "SHELL"}}]},
                    {"name": "good"},
                ],
            },
        )
        mock_apt.fail("install", output="apt broke")
        report = run_once(agent_config, capabilities, sleeper=lambda _s: None)
        assert not report.ok
        assert "curl" in mock_yum.installed
        assert any(e.startswith("apt: ") for e in report.errors)
        assert any(e.startswith("recipe bad: ") for e in report.errors)
        assert [r.name for r in report.recipes if not r.error] == ["good"]
        assert ",\n" in report.format_errors()

    def test_corrupt_ledger_skips_recipes(self, agent_config, local_policy):
        _write(local_policy, {"softwareRecipes": [{"name": "tool"}]})
        db_path = Path(agent_config.state.recipe_db)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        db_path.write_text("garbage")
        report = run_once(agent_config, HostCapabilities(), sleeper=lambda _s: None)
        assert report.recipes == []
        assert report.errors[0].startswith("recipes: ")

    def test_recipe_name_with_separator_does_not_stop_run(self, agent_config, local_policy):
        _write(local_policy, {"softwareRecipes": [{"name": "team/tool"}, {"name": "good"}]})
        report = run_once(agent_config, HostCapabilities(), sleeper=lambda _s: None)
        assert report.ok, report.format_errors()
        assert [(r.name, r.action) for r in report.recipes] == [("team/tool", "install"), ("good", "install")]

    def test_unexpected_recipe_error_isolated(self, agent_config, local_policy, monkeypatch):
        from hostpolicy.core.use_cases import run as run_module

        real_install = run_module.install_recipe

        def install(recipe, *args, **kwargs):
            if recipe.name == "bad":
                raise RuntimeError("disk on fire")
            return real_install(recipe, *args, **kwargs)

        monkeypatch.setattr(run_module, "install_recipe", install)
        _write(local_policy, {"softwareRecipes": [{"name": "bad"}, {"name": "good"}]})
        report = run_once(agent_config, HostCapabilities(), sleeper=lambda _s: None)
        assert not report.ok
        assert report.errors == ["recipe bad: unexpected error: disk on fire"]
        assert RecipeDB(agent_config.state.recipe_db).get("good") is not None

    def test_undecodable_local_policy_is_warning(self, agent_config, local_policy, capabilities, mock_apt):
        local_policy.write_bytes(b'{"packages":[{"name":"caf\xe9"}]}')
        report = run_once(agent_config, capabilities, sleeper=lambda _s: None)
        assert report.ok
        assert report.source_warnings[0].startswith("local policy:")
        assert mock_apt.installed == {}

    def test_duplicate_recipe_runs_once(self, agent_config, local_policy, tmp_path):
        log = tmp_path / "dup.log"
        agent_config.execution.recipe_workers = 4
        step = {"scriptRun": {"script": f"echo ran >> {log}", "interpreter": "SHELL"}}
        _write(
            local_policy,
            {"softwareRecipes": [{"name": "dup", "installSteps": [step]}, {"name": "dup", "installSteps": [step]}]},
        )
        report = run_once(agent_config, HostCapabilities(), sleeper=lambda _s: None)
        assert [(r.name, r.action) for r in report.recipes] == [("dup", "install")]
        assert log.read_text().splitlines() == ["ran"]

    def test_parallel_recipe_workers(self, agent_config, local_policy):
        agent_config.execution.recipe_workers = 3
        _write(local_policy, {"softwareRecipes": [{"name": f"r{i}"} for i in range(5)]})
        report = run_once(agent_config, HostCapabilities(), sleeper=lambda _s: None)
        assert report.ok
        assert [r.name for r in report.recipes] == [f"r{i}" for i in range(5)]
        assert len(RecipeDB(agent_config.state.recipe_db).all()) == 5

    def test_to_dict_is_json(self, agent_config, local_policy, capabilities):
        _write(local_policy, {"packages": [{"name": "curl"}]})
        report = run_once(agent_config, capabilities, sleeper=lambda _s: None)
        data = json.loads(json.dumps(report.to_dict()))
        assert data["ok"] is True
        assert data["policy"]["packages"] == 1


class TestPlanRun:
    def test_plan(self, agent_config, local_policy, capabilities, mock_apt):
        _write(local_policy, {"packages": [{"name": "curl"}, {"name": "vim", "desiredState": "REMOVED"}]})
        result = plan_run(agent_config, capabilities)
        data = result.to_dict()
        assert data["changes"]["apt"]["to_install"] == ["curl"]
        assert data["policy"]["packages"][0]["name"] == "curl"
        assert mock_apt.calls_for("install") == []
