"""
Tests for data models — policy documents, wire enums and ledger rows.
"""

import pytest
from pydantic import ValidationError

from hostpolicy.core.models.policy import (
    ArchiveType,
    DesiredState,
    EffectivePolicy,
    Interpreter,
    Manager,
    PackageRepository,
    PolicyDocument,
    RecipeStep,
    SoftwareRecipe,
)
from hostpolicy.core.models.recipe import (
    Recipe,
    RecipeVersionError,
    compare_versions,
    format_version,
    parse_version,
)

# ── Policy documents ────────────────────────────────────────────────


class TestPolicyDocument:
    def test_empty_document(self):
        doc = PolicyDocument.model_validate({})
        assert doc.packages == []
        assert doc.package_repositories == []
        assert doc.software_recipes == []

    def test_null_lists(self):
        doc = PolicyDocument.model_validate({"packages": None, "softwareRecipes": None})
        assert doc.packages == []
        assert doc.software_recipes == []

    def test_camel_case_keys(self):
        doc = PolicyDocument.model_validate(
            {
                "packages": [{"name": "curl", "manager": "apt", "desiredState": "removed"}],
                "packageRepositories": [
                    {"yum": {"id": "epel", "displayName": "EPEL", "baseUrl": "http://x/"}}
                ],
            }
        )
        pkg = doc.packages[0]
        assert pkg.manager == Manager.APT
        assert pkg.desired_state == DesiredState.REMOVED
        repo = doc.package_repositories[0]
        assert repo.yum.display_name == "EPEL"
        assert repo.yum.base_url == "http://x/"

    def test_snake_case_keys_accepted(self):
        doc = PolicyDocument.model_validate(
            {"packages": [{"name": "curl", "desired_state": "UPDATED"}]}
        )
        assert doc.packages[0].desired_state == DesiredState.UPDATED

    def test_unspecified_enums_use_defaults(self):
        doc = PolicyDocument.model_validate(
            {
                "packages": [
                    {
                        "name": "curl",
                        "manager": "MANAGER_UNSPECIFIED",
                        "desiredState": "DESIRED_STATE_UNSPECIFIED",
                    }
                ]
            }
        )
        assert doc.packages[0].manager == Manager.ANY
        assert doc.packages[0].desired_state == DesiredState.INSTALLED

    def test_unknown_manager_rejected(self):
        with pytest.raises(ValidationError):
            PolicyDocument.model_validate({"packages": [{"name": "x", "manager": "pacman"}]})


class TestPackageRepository:
    def test_exactly_one_required(self):
        with pytest.raises(ValidationError):
            PackageRepository.model_validate({})

    def test_two_definitions_rejected(self):
        with pytest.raises(ValidationError):
            PackageRepository.model_validate(
                {
                    "apt": {"uri": "http://a/", "distribution": "stable"},
                    "goo": {"name": "g", "url": "http://g/"},
                }
            )

    def test_identity(self):
        yum = PackageRepository.model_validate({"yum": {"id": "a", "baseUrl": "http://y/"}})
        zyp = PackageRepository.model_validate({"zypper": {"id": "a", "baseUrl": "http://z/"}})
        apt = PackageRepository.model_validate({"apt": {"uri": "http://a/", "distribution": "s"}})
        goo = PackageRepository.model_validate({"goo": {"name": "g", "url": "http://g/"}})
        assert yum.identity == "yum-a"
        assert zyp.identity == "zypper-a"
        assert apt.identity == ""
        assert goo.identity == ""

    def test_manager(self):
        apt = PackageRepository.model_validate({"apt": {"uri": "http://a/", "distribution": "s"}})
        assert apt.manager == Manager.APT
        assert apt.apt.archive_type == ArchiveType.DEB

    def test_archive_type_deb_src(self):
        apt = PackageRepository.model_validate(
            {"apt": {"archiveType": "deb_src", "uri": "http://a/", "distribution": "s"}}
        )
        assert apt.apt.archive_type == ArchiveType.DEB_SRC


class TestRecipeStep:
    def test_kind_and_action(self):
        step = RecipeStep.model_validate({"scriptRun": {"script": "echo hi", "interpreter": "shell"}})
        assert step.kind == "script_run"
        assert step.action.interpreter == Interpreter.SHELL

    def test_empty_step_rejected(self):
        with pytest.raises(ValidationError):
            RecipeStep.model_validate({})

    def test_two_actions_rejected(self):
        with pytest.raises(ValidationError):
            RecipeStep.model_validate(
                {
                    "scriptRun": {"script": "true"},
                    "fileExec": {"localPath": "/bin/true"},
                }
            )

    def test_recipe_defaults(self):
        recipe = SoftwareRecipe.model_validate({"name": "tool"})
        assert recipe.version == ""
        assert recipe.desired_state == DesiredState.INSTALLED
        assert recipe.install_steps == []


class TestEffectivePolicy:
    def test_from_document_sets_source(self):
        doc = PolicyDocument.model_validate(
            {"packages": [{"name": "a"}], "softwareRecipes": [{"name": "r"}]}
        )
        policy = EffectivePolicy.from_document(doc, "remote")
        assert policy.packages[0].source == "remote"
        assert policy.recipes[0].source == "remote"
        assert not policy.is_empty

    def test_to_document_drops_source(self):
        doc = PolicyDocument.model_validate({"packages": [{"name": "a"}]})
        assert EffectivePolicy.from_document(doc, "local").to_document() == doc

    def test_empty(self):
        assert EffectivePolicy().is_empty


# ── Recipe ledger rows ──────────────────────────────────────────────


class TestVersions:
    def test_parse(self):
        assert parse_version("1.2.3") == (1, 2, 3)
        assert parse_version("10") == (10,)
        assert parse_version("") == (0,)

    @pytest.mark.parametrize("bad", ["1.a", "-1", "1..2", "1.2.3.4.5", "v1", " 1"])
    def test_parse_invalid(self, bad):
        with pytest.raises(RecipeVersionError):
            parse_version(bad)

    def test_version_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_version("x")

    def test_numeric_ordering(self):
        assert compare_versions((1, 10), (1, 9)) == 1
        assert compare_versions((1, 9), (1, 10)) == -1

    def test_zero_padding(self):
        assert compare_versions((1, 2), (1, 2, 0)) == 0
        assert compare_versions((1, 2, 0, 1), (1, 2)) == 1

    def test_format(self):
        assert format_version((1, 2, 3)) == "1.2.3"


class TestRecipe:
    def test_aliases(self):
        recipe = Recipe.model_validate(
            {"Name": "tool", "Version": [1, 2], "InstallTime": 5, "Success": True}
        )
        assert recipe.name == "tool"
        assert recipe.version == (1, 2)
        dumped = recipe.model_dump(mode="json", by_alias=True)
        assert dumped == {"Name": "tool", "Version": [1, 2], "InstallTime": 5, "Success": True}

    def test_is_older_than(self):
        recipe = Recipe(name="tool", version=(1, 2))
        assert recipe.is_older_than("1.3")
        assert recipe.is_older_than("1.10")
        assert not recipe.is_older_than("1.2")
        assert not recipe.is_older_than("1.2.0")
        assert not recipe.is_older_than("1.1")

    def test_empty_or_bad_version_never_newer(self):
        recipe = Recipe(name="tool", version=(1,))
        assert not recipe.is_older_than("")
        assert not recipe.is_older_than("latest")
