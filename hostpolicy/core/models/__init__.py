"""
Domain models — Pydantic types for the agent.

All models are re-exported here for convenient access:

    from hostpolicy.core.models import EffectivePolicy, PackageResource, PkgInfo, Recipe
"""

from hostpolicy.core.models.package import PkgInfo
from hostpolicy.core.models.policy import (
    AptRepository,
    ArchiveFormat,
    ArchiveType,
    Artifact,
    CopyFile,
    DesiredState,
    EffectivePolicy,
    ExecFile,
    ExtractArchive,
    GooRepository,
    InstallDpkg,
    InstallMsi,
    InstallRpm,
    Interpreter,
    Manager,
    PackageRepository,
    PackageResource,
    PolicyDocument,
    RecipeStep,
    RemoteArtifact,
    RunScript,
    SoftwareRecipe,
    SourcedPackage,
    SourcedRepository,
    SourcedSoftwareRecipe,
    YumRepository,
    ZypperRepository,
)
from hostpolicy.core.models.recipe import (
    Recipe,
    RecipeVersionError,
    compare_versions,
    format_version,
    parse_version,
)

__all__ = [
    # package.py
    "PkgInfo",
    # policy.py
    "AptRepository",
    "ArchiveFormat",
    "ArchiveType",
    "Artifact",
    "CopyFile",
    "DesiredState",
    "EffectivePolicy",
    "ExecFile",
    "ExtractArchive",
    "GooRepository",
    "InstallDpkg",
    "InstallMsi",
    "InstallRpm",
    "Interpreter",
    "Manager",
    "PackageRepository",
    "PackageResource",
    "PolicyDocument",
    "RecipeStep",
    "RemoteArtifact",
    "RunScript",
    "SoftwareRecipe",
    "SourcedPackage",
    "SourcedRepository",
    "SourcedSoftwareRecipe",
    "YumRepository",
    "ZypperRepository",
    # recipe.py
    "Recipe",
    "RecipeVersionError",
    "compare_versions",
    "format_version",
    "parse_version",
]
