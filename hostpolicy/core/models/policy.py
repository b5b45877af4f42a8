"""
Policy models — the declarative desired state for a host.

A ``PolicyDocument`` is what a policy source produces (the local
declaration file or the remote lookup). An ``EffectivePolicy`` is the
merged, host-applicable result; every entry in it is wrapped in a
``Sourced*`` record that remembers where it came from.

Wire documents use camelCase keys (``desiredState``, ``baseUrl``,
``packageRepositories``); Python attributes are snake_case.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """Base for models parsed from policy documents."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _enum_value(value: Any, unspecified: tuple[str, ...], default: str) -> Any:
    """Normalize an enum wire value (case-insensitive, unspecified → default)."""
    if value is None:
        return default
    if isinstance(value, Enum):
        return value
    text = str(value).strip().upper()
    if not text or text in unspecified:
        return default
    return text


# ── Enums ───────────────────────────────────────────────────────


class Manager(str, Enum):
    """Package manager a package resource targets."""

    ANY = "ANY"
    APT = "APT"
    YUM = "YUM"
    ZYPPER = "ZYPPER"
    GOO = "GOO"


class DesiredState(str, Enum):
    """Desired state of a package or recipe."""

    INSTALLED = "INSTALLED"
    REMOVED = "REMOVED"
    UPDATED = "UPDATED"


class ArchiveType(str, Enum):
    """Apt source line type."""

    DEB = "DEB"
    DEB_SRC = "DEB_SRC"


class ArchiveFormat(str, Enum):
    """Archive formats understood by the extraction step."""

    ZIP = "ZIP"
    TAR = "TAR"
    TAR_GZIP = "TAR_GZIP"
    TAR_BZIP = "TAR_BZIP"
    TAR_XZ = "TAR_XZ"


class Interpreter(str, Enum):
    """Interpreter for script steps."""

    INTERPRETER_UNSPECIFIED = "INTERPRETER_UNSPECIFIED"
    SHELL = "SHELL"
    POWERSHELL = "POWERSHELL"


# ── Packages ────────────────────────────────────────────────────


class PackageResource(_WireModel):
    """A package and the state it should be in."""

    name: str
    manager: Manager = Manager.ANY
    desired_state: DesiredState = DesiredState.INSTALLED

    @field_validator("manager", mode="before")
    @classmethod
    def _manager(cls, value: Any) -> Any:
        return _enum_value(value, ("MANAGER_UNSPECIFIED",), "ANY")

    @field_validator("desired_state", mode="before")
    @classmethod
    def _desired_state(cls, value: Any) -> Any:
        return _enum_value(value, ("DESIRED_STATE_UNSPECIFIED",), "INSTALLED")


# ── Repositories ────────────────────────────────────────────────


class AptRepository(_WireModel):
    archive_type: ArchiveType = ArchiveType.DEB
    uri: str
    distribution: str
    components: list[str] = Field(default_factory=list)
    gpg_key: str = ""

    @field_validator("archive_type", mode="before")
    @classmethod
    def _archive_type(cls, value: Any) -> Any:
        return _enum_value(value, ("ARCHIVE_TYPE_UNSPECIFIED",), "DEB")


class YumRepository(_WireModel):
    id: str
    display_name: str = ""
    base_url: str
    gpg_keys: list[str] = Field(default_factory=list)


class ZypperRepository(_WireModel):
    id: str
    display_name: str = ""
    base_url: str
    gpg_keys: list[str] = Field(default_factory=list)


class GooRepository(_WireModel):
    name: str
    url: str


class PackageRepository(_WireModel):
    """Exactly one manager-specific repository definition."""

    apt: AptRepository | None = None
    yum: YumRepository | None = None
    zypper: ZypperRepository | None = None
    goo: GooRepository | None = None

    @model_validator(mode="after")
    def _exactly_one(self) -> PackageRepository:
        present = [k for k in ("apt", "yum", "zypper", "goo") if getattr(self, k) is not None]
        if len(present) != 1:
            raise ValueError(
                f"package repository must define exactly one of apt, yum, zypper, goo "
                f"(got {present or 'none'})"
            )
        return self

    @property
    def manager(self) -> Manager:
        if self.apt is not None:
            return Manager.APT
        if self.yum is not None:
            return Manager.YUM
        if self.zypper is not None:
            return Manager.ZYPPER
        return Manager.GOO

    @property
    def identity(self) -> str:
        """Override key. Apt and Goo repositories have none and return ``""``."""
        if self.yum is not None:
            return f"yum-{self.yum.id}"
        if self.zypper is not None:
            return f"zypper-{self.zypper.id}"
        return ""

    @property
    def definition(self) -> AptRepository | YumRepository | ZypperRepository | GooRepository:
        return self.apt or self.yum or self.zypper or self.goo  # type: ignore[return-value]


# ── Software recipes ────────────────────────────────────────────


class RemoteArtifact(_WireModel):
    uri: str
    checksum: str = ""


class Artifact(_WireModel):
    """A file fetched before any recipe step runs."""

    id: str
    remote: RemoteArtifact | None = None
    allow_insecure: bool = False


class CopyFile(_WireModel):
    artifact_id: str
    destination: str
    overwrite: bool = False
    permissions: str = ""


class ExtractArchive(_WireModel):
    artifact_id: str
    destination: str
    type: ArchiveFormat

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, value: Any) -> Any:
        return _enum_value(value, (), "TAR")


class InstallMsi(_WireModel):
    artifact_id: str
    flags: list[str] = Field(default_factory=list)
    allowed_exit_codes: list[int] = Field(default_factory=list)


class InstallDpkg(_WireModel):
    artifact_id: str


class InstallRpm(_WireModel):
    artifact_id: str


class ExecFile(_WireModel):
    artifact_id: str = ""
    local_path: str = ""
    args: list[str] = Field(default_factory=list)
    allowed_exit_codes: list[int] = Field(default_factory=list)


class RunScript(_WireModel):
    script: str
    interpreter: Interpreter = Interpreter.INTERPRETER_UNSPECIFIED
    allowed_exit_codes: list[int] = Field(default_factory=list)

    @field_validator("interpreter", mode="before")
    @classmethod
    def _interpreter(cls, value: Any) -> Any:
        return _enum_value(value, (), "INTERPRETER_UNSPECIFIED")


_STEP_KINDS = (
    "file_copy",
    "archive_extraction",
    "msi_installation",
    "dpkg_installation",
    "rpm_installation",
    "file_exec",
    "script_run",
)


class RecipeStep(_WireModel):
    """One recipe step; exactly one action field is set."""

    file_copy: CopyFile | None = None
    archive_extraction: ExtractArchive | None = None
    msi_installation: InstallMsi | None = None
    dpkg_installation: InstallDpkg | None = None
    rpm_installation: InstallRpm | None = None
    file_exec: ExecFile | None = None
    script_run: RunScript | None = None

    @model_validator(mode="after")
    def _exactly_one(self) -> RecipeStep:
        present = [k for k in _STEP_KINDS if getattr(self, k) is not None]
        if len(present) != 1:
            raise ValueError(f"recipe step must define exactly one action (got {present or 'none'})")
        return self

    @property
    def kind(self) -> str:
        return next(k for k in _STEP_KINDS if getattr(self, k) is not None)

    @property
    def action(self) -> BaseModel:
        return getattr(self, self.kind)


class SoftwareRecipe(_WireModel):
    """A named, versioned, multi-step installer."""

    name: str
    version: str = ""
    desired_state: DesiredState = DesiredState.INSTALLED
    artifacts: list[Artifact] = Field(default_factory=list)
    install_steps: list[RecipeStep] = Field(default_factory=list)
    update_steps: list[RecipeStep] = Field(default_factory=list)

    @field_validator("desired_state", mode="before")
    @classmethod
    def _desired_state(cls, value: Any) -> Any:
        return _enum_value(value, ("DESIRED_STATE_UNSPECIFIED",), "INSTALLED")


# ── Documents ───────────────────────────────────────────────────


class PolicyDocument(_WireModel):
    """Desired state as produced by a single policy source."""

    packages: list[PackageResource] = Field(default_factory=list)
    package_repositories: list[PackageRepository] = Field(default_factory=list)
    software_recipes: list[SoftwareRecipe] = Field(default_factory=list)

    @field_validator("packages", "package_repositories", "software_recipes", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value


class SourcedPackage(BaseModel):
    source: str = ""
    package: PackageResource


class SourcedRepository(BaseModel):
    source: str = ""
    repository: PackageRepository


class SourcedSoftwareRecipe(BaseModel):
    source: str = ""
    recipe: SoftwareRecipe


class EffectivePolicy(BaseModel):
    """The merged policy applied to the host."""

    packages: list[SourcedPackage] = Field(default_factory=list)
    repositories: list[SourcedRepository] = Field(default_factory=list)
    recipes: list[SourcedSoftwareRecipe] = Field(default_factory=list)

    @classmethod
    def from_document(cls, document: PolicyDocument, source: str) -> EffectivePolicy:
        """Wrap every entry of ``document`` with ``source`` provenance."""
        return cls(
            packages=[SourcedPackage(source=source, package=p) for p in document.packages],
            repositories=[
                SourcedRepository(source=source, repository=r)
                for r in document.package_repositories
            ],
            recipes=[
                SourcedSoftwareRecipe(source=source, recipe=r)
                for r in document.software_recipes
            ],
        )

    @property
    def is_empty(self) -> bool:
        return not (self.packages or self.repositories or self.recipes)

    def to_document(self) -> PolicyDocument:
        """Drop provenance and return the plain document."""
        return PolicyDocument(
            packages=[sp.package for sp in self.packages],
            package_repositories=[sr.repository for sr in self.repositories],
            software_recipes=[sr.recipe for sr in self.recipes],
        )
