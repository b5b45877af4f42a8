"""Recipe errors — a failing recipe fails alone and leaves the ledger unchanged."""

from __future__ import annotations

from hostpolicy.core.errors import HostPolicyError


class RecipeError(HostPolicyError):
    """A software recipe could not be applied."""


class ArtifactError(RecipeError):
    """An artifact could not be downloaded or verified."""


class RecipeStepError(RecipeError):
    """A recipe step failed."""
