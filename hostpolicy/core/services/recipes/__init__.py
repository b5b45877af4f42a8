"""
Software recipes — versioned, multi-step installers with a ledger.

Public API::

    from hostpolicy.core.services.recipes import install_recipe

    result = install_recipe(recipe, db, work_dir="/var/tmp", cancel=event)
"""

from hostpolicy.core.services.recipes.artifacts import fetch_artifacts
from hostpolicy.core.services.recipes.errors import ArtifactError, RecipeError, RecipeStepError
from hostpolicy.core.services.recipes.installer import (
    RecipeAction,
    RecipeResult,
    decide,
    install_recipe,
)

__all__ = [
    "ArtifactError",
    "RecipeAction",
    "RecipeError",
    "RecipeResult",
    "RecipeStepError",
    "decide",
    "fetch_artifacts",
    "install_recipe",
]
