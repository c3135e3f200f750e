"""
Recipes feature — named step lists saved for replay.

Public API:
    from features.recipes import Recipe, RecipeError, RecipeStore, build_steps
"""

from features.recipes.models import Recipe, RecipeError
from features.recipes.store import RecipeStore, build_steps

__all__ = ["Recipe", "RecipeError", "RecipeStore", "build_steps"]
