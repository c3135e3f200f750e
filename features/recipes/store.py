"""
Recipe store — saved step lists that can be replayed as new runs.
"""

from __future__ import annotations

import logging
import threading

from features.recipes.models import Recipe, RecipeError
from features.runs.models import DIAGNOSTIC_ACTIONS, Step

log = logging.getLogger(__name__)


def build_steps(raw_steps: list[dict]) -> list[Step]:
    """Turn stored ``{action, arguments}`` entries into fresh queued steps."""
    steps = []
    for i, raw in enumerate(raw_steps, start=1):
        if not isinstance(raw, dict):
            raise RecipeError(f"step {i} must be an object")
        try:
            step = Step.from_dict(raw)
        except ValueError as e:
            raise RecipeError(f"step {i}: {e}")
        if step.action in DIAGNOSTIC_ACTIONS:
            raise RecipeError(f"step {i}: {step.action.value} cannot be saved in a recipe")
        steps.append(step)
    return steps


class RecipeStore:
    def __init__(self):
        self._recipes: dict[str, Recipe] = {}
        self._lock = threading.Lock()

    def save(self, name: str, raw_steps: list[dict]) -> Recipe:
        """Validate and store a recipe, replacing any recipe with the same name."""
        name = (name or "").strip()
        if not name:
            raise RecipeError("name is required")
        if not raw_steps:
            raise RecipeError("steps are required")
        steps = build_steps(raw_steps)
        recipe = Recipe(
            name=name,
            steps=[{"action": s.action.value, "arguments": dict(s.arguments)} for s in steps],
        )
        with self._lock:
            self._recipes[name] = recipe
        log.info("[RECIPE] Saved: %s (%d steps)", name, len(steps))
        return recipe

    def get(self, name: str) -> Recipe | None:
        return self._recipes.get(name)

    def list(self) -> list[Recipe]:
        with self._lock:
            return sorted(self._recipes.values(), key=lambda r: r.created_at)
