"""
Data models for the recipes feature.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


class RecipeError(ValueError):
    """A recipe payload is missing fields or names an unusable step."""


@dataclass
class Recipe:
    """A named, reusable list of automation steps."""
    name: str
    steps: list[dict]
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {"name": self.name, "steps": [dict(s) for s in self.steps], "createdAt": self.created_at}
