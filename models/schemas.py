"""
Pydantic models for the HTTP surface.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Control API ───────────────────────────────────────────────────────

class ExecuteRequest(ApiModel):
    instruction: str | None = None


class StepSummary(ApiModel):
    id: str
    action: str
    status: str


class ExecuteResponse(ApiModel):
    run_id: str
    steps: list[StepSummary]


class RunStatusResponse(ApiModel):
    status: str


# ── Session protocol ──────────────────────────────────────────────────

class OpenSessionRequest(ApiModel):
    location: str | None = Field(default=None, validation_alias=AliasChoices("location", "url"))


class StepSessionRequest(ApiModel):
    session_id: str | None = None
    action: str | None = None
    arguments: dict[str, Any] = Field(default_factory=dict)


class SessionRefRequest(ApiModel):
    session_id: str | None = None


# ── Recipes ───────────────────────────────────────────────────────────

class RecipeRequest(ApiModel):
    name: str | None = None
    steps: list[dict[str, Any]] | None = None
