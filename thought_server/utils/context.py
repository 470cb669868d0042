"""Step context: sanitizing, quality scoring and merging.

Context arrives from clients in loosely-typed form. Lists keep only
non-empty strings, and a missing or non-mapping context becomes empty.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

CONTEXT_WEIGHTS = {
    "problem_scope": 0.4,
    "assumptions": 0.3,
    "constraints": 0.3,
}


def _clean_items(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, str) and item]


class StepContext(BaseModel):
    """Problem scope, assumptions and constraints attached to a step."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    problem_scope: str | None = Field(
        default=None,
        validation_alias=AliasChoices("problemScope", "problem_scope"),
        serialization_alias="problemScope",
    )
    assumptions: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)

    @field_validator("problem_scope", mode="before")
    @classmethod
    def _scope_is_text(cls, value: Any) -> str | None:
        return value if isinstance(value, str) and value else None

    @field_validator("assumptions", "constraints", mode="before")
    @classmethod
    def _drop_invalid_items(cls, value: Any) -> list[str]:
        return _clean_items(value)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def sanitize_context(raw: Any) -> StepContext:
    """Coerce arbitrary client input into a ``StepContext``."""
    if isinstance(raw, StepContext):
        return raw
    if not isinstance(raw, dict):
        return StepContext()
    return StepContext.model_validate(raw)


def context_confidence(context: StepContext | None) -> float:
    """Weighted completeness of a context: scope 0.4, assumptions 0.3, constraints 0.3."""
    if context is None:
        return 0.0
    score = 0.0
    if context.problem_scope:
        score += CONTEXT_WEIGHTS["problem_scope"]
    if context.assumptions:
        score += CONTEXT_WEIGHTS["assumptions"]
    if context.constraints:
        score += CONTEXT_WEIGHTS["constraints"]
    return round(score, 4)


def has_context_content(context: StepContext | None) -> bool:
    """True if any part of the context is populated."""
    return context is not None and bool(
        context.problem_scope or context.assumptions or context.constraints
    )


def merge_contexts(*contexts: StepContext | None) -> StepContext:
    """Merge contexts left to right.

    The first non-empty problem scope wins. Assumptions and constraints are
    unioned, keeping first-seen order.
    """
    scope: str | None = None
    assumptions: list[str] = []
    constraints: list[str] = []
    for context in contexts:
        if context is None:
            continue
        if scope is None and context.problem_scope:
            scope = context.problem_scope
        assumptions.extend(a for a in context.assumptions if a not in assumptions)
        constraints.extend(c for c in context.constraints if c not in constraints)
    return StepContext(problem_scope=scope, assumptions=assumptions, constraints=constraints)
