"""Data types shared by the thought, draft and integrated engines.

Nodes are pydantic models that accept both the camelCase wire names used by
MCP clients and their snake_case Python names. Nodes are frozen; engines
produce normalized copies with ``model_copy``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, NamedTuple, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from thought_server.utils.context import StepContext, sanitize_context
from thought_server.utils.errors import ConfidenceError, StructuralError
from thought_server.utils.metrics import ChainMetrics

ThoughtCategoryType = Literal["analysis", "hypothesis", "verification", "revision", "solution"]
DraftCategoryType = Literal["initial", "critique", "revision", "final"]

# Draft categories projected onto the sequential side of an integrated step
DRAFT_TO_THOUGHT_CATEGORY: dict[str, str] = {
    "initial": "analysis",
    "critique": "verification",
    "revision": "revision",
    "final": "solution",
}


def _alias(wire: str, python: str, *extra: str) -> dict[str, Any]:
    return {
        "validation_alias": AliasChoices(wire, python, *extra),
        "serialization_alias": wire,
    }


class ChainState(str, Enum):
    """Lifecycle of a chain."""

    EMPTY = "empty"
    IN_PROGRESS = "in_progress"
    BRANCHING = "branching"
    REVISING = "revising"
    COMPLETED = "completed"


class ThoughtCategory(BaseModel):
    """Category label for a thought with its own confidence."""

    model_config = ConfigDict(frozen=True)

    type: ThoughtCategoryType
    confidence: float = Field(ge=0.0, le=1.0)
    metadata: dict[str, Any] | None = None


class DraftCategory(BaseModel):
    """Category label for a draft with its own confidence."""

    model_config = ConfigDict(frozen=True)

    type: DraftCategoryType
    confidence: float = Field(ge=0.0, le=1.0)
    metadata: dict[str, Any] | None = None


class _StepModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    content: str = Field(min_length=1, **_alias("content", "content", "thought"))
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    context: StepContext | None = None

    # Assigned by the engine on acceptance
    sequence: int | None = None
    flags: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value

    @field_validator("context", mode="before")
    @classmethod
    def _sanitize_context(cls, value: Any) -> StepContext | None:
        if value is None:
            return None
        return sanitize_context(value)

    def to_dict(self) -> dict[str, Any]:
        """Wire representation, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ThoughtNode(_StepModel):
    """One step of a sequential thought chain."""

    thought_number: int = Field(ge=1, **_alias("thoughtNumber", "thought_number"))
    total_thoughts: int = Field(ge=1, **_alias("totalThoughts", "total_thoughts"))
    next_needed: bool = Field(**_alias("nextThoughtNeeded", "next_needed", "nextNeeded"))
    is_revision: bool = Field(default=False, **_alias("isRevision", "is_revision"))
    revises_thought: int | None = Field(
        default=None, ge=1, **_alias("revisesThought", "revises_thought")
    )
    branch_from_thought: int | None = Field(
        default=None, ge=1, **_alias("branchFromThought", "branch_from_thought")
    )
    branch_id: str | None = Field(default=None, **_alias("branchId", "branch_id"))
    needs_more_thoughts: bool = Field(
        default=False, **_alias("needsMoreThoughts", "needs_more_thoughts")
    )
    category: ThoughtCategory | None = None

    @field_validator("branch_id", mode="before")
    @classmethod
    def _blank_branch_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def is_branch(self) -> bool:
        return self.branch_from_thought is not None or self.branch_id is not None


class DraftNode(_StepModel):
    """One step of a chain-of-draft cycle."""

    draft_number: int = Field(ge=1, **_alias("draftNumber", "draft_number"))
    total_drafts: int = Field(ge=1, **_alias("totalDrafts", "total_drafts"))
    needs_revision: bool = Field(default=False, **_alias("needsRevision", "needs_revision"))
    next_step_needed: bool = Field(**_alias("nextStepNeeded", "next_step_needed"))
    is_revision: bool = Field(default=False, **_alias("isRevision", "is_revision"))
    revises_draft: int | None = Field(
        default=None, ge=1, **_alias("revisesDraft", "revises_draft")
    )
    is_critique: bool = Field(default=False, **_alias("isCritique", "is_critique"))
    critique_focus: str | None = Field(
        default=None, **_alias("critiqueFocus", "critique_focus")
    )
    reasoning_chain: list[str] = Field(
        default_factory=list, **_alias("reasoningChain", "reasoning_chain")
    )
    category: DraftCategory | None = None

    @field_validator("reasoning_chain", mode="before")
    @classmethod
    def _keep_text_links(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [item for item in value if isinstance(item, str) and item]
        return value


class McpFeatures(BaseModel):
    """Per-request processing hints for integrated steps."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    sequential_thinking: bool | None = Field(
        default=None, **_alias("sequentialThinking", "sequential_thinking")
    )
    draft_processing: bool | None = Field(
        default=None, **_alias("draftProcessing", "draft_processing")
    )
    parallel_processing: bool | None = Field(
        default=None, **_alias("parallelProcessing", "parallel_processing")
    )
    monitoring: bool | None = None


class IntegratedStepRequest(BaseModel):
    """A single step carrying both sequential and draft semantics.

    Draft numbering and continuation default from the thought fields when
    the caller omits them.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    content: str = Field(min_length=1, **_alias("content", "content", "thought"))
    thought_number: int = Field(ge=1, **_alias("thoughtNumber", "thought_number"))
    total_thoughts: int = Field(ge=1, **_alias("totalThoughts", "total_thoughts"))
    draft_number: int | None = Field(default=None, ge=1, **_alias("draftNumber", "draft_number"))
    total_drafts: int | None = Field(default=None, ge=1, **_alias("totalDrafts", "total_drafts"))
    needs_revision: bool | None = Field(default=None, **_alias("needsRevision", "needs_revision"))
    next_step_needed: bool | None = Field(
        default=None, **_alias("nextStepNeeded", "next_step_needed", "nextThoughtNeeded")
    )
    is_revision: bool = Field(default=False, **_alias("isRevision", "is_revision"))
    revises_draft: int | None = Field(
        default=None, ge=1, **_alias("revisesDraft", "revises_draft")
    )
    is_critique: bool = Field(default=False, **_alias("isCritique", "is_critique"))
    critique_focus: str | None = Field(default=None, **_alias("critiqueFocus", "critique_focus"))
    reasoning_chain: list[str] = Field(
        default_factory=list, **_alias("reasoningChain", "reasoning_chain")
    )
    category: DraftCategory | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    context: StepContext | None = None
    mcp_features: McpFeatures | None = Field(
        default=None, **_alias("mcpFeatures", "mcp_features")
    )

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value

    @field_validator("context", mode="before")
    @classmethod
    def _sanitize_context(cls, value: Any) -> StepContext | None:
        if value is None:
            return None
        return sanitize_context(value)

    @field_validator("reasoning_chain", mode="before")
    @classmethod
    def _keep_text_links(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [item for item in value if isinstance(item, str) and item]
        return value

    @model_validator(mode="after")
    def _fill_draft_defaults(self) -> IntegratedStepRequest:
        if self.draft_number is None:
            self.draft_number = self.thought_number
        if self.total_drafts is None:
            self.total_drafts = self.total_thoughts
        if self.needs_revision is None:
            self.needs_revision = False
        if self.next_step_needed is None:
            self.next_step_needed = self.thought_number < self.total_thoughts
        return self

    def to_thought(self) -> ThoughtNode:
        """Project onto the sequential chain."""
        category = None
        if self.category is not None:
            category = ThoughtCategory(
                type=DRAFT_TO_THOUGHT_CATEGORY[self.category.type],
                confidence=self.category.confidence,
                metadata=self.category.metadata,
            )
        return ThoughtNode(
            content=self.content,
            thought_number=self.thought_number,
            total_thoughts=self.total_thoughts,
            next_needed=bool(self.next_step_needed),
            is_revision=self.is_revision,
            revises_thought=self.revises_draft if self.is_revision else None,
            category=category,
            confidence=self.confidence,
            context=self.context,
        )

    def to_draft(self) -> DraftNode:
        """Project onto the draft cycle."""
        return DraftNode(
            content=self.content,
            draft_number=self.draft_number,
            total_drafts=self.total_drafts,
            needs_revision=bool(self.needs_revision),
            next_step_needed=bool(self.next_step_needed),
            is_revision=self.is_revision,
            revises_draft=self.revises_draft,
            is_critique=self.is_critique,
            critique_focus=self.critique_focus,
            reasoning_chain=list(self.reasoning_chain),
            category=self.category,
            confidence=self.confidence,
            context=self.context,
        )


class StepResult(NamedTuple):
    """Outcome of an accepted step: the node, fresh metrics and any advisories."""

    node: ThoughtNode | DraftNode
    metrics: ChainMetrics
    advisories: tuple[ConfidenceError, ...] = ()


ModelT = TypeVar("ModelT", bound=BaseModel)


def _field_name(loc: tuple[Any, ...]) -> str:
    return ".".join(str(part) for part in loc) if loc else "<root>"


def parse_step(model: type[ModelT], payload: dict[str, Any]) -> ModelT:
    """Validate a raw payload, converting pydantic errors into ``StructuralError``.

    Raises:
        StructuralError: Listing every offending field.

    """
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        errors = e.errors()
        fields = list(dict.fromkeys(_field_name(err["loc"]) for err in errors))
        problems = [f"{_field_name(err['loc'])}: {err['msg']}" for err in errors]
        raise StructuralError(
            f"Malformed {model.__name__}: " + "; ".join(problems),
            fields=fields,
        ) from e


__all__ = [
    "ChainMetrics",
    "ChainState",
    "DraftCategory",
    "DraftNode",
    "IntegratedStepRequest",
    "McpFeatures",
    "StepContext",
    "StepResult",
    "ThoughtCategory",
    "ThoughtNode",
    "parse_step",
]
