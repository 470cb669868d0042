"""Tests for the integrated thinking coordinator."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from thought_server.config import ChainConfig
from thought_server.tools.chain_types import (
    DraftCategory,
    DraftNode,
    IntegratedStepRequest,
    ThoughtCategory,
    ThoughtNode,
)
from thought_server.tools.integrated import IntegrationCoordinator, fuse_categories
from thought_server.utils.errors import (
    ChainClosedError,
    CompositionError,
    RevisionError,
    StructuralError,
)


def request(number: int, **fields: Any) -> IntegratedStepRequest:
    payload: dict[str, Any] = {
        "content": f"Integrated step {number}",
        "thoughtNumber": number,
        "totalThoughts": 3,
        "confidence": 0.7,
    }
    payload.update(fields)
    return IntegratedStepRequest.model_validate(payload)


def thought(type_: str | None, confidence: float) -> ThoughtNode:
    category = ThoughtCategory(type=type_, confidence=confidence) if type_ else None
    return ThoughtNode(
        content="t", thought_number=1, total_thoughts=1, next_needed=False,
        confidence=confidence, category=category,
    )


def draft(type_: str | None, confidence: float) -> DraftNode:
    category = DraftCategory(type=type_, confidence=confidence) if type_ else None
    return DraftNode(
        content="d", draft_number=1, total_drafts=1, next_step_needed=False,
        confidence=confidence, category=category,
    )


class TestRequestDefaults:
    """Tests for integrated request defaults."""

    def test_draft_fields_default_from_thought(self) -> None:
        """Draft numbering mirrors the thought numbering when omitted."""
        step = request(2)
        assert step.draft_number == 2
        assert step.total_drafts == 3
        assert step.needs_revision is False
        assert step.next_step_needed is True

    def test_last_step_not_continued(self) -> None:
        """nextStepNeeded defaults to False on the last thought."""
        assert request(3).next_step_needed is False

    def test_explicit_values_kept(self) -> None:
        """Explicit draft fields override the defaults."""
        step = request(1, draftNumber=4, totalDrafts=6, nextStepNeeded=False)
        assert step.draft_number == 4
        assert step.total_drafts == 6
        assert step.next_step_needed is False

    def test_category_projection(self) -> None:
        """Draft categories map onto thought categories."""
        step = request(1, category={"type": "critique", "confidence": 0.6})
        projected = step.to_thought()
        assert projected.category is not None
        assert projected.category.type == "verification"
        assert step.to_draft().category == DraftCategory(type="critique", confidence=0.6)


class TestFuseCategories:
    """Tests for category fusion."""

    @pytest.mark.parametrize(
        ("thought_side", "draft_side", "expected"),
        [
            (("solution", 0.5), ("initial", 0.9), ("final", 0.5, "sequential")),
            (("analysis", 0.9), ("final", 0.4), ("final", 0.4, "draft")),
            (("solution", 0.6), ("final", 0.8), ("final", 0.8, "both")),
            (("analysis", 0.5), ("critique", 0.8), ("critique", 0.8, "draft")),
            (("hypothesis", 0.8), ("critique", 0.5), ("hypothesis", 0.8, "sequential")),
            (("analysis", 0.7), ("initial", 0.7), ("analysis", 0.7, "sequential")),
            ((None, 0.7), (None, 0.6), ("analysis", 0.7, "sequential")),
        ],
    )
    def test_fusion(
        self,
        thought_side: tuple[str | None, float],
        draft_side: tuple[str | None, float],
        expected: tuple[str, float, str],
    ) -> None:
        """Final wins outright, otherwise the more confident side decides."""
        fused = fuse_categories(thought(*thought_side), draft(*draft_side))
        assert (fused.type, fused.confidence, fused.source) == expected


class TestProcess:
    """Tests for IntegrationCoordinator.process."""

    def test_both_sides_advance(self, coordinator: IntegrationCoordinator) -> None:
        """An accepted step lands on both chains."""
        result = coordinator.process(request(1))

        assert coordinator.thoughts.node_count == 1
        assert coordinator.drafts.node_count == 1
        assert result.thought.thought_number == 1
        assert result.draft.draft_number == 1
        assert result.metrics.total_steps == 1
        assert result.sequential_metrics.total_steps == 1
        assert result.draft_metrics.total_steps == 1
        assert result.completed is False

    def test_completion(self, coordinator: IntegrationCoordinator) -> None:
        """Closing both sides completes the integrated chain."""
        for n in (1, 2, 3):
            result = coordinator.process(request(n))
        assert result.completed
        assert coordinator.is_closed
        assert result.category.type == "final"

    def test_closed_chain_rejects_further_steps(self, coordinator: IntegrationCoordinator) -> None:
        """A step after completion fails as chain_closed and changes neither side."""
        for n in (1, 2, 3):
            coordinator.process(request(n))
        with pytest.raises(ChainClosedError) as exc_info:
            coordinator.process(request(4, totalThoughts=4))

        error = exc_info.value
        assert not isinstance(error, CompositionError)
        assert error.code == "chain_closed"
        assert error.to_dict()["details"]["chain"] == "integrated"
        assert coordinator.thoughts.node_count == 3
        assert coordinator.drafts.node_count == 3
        assert coordinator.metrics.snapshot().total_steps == 4

    def test_thought_side_failure_is_atomic(self, coordinator: IntegrationCoordinator) -> None:
        """A thought-side rejection leaves both chains unchanged."""
        coordinator.process(request(1))
        with pytest.raises(CompositionError) as exc_info:
            coordinator.process(request(2, isRevision=True, revisesDraft=7))

        error = exc_info.value
        assert error.side == "sequential"
        assert isinstance(error.cause, RevisionError)
        assert error.to_dict()["details"]["cause"]["error"] == "revision_error"
        assert coordinator.thoughts.node_count == 1
        assert coordinator.drafts.node_count == 1
        assert coordinator.metrics.snapshot().success_rate == 0.5

    def test_draft_side_failure_is_atomic(self, coordinator: IntegrationCoordinator) -> None:
        """A draft-side rejection leaves the already validated thought uncommitted."""
        coordinator.process(request(1))
        with pytest.raises(CompositionError) as exc_info:
            coordinator.process(request(2, draftNumber=1))

        assert exc_info.value.side == "draft"
        assert isinstance(exc_info.value.cause, StructuralError)
        assert coordinator.thoughts.node_count == 1
        assert coordinator.drafts.node_count == 1

    def test_retry_after_failure(self, coordinator: IntegrationCoordinator) -> None:
        """A corrected retry succeeds after a rejection."""
        coordinator.process(request(1))
        with pytest.raises(CompositionError):
            coordinator.process(request(2, draftNumber=1))
        result = coordinator.process(request(2))
        assert result.thought.sequence == 1
        assert result.draft.sequence == 1

    def test_merged_context(self, coordinator: IntegrationCoordinator) -> None:
        """The request context is reported in the result."""
        result = coordinator.process(
            request(1, context={"problemScope": "parser", "assumptions": ["utf-8", 3]})
        )
        assert result.context.problem_scope == "parser"
        assert result.context.assumptions == ["utf-8"]
        data = result.to_dict()
        assert data["context"]["problemScope"] == "parser"
        assert "context_merge" in data["mcpEnhancements"]["optimizations"]

    def test_missing_context_suggested(self, coordinator: IntegrationCoordinator) -> None:
        """Steps without context get a suggestion to provide it."""
        result = coordinator.process(request(1))
        assert "provide_context" in result.enhancements["suggestions"]
        assert result.enhancements["contextWindow"] == 163840

    def test_advisories_collected(self, coordinator: IntegrationCoordinator) -> None:
        """Confidence regressions on either side are reported and count as failures."""
        coordinator.process(request(1, confidence=0.9))
        result = coordinator.process(request(2, confidence=0.4))
        assert len(result.advisories) == 2
        assert result.metrics.success_rate == 0.5

    def test_to_dict_without_metrics(self, coordinator: IntegrationCoordinator) -> None:
        """Metrics can be left out of the serialized result."""
        data = coordinator.process(request(1)).to_dict(include_metrics=False)
        assert "metrics" not in data
        assert data["thought"]["thoughtNumber"] == 1
        assert data["draft"]["draftNumber"] == 1


class TestParallelEligibility:
    """Tests for the parallel processing decision."""

    def test_eligible_above_threshold(self, coordinator: IntegrationCoordinator) -> None:
        """Confident steps are parallel eligible."""
        assert coordinator.process(request(1, confidence=0.8)).parallel_eligible

    def test_not_eligible_at_threshold(self, coordinator: IntegrationCoordinator) -> None:
        """The threshold itself is not enough."""
        assert not coordinator.process(request(1, confidence=0.6)).parallel_eligible

    def test_request_opt_out(self, coordinator: IntegrationCoordinator) -> None:
        """mcpFeatures.parallelProcessing=False disables parallel processing."""
        result = coordinator.process(
            request(1, confidence=0.9, mcpFeatures={"parallelProcessing": False})
        )
        assert not result.parallel_eligible

    def test_config_opt_out(self, clock: Callable[[], float]) -> None:
        """parallel_tasks=False disables parallel processing for every step."""
        coordinator = IntegrationCoordinator(ChainConfig(parallel_tasks=False), clock=clock)
        assert not coordinator.process(request(1, confidence=0.9)).parallel_eligible
