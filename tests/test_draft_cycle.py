"""Tests for the chain-of-draft engine."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from thought_server.config import ChainConfig
from thought_server.tools.chain_types import ChainState, DraftCategory, DraftNode
from thought_server.tools.draft_cycle import DraftCycleEngine
from thought_server.utils.errors import (
    ChainClosedError,
    CritiqueError,
    RevisionError,
    StructuralError,
)

MakeDraft = Callable[..., DraftNode]


class TestDrafts:
    """Tests for plain drafts."""

    def test_initial_draft(self, draft_engine: DraftCycleEngine, make_draft: MakeDraft) -> None:
        """A first draft is accepted and categorized as initial."""
        node, metrics, advisories = draft_engine.submit(make_draft(1))

        assert node.category is not None
        assert node.category.type == "initial"
        assert node.category.confidence == 0.7
        assert advisories == ()
        assert metrics.total_steps == 1
        assert draft_engine.state is ChainState.IN_PROGRESS

    def test_final_draft_closes(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """nextStepNeeded=False categorizes the draft as final and closes the cycle."""
        draft_engine.submit(make_draft(1))
        node, _, _ = draft_engine.submit(make_draft(2, next_step_needed=False))

        assert node.category is not None
        assert node.category.type == "final"
        assert draft_engine.is_closed
        with pytest.raises(ChainClosedError):
            draft_engine.submit(make_draft(3))
        assert draft_engine.node_count == 2

    def test_reasoning_chain_as_dependencies(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """Reasoning chain entries become dependencies."""
        node, _, _ = draft_engine.submit(make_draft(1, reasoning_chain=["premise", "", "step"]))
        assert node.dependencies == ["premise", "step"]

    def test_needs_revision_flag(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """needsRevision is carried as a flag and lowers efficiency."""
        draft_engine.submit(make_draft(1))
        node, _, _ = draft_engine.submit(make_draft(2, needs_revision=True))
        assert "needs_revision" in node.flags
        assert draft_engine.efficiency() == 0.5

    def test_explicit_category_kept(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """A caller-supplied category is kept."""
        node, _, _ = draft_engine.submit(
            make_draft(1, confidence=None, category=DraftCategory(type="final", confidence=0.9))
        )
        assert node.category is not None
        assert node.category.type == "final"
        assert node.confidence == 0.9


class TestDraftStructure:
    """Tests for structural validation of drafts."""

    def test_duplicate_number(self, draft_engine: DraftCycleEngine, make_draft: MakeDraft) -> None:
        """A draft number can only be used once by plain drafts."""
        draft_engine.submit(make_draft(1))
        with pytest.raises(StructuralError, match="already exists"):
            draft_engine.submit(make_draft(1))

    def test_draft_limit(self, clock: Callable[[], float], make_draft: MakeDraft) -> None:
        """Drafts past maxDrafts are rejected."""
        engine = DraftCycleEngine(ChainConfig(max_drafts=2), clock=clock)
        with pytest.raises(StructuralError, match="draft limit"):
            engine.submit(make_draft(3))

    def test_number_beyond_total(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """draftNumber > totalDrafts is rejected."""
        with pytest.raises(StructuralError) as exc_info:
            draft_engine.submit(make_draft(3, total_drafts=2))
        assert exc_info.value.fields == ["draftNumber", "totalDrafts"]

    def test_revision_and_critique(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """A step cannot be both a revision and a critique."""
        draft_engine.submit(make_draft(1))
        with pytest.raises(StructuralError, match="both"):
            draft_engine.submit(
                make_draft(2, is_revision=True, is_critique=True, revises_draft=1)
            )
        assert draft_engine.node_count == 1

    def test_revises_without_flag(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """revisesDraft needs isRevision or isCritique."""
        draft_engine.submit(make_draft(1))
        with pytest.raises(StructuralError) as exc_info:
            draft_engine.submit(make_draft(2, revises_draft=1))
        assert exc_info.value.fields == ["revisesDraft"]


class TestCritiques:
    """Tests for critiques annotating drafts."""

    def test_critique_by_draft_number(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """A critique without revisesDraft targets its own draftNumber."""
        draft_engine.submit(make_draft(1))
        node, _, _ = draft_engine.submit(
            make_draft(1, "Too vague", is_critique=True, critique_focus="clarity", confidence=0.4)
        )

        assert node.revises_draft == 1
        assert node.category is not None
        assert node.category.type == "critique"
        assert node.category.metadata == {"critiqueFocus": "clarity"}
        assert "Critiques draft 1" in node.dependencies
        assert draft_engine.state is ChainState.BRANCHING
        assert [c.content for c in draft_engine.critiques_of(1)] == ["Too vague"]
        assert [d.draft_number for d in draft_engine.history()] == [1]

    def test_critique_not_flagged(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """Critiques may carry low confidence without an advisory."""
        draft_engine.submit(make_draft(1, confidence=0.9))
        _, _, advisories = draft_engine.submit(make_draft(1, is_critique=True, confidence=0.1))
        assert advisories == ()

    def test_critique_missing_target(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """Critiquing a draft that does not exist fails."""
        draft_engine.submit(make_draft(1))
        with pytest.raises(CritiqueError) as exc_info:
            draft_engine.submit(make_draft(2, is_critique=True, revises_draft=4))
        assert exc_info.value.field == "revisesDraft"
        assert exc_info.value.reference == 4
        assert draft_engine.node_count == 1

    def test_critique_of_unsubmitted_number(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """Without revisesDraft the draftNumber itself must exist."""
        with pytest.raises(CritiqueError) as exc_info:
            draft_engine.submit(make_draft(1, is_critique=True))
        assert exc_info.value.field == "draftNumber"


class TestDraftRevisions:
    """Tests for draft revisions."""

    def test_revision_accepted(self, draft_engine: DraftCycleEngine, make_draft: MakeDraft) -> None:
        """A revision supersedes its target and joins the history."""
        draft_engine.submit(make_draft(1, "Outline the parser module"))
        node, _, _ = draft_engine.submit(
            make_draft(2, "Outline the lexer module", is_revision=True,
                       revises_draft=1, confidence=0.8)
        )

        assert node.category is not None
        assert node.category.type == "revision"
        assert node.category.metadata is not None
        assert node.category.metadata["revisionImpact"] > 0
        assert draft_engine.state is ChainState.REVISING
        assert [d.draft_number for d in draft_engine.history()] == [1, 2]
        assert draft_engine.snapshot()["revisions"] == {"1": [2]}

    def test_revision_missing_target(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """Revising an unknown draft fails."""
        with pytest.raises(RevisionError) as exc_info:
            draft_engine.submit(make_draft(1, is_revision=True, revises_draft=3))
        assert exc_info.value.reference == 3

    def test_revision_confidence(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """Revisions below minRevisionConfidence fail."""
        draft_engine.submit(make_draft(1))
        with pytest.raises(RevisionError, match="below the minimum"):
            draft_engine.submit(make_draft(2, is_revision=True, revises_draft=1, confidence=0.5))


class TestDraftConfidence:
    """Tests for confidence growth between drafts."""

    def test_regression_flagged(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """A plain draft losing confidence is accepted with an advisory."""
        draft_engine.submit(make_draft(1, confidence=0.9))
        node, metrics, advisories = draft_engine.submit(make_draft(2, confidence=0.5))

        assert len(advisories) == 1
        assert advisories[0].current == 0.5
        assert "confidence_regression" in node.flags
        assert metrics.success_rate == 0.5

    def test_small_dip_tolerated(
        self, draft_engine: DraftCycleEngine, make_draft: MakeDraft
    ) -> None:
        """Dips within the tolerance pass silently."""
        draft_engine.submit(make_draft(1, confidence=0.7))
        _, _, advisories = draft_engine.submit(make_draft(2, confidence=0.67))
        assert advisories == ()


class TestDraftSummary:
    """Tests for summaries and snapshots."""

    def test_summary(self, draft_engine: DraftCycleEngine, make_draft: MakeDraft) -> None:
        """summary reports counts and the latest draft."""
        draft_engine.submit(make_draft(1))
        draft_engine.submit(make_draft(1, is_critique=True))
        draft_engine.submit(make_draft(2, "Final answer", next_step_needed=False))

        summary = draft_engine.summary()
        assert summary["totalDrafts"] == 2
        assert summary["critiqueCount"] == 1
        assert summary["revisionCount"] == 0
        assert summary["finalDraft"] == 2
        assert summary["finalContent"] == "Final answer"

    def test_empty_summary(self, draft_engine: DraftCycleEngine) -> None:
        """An empty cycle summarizes to zeros."""
        summary = draft_engine.summary()
        assert summary["totalDrafts"] == 0
        assert summary["finalDraft"] is None
        assert summary["averageConfidence"] == 0.0
        assert draft_engine.efficiency() is None
