"""Chain-of-draft cycle: drafts, critiques and revisions.

Drafts form a single linear history. A critique annotates an existing draft
instead of opening a new line; a revision supersedes an earlier draft.
Validation mirrors the thought chain:

1. Structural: numbering, draft limit, flag consistency.
2. Revision: target draft exists, revisions enabled, confidence high enough.
3. Critique: the critiqued draft exists.
4. Confidence growth between consecutive drafts (advisory only).
"""

from __future__ import annotations

from typing import Any

from thought_server.tools.chain_types import ChainState, DraftCategory, DraftNode
from thought_server.tools.engine_base import ChainEngine, PreparedStep
from thought_server.utils.errors import (
    ConfidenceError,
    CritiqueError,
    RevisionError,
    StructuralError,
)
from thought_server.utils.scoring import revision_impact

REGRESSION_EXEMPT = frozenset({"critique", "revision"})


class DraftCycleEngine(ChainEngine[DraftNode]):
    """Tracks one chain-of-draft cycle."""

    chain_name = "draft"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        # draft number -> arena index of the draft (critiques excluded)
        self._drafts: dict[int, int] = {}
        self._history: list[int] = []
        # critiqued draft number -> arena indices of critiques
        self._critiques: dict[int, list[int]] = {}
        self._revisions: dict[int, list[int]] = {}

    def _prepare(self, step: DraftNode) -> PreparedStep[DraftNode]:
        self._check_structure(step)
        confidence = self.resolve_confidence(
            step.content,
            step.confidence,
            step.category.confidence if step.category else None,
        )
        self._check_revision(step, confidence)
        target = self._check_critique(step)

        category = self._categorize(step, confidence)
        flags: list[str] = []
        advisories: tuple[ConfidenceError, ...] = ()
        if not step.is_critique and not step.is_revision:
            advisory = self._check_growth(step, confidence, category)
            if advisory is not None:
                advisories = (advisory,)
                flags.append("confidence_regression")
        if step.needs_revision:
            flags.append("needs_revision")

        dependencies = []
        if target is not None:
            dependencies.append(f"Critiques draft {target}")
        if step.is_revision:
            dependencies.append(f"Revises draft {step.revises_draft}")
        dependencies.extend(step.reasoning_chain)

        node = step.model_copy(
            update={
                "confidence": confidence,
                "category": category,
                "revises_draft": target if step.is_critique else step.revises_draft,
                "sequence": len(self._nodes),
                "flags": flags,
                "dependencies": dependencies,
            }
        )
        return PreparedStep(node=node, line=None, advisories=advisories)

    def _check_structure(self, step: DraftNode) -> None:
        if len(self._nodes) >= self.config.max_nodes_per_chain:
            raise StructuralError(
                f"Cycle holds the maximum of {self.config.max_nodes_per_chain} drafts",
                fields=["draftNumber"],
            )
        if step.draft_number > self.config.max_drafts:
            raise StructuralError(
                f"draftNumber {step.draft_number} exceeds the draft limit "
                f"{self.config.max_drafts}",
                fields=["draftNumber"],
                details={"max_drafts": self.config.max_drafts},
            )
        if step.draft_number > step.total_drafts:
            raise StructuralError(
                f"draftNumber {step.draft_number} exceeds totalDrafts {step.total_drafts}",
                fields=["draftNumber", "totalDrafts"],
            )
        if step.is_revision and step.is_critique:
            raise StructuralError(
                "A step cannot be both a revision and a critique",
                fields=["isRevision", "isCritique"],
            )
        if step.revises_draft is not None and not (step.is_revision or step.is_critique):
            raise StructuralError(
                "revisesDraft requires isRevision or isCritique",
                fields=["revisesDraft"],
            )
        if not step.is_revision and not step.is_critique and step.draft_number in self._drafts:
            raise StructuralError(
                f"draftNumber {step.draft_number} already exists",
                fields=["draftNumber"],
            )

    def _check_revision(self, step: DraftNode, confidence: float) -> None:
        if not step.is_revision:
            return
        target = step.revises_draft
        if target is None:
            raise RevisionError("isRevision requires revisesDraft", field="revisesDraft")
        if not self.config.revision_enabled:
            raise RevisionError("Revisions are disabled", field="isRevision", reference=target)
        if target not in self._drafts:
            raise RevisionError(
                f"Cannot revise draft {target}: no such draft",
                field="revisesDraft",
                reference=target,
            )
        if confidence < self.config.min_revision_confidence:
            raise RevisionError(
                f"Revision confidence {confidence:.2f} is below the minimum "
                f"{self.config.min_revision_confidence:.2f}",
                field="confidence",
                reference=target,
                details={"minimum": self.config.min_revision_confidence},
            )

    def _check_critique(self, step: DraftNode) -> int | None:
        if not step.is_critique:
            return None
        field = "revisesDraft" if step.revises_draft is not None else "draftNumber"
        target = step.revises_draft if step.revises_draft is not None else step.draft_number
        if target not in self._drafts:
            raise CritiqueError(
                f"Cannot critique draft {target}: no such draft",
                field=field,
                reference=target,
            )
        return target

    def _check_growth(
        self,
        step: DraftNode,
        confidence: float,
        category: DraftCategory,
    ) -> ConfidenceError | None:
        if not self._history or category.type in REGRESSION_EXEMPT:
            return None
        previous_node = self._nodes[self._history[-1]]
        previous = previous_node.confidence if previous_node.confidence is not None else 0.0
        tolerance = self.config.min_confidence_growth
        if confidence < previous - tolerance:
            return ConfidenceError(previous, confidence, tolerance, step.draft_number)
        return None

    def _categorize(self, step: DraftNode, confidence: float) -> DraftCategory:
        metadata: dict[str, Any] = {}
        if step.is_revision and step.revises_draft in self._drafts:
            target = self._nodes[self._drafts[step.revises_draft]]
            metadata["revisionImpact"] = round(revision_impact(target.content, step.content), 4)
        if step.is_critique and step.critique_focus:
            metadata["critiqueFocus"] = step.critique_focus

        if step.category is not None:
            if not metadata:
                return step.category
            merged = {**(step.category.metadata or {}), **metadata}
            return step.category.model_copy(update={"metadata": merged})

        if step.is_revision:
            kind = "revision"
        elif step.is_critique:
            kind = "critique"
        elif not step.next_step_needed:
            kind = "final"
        else:
            kind = "initial"
        return DraftCategory(type=kind, confidence=confidence, metadata=metadata or None)

    def _index(self, node: DraftNode, line: str | None) -> None:
        index = node.sequence
        if node.is_critique:
            self._critiques.setdefault(node.revises_draft, []).append(index)
            return
        self._drafts.setdefault(node.draft_number, index)
        self._history.append(index)
        if node.is_revision:
            self._revisions.setdefault(node.revises_draft, []).append(index)

    def _next_state(self, node: DraftNode) -> ChainState:
        if not node.next_step_needed:
            return ChainState.COMPLETED
        if node.is_critique:
            return ChainState.BRANCHING
        if node.is_revision:
            return ChainState.REVISING
        return ChainState.IN_PROGRESS

    def _number_of(self, node: DraftNode) -> int:
        return node.draft_number

    def _total_of(self, node: DraftNode) -> int:
        return node.total_drafts

    def get(self, draft_number: int) -> DraftNode | None:
        index = self._drafts.get(draft_number)
        return None if index is None else self._nodes[index]

    def history(self) -> list[DraftNode]:
        """Drafts and revisions in arrival order, without critiques."""
        return [self._nodes[i] for i in self._history]

    def critiques_of(self, draft_number: int) -> list[DraftNode]:
        return [self._nodes[i] for i in self._critiques.get(draft_number, [])]

    def efficiency(self) -> float | None:
        """Share of drafts that did not ask for revision."""
        if not self._history:
            return None
        clean = sum(1 for i in self._history if not self._nodes[i].needs_revision)
        return round(clean / len(self._history), 4)

    def summary(self) -> dict[str, Any]:
        latest = self._nodes[self._history[-1]] if self._history else None
        return {
            "totalDrafts": len(self._history),
            "critiqueCount": sum(len(v) for v in self._critiques.values()),
            "revisionCount": sum(len(v) for v in self._revisions.values()),
            "averageConfidence": self._average_confidence(),
            "finalDraft": latest.draft_number if latest else None,
            "finalContent": latest.content if latest else None,
        }

    def snapshot(self) -> dict[str, Any]:
        return {
            "chain": self.chain_name,
            "state": self.state.value,
            "nodeCount": self.node_count,
            "history": [node.draft_number for node in self.history()],
            "critiques": {
                str(number): len(indices) for number, indices in self._critiques.items()
            },
            "revisions": {
                str(number): [self._nodes[i].draft_number for i in indices]
                for number, indices in self._revisions.items()
            },
        }
