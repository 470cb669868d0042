"""Sequential thought chain with revisions and branches.

The calling LLM does the reasoning; this engine only tracks the steps. Each
submitted thought passes four validation phases in order:

1. Structural: numbering, depth and capacity limits.
2. Revision: the revised thought exists, revisions are enabled and the new
   confidence is high enough.
3. Branch: the fork point exists and branching is enabled.
4. Confidence growth: a main-line continuation whose confidence drops by
   more than ``min_confidence_growth`` is accepted but flagged.

Nodes live in one append-only arena. The main line, each branch and the
revision map are lists of arena indices.
"""

from __future__ import annotations

from typing import Any

from thought_server.tools.chain_types import ChainState, ThoughtCategory, ThoughtNode
from thought_server.tools.engine_base import ChainEngine, PreparedStep
from thought_server.utils.errors import (
    BranchError,
    ConfidenceError,
    RevisionError,
    StructuralError,
)
from thought_server.utils.scoring import categorize_thought, revision_impact

# Categories allowed to lower confidence without an advisory
REGRESSION_EXEMPT = frozenset({"revision", "hypothesis"})

KEY_INSIGHT_CONFIDENCE = 0.8
KEY_INSIGHT_LIMIT = 3


class ThoughtChainEngine(ChainEngine[ThoughtNode]):
    """Tracks one sequential thought chain.

    Example:
        engine = ThoughtChainEngine(ChainConfig(min_confidence_growth=0.2))
        node, metrics, advisories = engine.submit(
            ThoughtNode(content="A", thought_number=1, total_thoughts=3,
                        next_needed=True, confidence=0.4)
        )

    """

    chain_name = "sequential"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        # thought number -> arena index of the first node carrying it
        self._numbers: dict[int, int] = {}
        self._main: list[int] = []
        self._branches: dict[str, list[int]] = {}
        self._forks: dict[str, int] = {}
        # revised thought number -> arena indices of its revisions
        self._revisions: dict[int, list[int]] = {}

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _prepare(self, step: ThoughtNode) -> PreparedStep[ThoughtNode]:
        total = self._check_structure(step)
        confidence = self.resolve_confidence(
            step.content,
            step.confidence,
            step.category.confidence if step.category else None,
        )
        self._check_revision(step, confidence)
        branch_id = self._check_branch(step)

        category = self._categorize(step, confidence)
        flags: list[str] = []
        advisories: tuple[ConfidenceError, ...] = ()
        if branch_id is None and not step.is_revision:
            advisory = self._check_growth(step, confidence, category)
            if advisory is not None:
                advisories = (advisory,)
                flags.append("confidence_regression")
        if step.needs_more_thoughts and total != step.total_thoughts:
            flags.append("total_raised")

        node = step.model_copy(
            update={
                "total_thoughts": total,
                "confidence": confidence,
                "category": category,
                "branch_id": branch_id,
                "sequence": len(self._nodes),
                "flags": flags,
                "dependencies": self._dependencies(step, branch_id),
            }
        )
        return PreparedStep(node=node, line=branch_id, advisories=advisories)

    def _check_structure(self, step: ThoughtNode) -> int:
        if len(self._nodes) >= self.config.max_nodes_per_chain:
            raise StructuralError(
                f"Chain holds the maximum of {self.config.max_nodes_per_chain} thoughts",
                fields=["thoughtNumber"],
            )
        if step.thought_number > self.config.max_depth:
            raise StructuralError(
                f"thoughtNumber {step.thought_number} exceeds maximum depth "
                f"{self.config.max_depth}",
                fields=["thoughtNumber"],
                details={"max_depth": self.config.max_depth},
            )

        total = step.total_thoughts
        if step.thought_number > total:
            if not step.needs_more_thoughts:
                raise StructuralError(
                    f"thoughtNumber {step.thought_number} exceeds totalThoughts {total}; "
                    "set needsMoreThoughts to extend the estimate",
                    fields=["thoughtNumber", "totalThoughts"],
                )
            total = step.thought_number

        if step.revises_thought is not None and not step.is_revision:
            raise StructuralError(
                "revisesThought requires isRevision",
                fields=["revisesThought", "isRevision"],
            )

        # Numbers are unique across the main line and every branch
        if not step.is_revision and step.thought_number in self._numbers:
            raise StructuralError(
                f"thoughtNumber {step.thought_number} already exists in this chain",
                fields=["thoughtNumber"],
            )
        return total

    def _check_revision(self, step: ThoughtNode, confidence: float) -> None:
        if not step.is_revision:
            return
        target = step.revises_thought
        if target is None:
            raise RevisionError("isRevision requires revisesThought", field="revisesThought")
        if not self.config.revision_enabled:
            raise RevisionError(
                "Revisions are disabled", field="isRevision", reference=target
            )
        if target not in self._numbers:
            raise RevisionError(
                f"Cannot revise thought {target}: no such thought",
                field="revisesThought",
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

    def _check_branch(self, step: ThoughtNode) -> str | None:
        if not step.is_branch:
            return None
        if not self.config.branching_enabled:
            raise BranchError(
                "Branching is disabled",
                field="branchFromThought",
                reference=step.branch_from_thought,
            )

        fork = step.branch_from_thought
        if fork is None:
            # Continuation of an existing branch
            if step.branch_id not in self._forks:
                raise BranchError(
                    f"Unknown branch {step.branch_id!r}; supply branchFromThought to open it",
                    field="branchId",
                    reference=step.branch_id,
                )
            return step.branch_id

        if fork not in self._numbers:
            raise BranchError(
                f"Cannot branch from thought {fork}: no such thought",
                field="branchFromThought",
                reference=fork,
            )
        branch_id = step.branch_id or self._new_branch_id()
        existing_fork = self._forks.get(branch_id)
        if existing_fork is not None and existing_fork != fork:
            raise BranchError(
                f"Branch {branch_id!r} already forks from thought {existing_fork}",
                field="branchId",
                reference=branch_id,
                details={"fork": existing_fork},
            )
        return branch_id

    def _check_growth(
        self,
        step: ThoughtNode,
        confidence: float,
        category: ThoughtCategory | None,
    ) -> ConfidenceError | None:
        if not self._main:
            return None
        if category is not None and category.type in REGRESSION_EXEMPT:
            return None
        previous = self._effective_confidence(self._nodes[self._main[-1]])
        tolerance = self.config.min_confidence_growth
        if confidence < previous - tolerance:
            return ConfidenceError(previous, confidence, tolerance, step.thought_number)
        return None

    # ------------------------------------------------------------------
    # Normalization helpers
    # ------------------------------------------------------------------

    def _new_branch_id(self) -> str:
        n = len(self._forks) + 1
        while f"branch_{n}" in self._forks:
            n += 1
        return f"branch_{n}"

    def _categorize(self, step: ThoughtNode, confidence: float) -> ThoughtCategory | None:
        metadata: dict[str, Any] = {}
        if step.is_revision and step.revises_thought in self._numbers:
            target = self._nodes[self._numbers[step.revises_thought]]
            metadata["revisionImpact"] = round(revision_impact(target.content, step.content), 4)

        if step.category is not None:
            if metadata:
                merged = {**(step.category.metadata or {}), **metadata}
                return step.category.model_copy(update={"metadata": merged})
            return step.category
        if step.is_revision:
            return ThoughtCategory(
                type="revision", confidence=confidence, metadata=metadata or None
            )
        if not self.config.categorization_enabled:
            return None
        guess = categorize_thought(step.content)
        if guess is None:
            return None
        kind, keyword_confidence = guess
        return ThoughtCategory(type=kind, confidence=keyword_confidence)

    def _dependencies(self, step: ThoughtNode, branch_id: str | None) -> list[str]:
        chain = []
        if step.branch_from_thought is not None:
            chain.append(f"Branch from thought {step.branch_from_thought}")
        if step.revises_thought is not None:
            chain.append(f"Revises thought {step.revises_thought}")
        if branch_id is not None and branch_id in self._branches:
            chain.append(f"Branch {branch_id} history: {len(self._branches[branch_id])} thoughts")
        return chain

    def _effective_confidence(self, node: ThoughtNode) -> float:
        """Confidence of a node, superseded by its latest revision if any."""
        revisions = self._revisions.get(node.thought_number)
        if revisions:
            node = self._nodes[revisions[-1]]
        return node.confidence if node.confidence is not None else 0.0

    # ------------------------------------------------------------------
    # Commit hooks
    # ------------------------------------------------------------------

    def _index(self, node: ThoughtNode, line: str | None) -> None:
        index = node.sequence
        self._numbers.setdefault(node.thought_number, index)
        if line is not None:
            if line not in self._forks and node.branch_from_thought is not None:
                self._forks[line] = node.branch_from_thought
            self._branches.setdefault(line, []).append(index)
        elif not node.is_revision:
            self._main.append(index)
        if node.is_revision and node.revises_thought is not None:
            self._revisions.setdefault(node.revises_thought, []).append(index)

    def _next_state(self, node: ThoughtNode) -> ChainState:
        if not node.next_needed:
            return ChainState.COMPLETED
        if node.branch_id is not None:
            return ChainState.BRANCHING
        if node.is_revision:
            return ChainState.REVISING
        return ChainState.IN_PROGRESS

    def _number_of(self, node: ThoughtNode) -> int:
        return node.thought_number

    def _total_of(self, node: ThoughtNode) -> int:
        return node.total_thoughts

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, thought_number: int) -> ThoughtNode | None:
        """First node registered under ``thought_number``."""
        index = self._numbers.get(thought_number)
        return None if index is None else self._nodes[index]

    def main_line(self) -> list[ThoughtNode]:
        return [self._nodes[i] for i in self._main]

    def branch(self, branch_id: str) -> list[ThoughtNode]:
        return [self._nodes[i] for i in self._branches.get(branch_id, [])]

    @property
    def branch_ids(self) -> list[str]:
        return list(self._branches)

    def fork_of(self, branch_id: str) -> int | None:
        return self._forks.get(branch_id)

    def revisions_of(self, thought_number: int) -> list[ThoughtNode]:
        return [self._nodes[i] for i in self._revisions.get(thought_number, [])]

    def efficiency(self) -> float | None:
        """Share of branches whose latest thought clears the confidence threshold."""
        if not self._branches:
            return None
        threshold = self.config.confidence_threshold
        strong = 0
        for indices in self._branches.values():
            last = self._nodes[indices[-1]]
            if last.confidence is not None and last.confidence >= threshold:
                strong += 1
        return round(strong / len(self._branches), 4)

    def summary(self) -> dict[str, Any]:
        """Overview of the chain: totals, category distribution and key insights."""
        categories: dict[str, int] = {}
        insights = []
        for node in self._nodes:
            if node.category is None:
                continue
            categories[node.category.type] = categories.get(node.category.type, 0) + 1
            if node.category.confidence > KEY_INSIGHT_CONFIDENCE:
                insights.append(node.content)
        return {
            "totalThoughts": len(self._nodes),
            "mainLineLength": len(self._main),
            "branchCount": len(self._branches),
            "revisionCount": sum(len(v) for v in self._revisions.values()),
            "averageConfidence": self._average_confidence(),
            "categories": categories,
            "keyInsights": insights[:KEY_INSIGHT_LIMIT],
        }

    def snapshot(self) -> dict[str, Any]:
        """Structural view of the chain for status queries."""
        return {
            "chain": self.chain_name,
            "state": self.state.value,
            "nodeCount": self.node_count,
            "mainLine": [node.thought_number for node in self.main_line()],
            "branches": {
                branch_id: {
                    "fork": self._forks.get(branch_id),
                    "thoughts": [self._nodes[i].thought_number for i in indices],
                }
                for branch_id, indices in self._branches.items()
            },
            "revisions": {
                str(number): [self._nodes[i].thought_number for i in indices]
                for number, indices in self._revisions.items()
            },
        }
