"""Integrated thinking: one request feeding both a thought chain and a draft cycle.

The coordinator owns its own pair of engines. A request is projected onto
each side, both sides are validated, and only then are both committed.
Either side failing raises ``CompositionError`` and neither chain changes.
Once both sides complete, further requests raise ``ChainClosedError``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from thought_server.config import ChainConfig
from thought_server.tools.chain_types import (
    DraftNode,
    IntegratedStepRequest,
    StepContext,
    ThoughtNode,
)
from thought_server.tools.draft_cycle import DraftCycleEngine
from thought_server.tools.engine_base import AuxiliaryScorer
from thought_server.tools.thought_chain import ThoughtChainEngine
from thought_server.utils.context import context_confidence, has_context_content, merge_contexts
from thought_server.utils.errors import (
    ChainClosedError,
    ChainError,
    CompositionError,
    ConfidenceError,
)
from thought_server.utils.metrics import ChainMetrics, MetricsAggregator

FINAL_TYPES = frozenset({"final", "solution"})


@dataclass(frozen=True)
class FusedCategory:
    """Category chosen for an integrated step and where it came from."""

    type: str
    confidence: float
    source: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "confidence": self.confidence, "source": self.source}


def fuse_categories(thought: ThoughtNode, draft: DraftNode) -> FusedCategory:
    """Combine the accepted thought and draft into one category.

    A final or solution on either side wins outright. Otherwise the side with
    the higher confidence supplies the category, ties going to the thought.
    """
    thought_type = thought.category.type if thought.category else "analysis"
    draft_type = draft.category.type if draft.category else "initial"
    thought_conf = thought.confidence if thought.confidence is not None else 0.0
    draft_conf = draft.confidence if draft.confidence is not None else 0.0

    thought_final = thought_type in FINAL_TYPES
    draft_final = draft_type in FINAL_TYPES
    if thought_final and draft_final:
        return FusedCategory("final", max(thought_conf, draft_conf), "both")
    if thought_final:
        return FusedCategory("final", thought_conf, "sequential")
    if draft_final:
        return FusedCategory("final", draft_conf, "draft")
    if draft_conf > thought_conf:
        return FusedCategory(draft_type, draft_conf, "draft")
    return FusedCategory(thought_type, thought_conf, "sequential")


@dataclass
class IntegratedResult:
    """Everything produced by one integrated step."""

    thought: ThoughtNode
    draft: DraftNode
    category: FusedCategory
    parallel_eligible: bool
    context: StepContext
    metrics: ChainMetrics
    sequential_metrics: ChainMetrics
    draft_metrics: ChainMetrics
    advisories: tuple[ConfidenceError, ...] = ()
    enhancements: dict[str, Any] = field(default_factory=dict)
    completed: bool = False

    def to_dict(self, *, include_metrics: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "thought": self.thought.to_dict(),
            "draft": self.draft.to_dict(),
            "category": self.category.to_dict(),
            "confidence": self.category.confidence,
            "parallelEligible": self.parallel_eligible,
            "context": self.context.to_dict(),
            "contextConfidence": context_confidence(self.context),
            "advisories": [advisory.to_dict() for advisory in self.advisories],
            "mcpEnhancements": self.enhancements,
            "completed": self.completed,
        }
        if include_metrics:
            data["metrics"] = {
                "integrated": self.metrics.to_dict(),
                "sequential": self.sequential_metrics.to_dict(),
                "draft": self.draft_metrics.to_dict(),
            }
        return data


class IntegrationCoordinator:
    """Drives a thought chain and a draft cycle in lockstep."""

    def __init__(
        self,
        config: ChainConfig | None = None,
        *,
        thoughts: ThoughtChainEngine | None = None,
        drafts: DraftCycleEngine | None = None,
        scorer: AuxiliaryScorer | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.config = config or ChainConfig()
        self._clock = clock
        self.thoughts = thoughts or ThoughtChainEngine(self.config, scorer=scorer, clock=clock)
        self.drafts = drafts or DraftCycleEngine(self.config, scorer=scorer, clock=clock)
        self.metrics = MetricsAggregator(window=self.config.metrics_window)

    def process(self, request: IntegratedStepRequest) -> IntegratedResult:
        """Validate both projections, then commit both.

        Raises:
            ChainClosedError: If the integrated chain is already completed.
            CompositionError: If either side rejects the step. Neither chain
                is modified.

        """
        started = self._clock()
        if self.is_closed:
            closed = ChainClosedError("integrated", self.thoughts.node_count)
            self._reject(started, "integrated", closed)
            raise closed
        try:
            thought_plan = self.thoughts.prepare(request.to_thought())
        except ChainError as e:
            self._reject(started, "sequential", e)
            raise CompositionError("sequential", e) from e
        try:
            draft_plan = self.drafts.prepare(request.to_draft())
        except ChainError as e:
            self._reject(started, "draft", e)
            raise CompositionError("draft", e) from e

        thought_result = self.thoughts.commit(thought_plan, started=started)
        draft_result = self.drafts.commit(draft_plan, started=started)
        thought, draft = thought_result.node, draft_result.node

        fused = fuse_categories(thought, draft)
        parallel = self._parallel_eligible(fused.confidence, request)
        merged = merge_contexts(request.context, thought.context, draft.context)
        advisories = thought_result.advisories + draft_result.advisories
        efficiencies = [
            value
            for value in (self.thoughts.efficiency(), self.drafts.efficiency())
            if value is not None
        ]

        metrics = self.metrics.record(
            max(0.0, (self._clock() - started) * 1000),
            self.thoughts.resource_estimate() + self.drafts.resource_estimate(),
            not advisories,
            fused.confidence,
            efficiency=round(sum(efficiencies) / len(efficiencies), 4) if efficiencies else None,
        )
        logger.debug(
            f"Integrated step {thought.thought_number}/{draft.draft_number} fused as "
            f"{fused.type} ({fused.confidence:.2f}, parallel={parallel})"
        )
        return IntegratedResult(
            thought=thought,
            draft=draft,
            category=fused,
            parallel_eligible=parallel,
            context=merged,
            metrics=metrics,
            sequential_metrics=thought_result.metrics,
            draft_metrics=draft_result.metrics,
            advisories=advisories,
            enhancements=self._enhancements(request, merged, parallel),
            completed=self.thoughts.is_closed and self.drafts.is_closed,
        )

    def _reject(self, started: float, side: str, error: ChainError) -> None:
        self.metrics.record(
            max(0.0, (self._clock() - started) * 1000),
            self.thoughts.resource_estimate() + self.drafts.resource_estimate(),
            False,
            None,
        )
        logger.warning(f"Integrated step rejected by {side} chain ({error.code}): {error.message}")

    def _parallel_eligible(self, confidence: float, request: IntegratedStepRequest) -> bool:
        if not self.config.parallel_tasks:
            return False
        features = request.mcp_features
        if features is not None and features.parallel_processing is False:
            return False
        return confidence > self.config.confidence_threshold

    def _enhancements(
        self,
        request: IntegratedStepRequest,
        merged: StepContext,
        parallel: bool,
    ) -> dict[str, Any]:
        suggestions = []
        for source in (self.thoughts.metrics, self.drafts.metrics, self.metrics):
            for recommendation in source.assess():
                if recommendation.action not in suggestions:
                    suggestions.append(recommendation.action)
        if not has_context_content(merged):
            suggestions.append("provide_context")

        optimizations = []
        if parallel:
            optimizations.append("parallel_processing")
        if has_context_content(merged):
            optimizations.append("context_merge")
        features = request.mcp_features
        if features is not None and features.monitoring:
            optimizations.append("monitoring")

        return {
            "contextWindow": self.config.context_window,
            "suggestions": suggestions,
            "optimizations": optimizations,
        }

    @property
    def is_closed(self) -> bool:
        return self.thoughts.is_closed and self.drafts.is_closed

    def snapshot(self) -> dict[str, Any]:
        return {
            "sequential": self.thoughts.snapshot(),
            "draft": self.drafts.snapshot(),
            "metrics": self.metrics.snapshot().to_dict(),
        }
