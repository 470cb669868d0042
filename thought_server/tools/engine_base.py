"""Common machinery for the thought and draft engines.

Both engines keep their nodes in an append-only arena and refer to them by
arena index. Submission is split into two phases:

    prepare(step) -> PreparedStep   validation only, never mutates
    commit(prepared) -> StepResult  appends and updates indices

``submit`` chains the two. The integrated coordinator prepares both engines
before committing either, so a rejection on one side leaves both untouched.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar

from loguru import logger

from thought_server.config import ChainConfig
from thought_server.tools.chain_types import ChainState, DraftNode, StepResult, ThoughtNode
from thought_server.utils.errors import ChainClosedError, ChainError, ConfidenceError
from thought_server.utils.metrics import ChainMetrics, MetricsAggregator
from thought_server.utils.scoring import content_quality

NodeT = TypeVar("NodeT", ThoughtNode, DraftNode)

# Optional external scorer (e.g. a coherence model). May return None.
AuxiliaryScorer = Callable[[str], float | None]

ADAPTATION_HISTORY_LIMIT = 50


@dataclass(frozen=True)
class PreparedStep(Generic[NodeT]):
    """A validated, normalized step waiting to be committed."""

    node: NodeT
    line: str | None
    advisories: tuple[ConfidenceError, ...] = ()


class ChainEngine(ABC, Generic[NodeT]):
    """Arena-backed chain with validation, state tracking and metrics."""

    chain_name: ClassVar[str] = "chain"

    def __init__(
        self,
        config: ChainConfig | None = None,
        *,
        scorer: AuxiliaryScorer | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.config = config or ChainConfig()
        self.metrics = MetricsAggregator(window=self.config.metrics_window)
        self._scorer = scorer
        self._clock = clock
        self._nodes: list[NodeT] = []
        self._state = ChainState.EMPTY
        self._content_bytes = 0
        self._expected_total = 0
        self._adaptations: deque[dict[str, Any]] = deque(maxlen=ADAPTATION_HISTORY_LIMIT)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, step: NodeT) -> StepResult:
        """Validate and append one step.

        Raises:
            ChainError: Any fatal validation failure. The chain is unchanged
                and a failed sample is recorded in the metrics window.

        """
        started = self._clock()
        try:
            prepared = self.prepare(step)
        except ChainError as e:
            self.record_rejection(started)
            logger.warning(f"{self.chain_name} step rejected ({e.code}): {e.message}")
            raise
        return self.commit(prepared, started=started)

    def prepare(self, step: NodeT) -> PreparedStep[NodeT]:
        """Run every validation phase without touching engine state."""
        if self._state is ChainState.COMPLETED:
            raise ChainClosedError(self.chain_name, len(self._nodes))
        return self._prepare(step)

    def commit(self, prepared: PreparedStep[NodeT], *, started: float | None = None) -> StepResult:
        """Append a prepared step and refresh indices, state and metrics.

        Raises:
            RuntimeError: If the chain changed since the step was prepared.

        """
        if started is None:
            started = self._clock()
        node = prepared.node
        if node.sequence != len(self._nodes):
            raise RuntimeError(
                f"{self.chain_name} chain changed after the step was prepared "
                f"(expected sequence {node.sequence}, have {len(self._nodes)})"
            )

        self._nodes.append(node)
        self._index(node, prepared.line)
        self._content_bytes += len(node.content.encode("utf-8"))
        # The newest estimate wins, including a lowered one
        self._expected_total = self._total_of(node)
        self._state = self._next_state(node)

        metrics = self.metrics.record(
            self._elapsed_ms(started),
            self.resource_estimate(),
            not prepared.advisories,
            node.confidence,
            efficiency=self.efficiency(),
        )
        self._track_adaptations()

        for advisory in prepared.advisories:
            logger.info(f"{self.chain_name} advisory: {advisory.message}")
        logger.debug(
            f"{self.chain_name} accepted step {self._number_of(node)} "
            f"(seq={node.sequence}, line={prepared.line or 'main'}, state={self._state.value})"
        )
        return StepResult(node=node, metrics=metrics, advisories=prepared.advisories)

    def record_rejection(self, started: float) -> ChainMetrics:
        """Record a failed sample for a step that never reached the chain."""
        return self.metrics.record(
            self._elapsed_ms(started), self.resource_estimate(), False, None
        )

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _prepare(self, step: NodeT) -> PreparedStep[NodeT]: ...

    @abstractmethod
    def _index(self, node: NodeT, line: str | None) -> None: ...

    @abstractmethod
    def _next_state(self, node: NodeT) -> ChainState: ...

    @abstractmethod
    def _number_of(self, node: NodeT) -> int: ...

    @abstractmethod
    def _total_of(self, node: NodeT) -> int: ...

    @abstractmethod
    def efficiency(self) -> float | None: ...

    @abstractmethod
    def summary(self) -> dict[str, Any]: ...

    @abstractmethod
    def snapshot(self) -> dict[str, Any]: ...

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def resolve_confidence(
        self,
        content: str,
        explicit: float | None,
        category_confidence: float | None,
    ) -> float:
        """Effective confidence: explicit, then category, then scored content."""
        if explicit is not None:
            return explicit
        if category_confidence is not None:
            return category_confidence
        heuristic = content_quality(content)
        auxiliary = self._auxiliary_score(content)
        if auxiliary is None:
            return round(heuristic, 4)
        return round((heuristic + auxiliary) / 2, 4)

    def _auxiliary_score(self, content: str) -> float | None:
        if self._scorer is None:
            return None
        try:
            score = self._scorer(content)
        except Exception as e:
            logger.warning(f"Auxiliary scorer failed (non-fatal): {e}")
            return None
        if score is None:
            return None
        return min(1.0, max(0.0, float(score)))

    def _elapsed_ms(self, started: float) -> float:
        return max(0.0, (self._clock() - started) * 1000)

    def _track_adaptations(self) -> None:
        last = self._adaptations[-1]["action"] if self._adaptations else None
        for recommendation in self.metrics.assess():
            if recommendation.action != last:
                entry = {"step": len(self._nodes), **recommendation.to_dict()}
                self._adaptations.append(entry)
                logger.info(
                    f"{self.chain_name} adaptation suggested: {recommendation.action} "
                    f"({recommendation.reason})"
                )
                last = recommendation.action

    def resource_estimate(self) -> float:
        """Synthetic resource figure: KiB of content held by the chain."""
        return self._content_bytes / 1024

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> ChainState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is ChainState.COMPLETED

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> tuple[NodeT, ...]:
        return tuple(self._nodes)

    @property
    def adaptation_history(self) -> list[dict[str, Any]]:
        return list(self._adaptations)

    def progress(self) -> dict[str, Any]:
        """Completed steps against the current estimate, plus phase."""
        if self._state is ChainState.EMPTY:
            phase = "initialization"
        elif self._state is ChainState.COMPLETED:
            phase = "completion"
        else:
            phase = "processing"
        return {
            "completedSteps": len(self._nodes),
            "totalExpectedSteps": self._expected_total,
            "currentPhase": phase,
            "adaptationHistory": self.adaptation_history,
        }

    def _average_confidence(self) -> float:
        values = [node.confidence for node in self._nodes if node.confidence is not None]
        return round(sum(values) / len(values), 4) if values else 0.0
