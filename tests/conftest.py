"""pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from thought_server.config import ChainConfig
from thought_server.tools.chain_types import DraftNode, ThoughtNode
from thought_server.tools.draft_cycle import DraftCycleEngine
from thought_server.tools.integrated import IntegrationCoordinator
from thought_server.tools.thought_chain import ThoughtChainEngine


class FakeClock:
    """Monotonic clock advancing a fixed step (seconds) per call."""

    def __init__(self, step: float = 0.001) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


@pytest.fixture
def chain_config() -> ChainConfig:
    """Explicit configuration, independent of the environment."""
    return ChainConfig(
        max_depth=12,
        max_drafts=10,
        confidence_threshold=0.6,
        min_confidence_growth=0.05,
        min_revision_confidence=0.65,
        branching_enabled=True,
        revision_enabled=True,
        parallel_tasks=True,
        context_window=163840,
        metrics_window=1000,
        max_nodes_per_chain=1000,
        categorization_enabled=True,
    )


@pytest.fixture
def clock() -> FakeClock:
    """Deterministic clock: every call advances one millisecond."""
    return FakeClock()


@pytest.fixture
def thought_engine(chain_config: ChainConfig, clock: FakeClock) -> ThoughtChainEngine:
    """Fresh thought chain engine."""
    return ThoughtChainEngine(chain_config, clock=clock)


@pytest.fixture
def draft_engine(chain_config: ChainConfig, clock: FakeClock) -> DraftCycleEngine:
    """Fresh draft cycle engine."""
    return DraftCycleEngine(chain_config, clock=clock)


@pytest.fixture
def coordinator(chain_config: ChainConfig, clock: FakeClock) -> IntegrationCoordinator:
    """Fresh integration coordinator."""
    return IntegrationCoordinator(chain_config, clock=clock)


@pytest.fixture
def make_thought() -> Callable[..., ThoughtNode]:
    """Factory for thought steps with sensible defaults."""

    def _make(number: int, content: str | None = None, **overrides: Any) -> ThoughtNode:
        fields: dict[str, Any] = {
            "content": content or f"Step {number}",
            "thought_number": number,
            "total_thoughts": max(number, 5),
            "next_needed": True,
            "confidence": 0.7,
        }
        fields.update(overrides)
        return ThoughtNode(**fields)

    return _make


@pytest.fixture
def make_draft() -> Callable[..., DraftNode]:
    """Factory for draft steps with sensible defaults."""

    def _make(number: int, content: str | None = None, **overrides: Any) -> DraftNode:
        fields: dict[str, Any] = {
            "content": content or f"Draft {number}",
            "draft_number": number,
            "total_drafts": max(number, 5),
            "next_step_needed": True,
            "confidence": 0.7,
        }
        fields.update(overrides)
        return DraftNode(**fields)

    return _make
