"""Thought server tools - chain engines for structured reasoning."""

from .chain_types import (
    ChainState,
    DraftCategory,
    DraftNode,
    IntegratedStepRequest,
    StepResult,
    ThoughtCategory,
    ThoughtNode,
    parse_step,
)
from .draft_cycle import DraftCycleEngine
from .integrated import FusedCategory, IntegratedResult, IntegrationCoordinator, fuse_categories
from .thought_chain import ThoughtChainEngine

__all__ = [
    # Node types
    "ChainState",
    "DraftCategory",
    "DraftNode",
    "IntegratedStepRequest",
    "StepResult",
    "ThoughtCategory",
    "ThoughtNode",
    "parse_step",
    # Engines
    "DraftCycleEngine",
    "ThoughtChainEngine",
    # Integration
    "FusedCategory",
    "IntegratedResult",
    "IntegrationCoordinator",
    "fuse_categories",
]
