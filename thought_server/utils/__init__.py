"""Utility modules for the thought server.

Submodules are imported directly (``thought_server.utils.metrics`` etc.);
this package re-exports only the error types, which have no internal
dependencies.
"""

from thought_server.utils.errors import (
    BranchError,
    ChainClosedError,
    ChainError,
    CompositionError,
    ConfidenceError,
    ConfigException,
    CritiqueError,
    ReferentialError,
    RevisionError,
    SessionNotFoundError,
    StructuralError,
    ThoughtServerException,
    ToolExecutionError,
)

__all__ = [
    "BranchError",
    "ChainClosedError",
    "ChainError",
    "CompositionError",
    "ConfidenceError",
    "ConfigException",
    "CritiqueError",
    "ReferentialError",
    "RevisionError",
    "SessionNotFoundError",
    "StructuralError",
    "ThoughtServerException",
    "ToolExecutionError",
]
