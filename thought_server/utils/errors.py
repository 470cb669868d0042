"""Custom exceptions for the thought server.

Chain errors carry a machine-readable ``code`` and a ``details`` mapping so
the transport layer can return them verbatim. ``ConfidenceError`` is the one
non-fatal member: engines attach it to an accepted step instead of raising.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


class ThoughtServerException(Exception):
    """Base exception for the thought server."""

    pass


class ConfigException(ThoughtServerException):
    """Raised during configuration issues."""

    pass


class ChainError(ThoughtServerException):
    """Base class for validation failures raised by the chain engines."""

    code = "chain_error"
    fatal = True

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization.

        Returns:
            Dictionary representation of the error.

        """
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "fatal": self.fatal,
        }


class StructuralError(ChainError):
    """Raised when a step is malformed or violates numbering rules."""

    code = "structural_error"

    def __init__(
        self,
        message: str,
        fields: Iterable[str] = (),
        details: dict[str, Any] | None = None,
    ) -> None:
        self.fields = list(fields)
        merged = {"fields": self.fields}
        merged.update(details or {})
        super().__init__(message, merged)


class ReferentialError(ChainError):
    """Raised when a step references a node that cannot be used."""

    code = "referential_error"

    def __init__(
        self,
        message: str,
        field: str,
        reference: int | str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.field = field
        self.reference = reference
        merged: dict[str, Any] = {"field": field, "reference": reference}
        merged.update(details or {})
        super().__init__(message, merged)


class RevisionError(ReferentialError):
    """Raised when a revision targets a missing node or is not permitted."""

    code = "revision_error"


class BranchError(ReferentialError):
    """Raised when a fork targets a missing node or branching is disabled."""

    code = "branch_error"


class CritiqueError(ReferentialError):
    """Raised when a critique has no existing draft to annotate."""

    code = "critique_error"


class ConfidenceError(ChainError):
    """Advisory raised alongside an accepted step whose confidence regressed."""

    code = "confidence_error"
    fatal = False

    def __init__(self, previous: float, current: float, tolerance: float, step: int) -> None:
        self.previous = previous
        self.current = current
        self.tolerance = tolerance
        self.step = step
        super().__init__(
            f"Confidence dropped from {previous:.2f} to {current:.2f} at step {step} "
            f"(tolerance {tolerance:.2f})",
            {
                "previous": previous,
                "current": current,
                "tolerance": tolerance,
                "step": step,
            },
        )


class ChainClosedError(ChainError):
    """Raised when a step is submitted to a completed chain."""

    code = "chain_closed"

    def __init__(self, chain: str, node_count: int) -> None:
        super().__init__(
            f"The {chain} chain is completed and accepts no further steps",
            {"chain": chain, "node_count": node_count},
        )


class CompositionError(ChainError):
    """Raised when either side of an integrated step fails validation.

    Wraps the underlying failure and records which side produced it.
    """

    code = "composition_error"

    def __init__(self, side: str, cause: ChainError) -> None:
        self.side = side
        self.cause = cause
        super().__init__(
            f"Integrated step rejected by the {side} chain: {cause.message}",
            {"side": side, "cause": cause.to_dict()},
        )


class SessionNotFoundError(ThoughtServerException):
    """Raised when a session ID is not found."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class ToolExecutionError(Exception):
    """Raised when tool execution fails in MCP context.

    The message returned to the client stays generic; the underlying
    exception is only logged server-side.
    """

    def __init__(
        self,
        tool_name: str,
        error_message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize tool execution error.

        Args:
            tool_name: Name of the tool that failed.
            error_message: Human-readable error message.
            details: Optional dictionary with additional error details.

        """
        self.tool_name = tool_name
        self.error_message = error_message
        self.details = details or {}
        super().__init__(f"Tool {tool_name} failed: {error_message}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization.

        Returns:
            Dictionary representation of the error.

        """
        return {
            "error": "internal_error",
            "tool": self.tool_name,
            "message": self.error_message,
            "details": self.details,
            "status": "failed",
        }
