"""Session registry for chain engines.

Provides a thread-safe ``SessionManager`` base and ``ChainRegistry``, which
lazily creates one thought engine, one draft engine and one integration
coordinator per session.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from thought_server.config import ChainConfig
from thought_server.tools.draft_cycle import DraftCycleEngine
from thought_server.tools.engine_base import AuxiliaryScorer
from thought_server.tools.integrated import IntegrationCoordinator
from thought_server.tools.thought_chain import ThoughtChainEngine
from thought_server.utils.errors import SessionNotFoundError


@runtime_checkable
class HasUpdatedAt(Protocol):
    """Protocol for objects with an updated_at timestamp."""

    updated_at: datetime


T = TypeVar("T")


class SessionManager(Generic[T]):
    """Thread-safe base class for session management.

    Usage:
        class MyManager(SessionManager[MyState]):
            def do_something(self, session_id: str) -> dict:
                with self.session(session_id) as state:
                    state.value = "updated"
                    return {"status": "ok"}
    """

    def __init__(self) -> None:
        self._sessions: dict[str, T] = {}
        self._lock = threading.RLock()

    def _get_session(self, session_id: str) -> T:
        """Get session by ID. Caller must hold the lock.

        Raises:
            SessionNotFoundError: If session doesn't exist.

        """
        if session_id not in self._sessions:
            raise SessionNotFoundError(session_id)
        return self._sessions[session_id]

    @contextmanager
    def session(self, session_id: str) -> Generator[T, None, None]:
        """Context manager for atomic session operations.

        Raises:
            SessionNotFoundError: If session doesn't exist.

        """
        with self._lock:
            yield self._get_session(session_id)

    def session_exists(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def _register_session(self, session_id: str, state: T) -> None:
        with self._lock:
            self._sessions[session_id] = state

    def _remove_session(self, session_id: str) -> T | None:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def clear(self) -> None:
        """Drop every session."""
        with self._lock:
            self._sessions.clear()

    def cleanup_stale(
        self,
        max_age: timedelta,
        *,
        now: datetime | None = None,
        predicate: Callable[[T], bool] | None = None,
    ) -> list[str]:
        """Remove sessions whose ``updated_at`` is older than ``max_age``.

        Args:
            max_age: Maximum idle time.
            now: Reference time (defaults to datetime.now()).
            predicate: Optional extra filter; only sessions where it returns
                True are eligible for removal.

        Returns:
            List of removed session IDs.

        Raises:
            TypeError: If a session state has no ``updated_at`` attribute.

        """
        if now is None:
            now = datetime.now()
        cutoff = now - max_age

        with self._lock:
            stale_ids: list[str] = []
            for session_id, state in self._sessions.items():
                if not isinstance(state, HasUpdatedAt):
                    raise TypeError(
                        f"Session state {type(state).__name__} must have 'updated_at' attribute"
                    )
                is_stale = state.updated_at < cutoff
                if is_stale and (predicate is None or predicate(state)):
                    stale_ids.append(session_id)
            for session_id in stale_ids:
                del self._sessions[session_id]

        return stale_ids


@dataclass
class SessionChains:
    """The engines belonging to one session, created on first use."""

    session_id: str
    config: ChainConfig
    scorer: AuxiliaryScorer | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    _thoughts: ThoughtChainEngine | None = field(default=None, repr=False)
    _drafts: DraftCycleEngine | None = field(default=None, repr=False)
    _integrated: IntegrationCoordinator | None = field(default=None, repr=False)

    def touch(self) -> None:
        self.updated_at = datetime.now()

    @property
    def thoughts(self) -> ThoughtChainEngine:
        if self._thoughts is None:
            self._thoughts = ThoughtChainEngine(self.config, scorer=self.scorer)
        return self._thoughts

    @property
    def drafts(self) -> DraftCycleEngine:
        if self._drafts is None:
            self._drafts = DraftCycleEngine(self.config, scorer=self.scorer)
        return self._drafts

    @property
    def integrated(self) -> IntegrationCoordinator:
        if self._integrated is None:
            self._integrated = IntegrationCoordinator(self.config, scorer=self.scorer)
        return self._integrated

    def snapshot(self, chain: str = "all") -> dict[str, Any]:
        """Structural view of the requested chain(s); unused chains are omitted."""
        views: dict[str, Any] = {}
        if chain in ("sequential", "all") and self._thoughts is not None:
            views["sequential"] = self._thoughts.snapshot()
        if chain in ("draft", "all") and self._drafts is not None:
            views["draft"] = self._drafts.snapshot()
        if chain in ("integrated", "all") and self._integrated is not None:
            views["integrated"] = self._integrated.snapshot()
        return {
            "sessionId": self.session_id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "chains": views,
        }


class ChainRegistry(SessionManager[SessionChains]):
    """Per-session engines sharing one immutable ``ChainConfig``."""

    def __init__(self, config: ChainConfig, *, scorer: AuxiliaryScorer | None = None) -> None:
        super().__init__()
        self.config = config
        self.scorer = scorer

    def get_or_create(self, session_id: str) -> SessionChains:
        """Return the session's engines, creating the session if needed."""
        with self._lock:
            chains = self._sessions.get(session_id)
            if chains is None:
                chains = SessionChains(session_id, self.config, self.scorer)
                self._register_session(session_id, chains)
            chains.touch()
            return chains

    def reset(self, session_id: str) -> bool:
        """Forget a session. Returns True if it existed."""
        return self._remove_session(session_id) is not None
