"""Unit tests for the session registry."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import pytest

from thought_server.config import ChainConfig
from thought_server.tools.chain_types import ThoughtNode
from thought_server.utils.errors import SessionNotFoundError
from thought_server.utils.session import ChainRegistry, SessionManager


@dataclass
class MockState:
    """Mock state object for testing."""

    session_id: str
    value: str = ""
    updated_at: datetime = field(default_factory=datetime.now)


class MockManager(SessionManager[MockState]):
    """Concrete implementation for testing."""

    def create_session(self, session_id: str, value: str = "") -> MockState:
        """Create and register a new session."""
        state = MockState(session_id=session_id, value=value)
        self._register_session(session_id, state)
        return state


class TestSessionManagerBasics:
    """Tests for basic SessionManager operations."""

    def test_init_empty(self) -> None:
        """New manager should have no sessions."""
        assert MockManager().session_count() == 0

    def test_register_and_exists(self) -> None:
        """_register_session should add session to storage."""
        mgr = MockManager()
        mgr.create_session("test1")
        assert mgr.session_exists("test1")
        assert mgr.session_ids() == ["test1"]

    def test_get_session_not_found(self) -> None:
        """_get_session should raise SessionNotFoundError."""
        mgr = MockManager()
        with pytest.raises(SessionNotFoundError) as exc_info:
            mgr._get_session("nonexistent")
        assert exc_info.value.session_id == "nonexistent"

    def test_remove_session(self) -> None:
        """_remove_session should remove and return session, or None."""
        mgr = MockManager()
        state = mgr.create_session("test1")
        assert mgr._remove_session("test1") is state
        assert mgr._remove_session("test1") is None

    def test_clear(self) -> None:
        """clear should drop every session."""
        mgr = MockManager()
        mgr.create_session("a")
        mgr.create_session("b")
        mgr.clear()
        assert mgr.session_count() == 0


class TestSessionContextManager:
    """Tests for session() context manager."""

    def test_session_allows_mutation(self) -> None:
        """Mutations inside session() should persist."""
        mgr = MockManager()
        mgr.create_session("test1", "original")

        with mgr.session("test1") as state:
            state.value = "modified"

        with mgr.session("test1") as state:
            assert state.value == "modified"

    def test_session_not_found(self) -> None:
        """session() should raise SessionNotFoundError."""
        mgr = MockManager()
        with pytest.raises(SessionNotFoundError), mgr.session("nonexistent"):
            pass

    def test_session_exception_releases_lock(self) -> None:
        """Lock should be released even if exception occurs."""
        mgr = MockManager()
        mgr.create_session("test1")

        with pytest.raises(ValueError), mgr.session("test1"):
            raise ValueError("test error")

        done = threading.Event()

        def worker() -> None:
            with mgr.session("test1") as state:
                state.value = "after_exception"
            done.set()

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join(timeout=2)
        assert done.is_set()
        assert mgr._get_session("test1").value == "after_exception"


class TestCleanupStale:
    """Tests for cleanup_stale."""

    def test_removes_old_sessions(self) -> None:
        """Sessions idle longer than max_age are removed."""
        mgr = MockManager()
        now = datetime(2024, 1, 1, 12, 0)
        old = mgr.create_session("old")
        old.updated_at = now - timedelta(hours=2)
        fresh = mgr.create_session("fresh")
        fresh.updated_at = now - timedelta(minutes=5)

        removed = mgr.cleanup_stale(timedelta(minutes=30), now=now)

        assert removed == ["old"]
        assert mgr.session_ids() == ["fresh"]

    def test_predicate_filters(self) -> None:
        """Only sessions accepted by the predicate are removed."""
        mgr = MockManager()
        now = datetime(2024, 1, 1, 12, 0)
        for name in ("keep", "drop"):
            state = mgr.create_session(name, value=name)
            state.updated_at = now - timedelta(hours=1)

        removed = mgr.cleanup_stale(
            timedelta(minutes=30), now=now, predicate=lambda s: s.value == "drop"
        )
        assert removed == ["drop"]

    def test_requires_updated_at(self) -> None:
        """States without updated_at cannot be aged."""
        mgr: SessionManager[object] = SessionManager()
        mgr._register_session("x", object())
        with pytest.raises(TypeError):
            mgr.cleanup_stale(timedelta(minutes=1))


class TestChainRegistry:
    """Tests for ChainRegistry."""

    def test_get_or_create_reuses_session(self, chain_config: ChainConfig) -> None:
        """The same session id returns the same engines."""
        registry = ChainRegistry(chain_config)
        first = registry.get_or_create("s1")
        second = registry.get_or_create("s1")
        assert first is second
        assert first.thoughts is second.thoughts
        assert registry.session_count() == 1

    def test_sessions_isolated(self, chain_config: ChainConfig) -> None:
        """Steps in one session do not affect another."""
        registry = ChainRegistry(chain_config)
        registry.get_or_create("a").thoughts.submit(
            ThoughtNode(content="x", thought_number=1, total_thoughts=2,
                        next_needed=True, confidence=0.7)
        )
        assert registry.get_or_create("a").thoughts.node_count == 1
        assert registry.get_or_create("b").thoughts.node_count == 0

    def test_engines_share_config(self, chain_config: ChainConfig) -> None:
        """Every engine receives the registry configuration."""
        chains = ChainRegistry(chain_config).get_or_create("s")
        assert chains.thoughts.config is chain_config
        assert chains.drafts.config is chain_config
        assert chains.integrated.config is chain_config

    def test_snapshot_lists_used_chains(self, chain_config: ChainConfig) -> None:
        """Only chains that were used appear in the snapshot."""
        chains = ChainRegistry(chain_config).get_or_create("s")
        assert chains.snapshot()["chains"] == {}
        _ = chains.drafts
        snapshot = chains.snapshot()
        assert list(snapshot["chains"]) == ["draft"]
        assert chains.snapshot("sequential")["chains"] == {}

    def test_reset(self, chain_config: ChainConfig) -> None:
        """reset forgets a session."""
        registry = ChainRegistry(chain_config)
        registry.get_or_create("s")
        assert registry.reset("s") is True
        assert registry.reset("s") is False
        assert not registry.session_exists("s")

    def test_touch_updates_timestamp(self, chain_config: ChainConfig) -> None:
        """Accessing a session refreshes updated_at."""
        registry = ChainRegistry(chain_config)
        chains = registry.get_or_create("s")
        chains.updated_at = datetime(2000, 1, 1)
        registry.get_or_create("s")
        assert chains.updated_at > datetime(2000, 1, 1)
