"""Thought Server Configuration.

Centralized configuration management with environment variable support.
Engines never read the environment themselves; they receive a frozen
``ChainConfig`` at construction time.

Usage:
    from thought_server.config import get_config
    print(get_config().chain.max_depth)
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from typing import Any

from loguru import logger

from thought_server.utils.errors import ConfigException


def _get_env(key: str, default: str = "") -> str:
    """Get environment variable, treating empty string as unset."""
    value = os.getenv(key, default)
    return value if value else default


def _get_env_int(key: str, default: int) -> int:
    """Get environment variable as integer."""
    value = os.getenv(key)
    if value:
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Invalid integer for {key}: {value}, using default {default}")
    return default


def _get_env_float(key: str, default: float) -> float:
    """Get environment variable as float."""
    value = os.getenv(key)
    if value:
        try:
            return float(value)
        except ValueError:
            logger.warning(f"Invalid float for {key}: {value}, using default {default}")
    return default


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get environment variable as boolean."""
    value = _get_env(key, "").lower()
    if not value:
        return default
    return value in ("true", "1", "yes")


@dataclass(frozen=True)
class ChainConfig:
    """Processing parameters shared by the thought, draft and integrated engines.

    Instances are immutable; build a new one to change behaviour.

    Raises:
        ConfigException: If a value is outside its allowed range.

    """

    max_depth: int = field(default_factory=lambda: _get_env_int("THOUGHT_MAX_DEPTH", 12))
    max_drafts: int = field(default_factory=lambda: _get_env_int("THOUGHT_MAX_DRAFTS", 10))
    confidence_threshold: float = field(
        default_factory=lambda: _get_env_float("THOUGHT_CONFIDENCE_THRESHOLD", 0.6)
    )
    min_confidence_growth: float = field(
        default_factory=lambda: _get_env_float("THOUGHT_MIN_CONFIDENCE_GROWTH", 0.05)
    )
    min_revision_confidence: float = field(
        default_factory=lambda: _get_env_float("THOUGHT_MIN_REVISION_CONFIDENCE", 0.65)
    )
    branching_enabled: bool = field(
        default_factory=lambda: _get_env_bool("THOUGHT_BRANCHING_ENABLED", True)
    )
    revision_enabled: bool = field(
        default_factory=lambda: _get_env_bool("THOUGHT_REVISION_ENABLED", True)
    )
    parallel_tasks: bool = field(
        default_factory=lambda: _get_env_bool("THOUGHT_PARALLEL_TASKS", True)
    )
    context_window: int = field(
        default_factory=lambda: _get_env_int("THOUGHT_CONTEXT_WINDOW", 163840)
    )
    metrics_window: int = field(
        default_factory=lambda: _get_env_int("THOUGHT_METRICS_WINDOW", 1000)
    )
    max_nodes_per_chain: int = field(
        default_factory=lambda: _get_env_int("MAX_THOUGHTS_PER_SESSION", 1000)
    )
    categorization_enabled: bool = field(
        default_factory=lambda: _get_env_bool("THOUGHT_CATEGORIZATION", True)
    )

    def __post_init__(self) -> None:
        for name in ("confidence_threshold", "min_confidence_growth", "min_revision_confidence"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigException(f"{name} must be within [0, 1], got {value}")
        for name in (
            "max_depth",
            "max_drafts",
            "context_window",
            "metrics_window",
            "max_nodes_per_chain",
        ):
            value = getattr(self, name)
            if value < 1:
                raise ConfigException(f"{name} must be a positive integer, got {value}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (for responses and debugging)."""
        return asdict(self)


@dataclass(frozen=True)
class ServerConfig:
    """Server runtime configuration."""

    name: str = field(default_factory=lambda: _get_env("SERVER_NAME", "Thought-Server-MCP"))
    transport: str = field(default_factory=lambda: _get_env("SERVER_TRANSPORT", "stdio"))
    host: str = field(default_factory=lambda: _get_env("SERVER_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: _get_env_int("SERVER_PORT", 8000))


@dataclass(frozen=True)
class FeatureDefaults:
    """Initial values for the runtime feature flags."""

    error_capture: bool = field(
        default_factory=lambda: _get_env_bool("ENABLE_ERROR_CAPTURE", False)
    )
    metric_tracking: bool = field(
        default_factory=lambda: _get_env_bool("ENABLE_METRIC_TRACKING", True)
    )
    performance_monitoring: bool = field(
        default_factory=lambda: _get_env_bool("ENABLE_PERFORMANCE_MONITORING", False)
    )
    mcp_debug: bool = field(default_factory=lambda: _get_env_bool("ENABLE_MCP_DEBUG", False))


@dataclass(frozen=True)
class SessionConfig:
    """Session management configuration."""

    max_age_minutes: int = field(
        default_factory=lambda: _get_env_int("SESSION_MAX_AGE_MINUTES", 30)
    )
    cleanup_interval_seconds: int = field(
        default_factory=lambda: _get_env_int("CLEANUP_INTERVAL_SECONDS", 60)
    )


@dataclass(frozen=True)
class InputLimitsConfig:
    """Input size limits checked before any engine call."""

    max_content_size: int = field(default_factory=lambda: _get_env_int("MAX_CONTENT_SIZE", 10000))
    max_context_items: int = field(default_factory=lambda: _get_env_int("MAX_CONTEXT_ITEMS", 50))
    max_reasoning_chain: int = field(
        default_factory=lambda: _get_env_int("MAX_REASONING_CHAIN", 50)
    )


@dataclass(frozen=True)
class Config:
    """Root configuration object."""

    server: ServerConfig = field(default_factory=ServerConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    features: FeatureDefaults = field(default_factory=FeatureDefaults)
    session: SessionConfig = field(default_factory=SessionConfig)
    input_limits: InputLimitsConfig = field(default_factory=InputLimitsConfig)

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary (for logging/debugging)."""
        return {
            "server": asdict(self.server),
            "chain": self.chain.to_dict(),
            "features": asdict(self.features),
            "session": asdict(self.session),
            "input_limits": asdict(self.input_limits),
        }


# Global config instance (lazy-loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reload_config() -> Config:
    """Reload configuration (for testing)."""
    global _config
    _config = Config()
    return _config
