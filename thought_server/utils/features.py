"""Runtime feature flags toggled through the ``setFeature`` tool.

A single ``RuntimeFeatures`` instance is built by the server and handed to
whatever needs it. Flags only shape responses and logging; they never
change validation.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from loguru import logger

from thought_server.config import FeatureDefaults


class Feature(str, Enum):
    """Toggleable runtime features (wire names)."""

    ERROR_CAPTURE = "errorCapture"
    METRIC_TRACKING = "metricTracking"
    PERFORMANCE_MONITORING = "performanceMonitoring"
    MCP_DEBUG = "mcpDebug"


FeatureListener = Callable[[Feature, bool], None]


class RuntimeFeatures:
    """Mutable set of feature flags with change listeners."""

    def __init__(self, defaults: FeatureDefaults | None = None) -> None:
        defaults = defaults or FeatureDefaults()
        self._flags: dict[Feature, bool] = {
            Feature.ERROR_CAPTURE: defaults.error_capture,
            Feature.METRIC_TRACKING: defaults.metric_tracking,
            Feature.PERFORMANCE_MONITORING: defaults.performance_monitoring,
            Feature.MCP_DEBUG: defaults.mcp_debug,
        }
        self._listeners: list[FeatureListener] = []

    def is_enabled(self, feature: Feature | str) -> bool:
        return self._flags[Feature(feature)]

    def set(self, feature: Feature | str, enabled: bool) -> dict[str, bool]:
        """Set one flag and return the full flag set.

        Raises:
            ValueError: If ``feature`` is not a known feature name.

        """
        key = Feature(feature)
        previous = self._flags[key]
        self._flags[key] = bool(enabled)
        if previous != self._flags[key]:
            logger.info(f"Feature {key.value} {'enabled' if enabled else 'disabled'}")
            for listener in self._listeners:
                listener(key, self._flags[key])
        return self.as_dict()

    def subscribe(self, listener: FeatureListener) -> None:
        """Register a callback invoked whenever a flag changes value."""
        self._listeners.append(listener)

    def as_dict(self) -> dict[str, bool]:
        return {feature.value: enabled for feature, enabled in self._flags.items()}

    @property
    def error_capture(self) -> bool:
        return self._flags[Feature.ERROR_CAPTURE]

    @property
    def metric_tracking(self) -> bool:
        return self._flags[Feature.METRIC_TRACKING]

    @property
    def performance_monitoring(self) -> bool:
        return self._flags[Feature.PERFORMANCE_MONITORING]

    @property
    def mcp_debug(self) -> bool:
        return self._flags[Feature.MCP_DEBUG]
