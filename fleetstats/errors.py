from __future__ import annotations


class FleetStatsError(Exception):
    """Base class for errors raised by the submission pipeline."""


class ConfigError(FleetStatsError, ValueError):
    """Invalid or unconstructable configuration (e.g. a bad endpoint URL)."""


class SnapshotError(FleetStatsError, ValueError):
    """Collector output that cannot form a snapshot."""


class PayloadError(FleetStatsError, ValueError):
    """Raised when a request body cannot be encoded."""
