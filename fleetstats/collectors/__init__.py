from .base import (
    Collector,
    DeferredSignal,
    SafeCollector,
    StaticCollector,
    StatsOptions,
    collect_snapshot,
    companion_pairing_signal,
)
from .builtin import MetadataCollector, PreferencesCollector, SystemCollector, day_night, default_collectors

__all__ = [
    "Collector",
    "DeferredSignal",
    "MetadataCollector",
    "PreferencesCollector",
    "SafeCollector",
    "StaticCollector",
    "StatsOptions",
    "SystemCollector",
    "collect_snapshot",
    "companion_pairing_signal",
    "day_night",
    "default_collectors",
]
