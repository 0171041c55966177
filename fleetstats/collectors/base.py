from __future__ import annotations

import enum
import logging
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol

from ..snapshot import Snapshot, make_snapshot, render_value

logger = logging.getLogger("fleetstats.collectors")


class StatsOptions(enum.Flag):
    """Probe categories a host application opts into."""

    NONE = 0
    ACCESSIBILITY = enum.auto()
    PAYMENT = enum.auto()
    PREFERENCES = enum.auto()
    SCREEN = enum.auto()
    SYSTEM = enum.auto()
    COMPANION = enum.auto()

    ALL = ACCESSIBILITY | PAYMENT | PREFERENCES | SCREEN | SYSTEM | COMPANION


class Collector(Protocol):
    """Read-only probe producing key -> value string pairs."""

    category: StatsOptions
    keys: frozenset[str]

    def read(self) -> Mapping[str, Any]: ...


@dataclass
class SafeCollector:
    """Wraps a collector so a failing probe reports nothing instead of raising."""

    name: str
    collector: Collector
    category: StatsOptions = field(init=False)
    keys: frozenset[str] = field(init=False)
    _last_error: str | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.category = getattr(self.collector, "category", StatsOptions.NONE)
        self.keys = frozenset(getattr(self.collector, "keys", frozenset()))

    def read(self) -> dict[str, str]:
        try:
            raw = self.collector.read()
            if not isinstance(raw, Mapping):
                raise TypeError(f"read() returned {type(raw).__name__}, expected a mapping")
            return {str(k): render_value(v) for k, v in raw.items() if v is not None and str(k).strip()}
        except Exception as exc:
            signature = f"{type(exc).__name__}:{exc}"
            if signature != self._last_error:
                logger.warning("collector '%s' read failed: %s: %s", self.name, type(exc).__name__, exc)
                self._last_error = signature
            return {}


@dataclass
class StaticCollector:
    """Fixed values, e.g. app identity supplied by the host."""

    values: Mapping[str, Any]
    category: StatsOptions = StatsOptions.NONE
    keys: frozenset[str] = field(init=False)

    def __post_init__(self) -> None:
        self.keys = frozenset(self.values)

    def read(self) -> Mapping[str, Any]:
        return dict(self.values)


@dataclass
class DeferredSignal:
    """A value that arrives later through a future.

    The host resolves ``future`` from whatever callback produces the value
    (e.g. a companion-device pairing handshake). Reading waits at most
    ``timeout_s`` and reports ``fallback`` if the value has not arrived.
    """

    key: str
    future: Future[Any]
    category: StatsOptions = StatsOptions.COMPANION
    timeout_s: float = 5.0
    fallback: Any = None
    keys: frozenset[str] = field(init=False)

    def __post_init__(self) -> None:
        self.keys = frozenset({self.key})

    def read(self) -> Mapping[str, Any]:
        try:
            value = self.future.result(timeout=max(0.0, float(self.timeout_s)))
        except FutureTimeoutError:
            logger.debug("deferred signal '%s' not resolved within %.1fs", self.key, self.timeout_s)
            value = self.fallback
        return {self.key: value}


def companion_pairing_signal(
    *,
    supported: bool,
    paired: Future[bool] | None = None,
    timeout_s: float = 5.0,
) -> list[Collector]:
    """Collectors for the companion (watch) pairing category.

    When pairing is unsupported the result is known immediately; otherwise the
    paired state is read from ``paired`` once the host's session resolves it.
    """

    collectors: list[Collector] = [
        StaticCollector(values={"Watch_supported": supported}, category=StatsOptions.COMPANION)
    ]
    if not supported or paired is None:
        collectors.append(StaticCollector(values={"Watch_paired": False}, category=StatsOptions.COMPANION))
    else:
        collectors.append(DeferredSignal(key="Watch_paired", future=paired, timeout_s=timeout_s))
    return collectors


def collect_snapshot(
    collectors: Iterable[Collector],
    options: StatsOptions = StatsOptions.ALL,
) -> Snapshot:
    """Run every enabled collector and merge the results into one snapshot.

    Collectors in category NONE always run. Later collectors win on key clashes.
    """

    merged: dict[str, Any] = {}
    for collector in collectors:
        category = getattr(collector, "category", StatsOptions.NONE)
        if category and not (category & options):
            continue
        if not isinstance(collector, SafeCollector):
            collector = SafeCollector(name=type(collector).__name__, collector=collector)
        merged.update(collector.read())
    return make_snapshot(merged)
