from __future__ import annotations

import json
import logging
import math
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

from .snapshot import Snapshot, coerce_snapshot, snapshot_to_dict

logger = logging.getLogger("fleetstats.state")


@dataclass(frozen=True)
class PersistedState:
    """Durable submission bookkeeping.

    ``last_submit_timestamp is None`` means "never set"; the gate seeds it once.
    Any finite value, including a negative one from seeding early in the epoch,
    counts as set.
    """

    last_submit_timestamp: float | None = None
    last_batch_id: str | None = None
    last_snapshot: Snapshot | None = None

    @property
    def seeded(self) -> bool:
        return self.last_submit_timestamp is not None


class StateStore(Protocol):
    def load(self) -> PersistedState: ...

    def update(self, fn: Callable[[PersistedState], PersistedState]) -> PersistedState: ...


class BaseStateStore:
    """Serialized read-modify-write over a PersistedState."""

    def __init__(self) -> None:
        self._lock = threading.RLock()

    def _read(self) -> PersistedState:
        raise NotImplementedError

    def _write(self, state: PersistedState) -> None:
        raise NotImplementedError

    def load(self) -> PersistedState:
        with self._lock:
            return self._read()

    def update(self, fn: Callable[[PersistedState], PersistedState]) -> PersistedState:
        with self._lock:
            current = self._read()
            updated = fn(current)
            if updated != current:
                self._write(updated)
            return updated

    def seed_last_submit_timestamp(self, value: float) -> float:
        """Set last_submit_timestamp only if it is unset; return the effective value."""

        def _op(state: PersistedState) -> PersistedState:
            if state.seeded:
                return state
            return replace(state, last_submit_timestamp=float(value))

        effective = self.update(_op).last_submit_timestamp
        assert effective is not None
        return effective

    def commit_submit_timestamp(self, ts: float) -> PersistedState:
        """Move last_submit_timestamp forward; older values are ignored."""

        def _op(state: PersistedState) -> PersistedState:
            last = state.last_submit_timestamp
            if last is not None and float(ts) <= last:
                return state
            return replace(state, last_submit_timestamp=float(ts))

        return self.update(_op)

    def commit_success(self, *, ts: float, snapshot: Snapshot, batch_id: str | None) -> PersistedState:
        def _op(state: PersistedState) -> PersistedState:
            last = state.last_submit_timestamp
            return PersistedState(
                last_submit_timestamp=float(ts) if last is None else max(last, float(ts)),
                last_batch_id=batch_id if batch_id else state.last_batch_id,
                last_snapshot=snapshot,
            )

        return self.update(_op)


class MemoryStateStore(BaseStateStore):
    def __init__(self, initial: PersistedState | None = None) -> None:
        super().__init__()
        self._state = initial or PersistedState()

    def _read(self) -> PersistedState:
        return self._state

    def _write(self, state: PersistedState) -> None:
        self._state = state


class JsonFileStateStore(BaseStateStore):
    """PersistedState kept in one small JSON document.

    Writes go through a temp file and ``replace`` so a crash never leaves a
    half-written document. A missing or unreadable file loads as empty state.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)

    def _read(self) -> PersistedState:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return PersistedState()
        except OSError as exc:
            logger.warning("state file unreadable (%s): %r", self.path, exc)
            return PersistedState()

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("state file malformed (%s): %r", self.path, exc)
            return PersistedState()
        if not isinstance(parsed, Mapping):
            logger.warning("state file is not a JSON object (%s)", self.path)
            return PersistedState()

        return state_from_dict(parsed)

    def _write(self, state: PersistedState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(state_to_dict(state), sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)


def state_to_dict(state: PersistedState) -> dict[str, Any]:
    return {
        "last_submit_timestamp": state.last_submit_timestamp,
        "last_batch_id": state.last_batch_id,
        "last_snapshot": snapshot_to_dict(state.last_snapshot) if state.last_snapshot is not None else None,
    }


def state_from_dict(raw: Mapping[str, Any]) -> PersistedState:
    batch_id = raw.get("last_batch_id")
    return PersistedState(
        last_submit_timestamp=_coerce_timestamp(raw.get("last_submit_timestamp")),
        last_batch_id=batch_id if isinstance(batch_id, str) and batch_id else None,
        last_snapshot=coerce_snapshot(raw.get("last_snapshot")),
    )


def _coerce_timestamp(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)
