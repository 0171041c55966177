from __future__ import annotations

from types import MappingProxyType
from typing import Any, Mapping, TypeAlias

from .errors import SnapshotError

Snapshot: TypeAlias = Mapping[str, str]


def render_value(value: Any) -> str:
    """Render a probe value the way collectors report it.

    Booleans become lowercase ``true``/``false``; everything else goes through ``str``.
    """

    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    return str(value)


def make_snapshot(values: Mapping[Any, Any]) -> Snapshot:
    """Return an immutable snapshot built from collector output.

    ``None`` values are dropped (a probe with nothing to report). Keys must be
    non-empty strings; they are the sort keys for checksums and diffs.
    """

    out: dict[str, str] = {}
    for key, value in values.items():
        if not isinstance(key, str) or not key.strip():
            raise SnapshotError(f"snapshot keys must be non-empty strings (got {key!r})")
        if value is None:
            continue
        out[key] = render_value(value)
    return MappingProxyType(dict(sorted(out.items())))


def snapshot_to_dict(snapshot: Snapshot) -> dict[str, str]:
    return {k: snapshot[k] for k in sorted(snapshot)}


def coerce_snapshot(value: Any) -> Snapshot | None:
    """Best-effort parse of a persisted snapshot; returns None when unusable."""

    if not isinstance(value, Mapping):
        return None
    try:
        return make_snapshot(value)
    except SnapshotError:
        return None
