from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Mapping

from .config import ApiKeyDiff, SignedChecksum, StatsConfig
from .errors import PayloadError
from .snapshot import Snapshot, snapshot_to_dict

CHECKSUM_FIELD = "Checksum"
CHECKSUM_SEPARATOR = "-"


def checksum_source(snapshot: Snapshot) -> str:
    """Values joined with '-' in sorted-key order (the server recomputes this)."""

    return CHECKSUM_SEPARATOR.join(snapshot[k] for k in sorted(snapshot))


def compute_checksum(snapshot: Snapshot, secret: str) -> str:
    blob = checksum_source(snapshot) + CHECKSUM_SEPARATOR + secret
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


def signed_fields(snapshot: Snapshot, secret: str) -> Dict[str, str]:
    fields = snapshot_to_dict(snapshot)
    fields[CHECKSUM_FIELD] = compute_checksum(snapshot, secret)
    return fields


def build_signed_checksum_payload(snapshot: Snapshot, secret: str) -> Dict[str, Any]:
    """Document-database body: every value wrapped as {"stringValue": ...}."""

    return {"fields": {k: {"stringValue": v} for k, v in signed_fields(snapshot, secret).items()}}


def build_api_key_diff_payload(current: Snapshot, previous: Snapshot | None) -> Dict[str, Any]:
    return {
        "currentMeasurement": snapshot_to_dict(current),
        "previousMeasurement": snapshot_to_dict(previous) if previous is not None else None,
    }


def build_payload(config: StatsConfig, snapshot: Snapshot, previous: Snapshot | None) -> Dict[str, Any]:
    protocol = config.protocol
    if isinstance(protocol, SignedChecksum):
        return build_signed_checksum_payload(snapshot, protocol.secret)
    if isinstance(protocol, ApiKeyDiff):
        return build_api_key_diff_payload(snapshot, previous)
    raise PayloadError(f"unsupported protocol {protocol!r}")


def encode_body(payload: Mapping[str, Any]) -> bytes:
    try:
        blob = json.dumps(payload, separators=(",", ":"), sort_keys=True, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise PayloadError(f"could not encode payload: {exc}") from exc
    return blob.encode("utf-8")
