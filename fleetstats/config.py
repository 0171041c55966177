from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Literal, Mapping, Union
from urllib.parse import quote, urlparse

import yaml
from dotenv import load_dotenv

from .errors import ConfigError

logger = logging.getLogger("fleetstats.config")

CommitPolicy = Literal["before_call", "after_success"]
ProtocolKind = Literal["signed_checksum", "api_key_diff"]

DEFAULT_BASE_URL = "https://q42stats.ew.r.appspot.com"
FIRESTORE_URL_TEMPLATE = (
    "https://firestore.googleapis.com/v1/projects/{project}/databases/(default)/documents/{collection}"
)
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_STATE_PATH = "./fleetstats_state.json"

_COMMIT_POLICIES = {"before_call", "after_success"}


@dataclass(frozen=True)
class SignedChecksum:
    """Variant A: payload carries a sha256 checksum salted with a shared secret."""

    secret: str = field(repr=False)

    kind: ClassVar[ProtocolKind] = "signed_checksum"


@dataclass(frozen=True)
class ApiKeyDiff:
    """Variant B: API key header, current/previous measurement body, server batch id."""

    api_key: str = field(repr=False)

    kind: ClassVar[ProtocolKind] = "api_key_diff"


ProtocolVariant = Union[SignedChecksum, ApiKeyDiff]


@dataclass(frozen=True)
class StatsConfig:
    protocol: ProtocolVariant
    endpoint: str
    minimum_submit_interval_s: float
    timeout_s: float = DEFAULT_TIMEOUT_S
    commit_policy: CommitPolicy | None = None
    strict: bool = False
    state_path: str = DEFAULT_STATE_PATH

    def __post_init__(self) -> None:
        if not isinstance(self.protocol, (SignedChecksum, ApiKeyDiff)):
            raise ConfigError("protocol must be SignedChecksum or ApiKeyDiff")
        credential = (
            self.protocol.secret if isinstance(self.protocol, SignedChecksum) else self.protocol.api_key
        )
        if not isinstance(credential, str) or not credential:
            raise ConfigError(f"{self.protocol.kind}: credential must be a non-empty string")
        if self.minimum_submit_interval_s <= 0:
            raise ConfigError("minimum_submit_interval_s must be > 0")
        if self.timeout_s <= 0:
            raise ConfigError("timeout_s must be > 0")
        if self.commit_policy is not None and self.commit_policy not in _COMMIT_POLICIES:
            allowed = ", ".join(sorted(_COMMIT_POLICIES))
            raise ConfigError(f"commit_policy must be one of: {allowed}")

    @classmethod
    def signed_checksum(
        cls,
        *,
        secret: str,
        minimum_submit_interval_s: float,
        firebase_project: str | None = None,
        collection: str | None = None,
        endpoint: str | None = None,
        **kwargs: Any,
    ) -> StatsConfig:
        if endpoint is None:
            if not firebase_project or not collection:
                raise ConfigError("signed_checksum requires endpoint or firebase_project + collection")
            endpoint = firestore_endpoint(firebase_project, collection)
        return cls(
            protocol=SignedChecksum(secret=secret),
            endpoint=endpoint,
            minimum_submit_interval_s=float(minimum_submit_interval_s),
            **kwargs,
        )

    @classmethod
    def api_key_diff(
        cls,
        *,
        api_key: str,
        minimum_submit_interval_s: float,
        collection: str | None = None,
        endpoint: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        **kwargs: Any,
    ) -> StatsConfig:
        if endpoint is None:
            if not collection:
                raise ConfigError("api_key_diff requires endpoint or collection")
            endpoint = collection_endpoint(base_url, collection)
        return cls(
            protocol=ApiKeyDiff(api_key=api_key),
            endpoint=endpoint,
            minimum_submit_interval_s=float(minimum_submit_interval_s),
            **kwargs,
        )

    @property
    def protocol_kind(self) -> ProtocolKind:
        return self.protocol.kind

    @property
    def effective_commit_policy(self) -> CommitPolicy:
        if self.commit_policy is not None:
            return self.commit_policy
        if isinstance(self.protocol, SignedChecksum):
            return "before_call"
        return "after_success"

    def validated_endpoint(self) -> str:
        """Return the endpoint, raising ConfigError if it is not an http(s) URL."""

        parsed = urlparse(self.endpoint or "")
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ConfigError(f"invalid endpoint {self.endpoint!r}")
        return self.endpoint


def firestore_endpoint(project: str, collection: str) -> str:
    return FIRESTORE_URL_TEMPLATE.format(project=quote(project, safe=""), collection=quote(collection, safe=""))


def collection_endpoint(base_url: str, collection: str) -> str:
    return f"{base_url.rstrip('/')}/add/{quote(collection, safe='')}"


# -----------------------------
# Environment / file loading
# -----------------------------


def _get_optional_str(env: Mapping[str, str], name: str, file_raw: Mapping[str, Any], key: str) -> str | None:
    v = env.get(name)
    if v is None:
        fv = file_raw.get(key)
        v = str(fv) if fv is not None else None
    if v is None:
        return None
    vv = v.strip()
    return vv or None


def _get_float(env: Mapping[str, str], name: str, file_raw: Mapping[str, Any], key: str, default: float) -> float:
    raw = _get_optional_str(env, name, file_raw, key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("invalid %s=%r; using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("invalid %s=%r; using %s", name, raw, default)
        return default
    return value


def _get_bool(env: Mapping[str, str], name: str, file_raw: Mapping[str, Any], key: str, default: bool) -> bool:
    if name not in env and isinstance(file_raw.get(key), bool):
        return bool(file_raw[key])
    raw = _get_optional_str(env, name, file_raw, key)
    if raw is None:
        return default
    value = raw.lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    logger.warning("invalid %s=%r; using %s", name, raw, default)
    return default


def _load_config_file(path_raw: str | None) -> dict[str, Any]:
    if not path_raw:
        return {}
    path = Path(path_raw).expanduser()
    if not path.exists():
        raise ConfigError(f"FLEETSTATS_CONFIG_PATH does not exist: {path}")
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse stats config at {path}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"stats config at {path} must be a YAML object")
    return dict(loaded)


def load_config_from_env(env: Mapping[str, str] | None = None, *, dotenv: bool = True) -> StatsConfig:
    """Build a StatsConfig from FLEETSTATS_* variables, a .env file and an optional YAML file.

    Environment variables win over the YAML file. The protocol variant is picked
    by which credential is present: FLEETSTATS_SHARED_SECRET selects the signed
    checksum protocol, FLEETSTATS_API_KEY the API-key protocol. Both or neither
    is a configuration error.
    """

    if env is None:
        if dotenv:
            load_dotenv()
        env = os.environ

    file_raw = _load_config_file(env.get("FLEETSTATS_CONFIG_PATH"))

    secret = _get_optional_str(env, "FLEETSTATS_SHARED_SECRET", file_raw, "shared_secret")
    api_key = _get_optional_str(env, "FLEETSTATS_API_KEY", file_raw, "api_key")
    if secret and api_key:
        raise ConfigError("set only one of FLEETSTATS_SHARED_SECRET or FLEETSTATS_API_KEY")
    if not secret and not api_key:
        raise ConfigError("one of FLEETSTATS_SHARED_SECRET or FLEETSTATS_API_KEY is required")

    interval = _get_optional_str(env, "FLEETSTATS_MIN_SUBMIT_INTERVAL_S", file_raw, "minimum_submit_interval_s")
    if interval is None:
        raise ConfigError("FLEETSTATS_MIN_SUBMIT_INTERVAL_S is required")
    try:
        minimum_submit_interval_s = float(interval)
    except ValueError as exc:
        raise ConfigError(f"invalid FLEETSTATS_MIN_SUBMIT_INTERVAL_S={interval!r}") from exc

    commit_policy = _get_optional_str(env, "FLEETSTATS_COMMIT_POLICY", file_raw, "commit_policy")
    common: dict[str, Any] = {
        "timeout_s": _get_float(env, "FLEETSTATS_TIMEOUT_S", file_raw, "timeout_s", DEFAULT_TIMEOUT_S),
        "commit_policy": commit_policy,
        "strict": _get_bool(env, "FLEETSTATS_STRICT", file_raw, "strict", False),
        "state_path": _get_optional_str(env, "FLEETSTATS_STATE_PATH", file_raw, "state_path")
        or DEFAULT_STATE_PATH,
    }

    endpoint = _get_optional_str(env, "FLEETSTATS_ENDPOINT", file_raw, "endpoint")
    collection = _get_optional_str(env, "FLEETSTATS_COLLECTION", file_raw, "collection")

    if secret:
        config = StatsConfig.signed_checksum(
            secret=secret,
            minimum_submit_interval_s=minimum_submit_interval_s,
            firebase_project=_get_optional_str(env, "FLEETSTATS_FIREBASE_PROJECT", file_raw, "firebase_project"),
            collection=collection,
            endpoint=endpoint,
            **common,
        )
    else:
        assert api_key is not None
        config = StatsConfig.api_key_diff(
            api_key=api_key,
            minimum_submit_interval_s=minimum_submit_interval_s,
            collection=collection,
            endpoint=endpoint,
            base_url=_get_optional_str(env, "FLEETSTATS_BASE_URL", file_raw, "base_url") or DEFAULT_BASE_URL,
            **common,
        )

    config.validated_endpoint()
    return config


def log_settings_from_env(env: Mapping[str, str] | None = None) -> tuple[int, str]:
    """Return (level, format) for configure_logging from FLEETSTATS_LOG_LEVEL/FORMAT."""

    env = os.environ if env is None else env
    level_name = (env.get("FLEETSTATS_LOG_LEVEL") or "INFO").strip().upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        logger.warning("invalid FLEETSTATS_LOG_LEVEL=%r; using INFO", level_name)
        level = logging.INFO
    log_format = (env.get("FLEETSTATS_LOG_FORMAT") or "text").strip().lower()
    if log_format not in {"text", "json"}:
        logger.warning("invalid FLEETSTATS_LOG_FORMAT=%r; using text", log_format)
        log_format = "text"
    return level, log_format
