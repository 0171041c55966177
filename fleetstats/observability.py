from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping
from urllib.parse import urlparse

from .config import StatsConfig, log_settings_from_env

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


@dataclass
class JsonLogConfig:
    """Static context stamped on every JSON record.

    ``default_fields`` are merged under ``"fields"``; a record's own
    ``extra={"fields": ...}`` wins on key clashes.
    """

    service_name: str = "fleetstats"
    default_fields: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def for_stats(cls, config: StatsConfig, *, service_name: str = "fleetstats") -> JsonLogConfig:
        # Only non-secret identifiers: the protocol tag and the collector host.
        return cls(
            service_name=service_name,
            default_fields={
                "protocol": config.protocol_kind,
                "collector_host": urlparse(config.endpoint).netloc or None,
            },
        )


class JsonFormatter(logging.Formatter):
    def __init__(self, config: JsonLogConfig | None = None) -> None:
        super().__init__()
        self.config = config or JsonLogConfig()

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "severity": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
            "service": self.config.service_name,
        }

        fields = dict(self.config.default_fields)
        extra_fields = getattr(record, "fields", None)
        if isinstance(extra_fields, Mapping):
            fields.update(extra_fields)
        if fields:
            payload["fields"] = fields

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def configure_logging(
    *,
    level: int,
    log_format: str,
    stats_config: StatsConfig | None = None,
) -> None:
    """Install one root handler for a host application.

    ``log_format`` is ``"json"`` or ``"text"``. With ``stats_config`` the JSON
    records also carry the submission protocol and collector host. The library
    never calls this on its own; it only logs through ``fleetstats.*`` loggers.
    """

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler()
    if log_format.strip().lower() == "json":
        json_config = JsonLogConfig.for_stats(stats_config) if stats_config is not None else JsonLogConfig()
        handler.setFormatter(JsonFormatter(json_config))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root.addHandler(handler)


def configure_logging_from_env(
    env: Mapping[str, str] | None = None,
    *,
    stats_config: StatsConfig | None = None,
) -> None:
    level, log_format = log_settings_from_env(env)
    configure_logging(level=level, log_format=log_format, stats_config=stats_config)
