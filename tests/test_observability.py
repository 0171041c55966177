from __future__ import annotations

import json
import logging
import sys

from fleetstats.config import StatsConfig
from fleetstats.observability import JsonFormatter, JsonLogConfig, configure_logging, configure_logging_from_env


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="fleetstats.coordinator",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="submitting %s",
        args=("stats",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_emits_structured_fields() -> None:
    line = JsonFormatter().format(_record(fields={"protocol": "api_key_diff", "bytes": 42}))
    payload = json.loads(line)

    assert payload["severity"] == "INFO"
    assert payload["logger"] == "fleetstats.coordinator"
    assert payload["message"] == "submitting stats"
    assert payload["service"] == "fleetstats"
    assert payload["fields"] == {"protocol": "api_key_diff", "bytes": 42}
    assert payload["timestamp"].endswith("+00:00")


def test_json_formatter_includes_exception_text() -> None:
    try:
        raise ValueError("bad")
    except ValueError:
        exc_info = sys.exc_info()

    record = _record()
    record.exc_info = exc_info
    payload = json.loads(JsonFormatter(JsonLogConfig(service_name="host-app")).format(record))

    assert payload["service"] == "host-app"
    assert "ValueError: bad" in payload["exc_info"]
    assert "fields" not in payload


def test_configure_logging_replaces_root_handlers() -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        configure_logging(level=logging.DEBUG, log_format="json")
        configure_logging(level=logging.DEBUG, log_format="json")
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        assert root.level == logging.DEBUG

        configure_logging_from_env({"FLEETSTATS_LOG_LEVEL": "WARNING"})
        assert len(root.handlers) == 1
        assert not isinstance(root.handlers[0].formatter, JsonFormatter)
        assert root.level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def test_stats_config_adds_protocol_and_collector_host_but_no_secret() -> None:
    stats = StatsConfig.api_key_diff(api_key="super-secret", minimum_submit_interval_s=60, collection="apps")
    formatter = JsonFormatter(JsonLogConfig.for_stats(stats))

    line = formatter.format(_record(fields={"status_code": 200, "protocol": "overridden"}))
    payload = json.loads(line)

    assert payload["fields"] == {
        "protocol": "overridden",
        "collector_host": "q42stats.ew.r.appspot.com",
        "status_code": 200,
    }
    assert json.loads(formatter.format(_record()))["fields"]["protocol"] == "api_key_diff"
    assert "super-secret" not in line


def test_configure_logging_with_stats_config_uses_its_context() -> None:
    stats = StatsConfig.signed_checksum(secret="s", minimum_submit_interval_s=60, firebase_project="p", collection="c")
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        configure_logging(level=logging.INFO, log_format="json", stats_config=stats)
        formatter = root.handlers[0].formatter
        assert isinstance(formatter, JsonFormatter)
        assert formatter.config.default_fields["protocol"] == "signed_checksum"
        assert formatter.config.default_fields["collector_host"] == "firestore.googleapis.com"
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
