from __future__ import annotations

import threading
from typing import Mapping

import pytest
import requests

from fleetstats.config import StatsConfig
from fleetstats.transport import HttpTransport, TransportResult, build_headers, parse_batch_id


class _FakeResponse:
    def __init__(self, *, status_code: int, text: str = "") -> None:
        self.status_code = status_code
        self.text = text


class _FakeHttpSession:
    def __init__(self, *, status: int = 200, text: str = "", exc: Exception | None = None) -> None:
        self.status = status
        self.text = text
        self.exc = exc
        self.calls: list[dict[str, object]] = []

    def post(
        self,
        url: str,
        *,
        headers: Mapping[str, str],
        data: bytes,
        timeout: float,
    ) -> _FakeResponse:
        self.calls.append({"url": url, "headers": dict(headers), "data": data, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return _FakeResponse(status_code=self.status, text=self.text)


def _signed() -> StatsConfig:
    return StatsConfig.signed_checksum(
        secret="s",
        minimum_submit_interval_s=60,
        firebase_project="proj",
        collection="stats",
    )


def _keyed() -> StatsConfig:
    return StatsConfig.api_key_diff(api_key="key-1", minimum_submit_interval_s=60, collection="stats")


def test_signed_checksum_headers_have_no_auth_or_batch_id() -> None:
    headers = build_headers(_signed(), "abc")

    assert headers == {"Content-Type": "application/json"}


def test_api_key_headers_forward_batch_id_when_present() -> None:
    assert build_headers(_keyed(), None) == {"Content-Type": "application/json", "X-Api-Key": "key-1"}
    assert build_headers(_keyed(), "abc") == {
        "Content-Type": "application/json",
        "X-Api-Key": "key-1",
        "batchId": "abc",
    }


def test_post_success_is_exactly_2xx() -> None:
    for status, ok in ((200, True), (204, True), (299, True), (300, False), (199, False), (500, False)):
        transport = HttpTransport(session=_FakeHttpSession(status=status))
        result = transport.post("https://collector.example/add/x", b"{}", {})
        assert result.ok is ok
        assert result.status_code == status


def test_post_makes_one_call_with_timeout_and_body() -> None:
    session = _FakeHttpSession(status=500, text="boom")
    transport = HttpTransport(session=session, timeout_s=30.0)

    result = transport.post("https://collector.example/add/x", b'{"a":1}', {"Content-Type": "application/json"})

    assert result.ok is False
    assert result.error == "HTTP 500"
    assert len(session.calls) == 1
    assert session.calls[0]["timeout"] == 30.0
    assert session.calls[0]["data"] == b'{"a":1}'


def test_post_network_error_and_timeout_never_raise() -> None:
    for exc in (requests.ConnectionError("down"), requests.Timeout("slow")):
        session = _FakeHttpSession(exc=exc)
        result = HttpTransport(session=session).post("https://collector.example/add/x", b"{}", {})
        assert result.ok is False
        assert result.status_code is None
        assert result.error is not None
        assert len(session.calls) == 1


def test_parse_batch_id() -> None:
    assert parse_batch_id(TransportResult(ok=True, status_code=200, body='{"batchId":"abc123"}')) == "abc123"
    assert parse_batch_id(TransportResult(ok=True, status_code=200, body="not json")) is None
    assert parse_batch_id(TransportResult(ok=True, status_code=200, body='{"batchId": 5}')) is None
    assert parse_batch_id(TransportResult(ok=True, status_code=204, body="")) is None
    assert parse_batch_id(TransportResult(ok=False, status_code=500, body='{"batchId":"x"}')) is None


def test_dispatch_runs_in_background_and_delivers_result() -> None:
    release = threading.Event()

    class _SlowSession(_FakeHttpSession):
        def post(self, url: str, **kwargs: object) -> _FakeResponse:  # type: ignore[override]
            release.wait(timeout=5.0)
            return _FakeResponse(status_code=200, text='{"batchId":"b"}')

    seen: list[TransportResult] = []
    transport = HttpTransport(session=_SlowSession())

    future = transport.dispatch("https://collector.example/add/x", b"{}", {}, seen.append)

    assert future.done() is False
    release.set()
    result = future.result(timeout=5.0)
    assert result.ok is True
    assert seen == [result]


def test_dispatch_converts_unexpected_errors_into_failed_result() -> None:
    seen: list[TransportResult] = []
    transport = HttpTransport(session=_FakeHttpSession(exc=RuntimeError("bug")))

    result = transport.dispatch("https://collector.example/add/x", b"{}", {}, seen.append).result(timeout=5.0)

    assert result.ok is False
    assert "RuntimeError" in (result.error or "")
    assert seen == [result]


def test_close_only_closes_a_session_the_transport_created(monkeypatch: pytest.MonkeyPatch) -> None:
    owned = HttpTransport()
    assert isinstance(owned.session, requests.Session)
    closed: list[bool] = []
    monkeypatch.setattr(owned.session, "close", lambda: closed.append(True))

    owned.close()
    assert closed == [True]

    class _ClosableSession(_FakeHttpSession):
        def close(self) -> None:
            closed.append(False)

    HttpTransport(session=_ClosableSession()).close()
    assert closed == [True]
