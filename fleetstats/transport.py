from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Protocol

import requests

from .config import ApiKeyDiff, StatsConfig

logger = logging.getLogger("fleetstats.transport")

API_KEY_HEADER = "X-Api-Key"
BATCH_ID_HEADER = "batchId"


class HTTPSession(Protocol):
    def post(
        self,
        url: str,
        *,
        headers: Mapping[str, str],
        data: bytes,
        timeout: float,
    ) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class TransportResult:
    ok: bool
    status_code: int | None = None
    body: str = ""
    error: str | None = None

    def json(self) -> Any:
        return json.loads(self.body) if self.body else None


def build_headers(config: StatsConfig, last_batch_id: str | None) -> Dict[str, str]:
    """Request headers per protocol.

    The signed-checksum protocol carries no auth header: the secret only goes
    into the checksum. The API-key protocol adds the key and, once the server
    has issued one, the previous batch id.
    """

    headers = {"Content-Type": "application/json"}
    if isinstance(config.protocol, ApiKeyDiff):
        headers[API_KEY_HEADER] = config.protocol.api_key
        if last_batch_id:
            headers[BATCH_ID_HEADER] = last_batch_id
    return headers


def parse_batch_id(result: TransportResult) -> str | None:
    if not result.ok:
        return None
    try:
        data = result.json()
    except json.JSONDecodeError:
        logger.warning("response body is not JSON; keeping previous batch id")
        return None
    if not isinstance(data, dict):
        return None
    batch_id = data.get("batchId")
    if isinstance(batch_id, str) and batch_id:
        return batch_id
    return None


class HttpTransport:
    """One POST per call. No retries, no queueing, never raises."""

    def __init__(self, *, session: HTTPSession | None = None, timeout_s: float = 30.0) -> None:
        self._owns_session = session is None
        self.session = session if session is not None else requests.Session()
        self.timeout_s = float(timeout_s)

    def close(self) -> None:
        """Close the session if this transport created it; injected sessions are left alone."""

        if self._owns_session:
            self.session.close()  # type: ignore[attr-defined]

    def post(self, url: str, body: bytes, headers: Mapping[str, str]) -> TransportResult:
        try:
            resp = self.session.post(url, headers=dict(headers), data=body, timeout=self.timeout_s)
        except requests.RequestException as exc:
            logger.warning(
                "stats submit failed: %r",
                exc,
                extra={"fields": {"url": url, "error": type(exc).__name__}},
            )
            return TransportResult(ok=False, error=f"{type(exc).__name__}: {exc}")

        status = int(resp.status_code)
        text = str(getattr(resp, "text", "") or "")
        if 200 <= status < 300:
            return TransportResult(ok=True, status_code=status, body=text)

        logger.warning(
            "stats submit rejected: %s %s",
            status,
            text[:200],
            extra={"fields": {"url": url, "status_code": status}},
        )
        return TransportResult(ok=False, status_code=status, body=text, error=f"HTTP {status}")

    def dispatch(
        self,
        url: str,
        body: bytes,
        headers: Mapping[str, str],
        on_complete: Callable[[TransportResult], None],
    ) -> Future[TransportResult]:
        """Run post() on a daemon thread and hand the result to on_complete.

        The returned future resolves after on_complete has run; callers are
        free to ignore it.
        """

        future: Future[TransportResult] = Future()

        def _run() -> None:
            try:
                result = self.post(url, body, headers)
            except Exception as exc:
                logger.exception("stats submit crashed")
                result = TransportResult(ok=False, error=f"{type(exc).__name__}: {exc}")
            try:
                on_complete(result)
            except Exception as exc:
                logger.exception("stats completion handler failed")
                future.set_exception(exc)
                return
            future.set_result(result)

        thread = threading.Thread(target=_run, name="fleetstats-submit", daemon=True)
        thread.start()
        return future
