from __future__ import annotations

import logging
import random
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Literal, Mapping

from .collectors import Collector, StatsOptions, collect_snapshot
from .config import ProtocolKind, StatsConfig
from .errors import FleetStatsError
from .gate import SubmissionGate
from .payload import build_payload, encode_body
from .snapshot import Snapshot, make_snapshot
from .state import BaseStateStore, JsonFileStateStore, MemoryStateStore
from .transport import HTTPSession, HttpTransport, TransportResult, build_headers, parse_batch_id

logger = logging.getLogger("fleetstats.coordinator")

OutcomeStatus = Literal["denied", "in_flight", "submitted", "failed", "error"]


@dataclass(frozen=True)
class SubmissionOutcome:
    status: OutcomeStatus
    protocol: ProtocolKind
    status_code: int | None = None
    batch_id: str | None = None
    error: str | None = None


class SubmissionCoordinator:
    """Public entry point: gate check -> payload -> one POST -> state commit.

    ``submit`` never blocks on the network and never raises for routine
    failures. Only one submission is in flight per coordinator; overlapping
    calls are skipped until the running one has committed.
    """

    def __init__(
        self,
        config: StatsConfig,
        *,
        store: BaseStateStore | None = None,
        transport: HttpTransport | None = None,
        session: HTTPSession | None = None,
        rng: random.Random | None = None,
        now_fn: Callable[[], float] = time.time,
        on_complete: Callable[[SubmissionOutcome], None] | None = None,
    ) -> None:
        self.config = config
        self.store = store if store is not None else JsonFileStateStore(Path(config.state_path))
        self.transport = transport or HttpTransport(session=session, timeout_s=config.timeout_s)
        self.gate = SubmissionGate(
            store=self.store,
            minimum_submit_interval_s=config.minimum_submit_interval_s,
            rng=rng,
            now_fn=now_fn,
        )
        self._now_fn = now_fn
        self._on_complete = on_complete
        self._in_flight = threading.Lock()

    @classmethod
    def in_memory(cls, config: StatsConfig, **kwargs: Any) -> SubmissionCoordinator:
        return cls(config, store=MemoryStateStore(), **kwargs)

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    def close(self) -> None:
        self.transport.close()

    def submit(self, snapshot: Mapping[str, Any]) -> Future[TransportResult] | None:
        """Submit a snapshot if the gate admits it.

        Returns the background future for an admitted submission, or None when
        nothing was sent (denied, already in flight, or a local error).
        """

        try:
            url = self.config.validated_endpoint()
            current = make_snapshot(snapshot)
        except FleetStatsError as exc:
            self._local_error("invalid submission", exc)
            return None

        if not self._in_flight.acquire(blocking=False):
            logger.info("stats submission already in flight; skipping")
            self._report(SubmissionOutcome(status="in_flight", protocol=self.config.protocol_kind))
            return None

        dispatched = False
        try:
            future = self._submit_locked(url, current)
            dispatched = future is not None
            return future
        finally:
            if not dispatched:
                self._in_flight.release()

    def _submit_locked(self, url: str, current: Snapshot) -> Future[TransportResult] | None:
        try:
            decision = self.gate.check(self._now_fn())
        except OSError as exc:
            self._local_error("state store unavailable", exc)
            return None

        if not decision.admitted:
            self._report(SubmissionOutcome(status="denied", protocol=self.config.protocol_kind))
            return None

        state = self.store.load()
        try:
            body = encode_body(build_payload(self.config, current, state.last_snapshot))
        except FleetStatsError as exc:
            self._local_error("could not build stats payload", exc)
            return None

        headers = build_headers(self.config, state.last_batch_id)
        submitted_at = decision.now

        if self.config.effective_commit_policy == "before_call":
            try:
                self.store.commit_submit_timestamp(submitted_at)
            except OSError as exc:
                self._local_error("state store unavailable", exc)
                return None

        logger.info(
            "submitting stats",
            extra={
                "fields": {
                    "protocol": self.config.protocol_kind,
                    "keys": len(current),
                    "bytes": len(body),
                }
            },
        )

        def _complete(result: TransportResult) -> None:
            try:
                self._commit(result, current=current, submitted_at=submitted_at)
            finally:
                self._in_flight.release()

        return self.transport.dispatch(url, body, headers, _complete)

    def _commit(self, result: TransportResult, *, current: Snapshot, submitted_at: float) -> None:
        protocol = self.config.protocol_kind
        if not result.ok:
            self._report(
                SubmissionOutcome(
                    status="failed",
                    protocol=protocol,
                    status_code=result.status_code,
                    error=result.error,
                )
            )
            return

        batch_id = parse_batch_id(result)
        try:
            self.store.commit_success(ts=submitted_at, snapshot=current, batch_id=batch_id)
        except OSError as exc:
            logger.error("could not persist stats submission state: %r", exc)
            self._report(
                SubmissionOutcome(status="error", protocol=protocol, status_code=result.status_code, error=repr(exc))
            )
            return

        logger.info(
            "stats submitted",
            extra={"fields": {"protocol": protocol, "status_code": result.status_code, "batch_id": batch_id}},
        )
        self._report(
            SubmissionOutcome(status="submitted", protocol=protocol, status_code=result.status_code, batch_id=batch_id)
        )

    def _local_error(self, message: str, exc: Exception) -> None:
        if self.config.strict:
            raise exc
        logger.error("%s: %s", message, exc)
        self._report(SubmissionOutcome(status="error", protocol=self.config.protocol_kind, error=str(exc)))

    def _report(self, outcome: SubmissionOutcome) -> None:
        if self._on_complete is None:
            return
        try:
            self._on_complete(outcome)
        except Exception:
            logger.exception("stats outcome callback failed")

    def submitter(self) -> Callable[[Mapping[str, Any]], None]:
        """Return a plain callback suitable as a collection completion handler."""

        def _submit(snapshot: Mapping[str, Any]) -> None:
            self.submit(snapshot)

        return _submit

    def collect_and_submit(
        self,
        collectors: Iterable[Collector],
        options: StatsOptions = StatsOptions.ALL,
    ) -> Future[TransportResult] | None:
        return self.submit(collect_snapshot(collectors, options))
