"""Submission rate limiting.

The gate consults only the persisted last-submit timestamp. The first time it
runs on an installation that timestamp is unset, so the gate backdates it by a
random fraction of the interval. A fleet that installs or upgrades at the same
moment therefore spreads its first submissions over up to 1.2x the interval
instead of hitting the collector in lockstep.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable

from .state import StateStore

logger = logging.getLogger("fleetstats.gate")

JITTER_MIN_FACTOR = 0.2
JITTER_MAX_FACTOR = 1.2


@dataclass(frozen=True)
class GateDecision:
    admitted: bool
    now: float
    last_submit_timestamp: float
    wait_s: float


class SubmissionGate:
    def __init__(
        self,
        *,
        store: StateStore,
        minimum_submit_interval_s: float,
        rng: random.Random | None = None,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.minimum_submit_interval_s = float(minimum_submit_interval_s)
        self._rng = rng or random.Random()
        self._now_fn = now_fn

    def jitter_factor(self) -> float:
        # uniform() can return the upper bound through rounding; keep it half-open.
        factor = self._rng.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR)
        return min(factor, JITTER_MAX_FACTOR - 1e-9)

    def seed_if_needed(self, now: float | None = None) -> float:
        """Backdate an unset last-submit timestamp; no-op once seeded.

        Returns the effective last-submit timestamp.
        """

        ts_now = float(now if now is not None else self._now_fn())
        last = self.store.load().last_submit_timestamp
        if last is not None:
            return last

        seeded = ts_now - self.jitter_factor() * self.minimum_submit_interval_s
        effective = self.store.seed_last_submit_timestamp(seeded)
        if effective == seeded:
            logger.debug(
                "seeded last submit timestamp",
                extra={"fields": {"seeded_at": seeded, "backdated_s": round(ts_now - seeded, 3)}},
            )
        return effective

    def is_admitted(self, now: float, last_submit_timestamp: float) -> bool:
        return now - last_submit_timestamp > self.minimum_submit_interval_s

    def check(self, now: float | None = None) -> GateDecision:
        """Seed (if needed) then decide admission. Seeding happens even when denied."""

        ts_now = float(now if now is not None else self._now_fn())
        last = self.seed_if_needed(ts_now)
        admitted = self.is_admitted(ts_now, last)
        wait_s = 0.0 if admitted else max(0.0, last + self.minimum_submit_interval_s - ts_now)
        if not admitted:
            logger.debug(
                "submission not due yet",
                extra={"fields": {"wait_s": round(wait_s, 3)}},
            )
        return GateDecision(admitted=admitted, now=ts_now, last_submit_timestamp=last, wait_s=wait_s)
