from __future__ import annotations

import random

import pytest

from fleetstats.gate import SubmissionGate
from fleetstats.state import MemoryStateStore, PersistedState

INTERVAL = 3600.0
NOW = 1_800_000_000.0


class _FixedRng:
    def __init__(self, value: float) -> None:
        self.value = value
        self.calls = 0

    def uniform(self, a: float, b: float) -> float:
        self.calls += 1
        return self.value


def _gate(store: MemoryStateStore, *, rng: object | None = None) -> SubmissionGate:
    return SubmissionGate(
        store=store,
        minimum_submit_interval_s=INTERVAL,
        rng=rng,  # type: ignore[arg-type]
        now_fn=lambda: NOW,
    )


def test_seed_backdates_unset_timestamp_by_jitter_factor() -> None:
    store = MemoryStateStore()
    gate = _gate(store, rng=_FixedRng(0.5))

    seeded = gate.seed_if_needed(NOW)

    assert seeded == pytest.approx(NOW - 0.5 * INTERVAL)
    assert store.load().last_submit_timestamp == seeded


def test_seed_is_idempotent_once_set() -> None:
    store = MemoryStateStore()
    rng = _FixedRng(0.7)
    gate = _gate(store, rng=rng)

    first = gate.seed_if_needed(NOW)
    second = gate.seed_if_needed(NOW + 10.0)

    assert first == second
    assert store.load().last_submit_timestamp == first
    assert rng.calls == 1


def test_seed_never_touches_existing_timestamp() -> None:
    store = MemoryStateStore(PersistedState(last_submit_timestamp=NOW - 5.0))
    gate = _gate(store, rng=_FixedRng(1.0))

    assert gate.seed_if_needed(NOW) == NOW - 5.0


@pytest.mark.parametrize("seed", range(25))
def test_seed_stays_within_jitter_bounds(seed: int) -> None:
    store = MemoryStateStore()
    gate = _gate(store, rng=random.Random(seed))

    seeded = gate.seed_if_needed(NOW)

    assert NOW - 1.2 * INTERVAL <= seeded <= NOW - 0.2 * INTERVAL


def test_jitter_factor_is_half_open_at_upper_bound() -> None:
    gate = _gate(MemoryStateStore(), rng=_FixedRng(1.2))

    assert gate.jitter_factor() < 1.2


def test_gate_admits_just_after_interval_and_denies_just_before() -> None:
    t0 = NOW - 10_000.0
    store = MemoryStateStore(PersistedState(last_submit_timestamp=t0))
    gate = _gate(store)
    eps = 0.001

    assert gate.check(t0 + INTERVAL + eps).admitted is True
    denied = gate.check(t0 + INTERVAL - eps)
    assert denied.admitted is False
    assert denied.wait_s == pytest.approx(eps, abs=1e-5)


def test_gate_denies_exactly_at_interval() -> None:
    t0 = NOW - 10_000.0
    gate = _gate(MemoryStateStore(PersistedState(last_submit_timestamp=t0)))

    assert gate.check(t0 + INTERVAL).admitted is False


def test_denied_first_call_still_seeds() -> None:
    store = MemoryStateStore()
    gate = _gate(store, rng=_FixedRng(0.2))

    decision = gate.check(NOW)

    assert decision.admitted is False
    assert store.load().seeded is True
    assert decision.last_submit_timestamp == pytest.approx(NOW - 0.2 * INTERVAL)


def test_seed_above_one_interval_admits_first_call() -> None:
    store = MemoryStateStore()
    gate = _gate(store, rng=_FixedRng(1.1))

    assert gate.check().admitted is True


def test_seed_near_epoch_is_negative_and_still_counts_as_set() -> None:
    store = MemoryStateStore()
    gate = SubmissionGate(
        store=store,
        minimum_submit_interval_s=INTERVAL,
        rng=random.Random(1),
        now_fn=lambda: 1000.0,
    )

    first = gate.seed_if_needed(1000.0)
    second = gate.seed_if_needed(1000.0)

    assert first < 0.0
    assert second == first
    assert store.load().seeded is True
    assert 1000.0 - 1.2 * INTERVAL <= first <= 1000.0 - 0.2 * INTERVAL
