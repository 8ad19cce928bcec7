from __future__ import annotations

import random

from app.exporter.delays import DelayPolicy


def _quiet_policy(**overrides) -> DelayPolicy:
    values = dict(
        min_seconds=2.0,
        max_seconds=2.0,
        thinking_probability=0.0,
        distraction_probability=0.0,
        rng=random.Random(7),
    )
    values.update(overrides)
    return DelayPolicy(**values)


def test_inter_item_delay_within_range() -> None:
    policy = _quiet_policy(min_seconds=1.0, max_seconds=4.0)
    for _ in range(50):
        assert 1.0 <= policy.inter_item_delay({}) <= 4.0


def test_thinking_pause_is_added() -> None:
    policy = _quiet_policy(thinking_probability=1.0, thinking_range=(5.0, 5.0))
    assert policy({}) == 7.0


def test_distraction_pause_is_added() -> None:
    policy = _quiet_policy(distraction_probability=1.0, distraction_range=(10.0, 10.0))
    assert policy.inter_item_delay({"processed": 3}) == 12.0


def test_with_range_overrides_and_sorts() -> None:
    policy = _quiet_policy().with_range((5, 1))
    assert (policy.min_seconds, policy.max_seconds) == (1.0, 5.0)
    assert _quiet_policy().with_range(None).min_seconds == 2.0


def test_rest_threshold_and_break() -> None:
    policy = _quiet_policy(rest_every=(20, 25), rest_range=(30.0, 30.0))
    for _ in range(20):
        assert 20 <= policy.next_rest_threshold() <= 25
    assert policy.rest_break() == 30.0


def test_zero_policy_never_waits() -> None:
    policy = DelayPolicy.zero()
    assert policy({}) == 0.0
    assert policy.rest_break() == 0.0
    assert policy.backoff(3) == 0.0


def test_backoff_uses_policy_constants() -> None:
    policy = _quiet_policy(backoff_base=3.0, backoff_increment=2.0, backoff_cap=60.0)
    assert [policy.backoff(n) for n in (1, 2, 3)] == [5.0, 7.0, 11.0]
