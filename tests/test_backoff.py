"""Tests for reconnect backoff."""

import pytest

from pubsub_feed.utils.backoff import compute_backoff


def test_doubles_per_attempt():
    delays = [compute_backoff(n, base=1.0, maximum=100.0, jitter=0) for n in range(1, 6)]
    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0]


def test_capped_at_maximum():
    assert compute_backoff(20, base=1.0, maximum=30.0, jitter=0) == 30.0


def test_huge_attempt_does_not_overflow():
    assert compute_backoff(10_000, base=1.0, maximum=120.0, jitter=0) == 120.0


def test_attempt_zero_is_base():
    assert compute_backoff(0, base=0.5, maximum=10.0, jitter=0) == 0.5


@pytest.mark.parametrize("factor", [0.8, 1.0, 1.2])
def test_jitter_scales_delay(factor):
    delay = compute_backoff(3, base=1.0, maximum=100.0, jitter=0.2, rand=lambda low, high: factor)
    assert delay == pytest.approx(4.0 * factor)


def test_jitter_never_exceeds_maximum():
    delay = compute_backoff(10, base=1.0, maximum=10.0, jitter=0.5, rand=lambda low, high: high)
    assert delay == 10.0


def test_random_jitter_within_bounds():
    for _ in range(50):
        delay = compute_backoff(2, base=1.0, maximum=100.0, jitter=0.25)
        assert 1.5 <= delay <= 2.5
