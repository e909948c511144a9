"""Tests for the pure pacing function."""

import pytest

from xerolink.ratelimit.pacing import compute_delay


def delay(remaining: int, reset_in: float = 60.0, buffer: int = 5) -> float:
    return compute_delay(remaining, reset_in, buffer, base_delay=0.05, low_water_mark=10)


def test_plenty_of_quota_uses_base_delay():
    assert delay(50) == 0.05
    assert delay(11) == 0.05


def test_low_quota_spreads_remaining_window():
    # usable = 10 - 5 = 5, spread over 6 slots
    assert delay(10) == pytest.approx(10.0)
    assert delay(6) == pytest.approx(30.0)


def test_exhausted_window_waits_for_reset():
    assert delay(5) == 60.0
    assert delay(0) == 60.0
    assert delay(0, reset_in=12.5, buffer=0) == 12.5


def test_exhausted_window_never_below_base_delay():
    assert delay(0, reset_in=0.0) == 0.05
    assert delay(0, reset_in=-3.0) == 0.05


def test_never_below_base_delay_when_window_nearly_over():
    assert delay(8, reset_in=0.01) == 0.05


def test_delay_never_decreases_as_remaining_drops():
    previous = 0.0
    for remaining in range(60, -1, -1):
        current = delay(remaining)
        assert current >= previous
        previous = current
