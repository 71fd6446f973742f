"""Tests for the adaptive crawl delay."""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from seek.scrapers.utils.rate_limiter import AdaptiveDelay

OFF_PEAK = datetime(2024, 3, 1, 4, 0)
PEAK = datetime(2024, 3, 1, 12, 0)


def make_delay(**kwargs) -> AdaptiveDelay:
    params = dict(
        base_delay=2.0,
        peak_start=9,
        peak_end=21,
        peak_multiplier=1.5,
        jitter_ratio=0.0,
        backoff_threshold=50,
        max_delay=30.0,
        sleep=AsyncMock(),
    )
    params.update(kwargs)
    return AdaptiveDelay(**params)


class TestAdaptiveDelay:
    """Tests for AdaptiveDelay.compute_delay and wait."""

    def test_base_delay_off_peak(self):
        assert make_delay().compute_delay(OFF_PEAK) == pytest.approx(2.0)

    def test_peak_multiplier(self):
        assert make_delay().compute_delay(PEAK) == pytest.approx(3.0)

    def test_peak_window_end_is_exclusive(self):
        delay = make_delay()
        assert delay.is_peak(datetime(2024, 3, 1, 9, 0))
        assert not delay.is_peak(datetime(2024, 3, 1, 21, 0))

    def test_jitter_is_bounded(self):
        delay = make_delay(jitter_ratio=0.3)
        for _ in range(200):
            assert 1.4 - 1e-9 <= delay.compute_delay(OFF_PEAK) <= 2.6 + 1e-9

    def test_backoff_after_threshold(self):
        delay = make_delay(backoff_threshold=5)
        delay.request_count = 5
        assert delay.compute_delay(OFF_PEAK) == pytest.approx(2.0)
        delay.request_count = 6
        assert delay.compute_delay(OFF_PEAK) == pytest.approx(4.0)
        delay.request_count = 16
        assert delay.compute_delay(OFF_PEAK) == pytest.approx(8.0)

    def test_backoff_is_capped(self):
        delay = make_delay(backoff_threshold=0, max_delay=30.0)
        delay.request_count = 200
        assert delay.compute_delay(PEAK) == pytest.approx(30.0)

    async def test_wait_counts_and_sleeps(self):
        sleep = AsyncMock()
        delay = make_delay(sleep=sleep)

        waited = await delay.wait(OFF_PEAK)

        assert waited == pytest.approx(2.0)
        assert delay.request_count == 1
        sleep.assert_awaited_once_with(pytest.approx(2.0))

    async def test_reset(self):
        delay = make_delay()
        await delay.wait(OFF_PEAK)
        delay.reset()
        assert delay.request_count == 0
