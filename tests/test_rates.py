"""Tests for counter-to-rate conversion."""
from __future__ import annotations

from system_monitor.rates import RateSampler


class TestRateSampler:
    def test_first_sample_is_baseline(self, clock):
        sampler = RateSampler(clock)
        assert sampler.sample(lambda: 5000) == 0
        assert sampler.state.previous_total == 5000

    def test_rate_is_bytes_per_second(self, clock):
        sampler = RateSampler(clock)
        sampler.sample(lambda: 1000)
        clock.advance(2.0)
        assert sampler.sample(lambda: 5000) == 2000

    def test_counter_reset_reports_zero(self, clock):
        sampler = RateSampler(clock)
        sampler.sample(lambda: 10_000)
        clock.advance(1.0)
        assert sampler.sample(lambda: 200) == 0
        clock.advance(1.0)
        # The reset value becomes the new baseline
        assert sampler.sample(lambda: 1200) == 1000

    def test_zero_elapsed_uses_one_millisecond(self, clock):
        sampler = RateSampler(clock)
        sampler.sample(lambda: 0)
        assert sampler.sample(lambda: 10) == 10_000

    def test_rate_is_truncated_to_int(self, clock):
        sampler = RateSampler(clock)
        sampler.sample(lambda: 0)
        clock.advance(3.0)
        rate = sampler.sample(lambda: 10)
        assert rate == 3
        assert isinstance(rate, int)
