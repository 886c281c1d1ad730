"""Unit tests for the bandwidth envelopes and the rate controller."""

from __future__ import annotations

import random

import pytest

from trafficshaper.core.config import Pattern
from trafficshaper.shaping.pattern import BELL_SIGMA, evaluate
from trafficshaper.shaping.rate_controller import (
    TICK_INTERVAL_SECONDS,
    RateController,
    ideal_bytes,
)

# ---------------------------------------------------------------------------
# Pattern evaluation
# ---------------------------------------------------------------------------


class TestConstantPattern:
    """Tests for the constant envelope."""

    @pytest.mark.parametrize("fraction", [0.0, 0.3, 1.0, -2.0, 5.0])
    def test_always_max(self, fraction: float) -> None:
        assert evaluate(Pattern.CONSTANT, fraction, 40.0) == 40.0


class TestBellPattern:
    """Tests for the bell envelope."""

    @pytest.mark.parametrize("peak", [0.0, 0.25, 0.5, 0.8, 1.0])
    def test_peak_at_ratio(self, peak: float) -> None:
        assert evaluate(Pattern.BELL, peak, 100.0, peak) == pytest.approx(100.0)

    @pytest.mark.parametrize("peak", [0.2, 0.5, 0.7])
    def test_non_increasing_away_from_peak(self, peak: float) -> None:
        steps = [i / 200 for i in range(201)]
        values = {f: evaluate(Pattern.BELL, f, 100.0, peak) for f in steps}
        left = [values[f] for f in steps if f <= peak]
        right = [values[f] for f in steps if f >= peak]
        assert all(a <= b for a, b in zip(left, left[1:]))
        assert all(a >= b for a, b in zip(right, right[1:]))
        assert max(values.values()) == pytest.approx(evaluate(Pattern.BELL, peak, 100.0, peak))

    def test_near_zero_at_edges_for_centred_peak(self) -> None:
        assert evaluate(Pattern.BELL, 0.0, 100.0, 0.5) < 1.0
        assert evaluate(Pattern.BELL, 1.0, 100.0, 0.5) < 1.0

    def test_one_sigma_value(self) -> None:
        value = evaluate(Pattern.BELL, 0.5 + BELL_SIGMA, 100.0, 0.5)
        assert value == pytest.approx(100.0 * 0.6065306597, rel=1e-6)

    def test_fraction_clamped(self) -> None:
        assert evaluate(Pattern.BELL, -1.0, 10.0, 0.3) == evaluate(Pattern.BELL, 0.0, 10.0, 0.3)
        assert evaluate(Pattern.BELL, 7.0, 10.0, 0.3) == evaluate(Pattern.BELL, 1.0, 10.0, 0.3)


class TestRandomPattern:
    """Tests for the random envelope."""

    def test_within_range(self) -> None:
        rng = random.Random(7)
        samples = [evaluate(Pattern.RANDOM, 0.5, 50.0, rng=rng) for _ in range(500)]
        assert all(0.0 <= s <= 50.0 for s in samples)

    def test_no_memory_between_calls(self) -> None:
        rng = random.Random(42)
        expected = random.Random(42)
        samples = [evaluate(Pattern.RANDOM, i / 10, 50.0, rng=rng) for i in range(10)]
        assert samples == [expected.uniform(0.0, 50.0) for _ in range(10)]

    def test_jittery(self) -> None:
        rng = random.Random(1)
        samples = [evaluate(Pattern.RANDOM, 0.5, 100.0, rng=rng) for _ in range(200)]
        jumps = [abs(a - b) for a, b in zip(samples, samples[1:])]
        assert max(jumps) > 50.0


@pytest.mark.parametrize("pattern", list(Pattern))
def test_zero_bandwidth_yields_zero(pattern: Pattern) -> None:
    assert evaluate(pattern, 0.5, 0.0, 0.5) == 0.0


# ---------------------------------------------------------------------------
# Rate controller
# ---------------------------------------------------------------------------


class TestRateController:
    """Tests for per-tick budgets."""

    def test_ideal_bytes_for_one_tick(self) -> None:
        assert ideal_bytes(8.0, 0.1) == pytest.approx(100_000)

    def test_whole_packet_budget_leaves_no_carry(self) -> None:
        controller = RateController(packet_size_bytes=1000)
        budget = controller.next_tick_budget(8.0, TICK_INTERVAL_SECONDS, 0.0)
        assert budget.packets == 100
        assert budget.bytes_to_send == 100_000
        assert budget.carry_over_bytes == pytest.approx(0.0, abs=1e-6)

    def test_remainder_carried(self) -> None:
        controller = RateController(packet_size_bytes=1400)
        budget = controller.next_tick_budget(1.0, 0.1, 0.0)
        # 12_500 ideal bytes -> 8 packets, 1_300 left over
        assert budget.packets == 8
        assert budget.carry_over_bytes == pytest.approx(1_300)

    def test_long_run_average_matches_target(self) -> None:
        controller = RateController(packet_size_bytes=1400)
        carry = 0.0
        sent = 0
        ticks = 1000
        for _ in range(ticks):
            budget = controller.next_tick_budget(3.3, 0.1, carry)
            carry = budget.carry_over_bytes
            sent += budget.bytes_to_send
        expected = ideal_bytes(3.3, 0.1) * ticks
        assert abs(sent - expected) < 1400

    def test_low_rate_still_emits(self) -> None:
        controller = RateController(packet_size_bytes=1000)
        carry = 0.0
        packets = 0
        for _ in range(100):
            budget = controller.next_tick_budget(0.01, 0.1, carry)
            carry = budget.carry_over_bytes
            packets += budget.packets
        # 125 bytes per tick over 100 ticks -> 12 whole packets
        assert packets == 12

    @pytest.mark.parametrize("carry", [-500.0, 0.0, 250.0, 10_000_000.0])
    @pytest.mark.parametrize("target", [0.0, 0.5, 8.0, 950.0])
    def test_bounds(self, target: float, carry: float) -> None:
        controller = RateController(packet_size_bytes=1000)
        budget = controller.next_tick_budget(target, 0.1, carry)
        bucket = controller.bucket_size(target, 0.1)
        allowed = ideal_bytes(target, 0.1) + min(max(carry, 0.0), bucket)
        assert budget.carry_over_bytes >= 0.0
        assert budget.carry_over_bytes <= bucket
        assert budget.bytes_to_send <= allowed
        assert budget.bytes_to_send % 1000 == 0

    def test_zero_target_sends_nothing(self) -> None:
        controller = RateController(packet_size_bytes=500)
        budget = controller.next_tick_budget(0.0, 0.1, 300.0)
        assert budget.packets == 0
        assert budget.carry_over_bytes == pytest.approx(300.0)

    def test_rejects_bad_packet_size(self) -> None:
        with pytest.raises(ValueError):
            RateController(packet_size_bytes=0)
