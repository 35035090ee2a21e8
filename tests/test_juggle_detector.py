"""
Tests for juggle event detection on the observed trajectory.

The Y values used here are screen coordinates (larger = lower).
"""

import sys
from pathlib import Path
from typing import List, Optional

import pytest

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from juggle_counter.trajectory import TrajectoryBuffer
from juggle_counter.juggle_detector import JuggleDetector


def feed(
    detector: JuggleDetector,
    ys: List[float],
    diameter: float = 20.0,
    step_ms: float = 33.0,
    buffer: Optional[TrajectoryBuffer] = None
) -> TrajectoryBuffer:
    """Push observed samples one by one, running the detector after each push."""
    buffer = buffer or TrajectoryBuffer(capacity=30)
    start = buffer.latest.timestamp_ms + step_ms if buffer.latest else 0.0
    for i, y in enumerate(ys):
        ts = start + i * step_ms
        buffer.push(0.0, y, diameter, False, ts, 0.0, 0.0)
        detector.process(buffer, ts)
    return buffer


class TestApexThreshold:
    """Local min/max tests and the half-diameter amplitude threshold."""

    def test_fewer_than_three_samples_does_nothing(self):
        detector = JuggleDetector()
        buffer = feed(detector, [50.0, 10.0])

        assert detector.count == 0
        assert detector.state.last_local_min_y is None
        assert all(s.debug_label is None for s in buffer)

    def test_swing_above_half_diameter_counts(self):
        """Y [50,50,10,50,50], d=20 -> floor 10, drop 40 >= 10, count 1."""
        detector = JuggleDetector()
        buffer = feed(detector, [50.0, 50.0, 10.0, 50.0, 50.0], diameter=20.0)

        assert detector.count == 1
        assert detector.state.last_local_min_y == 10.0

        apex = buffer[3]
        assert apex.juggle_ordinal == 1
        assert apex.debug_label.line1 == "1"
        assert apex.debug_label.line2 == "50,4"

    def test_apex_without_floor_is_not_counted(self):
        detector = JuggleDetector()
        buffer = feed(detector, [50.0, 50.0, 10.0], diameter=20.0)

        assert detector.count == 0
        # (50, 50, 10) is an apex candidate but no floor was ever recorded
        assert buffer[1].juggle_ordinal is None
        assert buffer[1].debug_label.line1 == "-"

    def test_swing_below_half_diameter_rejected(self):
        """Same shape with d=200 -> drop 40 < 100, no count, ordinal cleared."""
        detector = JuggleDetector()
        buffer = feed(detector, [50.0, 50.0, 10.0, 50.0], diameter=200.0)
        buffer[3].juggle_ordinal = 7  # tentative ordinal from an earlier pass

        feed(detector, [50.0], diameter=200.0, buffer=buffer)

        assert detector.count == 0
        assert buffer[3].juggle_ordinal is None
        assert buffer[3].debug_label.amplitude_ratio == pytest.approx(0.4)

    def test_exact_threshold_counts(self):
        detector = JuggleDetector()
        feed(detector, [50.0, 40.0, 50.0, 40.0], diameter=20.0)

        assert detector.count == 1

    def test_flat_triple_is_both_min_and_peak(self):
        detector = JuggleDetector()
        buffer = TrajectoryBuffer()
        for i in range(3):
            buffer.push(0.0, 30.0, 20.0, False, i * 33.0, 0.0, 0.0)

        decision = detector.evaluate(buffer, 66.0)

        assert decision.is_local_min
        assert decision.is_peak
        assert decision.drop_from_top == 0.0
        assert not decision.is_juggle

    def test_repeated_cycles_count_each_apex(self):
        detector = JuggleDetector()
        cycle = [300.0, 260.0, 220.0, 180.0, 140.0, 180.0, 220.0, 260.0]
        feed(detector, cycle * 4 + [300.0, 260.0])

        assert detector.count == 4


class TestExtrapolatedSamples:
    """Detection only ever sees the observed subsequence."""

    def test_extrapolated_samples_do_not_change_outcome(self):
        plain = JuggleDetector()
        plain_buffer = feed(plain, [50.0, 50.0, 10.0, 50.0, 50.0])

        mixed = JuggleDetector()
        buffer = TrajectoryBuffer()
        observed_ys = iter([50.0, 50.0, 10.0, 50.0, 50.0])
        pattern = [False, False, True, False, True, True, False, False]
        spurious = iter([0.0, 500.0, -200.0])
        for i, extrapolated in enumerate(pattern):
            ts = i * 33.0
            y = next(spurious) if extrapolated else next(observed_ys)
            buffer.push(0.0, y, 20.0, extrapolated, ts, 0.0, 0.0)
            mixed.process(buffer, ts)

        assert mixed.count == plain.count == 1
        labels = [s.debug_label.line2 for s in buffer.observed() if s.debug_label]
        plain_labels = [s.debug_label.line2 for s in plain_buffer if s.debug_label]
        assert labels == plain_labels
        assert all(s.debug_label is None for s in buffer if s.is_extrapolated)

    def test_process_is_idempotent_without_new_observation(self):
        detector = JuggleDetector()
        buffer = feed(detector, [50.0, 50.0, 10.0, 50.0, 50.0])

        first = detector.process(buffer, 1000.0)
        again = detector.process(buffer, 2000.0)

        assert detector.count == 1
        assert first is again


class TestDebounce:
    """Minimum spacing between counted juggles."""

    YS = [10.0, 50.0, 10.0, 50.0, 10.0, 50.0, 10.0]

    def test_close_apexes_count_once(self):
        """400ms debounce, apexes 100ms apart -> one juggle."""
        detector = JuggleDetector(min_interval_ms=400)
        # Qualifying apexes land at t=200 and t=300
        feed(detector, self.YS, step_ms=50.0)

        assert detector.count == 1
        assert detector.state.last_event_timestamp_ms == 200.0

    def test_spaced_apexes_count_twice(self):
        """400ms debounce, apexes 500ms apart -> two juggles."""
        detector = JuggleDetector(min_interval_ms=400)
        # Qualifying apexes land at t=1000 and t=1500
        feed(detector, self.YS, step_ms=250.0)

        assert detector.count == 2
        assert detector.state.last_event_timestamp_ms == 1500.0

    def test_debounced_decision_is_flagged(self):
        detector = JuggleDetector(min_interval_ms=400)
        buffer = feed(detector, self.YS[:-1], step_ms=50.0)

        buffer.push(0.0, 10.0, 20.0, False, 300.0, 0.0, 0.0)
        decision = detector.process(buffer, 300.0)

        assert decision.is_peak
        assert decision.debounced
        assert not decision.is_juggle
        assert buffer[-2].juggle_ordinal is None

    def test_zero_interval_disables_debounce(self):
        detector = JuggleDetector(min_interval_ms=0)
        feed(detector, self.YS, step_ms=1.0)

        assert detector.count == 2

    def test_negative_interval_rejected(self):
        with pytest.raises(ValueError):
            JuggleDetector(min_interval_ms=-1)


class TestReset:
    """Fresh state after reset."""

    def test_reset_then_replay_matches_fresh(self):
        fresh = JuggleDetector()
        fresh_buffer = feed(fresh, [50.0, 50.0, 10.0, 50.0, 50.0])

        reused = JuggleDetector()
        feed(reused, [300.0, 140.0, 300.0, 140.0, 300.0, 140.0])
        reused.reset()
        reused_buffer = feed(reused, [50.0, 50.0, 10.0, 50.0, 50.0])

        assert reused.count == fresh.count == 1
        assert reused.state == fresh.state
        assert [s.juggle_ordinal for s in reused_buffer] == [s.juggle_ordinal for s in fresh_buffer]
