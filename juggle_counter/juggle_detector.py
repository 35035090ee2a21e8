"""
Juggle event detection.

Looks at the last three observed samples (prev_prev, prev, curr) every time a
new observed sample lands in the trajectory buffer:

LOCAL MINIMUM: prev.y <= both neighbours -> remember prev.y as the floor
LOCAL MAXIMUM: prev.y >= both neighbours -> apex candidate; counted as a
juggle when the excursion from the floor reaches half the ball's diameter
(and, when debounced, enough time has passed since the last juggle).

Y grows downwards, so the "maximum" is the lowest point of the arc, where the
ball meets the foot/knee, and the "minimum" is the top of the arc.

Extrapolated samples are never looked at.
"""

import logging
from typing import Optional
from dataclasses import dataclass

from .trajectory import TrajectoryBuffer, BallSample, DebugLabel, round_half_up

logger = logging.getLogger(__name__)


@dataclass
class JuggleCounterState:
    """Mutable counter state for one session."""
    count: int = 0
    last_local_min_y: Optional[float] = None
    last_event_timestamp_ms: Optional[float] = None


@dataclass
class PeakDecision:
    """Outcome of evaluating the latest observed triple."""
    is_local_min: bool = False
    is_peak: bool = False
    is_juggle: bool = False
    drop_from_top: Optional[float] = None
    min_amplitude: Optional[float] = None
    ratio: Optional[float] = None  # drop_from_top / min_amplitude, 1 decimal; peaks only
    debounced: bool = False        # Peak cleared the amplitude but fell inside the debounce window
    peak: Optional[BallSample] = None


class JuggleDetector:
    """
    Peak detector with amplitude threshold and optional time debounce.

    Call process() synchronously after every push of an observed sample so the
    ordinal written on the apex matches the buffer contents.
    """

    def __init__(self, min_interval_ms: int = 0):
        if min_interval_ms < 0:
            raise ValueError(f"min_interval_ms must be >= 0, got {min_interval_ms}")
        self.min_interval_ms = min_interval_ms
        self.state = JuggleCounterState()
        self._last_curr: Optional[BallSample] = None
        self._last_decision = PeakDecision()

    @property
    def count(self) -> int:
        return self.state.count

    def evaluate(self, buffer: TrajectoryBuffer, now_ms: float) -> PeakDecision:
        """
        Run the min/max tests on the latest observed triple.

        Records the floor when prev is a local minimum; does not touch the
        count or any sample. Both tests are checked against the same triple.
        """
        observed = buffer.observed()
        if len(observed) < 3:
            return PeakDecision()

        prev_prev, prev, curr = observed[-3], observed[-2], observed[-1]
        decision = PeakDecision(peak=prev)

        if prev.y <= prev_prev.y and prev.y <= curr.y:
            self.state.last_local_min_y = prev.y
            decision.is_local_min = True

        if prev.y >= prev_prev.y and prev.y >= curr.y:
            floor_y = self.state.last_local_min_y
            drop_from_top = prev.y - (floor_y if floor_y is not None else prev.y)
            min_amplitude = prev.diameter / 2

            decision.is_peak = True
            decision.drop_from_top = drop_from_top
            decision.min_amplitude = min_amplitude
            decision.ratio = round_half_up(drop_from_top / min_amplitude, 1) if min_amplitude > 0 else 0.0

            clears_amplitude = floor_y is not None and drop_from_top >= min_amplitude
            if clears_amplitude and not self._interval_elapsed(now_ms):
                decision.debounced = True
                clears_amplitude = False
            decision.is_juggle = clears_amplitude

        return decision

    def _interval_elapsed(self, now_ms: float) -> bool:
        if self.min_interval_ms <= 0 or self.state.last_event_timestamp_ms is None:
            return True
        return now_ms - self.state.last_event_timestamp_ms >= self.min_interval_ms

    def apply(self, decision: PeakDecision, now_ms: float):
        """Count the juggle (if any) and write ordinal and label on the apex sample."""
        if not decision.is_peak or decision.peak is None:
            return

        peak = decision.peak
        if decision.is_juggle:
            self.state.count += 1
            self.state.last_event_timestamp_ms = now_ms
            peak.juggle_ordinal = self.state.count
            logger.info(
                f"Juggle {self.state.count}: apex y={peak.y:.1f}, "
                f"drop={decision.drop_from_top:.1f}, ratio={decision.ratio}"
            )
        else:
            peak.juggle_ordinal = None
            if decision.debounced:
                logger.debug(f"Apex at y={peak.y:.1f} inside debounce window, not counted")

        peak.debug_label = DebugLabel(
            ordinal=peak.juggle_ordinal,
            rounded_y=round_half_up(peak.y, 1),
            amplitude_ratio=decision.ratio
        )

    def process(self, buffer: TrajectoryBuffer, now_ms: float) -> PeakDecision:
        """
        Evaluate the latest observed triple and apply the outcome.

        Calling again before a new observed sample arrives returns the previous
        decision without touching the count.
        """
        latest = next((s for s in reversed(buffer) if not s.is_extrapolated), None)
        if latest is not None and latest is self._last_curr:
            return self._last_decision

        decision = self.evaluate(buffer, now_ms)
        self.apply(decision, now_ms)
        self._last_curr = latest
        self._last_decision = decision
        return decision

    def reset(self):
        self.state = JuggleCounterState()
        self._last_curr = None
        self._last_decision = PeakDecision()
