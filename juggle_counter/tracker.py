"""
Juggle tracker: one session of ball smoothing, trajectory history and juggle
counting, driven one frame at a time.

SEARCHING: no lock yet, frames without a detection are ignored
TRACKING: latest frame had a detection, sample is observed
EXTRAPOLATING: detection missing, sample comes from Kalman predict only

The host calls tick() at its own cadence (render loop, timer, replay or test
harness); nothing here assumes a scheduling primitive.
"""

import logging
from typing import Optional, List
from dataclasses import dataclass
from enum import Enum

from .config import Config
from .detector import Observation
from .kalman import BallFilterPair
from .trajectory import TrajectoryBuffer, BallSample
from .juggle_detector import JuggleDetector, PeakDecision

logger = logging.getLogger(__name__)


class TrackerPhase(Enum):
    """What the tracker did with the latest frame."""
    SEARCHING = "SEARCHING"
    TRACKING = "TRACKING"
    EXTRAPOLATING = "EXTRAPOLATING"


@dataclass
class TrackerState:
    """Current tracker state for external consumption."""
    phase: TrackerPhase
    count: int
    frame_id: int
    latest: Optional[BallSample] = None
    count_delta: int = 0
    peak: Optional[PeakDecision] = None
    missing_frames: int = 0  # Consecutive ticks without a detection


class JuggleTracker:
    """
    Owns all mutable juggle-counting state: the X/Y Kalman pair, the
    trajectory buffer and the juggle counter.

    Not thread-safe; a host sharing one tracker across threads must hold a
    single lock around each tick() and reset().
    """

    DEFAULT_DIAMETER_PX = 40.0

    def __init__(
        self,
        process_variance: float = 0.01,
        measurement_variance: float = 0.1,
        buffer_capacity: int = 30,
        min_juggle_interval_ms: int = 0,
        default_diameter: Optional[float] = None
    ):
        self.filters = BallFilterPair(process_variance, measurement_variance)
        self.buffer = TrajectoryBuffer(buffer_capacity)
        self.detector = JuggleDetector(min_juggle_interval_ms)
        self.default_diameter = default_diameter if default_diameter is not None else self.DEFAULT_DIAMETER_PX

        self._phase = TrackerPhase.SEARCHING
        self._last_timestamp_ms: Optional[float] = None
        self._frame_id = 0
        self._missing_frames = 0

    @classmethod
    def from_config(cls, config: Config) -> 'JuggleTracker':
        return cls(
            process_variance=config.filter.process_variance,
            measurement_variance=config.filter.measurement_variance,
            buffer_capacity=config.trajectory.buffer_capacity,
            min_juggle_interval_ms=config.juggle.min_juggle_interval_ms,
            default_diameter=config.trajectory.default_diameter_px
        )

    def tick(self, timestamp_ms: float, observation: Optional[Observation] = None) -> TrackerState:
        """
        Process one frame.

        Args:
            timestamp_ms: Wall-clock time of the frame in milliseconds (non-decreasing)
            observation: Ball center/diameter, or None if nothing was detected

        Returns:
            Current tracker state
        """
        if self._last_timestamp_ms is not None and timestamp_ms < self._last_timestamp_ms:
            logger.warning(
                f"Dropping out-of-order frame: t={timestamp_ms:.1f}ms < last {self._last_timestamp_ms:.1f}ms"
            )
            return self._build_state()

        dt_s = (timestamp_ms - self._last_timestamp_ms) / 1000.0 if self._last_timestamp_ms is not None else 0.0
        self._last_timestamp_ms = timestamp_ms
        self._frame_id += 1

        if observation is not None:
            return self._track(observation, timestamp_ms, dt_s)
        return self._extrapolate(timestamp_ms, dt_s)

    def _track(self, observation: Observation, timestamp_ms: float, dt_s: float) -> TrackerState:
        """Observed path: filter update, push, juggle detection."""
        if self._phase == TrackerPhase.SEARCHING:
            logger.info(f"Ball acquired at ({observation.center_x:.1f}, {observation.center_y:.1f})")
        self._phase = TrackerPhase.TRACKING
        self._missing_frames = 0

        estimate = self.filters.update(observation.center_x, observation.center_y, dt_s)
        self.buffer.push(
            estimate.x,
            estimate.y,
            observation.diameter,
            False,
            timestamp_ms,
            velocity_x=estimate.vx,
            velocity_y=estimate.vy
        )

        count_before = self.detector.count
        decision = self.detector.process(self.buffer, timestamp_ms)
        return self._build_state(
            count_delta=self.detector.count - count_before,
            peak=decision if decision.is_peak else None
        )

    def _extrapolate(self, timestamp_ms: float, dt_s: float) -> TrackerState:
        """Missing-detection path: predict only, never touches the detector."""
        self._missing_frames += 1
        if not self.filters.initialised:
            return self._build_state()

        estimate = self.filters.predict(dt_s)
        if self._phase == TrackerPhase.TRACKING:
            logger.debug(f"Detection lost, extrapolating from frame {self._frame_id}")
        self._phase = TrackerPhase.EXTRAPOLATING

        latest = self.buffer.latest
        diameter = latest.diameter if latest is not None else self.default_diameter
        self.buffer.push(estimate.x, estimate.y, diameter, True, timestamp_ms)
        return self._build_state()

    def _build_state(self, count_delta: int = 0, peak: Optional[PeakDecision] = None) -> TrackerState:
        """Build current state for external consumption."""
        return TrackerState(
            phase=self._phase,
            count=self.detector.count,
            frame_id=self._frame_id,
            latest=self.buffer.latest,
            count_delta=count_delta,
            peak=peak,
            missing_frames=self._missing_frames
        )

    @property
    def count(self) -> int:
        return self.detector.count

    @property
    def phase(self) -> TrackerPhase:
        return self._phase

    @property
    def trajectory(self) -> List[BallSample]:
        """Buffered samples, oldest first."""
        return list(self.buffer)

    def reset(self):
        """Clear count, trajectory and filter lock; the next tick starts a fresh session."""
        self.filters.reset()
        self.buffer.clear()
        self.detector.reset()
        self._phase = TrackerPhase.SEARCHING
        self._last_timestamp_ms = None
        self._frame_id = 0
        self._missing_frames = 0
        logger.info("Tracker reset")
