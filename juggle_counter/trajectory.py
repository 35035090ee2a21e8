"""
Ball trajectory history for the juggle counter.

TrajectoryBuffer keeps the last N ball samples (observed or extrapolated) in
chronological order. It feeds both the juggle detector and the "snake"
visualisation layout.
"""

import math
import logging
from typing import Optional, List, Iterator
from dataclasses import dataclass, asdict
from collections import deque

logger = logging.getLogger(__name__)

SNAKE_DOT_SIZE = 5
SNAKE_DOT_SIZE_JUGGLE = 10


def round_half_up(value: float, digits: int = 1) -> float:
    """Round to `digits` decimals with halves going up (not banker's rounding)."""
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


@dataclass
class DebugLabel:
    """Per-apex diagnostic shown next to a trajectory dot."""
    ordinal: Optional[int]
    rounded_y: float
    amplitude_ratio: float

    @property
    def line1(self) -> str:
        return str(self.ordinal) if self.ordinal is not None else "-"

    @property
    def line2(self) -> str:
        return f"{_plain_number(self.rounded_y)},{_plain_number(self.amplitude_ratio)}"


def _plain_number(value: float) -> str:
    """Shortest decimal form, without exponent or a trailing '.0'."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    text = repr(value)
    if "e" in text:
        text = f"{value:f}".rstrip("0").rstrip(".")
    return text


@dataclass
class BallSample:
    """Single point in the ball trajectory."""
    x: float
    y: float
    velocity_x: float  # units per second
    velocity_y: float  # units per second
    diameter: float
    is_extrapolated: bool  # True if produced by Kalman predict only
    timestamp_ms: float
    juggle_ordinal: Optional[int] = None
    debug_label: Optional[DebugLabel] = None

    @property
    def speed(self) -> float:
        return math.hypot(self.velocity_x, self.velocity_y)

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.debug_label is not None:
            data["debug_label"]["line1"] = self.debug_label.line1
            data["debug_label"]["line2"] = self.debug_label.line2
        return data


@dataclass
class SnakePoint:
    """Layout of one trajectory sample inside the snake frame."""
    x: float
    y: float
    size: int
    is_juggle: bool
    is_extrapolated: bool
    label: Optional[DebugLabel] = None


class TrajectoryBuffer:
    """
    Fixed-capacity FIFO of BallSamples.

    Appending beyond capacity evicts the oldest sample. Samples are never
    reordered.
    """

    def __init__(self, capacity: int = 30):
        if not isinstance(capacity, int) or capacity < 3:
            raise ValueError(f"capacity must be an int >= 3, got {capacity}")
        self.capacity = capacity
        self._samples: deque[BallSample] = deque(maxlen=capacity)

    def push(
        self,
        x: float,
        y: float,
        diameter: float,
        is_extrapolated: bool,
        timestamp_ms: float,
        velocity_x: Optional[float] = None,
        velocity_y: Optional[float] = None
    ) -> BallSample:
        """
        Append a sample, deriving any missing velocity from the previous one.

        Args:
            x, y: Position (display units)
            diameter: Ball diameter (display units)
            is_extrapolated: True if no detection backed this sample
            timestamp_ms: Sample time in milliseconds
            velocity_x, velocity_y: Optional velocity; finite-differenced when None

        Returns:
            The appended sample
        """
        if velocity_x is None or velocity_y is None:
            derived_vx, derived_vy = self._finite_difference(x, y, timestamp_ms)
            if velocity_x is None:
                velocity_x = derived_vx
            if velocity_y is None:
                velocity_y = derived_vy

        sample = BallSample(
            x=float(x),
            y=float(y),
            velocity_x=float(velocity_x),
            velocity_y=float(velocity_y),
            diameter=float(diameter),
            is_extrapolated=is_extrapolated,
            timestamp_ms=float(timestamp_ms)
        )
        self._samples.append(sample)
        return sample

    def _finite_difference(self, x: float, y: float, timestamp_ms: float):
        if not self._samples:
            return 0.0, 0.0

        prev = self._samples[-1]
        dt_s = (timestamp_ms - prev.timestamp_ms) / 1000.0
        if dt_s <= 0:
            return 0.0, 0.0

        return (x - prev.x) / dt_s, (y - prev.y) / dt_s

    def observed(self) -> List[BallSample]:
        """Samples backed by a detection, oldest first."""
        return [s for s in self._samples if not s.is_extrapolated]

    @property
    def latest(self) -> Optional[BallSample]:
        return self._samples[-1] if self._samples else None

    def clear(self):
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[BallSample]:
        return iter(self._samples)

    def __getitem__(self, index: int) -> BallSample:
        return self._samples[index]


def snake_layout(samples: List[BallSample], width: float, height: float) -> List[SnakePoint]:
    """
    Lay out samples in a width x height frame: oldest left, newest right, and
    Y scaled to the span of the buffered samples.

    A single sample sits at the horizontal midpoint; a zero vertical span puts
    every dot at the vertical midpoint.
    """
    n = len(samples)
    if n == 0:
        return []

    ys = [s.y for s in samples]
    min_y = min(ys)
    range_y = max(ys) - min_y

    points = []
    for i, sample in enumerate(samples):
        x_frac = i / (n - 1) if n > 1 else 0.5
        y_frac = (sample.y - min_y) / range_y if range_y > 0 else 0.5
        is_juggle = sample.juggle_ordinal is not None
        points.append(SnakePoint(
            x=x_frac * width,
            y=y_frac * height,
            size=SNAKE_DOT_SIZE_JUGGLE if is_juggle else SNAKE_DOT_SIZE,
            is_juggle=is_juggle,
            is_extrapolated=sample.is_extrapolated,
            label=sample.debug_label
        ))
    return points
