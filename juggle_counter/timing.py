"""
Frame timing for the juggle counter host.

Tracks per-frame latency split into detector time and post-detection time,
plus effective frame rate from tick timestamps.
"""

import logging
from typing import Optional
from dataclasses import dataclass
from collections import deque

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class FPSStats:
    """Frame timing statistics."""
    fps: float = 0.0
    dt_mean_ms: float = 0.0
    dt_std_ms: float = 0.0
    dt_min_ms: float = 0.0
    dt_max_ms: float = 0.0
    sample_count: int = 0


@dataclass
class FrameTiming:
    """Latency breakdown of one processed frame."""
    detect_ms: float = 0.0       # Time spent in the external detector
    post_detect_ms: float = 0.0  # Filtering, buffering, juggle detection
    total_ms: float = 0.0

    @property
    def fps(self) -> float:
        """Throughput if every frame took total_ms."""
        return 1000.0 / self.total_ms if self.total_ms > 0 else 0.0


class FPSTracker:
    """Track actual FPS using timestamp deltas."""

    def __init__(self, window_size: int = 30):
        self.window_size = window_size
        self.timestamps: deque[float] = deque(maxlen=window_size)
        self._last_fps = 0.0

    def update(self, timestamp_ms: float) -> float:
        """Update with new timestamp, return current FPS estimate."""
        self.timestamps.append(timestamp_ms)

        if len(self.timestamps) < 2:
            return 0.0

        dt_ms = self.timestamps[-1] - self.timestamps[0]
        if dt_ms <= 0:
            return self._last_fps

        fps = (len(self.timestamps) - 1) / (dt_ms / 1000.0)
        self._last_fps = fps
        return fps

    def get_stats(self) -> FPSStats:
        """Get detailed timing statistics."""
        if len(self.timestamps) < 2:
            return FPSStats()

        dts = np.diff(np.array(self.timestamps, dtype=float))
        dts = dts[dts > 0]
        if dts.size == 0:
            return FPSStats()

        mean_dt = float(np.mean(dts))
        return FPSStats(
            fps=1000.0 / mean_dt if mean_dt > 0 else 0.0,
            dt_mean_ms=mean_dt,
            dt_std_ms=float(np.std(dts)),
            dt_min_ms=float(np.min(dts)),
            dt_max_ms=float(np.max(dts)),
            sample_count=int(dts.size)
        )

    @property
    def current_fps(self) -> float:
        """Get current FPS estimate."""
        return self._last_fps

    def reset(self):
        self.timestamps.clear()
        self._last_fps = 0.0


class FrameTimer:
    """Keeps the latest FrameTiming and a rolling FPS for processed frames."""

    def __init__(self, window_size: int = 30):
        self._fps = FPSTracker(window_size)
        self.last: Optional[FrameTiming] = None

    def record(self, timestamp_ms: float, detect_ms: float, total_ms: float) -> FrameTiming:
        """
        Record one processed frame.

        Args:
            timestamp_ms: When the frame was processed
            detect_ms: Detector latency reported by the caller (0 if unknown)
            total_ms: End-to-end latency including detection
        """
        total_ms = max(total_ms, detect_ms)
        self.last = FrameTiming(
            detect_ms=detect_ms,
            post_detect_ms=total_ms - detect_ms,
            total_ms=total_ms
        )
        self._fps.update(timestamp_ms)
        return self.last

    @property
    def fps(self) -> float:
        return self._fps.current_fps

    @property
    def stats(self) -> FPSStats:
        return self._fps.get_stats()

    def reset(self):
        self._fps.reset()
        self.last = None
