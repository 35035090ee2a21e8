"""
Session tracking for the juggle counter.
Tracks counted juggles, streaks, drops and session statistics.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, List
from datetime import datetime, timezone

from .tracker import TrackerState

logger = logging.getLogger(__name__)


@dataclass
class JuggleEvent:
    """Record of a single counted juggle."""
    ordinal: int
    timestamp_ms: float
    y: float
    amplitude_ratio: Optional[float]
    interval_s: Optional[float]  # Time since the previous juggle
    streak_len: int
    streak_break: bool  # This juggle started a new streak


@dataclass
class SessionStats:
    """Aggregate statistics for a session."""
    total_juggles: int = 0
    drops: int = 0
    current_streak: int = 0
    best_streak: int = 0
    avg_interval_s: Optional[float] = None
    juggles_per_min: Optional[float] = None
    duration_s: float = 0.0


class JuggleSession:
    """
    Tracks all juggles in the current session and computes statistics.

    A streak ends when the gap between two juggles exceeds gap_threshold_s, or
    when the ball was missing for max_missing_frames consecutive frames
    before the next juggle.
    """

    def __init__(self, gap_threshold_s: float = 1.0, max_missing_frames: int = 10):
        self.gap_threshold_s = gap_threshold_s
        self.max_missing_frames = max_missing_frames
        self._start_new()

    def _start_new(self):
        self.session_id = datetime.now(timezone.utc).isoformat()
        self.start_time = time.time()
        self.events: List[JuggleEvent] = []
        self._current_streak = 0
        self._best_streak = 0
        self._drops = 0
        self._control_lost = False
        self._first_frame_ms: Optional[float] = None
        self._last_frame_ms: Optional[float] = None

    def record_frame(self, state: TrackerState, timestamp_ms: float) -> Optional[JuggleEvent]:
        """
        Feed one tracker state.

        Returns:
            The JuggleEvent created this frame, if the tracker counted one
        """
        if self._first_frame_ms is None:
            self._first_frame_ms = timestamp_ms
        self._last_frame_ms = timestamp_ms

        if state.missing_frames >= self.max_missing_frames and not self._control_lost:
            self._control_lost = True
            logger.info(f"Ball lost for {state.missing_frames} frames, streak will reset")

        if state.count_delta <= 0 or state.peak is None or state.peak.peak is None:
            return None

        peak = state.peak.peak
        return self._record_juggle(state.count, peak.timestamp_ms, peak.y, state.peak.ratio)

    def _record_juggle(
        self,
        ordinal: int,
        timestamp_ms: float,
        y: float,
        amplitude_ratio: Optional[float]
    ) -> JuggleEvent:
        interval_s = None
        if self.events:
            interval_s = (timestamp_ms - self.events[-1].timestamp_ms) / 1000.0

        streak_break = False
        if self.events:
            if self._control_lost or (interval_s is not None and interval_s > self.gap_threshold_s):
                streak_break = True

        if streak_break:
            self._drops += 1
            self._current_streak = 0

        self._current_streak += 1
        if self._current_streak > self._best_streak:
            self._best_streak = self._current_streak
        self._control_lost = False

        event = JuggleEvent(
            ordinal=ordinal,
            timestamp_ms=timestamp_ms,
            y=y,
            amplitude_ratio=amplitude_ratio,
            interval_s=interval_s,
            streak_len=self._current_streak,
            streak_break=streak_break
        )
        self.events.append(event)

        logger.info(
            f"Juggle recorded: total={len(self.events)}, "
            f"streak={self._current_streak}, best={self._best_streak}, drops={self._drops}"
        )
        return event

    def get_total_juggles(self) -> int:
        return len(self.events)

    def get_current_streak(self) -> int:
        return self._current_streak

    def get_best_streak(self) -> int:
        return self._best_streak

    def get_stats(self) -> SessionStats:
        """Calculate and return session statistics."""
        duration_s = 0.0
        if self._first_frame_ms is not None and self._last_frame_ms is not None:
            duration_s = (self._last_frame_ms - self._first_frame_ms) / 1000.0

        stats = SessionStats(
            total_juggles=self.get_total_juggles(),
            drops=self._drops,
            current_streak=self._current_streak,
            best_streak=self._best_streak,
            duration_s=duration_s
        )

        intervals = [e.interval_s for e in self.events if e.interval_s is not None]
        if intervals:
            stats.avg_interval_s = sum(intervals) / len(intervals)
        if duration_s > 0:
            stats.juggles_per_min = stats.total_juggles / duration_s * 60.0

        return stats

    def get_last_n_events(self, n: int = 10) -> List[JuggleEvent]:
        """Get the last N juggles."""
        return self.events[-n:] if self.events else []

    def reset(self):
        """Reset the session."""
        self._start_new()
        logger.info("Session reset")

    def get_state_for_websocket(self) -> dict:
        """
        Get session state for WebSocket broadcast.

        Returns:
            Dictionary with session state
        """
        stats = self.get_stats()

        return {
            "session_id": self.session_id,
            "duration_s": round(stats.duration_s, 1),
            "total_juggles": stats.total_juggles,
            "drops": stats.drops,
            "current_streak": stats.current_streak,
            "best_streak": stats.best_streak,
            "avg_interval_s": round(stats.avg_interval_s, 3) if stats.avg_interval_s is not None else None,
            "juggles_per_min": round(stats.juggles_per_min, 1) if stats.juggles_per_min is not None else None,
        }
