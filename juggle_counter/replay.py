"""
Replay of recorded detector output for the juggle counter.

A recording is a JSON Lines file, one frame per line:

    {"timestamp_ms": 33.3, "detections": [{"origin_x": 10, "origin_y": 20,
     "width": 40, "height": 40, "category_name": "ball", "score": 0.9}],
     "video_size": [640, 480], "display_size": [1280, 960]}

timestamp_ms, video_size and display_size are optional. Frames without a
timestamp get synthetic ones at the replay FPS (frame_id / fps), which makes
a replay deterministic and independent of how fast it runs.
"""

import json
import logging
import time
from pathlib import Path
from typing import Optional, List, Tuple, Generator, Union
from dataclasses import dataclass, field

from .config import Config
from .detector import Detection, observe, parse_size
from .tracker import JuggleTracker, TrackerPhase
from .session import JuggleSession

logger = logging.getLogger(__name__)


@dataclass
class ReplayFrame:
    """One recorded frame of detector output."""
    frame_id: int
    timestamp_ms: float
    detections: List[Detection]
    video_size: Optional[Tuple[float, float]] = None
    display_size: Optional[Tuple[float, float]] = None


class ReplaySource:
    """
    Reads a detection recording frame by frame.

    Usage:
        source = ReplaySource("session.jsonl")
        for frame in source.frames():
            process(frame)
    """

    def __init__(self, path: Union[str, Path], fps: float = 30.0):
        if fps <= 0:
            raise ValueError(f"fps must be > 0, got {fps}")
        self.path = Path(path)
        self.fps = fps
        self._frame_id = 0
        self.skipped_lines = 0

    def frames(self) -> Generator[ReplayFrame, None, None]:
        """Yield frames in file order until end of recording."""
        logger.info(f"Starting replay from: {self.path} (synthetic fps={self.fps})")
        self._frame_id = 0
        self.skipped_lines = 0

        with open(self.path, 'r') as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                frame = self._parse_line(line, line_no)
                if frame is not None:
                    yield frame

        logger.info(f"Replay finished: {self._frame_id} frames, {self.skipped_lines} skipped lines")

    def _parse_line(self, line: str, line_no: int) -> Optional[ReplayFrame]:
        try:
            data = json.loads(line)
            detections = [Detection.from_dict(d) for d in data.get("detections") or []]
            video_size = parse_size(data.get("video_size"))
            display_size = parse_size(data.get("display_size"))
            timestamp_ms = data.get("timestamp_ms")
            if timestamp_ms is None:
                timestamp_ms = self._frame_id * 1000.0 / self.fps
            timestamp_ms = float(timestamp_ms)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping malformed line {line_no} in {self.path.name}: {e}")
            self.skipped_lines += 1
            return None

        frame = ReplayFrame(
            frame_id=self._frame_id,
            timestamp_ms=timestamp_ms,
            detections=detections,
            video_size=video_size,
            display_size=display_size
        )
        self._frame_id += 1
        return frame


@dataclass
class ReplayMetrics:
    """Metrics collected from a replay run."""
    total_frames: int = 0
    observed_frames: int = 0
    extrapolated_frames: int = 0
    juggle_count: int = 0
    juggle_timestamps_ms: List[float] = field(default_factory=list)
    best_streak: int = 0
    drops: int = 0
    duration_s: float = 0.0  # Wall-clock time spent replaying


class ReplayRunner:
    """
    Runs the full pipeline (selection, conversion, tracker, session) on a
    recording and collects metrics.
    """

    def __init__(self, path: Union[str, Path], config: Optional[Config] = None, fps: float = 30.0):
        self.config = config or Config()
        self.source = ReplaySource(path, fps=fps)
        self.tracker = JuggleTracker.from_config(self.config)
        self.session = JuggleSession(
            gap_threshold_s=self.config.juggle.gap_threshold_s,
            max_missing_frames=self.config.juggle.max_missing_frames
        )
        self.metrics = ReplayMetrics()

    def run(self) -> ReplayMetrics:
        """Run replay and collect metrics."""
        start_time = time.time()
        detector_cfg = self.config.detector

        for frame in self.source.frames():
            observation = observe(
                frame.detections,
                category_name=detector_cfg.category_name,
                score_threshold=detector_cfg.score_threshold,
                video_size=frame.video_size,
                display_size=frame.display_size
            )
            state = self.tracker.tick(frame.timestamp_ms, observation)
            event = self.session.record_frame(state, frame.timestamp_ms)

            self.metrics.total_frames += 1
            if observation is not None:
                self.metrics.observed_frames += 1
            elif state.phase == TrackerPhase.EXTRAPOLATING:
                self.metrics.extrapolated_frames += 1

            if event is not None:
                self.metrics.juggle_timestamps_ms.append(event.timestamp_ms)

            if self.metrics.total_frames % 500 == 0:
                logger.info(f"Processed {self.metrics.total_frames} frames...")

        stats = self.session.get_stats()
        self.metrics.juggle_count = self.tracker.count
        self.metrics.best_streak = stats.best_streak
        self.metrics.drops = stats.drops
        self.metrics.duration_s = time.time() - start_time

        logger.info(
            f"Replay result: {self.metrics.juggle_count} juggles in {self.metrics.total_frames} frames "
            f"({self.metrics.observed_frames} observed, {self.metrics.extrapolated_frames} extrapolated)"
        )
        return self.metrics


def run_replay(path: Union[str, Path], config: Optional[Config] = None, fps: float = 30.0) -> ReplayMetrics:
    """Convenience function to run replay and get metrics."""
    runner = ReplayRunner(path, config=config, fps=fps)
    return runner.run()
