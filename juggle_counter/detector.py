"""
Adapters for the external ball detector.

The detector itself is a black box: per frame it returns zero or more scored
bounding boxes. This module picks the ball of interest and converts it into
the center/diameter observation the tracker consumes.
"""

import logging
from typing import Optional, Tuple, List, Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class BoundingBox:
    """Axis-aligned box in video pixel coordinates."""
    origin_x: float
    origin_y: float
    width: float
    height: float

    @property
    def center(self) -> Tuple[float, float]:
        return (self.origin_x + self.width / 2, self.origin_y + self.height / 2)


@dataclass
class Detection:
    """One detector result."""
    bounding_box: BoundingBox
    category_name: str
    score: float  # Detection confidence [0, 1]

    @classmethod
    def from_dict(cls, data: dict) -> 'Detection':
        """
        Build from a JSON-style dict.

        Accepts either a nested "bounding_box" or flat box keys, with snake_case
        or camelCase names.
        """
        box = data.get("bounding_box") or data.get("boundingBox") or data
        return cls(
            bounding_box=BoundingBox(
                origin_x=float(box.get("origin_x", box.get("originX", 0.0))),
                origin_y=float(box.get("origin_y", box.get("originY", 0.0))),
                width=float(box["width"]),
                height=float(box["height"])
            ),
            category_name=str(data.get("category_name", data.get("categoryName", ""))),
            score=float(data.get("score", 0.0))
        )


@dataclass
class Observation:
    """Ball center and size in display coordinates, as consumed by the tracker."""
    center_x: float
    center_y: float
    diameter: float

    def as_tuple(self) -> Tuple[float, float]:
        """Return center as (x, y) tuple."""
        return (self.center_x, self.center_y)


def parse_size(value) -> Optional[Tuple[float, float]]:
    """
    Parse a JSON [width, height] pair.

    Raises:
        ValueError: value is not exactly two non-negative numbers
    """
    if value is None:
        return None
    if isinstance(value, (str, bytes, dict)) or len(value) != 2:
        raise ValueError(f"size must be [width, height], got {value!r}")
    width, height = float(value[0]), float(value[1])
    if width < 0 or height < 0:
        raise ValueError(f"size must be non-negative, got {value!r}")
    return (width, height)


def select_detection(
    detections: Iterable[Detection],
    category_name: Optional[str] = None,
    score_threshold: float = 0.0
) -> Optional[Detection]:
    """
    Pick the single ball of interest.

    Args:
        detections: Raw detector output for one frame
        category_name: Only this category is considered (None = any)
        score_threshold: Minimum score to accept

    Returns:
        Highest-scoring accepted detection, or None
    """
    best: Optional[Detection] = None
    for detection in detections:
        if category_name is not None and detection.category_name != category_name:
            continue
        if detection.score < score_threshold:
            continue
        if best is None or detection.score > best.score:
            best = detection
    return best


def to_observation(
    detection: Detection,
    video_size: Optional[Tuple[float, float]] = None,
    display_size: Optional[Tuple[float, float]] = None
) -> Observation:
    """
    Convert a detection from video pixels to display coordinates.

    The diameter is the box height scaled by the smaller of the two axis
    scales. Without sizes, coordinates pass through unchanged.
    """
    sx = sy = 1.0
    if video_size is not None and display_size is not None:
        video_w = video_size[0] or 1
        video_h = video_size[1] or 1
        sx = display_size[0] / video_w
        sy = display_size[1] / video_h

    box = detection.bounding_box
    center_x, center_y = box.center
    return Observation(
        center_x=center_x * sx,
        center_y=center_y * sy,
        diameter=box.height * min(sx, sy)
    )


def observe(
    detections: List[Detection],
    category_name: Optional[str] = None,
    score_threshold: float = 0.0,
    video_size: Optional[Tuple[float, float]] = None,
    display_size: Optional[Tuple[float, float]] = None
) -> Optional[Observation]:
    """Select the ball and convert it, or None when nothing qualifies."""
    detection = select_detection(detections, category_name, score_threshold)
    if detection is None:
        if detections:
            logger.debug(f"No qualifying detection among {len(detections)} candidates")
        return None
    return to_observation(detection, video_size, display_size)
