"""
Configuration management for the juggle counter.
Handles settings persistence and validation of tracker parameters.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Any, List
from dataclasses import dataclass, asdict, field

logger = logging.getLogger(__name__)


@dataclass
class FilterSettings:
    """Per-axis Kalman filter noise parameters."""
    process_variance: float = 0.01      # q, added to each diagonal term on predict
    measurement_variance: float = 0.1   # R, variance of the observed center


@dataclass
class TrajectorySettings:
    """Trajectory buffer configuration."""
    buffer_capacity: int = 30
    default_diameter_px: float = 40.0  # Used for extrapolated samples with no history


@dataclass
class JuggleSettings:
    """Juggle event detection configuration."""
    # Minimum spacing between two counted juggles (0 disables debounce)
    min_juggle_interval_ms: int = 0
    # Session streak rules
    gap_threshold_s: float = 1.0
    max_missing_frames: int = 10


@dataclass
class DetectorSettings:
    """Filtering applied to the external detector's output."""
    category_name: str = "Juggling - v7 2022-07-26 4-53pm"
    score_threshold: float = 0.4


@dataclass
class Config:
    """Main configuration container."""
    filter: FilterSettings = field(default_factory=FilterSettings)
    trajectory: TrajectorySettings = field(default_factory=TrajectorySettings)
    juggle: JuggleSettings = field(default_factory=JuggleSettings)
    detector: DetectorSettings = field(default_factory=DetectorSettings)

    # Server settings
    server_host: str = "0.0.0.0"
    server_port: int = 8000
    websocket_path: str = "/ws"

    def validate(self) -> List[str]:
        """Return a list of problems (empty when the config is usable)."""
        problems = []
        if not (_is_number(self.filter.process_variance) and self.filter.process_variance > 0):
            problems.append(f"filter.process_variance must be a number > 0 (got {self.filter.process_variance!r})")
        if not (_is_number(self.filter.measurement_variance) and self.filter.measurement_variance > 0):
            problems.append(f"filter.measurement_variance must be a number > 0 (got {self.filter.measurement_variance!r})")
        if not (_is_int(self.trajectory.buffer_capacity) and self.trajectory.buffer_capacity >= 3):
            problems.append(f"trajectory.buffer_capacity must be an int >= 3 (got {self.trajectory.buffer_capacity!r})")
        if not (_is_number(self.trajectory.default_diameter_px) and self.trajectory.default_diameter_px > 0):
            problems.append(f"trajectory.default_diameter_px must be a number > 0 (got {self.trajectory.default_diameter_px!r})")
        if not (_is_int(self.juggle.min_juggle_interval_ms) and self.juggle.min_juggle_interval_ms >= 0):
            problems.append(f"juggle.min_juggle_interval_ms must be an int >= 0 (got {self.juggle.min_juggle_interval_ms!r})")
        if not (_is_number(self.juggle.gap_threshold_s) and self.juggle.gap_threshold_s >= 0):
            problems.append(f"juggle.gap_threshold_s must be a number >= 0 (got {self.juggle.gap_threshold_s!r})")
        if not (_is_int(self.juggle.max_missing_frames) and self.juggle.max_missing_frames >= 1):
            problems.append(f"juggle.max_missing_frames must be an int >= 1 (got {self.juggle.max_missing_frames!r})")
        if not (_is_number(self.detector.score_threshold) and 0.0 <= self.detector.score_threshold <= 1.0):
            problems.append(f"detector.score_threshold must be a number in [0, 1] (got {self.detector.score_threshold!r})")
        if not isinstance(self.detector.category_name, str):
            problems.append(f"detector.category_name must be a string (got {self.detector.category_name!r})")
        if not (_is_int(self.server_port) and 0 < self.server_port < 65536):
            problems.append(f"server_port must be an int in 1..65535 (got {self.server_port!r})")
        return problems


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ConfigManager:
    """
    Manages configuration loading and saving.
    Handles config.json persistence with validation.
    """

    DEFAULT_CONFIG_PATH = Path("juggle_config.json")

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else self.DEFAULT_CONFIG_PATH
        self.config = Config()

    def load(self) -> Config:
        """Load configuration from file, falling back to defaults on any problem."""
        if not self.config_path.exists():
            logger.info(f"No config file found at {self.config_path}, using defaults")
            return self.config

        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)

            self._apply_dict_to_config(data)
            logger.info(f"Loaded configuration from {self.config_path}")

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in config file: {e}")
            self.config = Config()
        except (TypeError, AttributeError) as e:
            logger.error(f"Error loading config: {e}")
            self.config = Config()

        problems = self.config.validate()
        if problems:
            for problem in problems:
                logger.error(f"Invalid config value: {problem}")
            logger.warning("Falling back to default configuration")
            self.config = Config()

        return self.config

    def save(self) -> bool:
        """Save current configuration to file."""
        try:
            data = self._config_to_dict()

            with open(self.config_path, 'w') as f:
                json.dump(data, f, indent=2)

            logger.info(f"Saved configuration to {self.config_path}")
            return True

        except OSError as e:
            logger.error(f"Error saving config: {e}")
            return False

    def _config_to_dict(self) -> dict:
        """Convert config to dictionary for JSON serialization."""
        return {
            "filter": asdict(self.config.filter),
            "trajectory": asdict(self.config.trajectory),
            "juggle": asdict(self.config.juggle),
            "detector": asdict(self.config.detector),
            "server_host": self.config.server_host,
            "server_port": self.config.server_port,
            "websocket_path": self.config.websocket_path
        }

    def _apply_dict_to_config(self, data: dict):
        """Apply dictionary data to config object."""
        if "filter" in data:
            self._update_dataclass(self.config.filter, data["filter"])
        if "trajectory" in data:
            self._update_dataclass(self.config.trajectory, data["trajectory"])
        if "juggle" in data:
            self._update_dataclass(self.config.juggle, data["juggle"])
        if "detector" in data:
            self._update_dataclass(self.config.detector, data["detector"])

        if "server_host" in data:
            self.config.server_host = data["server_host"]
        if "server_port" in data:
            self.config.server_port = data["server_port"]
        if "websocket_path" in data:
            self.config.websocket_path = data["websocket_path"]

    def _update_dataclass(self, obj: Any, data: dict):
        """Update dataclass fields from dictionary."""
        for key, value in data.items():
            if hasattr(obj, key):
                setattr(obj, key, value)
            else:
                logger.warning(f"Ignoring unknown config key: {type(obj).__name__}.{key}")


# Global config instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_path: Optional[Path] = None) -> ConfigManager:
    """Get global config manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(config_path)
        _config_manager.load()
    return _config_manager


def get_config() -> Config:
    """Get current configuration."""
    return get_config_manager().config
