"""
Kalman filtering for the juggle counter.

KalmanFilter1D tracks one scalar coordinate with a constant-acceleration model:
    state x = [position, velocity, acceleration]
    F(dt)   = [[1, dt, dt^2/2], [0, 1, dt], [0, 0, 1]]
    H       = [1, 0, 0]   (only position is observed)

BallFilterPair runs one filter per image axis on a shared frame clock.
"""

import logging
from typing import Optional
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)


class KalmanFilter1D:
    """
    Single-axis position/velocity/acceleration Kalman filter.

    Process noise is added independently to each diagonal term of P after
    propagation (P = F P F^T + q I); there is no discretised noise model.
    """

    def __init__(self, process_variance: float, measurement_variance: float):
        if not process_variance > 0:
            raise ValueError(f"process_variance must be > 0, got {process_variance}")
        if not measurement_variance > 0:
            raise ValueError(f"measurement_variance must be > 0, got {measurement_variance}")

        self.q = float(process_variance)
        self.R = float(measurement_variance)
        self.H = np.array([1.0, 0.0, 0.0])
        self.x = np.zeros(3)
        self.P = np.eye(3)
        self.initialised = False

    @staticmethod
    def transition(dt: float) -> np.ndarray:
        """Constant-acceleration state transition over dt seconds."""
        return np.array([
            [1.0, dt, 0.5 * dt * dt],
            [0.0, 1.0, dt],
            [0.0, 0.0, 1.0]
        ])

    @property
    def position(self) -> float:
        return float(self.x[0])

    @property
    def velocity(self) -> float:
        return float(self.x[1])

    @property
    def acceleration(self) -> float:
        return float(self.x[2])

    def seed(self, position: float):
        """Lock on to an initial position with zero velocity and acceleration."""
        self.x = np.array([float(position), 0.0, 0.0])
        self.initialised = True

    def update(self, z: float):
        """
        Fold in a position measurement.

        With H selecting only position, S = P[0][0] + R and the gain is the
        first column of P scaled by 1/S. The covariance update is the textbook
        (I - K H) P, written as P - P[:,0] P[0,:] / S so it stays symmetric.
        """
        y = float(z) - float(self.H @ self.x)
        S = self.P[0, 0] + self.R
        K = self.P[:, 0] / S

        self.x = self.x + K * y
        self.P = self.P - np.outer(self.P[:, 0], self.P[0, :]) / S
        self.initialised = True

    def predict(self, dt: float) -> float:
        """
        Propagate the state forward by dt seconds.

        A non-positive dt leaves x and P untouched.

        Returns:
            Predicted position
        """
        if dt <= 0:
            return self.position

        F = self.transition(dt)
        self.x = F @ self.x
        self.P = F @ self.P @ F.T + self.q * np.eye(3)
        return self.position

    def reset(self):
        """Return to the uninitialised state."""
        self.x = np.zeros(3)
        self.P = np.eye(3)
        self.initialised = False


@dataclass
class FilterEstimate:
    """Smoothed (or extrapolated) ball center and velocity."""
    x: float
    y: float
    vx: float  # units per second
    vy: float  # units per second


class BallFilterPair:
    """
    Two independent KalmanFilter1D instances (X and Y) sharing one frame clock.

    Usage per frame:
        estimate = pair.update(cx, cy, dt_s)   # detection available
        estimate = pair.predict(dt_s)          # no detection, extrapolate
    """

    def __init__(self, process_variance: float = 0.01, measurement_variance: float = 0.1):
        self.process_variance = process_variance
        self.measurement_variance = measurement_variance
        self.kf_x = KalmanFilter1D(process_variance, measurement_variance)
        self.kf_y = KalmanFilter1D(process_variance, measurement_variance)

    @property
    def initialised(self) -> bool:
        return self.kf_x.initialised and self.kf_y.initialised

    def update(self, observed_x: float, observed_y: float, dt_s: float) -> FilterEstimate:
        """
        Fold in an observed center and advance the filters to "now".

        The very first observation seeds both axes directly, skipping the
        probabilistic update so there is no lag on lock-on. The returned
        estimate is read back before predict(dt_s) advances the state for the
        next frame.
        """
        if not self.initialised:
            self.kf_x.seed(observed_x)
            self.kf_y.seed(observed_y)
            logger.debug(f"Filters seeded at ({observed_x:.1f}, {observed_y:.1f})")
        else:
            self.kf_x.update(observed_x)
            self.kf_y.update(observed_y)

        estimate = FilterEstimate(
            x=self.kf_x.position,
            y=self.kf_y.position,
            vx=self.kf_x.velocity,
            vy=self.kf_y.velocity
        )

        self.kf_x.predict(dt_s)
        self.kf_y.predict(dt_s)
        return estimate

    def predict(self, dt_s: float) -> Optional[FilterEstimate]:
        """
        Extrapolate without a measurement.

        Returns:
            Extrapolated estimate, or None before the first observation
        """
        if not self.initialised:
            return None

        pred_x = self.kf_x.predict(dt_s)
        pred_y = self.kf_y.predict(dt_s)
        return FilterEstimate(
            x=pred_x,
            y=pred_y,
            vx=self.kf_x.velocity,
            vy=self.kf_y.velocity
        )

    def reset(self):
        """Drop the lock; the next observation seeds again."""
        self.kf_x.reset()
        self.kf_y.reset()
