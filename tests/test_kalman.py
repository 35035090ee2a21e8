"""
Tests for the constant-acceleration Kalman filter and the X/Y filter pair.

Usage:
    pytest tests/test_kalman.py -v
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from juggle_counter.kalman import KalmanFilter1D, BallFilterPair


class TestKalmanFilter1D:
    """Single-axis filter arithmetic."""

    def test_rejects_non_positive_variances(self):
        with pytest.raises(ValueError):
            KalmanFilter1D(0.0, 0.1)
        with pytest.raises(ValueError):
            KalmanFilter1D(0.01, -1.0)

    def test_transition_matrix(self):
        F = KalmanFilter1D.transition(0.5)
        expected = np.array([
            [1.0, 0.5, 0.125],
            [0.0, 1.0, 0.5],
            [0.0, 0.0, 1.0]
        ])
        assert np.allclose(F, expected)

    def test_predict_propagates_kinematics(self):
        kf = KalmanFilter1D(0.01, 0.1)
        kf.x = np.array([0.0, 10.0, 2.0])

        position = kf.predict(1.0)

        assert position == pytest.approx(11.0)
        assert kf.velocity == pytest.approx(12.0)
        assert kf.acceleration == pytest.approx(2.0)

    def test_predict_adds_process_noise_to_diagonal(self):
        kf = KalmanFilter1D(0.5, 0.1)
        kf.predict(1.0)

        F = KalmanFilter1D.transition(1.0)
        expected = F @ np.eye(3) @ F.T + 0.5 * np.eye(3)
        assert np.allclose(kf.P, expected)

    @pytest.mark.parametrize("dt", [0.0, -0.1, -5.0])
    def test_non_positive_predict_is_noop(self, dt):
        """predict(0) / predict(<0) -> x and P untouched."""
        kf = KalmanFilter1D(0.01, 0.1)
        kf.seed(42.0)
        kf.update(43.0)
        x_before = kf.x.copy()
        P_before = kf.P.copy()

        result = kf.predict(dt)

        assert result == kf.position
        assert np.array_equal(kf.x, x_before)
        assert np.array_equal(kf.P, P_before)

    def test_update_matches_textbook_form(self):
        kf = KalmanFilter1D(0.01, 0.1)
        kf.x = np.array([5.0, 1.0, 0.0])
        kf.P = np.array([
            [2.0, 0.5, 0.1],
            [0.5, 1.5, 0.2],
            [0.1, 0.2, 1.0]
        ])
        P0 = kf.P.copy()
        x0 = kf.x.copy()

        kf.update(7.0)

        H = np.array([[1.0, 0.0, 0.0]])
        S = (H @ P0 @ H.T).item() + 0.1
        K = (P0 @ H.T / S).ravel()
        expected_x = x0 + K * (7.0 - x0[0])
        expected_P = (np.eye(3) - np.outer(K, H)) @ P0

        assert np.allclose(kf.x, expected_x)
        assert np.allclose(kf.P, expected_P)
        assert kf.initialised

    @pytest.mark.parametrize("q,R", [(0.01, 0.1), (1.0, 0.01), (0.1, 1.0)])
    def test_converges_on_constant_position(self, q, R):
        """Constant measurement -> position converges, velocity/acceleration -> 0."""
        kf = KalmanFilter1D(q, R)
        for _ in range(2000):
            kf.update(100.0)
            kf.predict(0.1)

        assert kf.position == pytest.approx(100.0, abs=1e-3)
        assert kf.velocity == pytest.approx(0.0, abs=1e-2)
        assert kf.acceleration == pytest.approx(0.0, abs=1e-2)

    def test_covariance_stays_symmetric_psd(self):
        """Mixed update/predict -> P symmetric with no negative eigenvalues."""
        rng = np.random.default_rng(7)
        kf = KalmanFilter1D(0.01, 0.1)
        kf.seed(0.0)

        for i in range(300):
            if i % 4 != 3:
                kf.update(float(rng.normal(50.0, 5.0)))
            kf.predict(float(rng.uniform(0.01, 0.1)))

            assert np.allclose(kf.P, kf.P.T)
            assert np.all(np.linalg.eigvalsh((kf.P + kf.P.T) / 2) >= -1e-9)

    def test_reset_returns_to_uninitialised(self):
        kf = KalmanFilter1D(0.01, 0.1)
        kf.seed(3.0)
        kf.predict(0.5)

        kf.reset()

        assert not kf.initialised
        assert np.array_equal(kf.x, np.zeros(3))
        assert np.array_equal(kf.P, np.eye(3))


class TestBallFilterPair:
    """Seeding, smoothing and extrapolation across both axes."""

    def test_first_observation_seeds_without_lag(self):
        """First detection -> estimate equals observation exactly."""
        pair = BallFilterPair()
        estimate = pair.update(120.0, 80.0, 0.0)

        assert pair.initialised
        assert estimate.x == 120.0
        assert estimate.y == 80.0
        assert estimate.vx == 0.0
        assert estimate.vy == 0.0

    def test_predict_before_lock_returns_none(self):
        pair = BallFilterPair()
        assert pair.predict(0.033) is None

    def test_predict_extrapolates_from_seed(self):
        pair = BallFilterPair()
        pair.update(10.0, 20.0, 0.0)

        estimate = pair.predict(0.1)

        # Seeded with zero velocity: the ball stays put
        assert estimate.x == pytest.approx(10.0)
        assert estimate.y == pytest.approx(20.0)

    def test_smoothed_estimate_tracks_moving_ball(self):
        pair = BallFilterPair(process_variance=1.0, measurement_variance=0.001)
        dt = 1 / 30
        estimate = None
        for i in range(60):
            estimate = pair.update(100.0 + 300.0 * i * dt, 200.0, dt)

        assert estimate.x == pytest.approx(100.0 + 300.0 * 59 * dt, abs=0.5)
        assert estimate.vx == pytest.approx(300.0, rel=0.05)
        assert estimate.vy == pytest.approx(0.0, abs=1.0)

    def test_axes_are_independent(self):
        pair = BallFilterPair()
        pair.update(0.0, 0.0, 0.0)
        pair.update(10.0, 0.0, 0.1)

        assert pair.kf_x.position != 0.0
        assert pair.kf_y.position == pytest.approx(0.0)

    def test_reset_drops_lock(self):
        pair = BallFilterPair()
        pair.update(1.0, 2.0, 0.0)
        pair.reset()

        assert not pair.initialised
        estimate = pair.update(5.0, 6.0, 0.0)
        assert (estimate.x, estimate.y) == (5.0, 6.0)
