"""
Kinematic MPC solver bundled with the bridge.

Implements the optimizer contract the controller invocation expects:

    solve(state[6], coeffs[order + 1]) -> [steering, throttle, x1, y1, x2, y2, ...]

State is (x, y, psi, v, cte, epsi) in the vehicle frame. Steering is
returned normalized to [-1, 1] with the simulator's sign convention
(positive steers right), throttle is the first planned acceleration, and
the rest is the predicted trajectory in the vehicle frame.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
from scipy.optimize import minimize

from control.vehicle_model import KinematicBicycleModel
from trajectory.utils import deg2rad, polyderiv, polyeval

logger = logging.getLogger(__name__)


@dataclass
class MPCWeights:
    """Cost weights for the tracking objective."""

    cte: float = 2000.0
    epsi: float = 2000.0
    v: float = 1.0
    steer: float = 5.0
    throttle: float = 5.0
    steer_rate: float = 200.0
    throttle_rate: float = 10.0


@dataclass
class MPCConfig:
    """Configuration for the kinematic MPC solver."""

    horizon: int = 10
    dt: float = 0.1
    lf: float = 2.67
    ref_v: float = 40.0
    max_steer_deg: float = 25.0
    max_throttle: float = 1.0
    max_iter: int = 100
    weights: MPCWeights = field(default_factory=MPCWeights)


def build_mpc_config(mpc_cfg: dict) -> MPCConfig:
    """Build an MPCConfig from the `mpc` config dictionary."""
    weights_cfg = mpc_cfg.get("weights", {}) or {}
    defaults = MPCWeights()
    weights = MPCWeights(
        cte=float(weights_cfg.get("cte", defaults.cte)),
        epsi=float(weights_cfg.get("epsi", defaults.epsi)),
        v=float(weights_cfg.get("v", defaults.v)),
        steer=float(weights_cfg.get("steer", defaults.steer)),
        throttle=float(weights_cfg.get("throttle", defaults.throttle)),
        steer_rate=float(weights_cfg.get("steer_rate", defaults.steer_rate)),
        throttle_rate=float(weights_cfg.get("throttle_rate", defaults.throttle_rate)),
    )
    horizon = int(mpc_cfg.get("horizon", 10))
    if horizon < 2:
        raise ValueError(f"mpc.horizon must be >= 2, got {horizon}")
    return MPCConfig(
        horizon=horizon,
        dt=float(mpc_cfg.get("dt", 0.1)),
        lf=float(mpc_cfg.get("lf", 2.67)),
        ref_v=float(mpc_cfg.get("ref_v", 40.0)),
        max_steer_deg=float(mpc_cfg.get("max_steer_deg", 25.0)),
        max_throttle=float(mpc_cfg.get("max_throttle", 1.0)),
        max_iter=int(mpc_cfg.get("max_iter", 100)),
        weights=weights,
    )


class KinematicMPCSolver:
    """
    Single-shooting MPC over a kinematic bicycle model, solved with SLSQP.

    Keeps the previous solution as a warm start for the next solve, so one
    instance should only ever serve one vehicle at a time.
    """

    def __init__(self, config: Optional[MPCConfig] = None) -> None:
        self.config = config or MPCConfig()
        self.max_steer = deg2rad(self.config.max_steer_deg)
        self.model = KinematicBicycleModel(lf=self.config.lf, max_steering_angle=self.max_steer)
        self.num_actuations = self.config.horizon - 1
        self._warm_start: Optional[np.ndarray] = None

    def reset(self) -> None:
        """Drop the warm start."""
        self._warm_start = None

    def _initial_guess(self) -> np.ndarray:
        n = self.num_actuations
        if self._warm_start is None:
            return np.zeros(2 * n)
        delta = self._warm_start[:n]
        accel = self._warm_start[n:]
        # Shift by one step, repeat the last actuation
        return np.concatenate([delta[1:], delta[-1:], accel[1:], accel[-1:]])

    def _bounds(self) -> List[tuple]:
        n = self.num_actuations
        steer = (-self.max_steer, self.max_steer)
        throttle = (-self.config.max_throttle, self.config.max_throttle)
        return [steer] * n + [throttle] * n

    def _rollout(self, u: np.ndarray, state: np.ndarray) -> np.ndarray:
        n = self.num_actuations
        return self.model.rollout(
            state[0], state[1], state[2], state[3], u[:n], u[n:], self.config.dt
        )

    def _cost(self, u: np.ndarray, state: np.ndarray, coeffs: np.ndarray) -> float:
        n = self.num_actuations
        w = self.config.weights
        delta = u[:n]
        accel = u[n:]

        predicted = self._rollout(u, state)[1:]
        xs, ys, psis, vs = predicted[:, 0], predicted[:, 1], predicted[:, 2], predicted[:, 3]
        cte = polyeval(coeffs, xs) - ys
        epsi = psis - np.arctan(polyderiv(coeffs, xs))

        cost = w.cte * np.sum(cte ** 2)
        cost += w.epsi * np.sum(epsi ** 2)
        cost += w.v * np.sum((vs - self.config.ref_v) ** 2)
        cost += w.steer * np.sum(delta ** 2)
        cost += w.throttle * np.sum(accel ** 2)
        cost += w.steer_rate * np.sum(np.diff(delta) ** 2)
        cost += w.throttle_rate * np.sum(np.diff(accel) ** 2)
        return float(cost)

    def solve(self, state: Sequence[float], coeffs: Sequence[float]) -> List[float]:
        """
        Solve one MPC step.

        Args:
            state: (x, y, psi, v, cte, epsi)
            coeffs: Reference path polynomial, lowest order first

        Returns:
            [steering, throttle, x1, y1, ..., x_{N-1}, y_{N-1}]
        """
        state = np.asarray(state, dtype=float)
        coeffs = np.asarray(coeffs, dtype=float)
        if state.shape != (6,):
            raise ValueError(f"state must have 6 elements, got shape {state.shape}")
        if coeffs.ndim != 1 or coeffs.shape[0] < 2:
            raise ValueError(f"coeffs must be a 1-D vector of length >= 2, got shape {coeffs.shape}")

        bounds = self._bounds()
        res = minimize(
            self._cost,
            self._initial_guess(),
            args=(state, coeffs),
            method="SLSQP",
            bounds=bounds,
            options={"maxiter": self.config.max_iter},
        )
        if not res.success:
            logger.warning("MPC solve did not converge: %s (nit=%s)", res.message, res.nit)

        lower = np.array([b[0] for b in bounds])
        upper = np.array([b[1] for b in bounds])
        u = np.clip(res.x, lower, upper)
        if not np.all(np.isfinite(u)):
            # Non-finite output would poison the warm start
            self.reset()
            u = np.zeros_like(u)
        self._warm_start = u

        n = self.num_actuations
        predicted = self._rollout(u, state)[1:]
        result = [float(-u[0] / self.max_steer), float(u[n])]
        for x, y in predicted[:, :2]:
            if math.isfinite(x) and math.isfinite(y):
                result.extend([float(x), float(y)])
        return result
