"""
Vehicle dynamics model (kinematic bicycle model).
Used by the predictive controller to roll out candidate actuations.
"""

import numpy as np
from typing import Tuple


class KinematicBicycleModel:
    """
    Kinematic bicycle model for vehicle dynamics.
    Simplified 2D model assuming no slip, roll or pitch.
    """

    def __init__(self, lf: float = 2.67, max_steering_angle: float = 0.436332):
        """
        Initialize bicycle model.

        Args:
            lf: Distance from the front axle to the center of gravity
            max_steering_angle: Maximum steering angle (radians)
        """
        self.lf = lf
        self.max_steering_angle = max_steering_angle

    def update(self, x: float, y: float, psi: float, v: float,
               steering_angle: float, acceleration: float,
               dt: float) -> Tuple[float, float, float, float]:
        """
        Advance the vehicle state by one step.

        Args:
            x: Current x position
            y: Current y position
            psi: Current heading (radians)
            v: Current velocity
            steering_angle: Steering angle (radians, clamped)
            acceleration: Longitudinal acceleration (throttle)
            dt: Time step (seconds)

        Returns:
            New (x, y, psi, v)
        """
        steering_angle = np.clip(steering_angle, -self.max_steering_angle, self.max_steering_angle)

        new_x = x + v * np.cos(psi) * dt
        new_y = y + v * np.sin(psi) * dt
        new_psi = psi + v / self.lf * steering_angle * dt
        new_v = v + acceleration * dt

        return new_x, new_y, new_psi, new_v

    def rollout(self, x: float, y: float, psi: float, v: float,
                steering: np.ndarray, acceleration: np.ndarray,
                dt: float) -> np.ndarray:
        """
        Roll the model forward over a sequence of actuations.

        Returns:
            Array of shape (len(steering) + 1, 4) with rows (x, y, psi, v),
            the first row being the initial state.
        """
        states = np.empty((len(steering) + 1, 4), dtype=float)
        states[0] = (x, y, psi, v)
        for i in range(len(steering)):
            states[i + 1] = self.update(*states[i], steering[i], acceleration[i], dt)
        return states
