"""
Data format definitions for one telemetry/command cycle.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any
import numpy as np


@dataclass
class TelemetrySnapshot:
    """Vehicle telemetry from the simulator (world frame)."""
    x: float
    y: float
    psi: float  # Heading (radians)
    speed: float
    steering_angle: float
    throttle: float
    ptsx: np.ndarray  # Reference waypoints x (world coords)
    ptsy: np.ndarray  # Reference waypoints y (world coords)

    @property
    def num_waypoints(self) -> int:
        return int(len(self.ptsx))


@dataclass
class VehicleFrameWaypoints:
    """Reference waypoints with the vehicle at the origin, heading along +x."""
    x: np.ndarray
    y: np.ndarray


@dataclass
class PolynomialModel:
    """Fitted reference path y = f(x), coefficients lowest order first."""
    coefficients: np.ndarray

    @property
    def order(self) -> int:
        return int(len(self.coefficients)) - 1


@dataclass
class VehicleState:
    """State vector handed to the optimizer."""
    x: float
    y: float
    psi: float
    v: float
    cte: float  # Cross-track error
    epsi: float  # Heading error

    def as_vector(self) -> np.ndarray:
        return np.array([self.x, self.y, self.psi, self.v, self.cte, self.epsi], dtype=float)


@dataclass
class ControlSolution:
    """Actuation command and predicted trajectory from one solve."""
    steering: float  # Normalized, -1.0 to 1.0
    throttle: float  # -1.0 to 1.0
    mpc_x: List[float] = field(default_factory=list)
    mpc_y: List[float] = field(default_factory=list)


@dataclass
class CommandEnvelope:
    """Outbound steer command plus the reference line sample for display."""
    solution: ControlSolution
    next_x: List[float] = field(default_factory=list)
    next_y: List[float] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "steering_angle": float(self.solution.steering),
            "throttle": float(self.solution.throttle),
            "mpc_x": [float(v) for v in self.solution.mpc_x],
            "mpc_y": [float(v) for v in self.solution.mpc_y],
            "next_x": [float(v) for v in self.next_x],
            "next_y": [float(v) for v in self.next_y],
        }
