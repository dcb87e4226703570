"""
Reference path inference pipeline: telemetry -> vehicle frame -> fit -> state.
"""

from dataclasses import dataclass
from typing import Tuple
import math
import logging

import numpy as np

from data.formats.data_format import (
    TelemetrySnapshot, VehicleFrameWaypoints, PolynomialModel, VehicleState
)
from .path_fitter import DEFAULT_ORDER, DegenerateFitError, fit_reference_path
from .utils import polyeval, waypoints_to_vehicle_frame

logger = logging.getLogger(__name__)


def compute_tracking_errors(model: PolynomialModel) -> Tuple[float, float]:
    """
    Cross-track and heading error at the vehicle position.

    The vehicle sits at the origin of its own frame, so cte is the fit
    evaluated at x = 0 (the constant coefficient) and epsi comes from the
    tangent slope there.
    """
    coeffs = model.coefficients
    cte = float(polyeval(coeffs, 0.0))
    epsi = -math.atan(float(coeffs[1]))
    return cte, epsi


def build_vehicle_state(model: PolynomialModel, speed: float) -> VehicleState:
    cte, epsi = compute_tracking_errors(model)
    return VehicleState(x=0.0, y=0.0, psi=0.0, v=float(speed), cte=cte, epsi=epsi)


@dataclass
class ReferencePathResult:
    waypoints: VehicleFrameWaypoints
    model: PolynomialModel
    state: VehicleState


class ReferencePathInference:
    """Turns one telemetry snapshot into the optimizer's inputs."""

    def __init__(self, order: int = DEFAULT_ORDER):
        """
        Initialize reference path inference.

        Args:
            order: Polynomial order of the path fit
        """
        self.order = int(order)

    def to_vehicle_frame(self, snapshot: TelemetrySnapshot) -> VehicleFrameWaypoints:
        xs, ys = waypoints_to_vehicle_frame(
            snapshot.ptsx, snapshot.ptsy, snapshot.x, snapshot.y, snapshot.psi
        )
        return VehicleFrameWaypoints(x=xs, y=ys)

    def process(self, snapshot: TelemetrySnapshot) -> ReferencePathResult:
        """
        Run frame transform, path fit and tracking error estimation.

        Raises:
            DegenerateFitError: Fewer waypoints than the fit order requires
        """
        if snapshot.num_waypoints < self.order + 1:
            raise DegenerateFitError(
                f"telemetry carries {snapshot.num_waypoints} waypoints, "
                f"need at least {self.order + 1}"
            )
        waypoints = self.to_vehicle_frame(snapshot)
        model = fit_reference_path(waypoints, self.order)
        state = build_vehicle_state(model, snapshot.speed)
        logger.debug(
            "Reference fit coeffs=%s cte=%.4f epsi=%.4f",
            np.array2string(model.coefficients, precision=4),
            state.cte,
            state.epsi,
        )
        return ReferencePathResult(waypoints=waypoints, model=model, state=state)
