"""
Least-squares polynomial fit of the reference path in the vehicle frame.
"""

from typing import Sequence, Tuple, List
import numpy as np

from data.formats.data_format import PolynomialModel, VehicleFrameWaypoints
from trajectory.utils import polyeval


DEFAULT_ORDER = 3


class DegenerateFitError(ValueError):
    """Not enough (or mismatched) points to determine the polynomial."""


def polyfit(xvals: Sequence[float], yvals: Sequence[float], order: int = DEFAULT_ORDER) -> np.ndarray:
    """
    Fit y = c0 + c1*x + ... + c_order*x**order by least squares.

    The Vandermonde system is solved through a QR decomposition rather than
    the normal equations, so near-collinear waypoints stay well conditioned.

    Args:
        xvals: Point x coordinates
        yvals: Point y coordinates
        order: Polynomial order (>= 1)

    Returns:
        Coefficients, lowest order first (length order + 1)

    Raises:
        DegenerateFitError: Mismatched lengths or fewer than order + 1 points
    """
    x = np.asarray(xvals, dtype=float).ravel()
    y = np.asarray(yvals, dtype=float).ravel()
    if x.shape[0] != y.shape[0]:
        raise DegenerateFitError(
            f"x/y length mismatch: {x.shape[0]} vs {y.shape[0]}"
        )
    if order < 1:
        raise DegenerateFitError(f"order must be >= 1, got {order}")
    if x.shape[0] < order + 1:
        raise DegenerateFitError(
            f"need at least {order + 1} points for an order-{order} fit, got {x.shape[0]}"
        )

    # Columns: 1, x, x^2, ..., x^order
    design = np.vander(x, order + 1, increasing=True)
    q, r = np.linalg.qr(design, mode="reduced")
    if np.any(np.abs(np.diag(r)) < 1e-12 * max(1.0, float(np.abs(r).max()))):
        raise DegenerateFitError("design matrix is rank deficient (repeated x values)")
    return np.linalg.solve(r, q.T @ y)


def fit_reference_path(waypoints: VehicleFrameWaypoints, order: int = DEFAULT_ORDER) -> PolynomialModel:
    """Fit the vehicle-frame waypoints into a PolynomialModel."""
    return PolynomialModel(coefficients=polyfit(waypoints.x, waypoints.y, order))


def sample_reference_line(
    model: PolynomialModel,
    num_points: int = 25,
    spacing: float = 2.5,
) -> Tuple[List[float], List[float]]:
    """Sample the fitted path at x = spacing * i for display."""
    next_x = [spacing * i for i in range(num_points)]
    next_y = [float(polyeval(model.coefficients, x)) for x in next_x]
    return next_x, next_y
