from __future__ import annotations

import math
from typing import Sequence, Tuple

import numpy as np


def deg2rad(x: float) -> float:
    return x * math.pi / 180.0


def transform_to_vehicle(
    point: Tuple[float, float],
    px: float,
    py: float,
    psi: float,
) -> Tuple[float, float]:
    """
    Express a world-frame point in the vehicle body frame.

    The vehicle position (px, py) becomes the origin and its heading psi
    becomes the +x axis: translate first, then rotate by -psi.
    """
    dx = float(point[0]) - px
    dy = float(point[1]) - py
    cos_psi = math.cos(-psi)
    sin_psi = math.sin(-psi)
    return dx * cos_psi - dy * sin_psi, dx * sin_psi + dy * cos_psi


def transform_to_world(
    point: Tuple[float, float],
    px: float,
    py: float,
    psi: float,
) -> Tuple[float, float]:
    """Inverse of transform_to_vehicle: rotate by +psi, then translate."""
    x = float(point[0])
    y = float(point[1])
    cos_psi = math.cos(psi)
    sin_psi = math.sin(psi)
    return x * cos_psi - y * sin_psi + px, x * sin_psi + y * cos_psi + py


def waypoints_to_vehicle_frame(
    ptsx: Sequence[float],
    ptsy: Sequence[float],
    px: float,
    py: float,
    psi: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Vectorized transform_to_vehicle over a waypoint list."""
    dx = np.asarray(ptsx, dtype=float) - px
    dy = np.asarray(ptsy, dtype=float) - py
    cos_psi = math.cos(-psi)
    sin_psi = math.sin(-psi)
    return dx * cos_psi - dy * sin_psi, dx * sin_psi + dy * cos_psi


def polyeval(coeffs: Sequence[float], x):
    """Evaluate sum(c_i * x**i). Works on scalars and numpy arrays."""
    result = 0.0
    for i, c in enumerate(coeffs):
        result = result + float(c) * np.power(x, i)
    return result


def polyderiv(coeffs: Sequence[float], x):
    """Evaluate the first derivative of the polynomial at x."""
    result = 0.0
    for i in range(1, len(coeffs)):
        result = result + i * float(coeffs[i]) * np.power(x, i - 1)
    return result
