"""
Tests for the reference path polynomial fit.
"""

import numpy as np
import pytest

from data.formats.data_format import PolynomialModel, VehicleFrameWaypoints
from trajectory.path_fitter import (
    DegenerateFitError,
    fit_reference_path,
    polyfit,
    sample_reference_line,
)
from trajectory.utils import polyeval, polyderiv


class TestPolyfit:

    @pytest.mark.parametrize("coeffs", [
        [1.0, -0.5, 0.02, -0.001],
        [0.0, 0.0, 0.0, 0.0],
        [-3.2, 1.1, 0.0, 0.0005],
    ])
    def test_recovers_exact_cubic(self, coeffs):
        xs = np.linspace(-5.0, 60.0, 8)
        ys = polyeval(coeffs, xs)
        fitted = polyfit(xs, ys, 3)
        assert fitted.shape == (4,)
        np.testing.assert_allclose(fitted, coeffs, atol=1e-6)

    def test_exactly_four_points_interpolates(self):
        xs = [0.0, 10.0, 20.0, 30.0]
        ys = [1.0, 3.0, -2.0, 5.0]
        fitted = polyfit(xs, ys, 3)
        np.testing.assert_allclose(polyeval(fitted, np.array(xs)), ys, atol=1e-8)

    def test_overdetermined_fit_minimizes_residual(self):
        rng = np.random.default_rng(3)
        xs = np.linspace(0.0, 50.0, 30)
        ys = 0.5 + 0.1 * xs + rng.normal(0.0, 0.2, size=xs.shape)
        fitted = polyfit(xs, ys, 3)
        expected = np.polynomial.polynomial.polyfit(xs, ys, 3)
        np.testing.assert_allclose(fitted, expected, atol=1e-8)

    def test_lower_order(self):
        fitted = polyfit([0.0, 1.0, 2.0], [1.0, 3.0, 5.0], 1)
        np.testing.assert_allclose(fitted, [1.0, 2.0], atol=1e-10)

    def test_too_few_points_raises(self):
        with pytest.raises(DegenerateFitError):
            polyfit([0.0, 1.0, 2.0], [0.0, 1.0, 2.0], 3)

    def test_empty_input_raises(self):
        with pytest.raises(DegenerateFitError):
            polyfit([], [], 3)

    def test_length_mismatch_raises(self):
        with pytest.raises(DegenerateFitError):
            polyfit([0.0, 1.0, 2.0, 3.0], [0.0, 1.0, 2.0], 3)

    def test_repeated_x_raises(self):
        with pytest.raises(DegenerateFitError):
            polyfit([1.0, 1.0, 1.0, 1.0, 1.0], [0.0, 1.0, 2.0, 3.0, 4.0], 3)

    def test_degenerate_fit_error_is_value_error(self):
        assert issubclass(DegenerateFitError, ValueError)


class TestFitReferencePath:

    def test_returns_polynomial_model(self):
        waypoints = VehicleFrameWaypoints(
            x=np.array([0.0, 1.0, 2.0, 3.0]), y=np.array([0.0, 1.0, 2.0, 3.0])
        )
        model = fit_reference_path(waypoints)
        assert isinstance(model, PolynomialModel)
        assert model.order == 3
        np.testing.assert_allclose(model.coefficients, [0.0, 1.0, 0.0, 0.0], atol=1e-9)


class TestReferenceLine:

    def test_samples_25_points_at_fixed_spacing(self):
        model = PolynomialModel(coefficients=np.array([1.0, 0.1, -0.01, 0.0001]))
        next_x, next_y = sample_reference_line(model)
        assert len(next_x) == 25
        assert len(next_y) == 25
        assert next_x[0] == 0.0
        assert next_x[-1] == pytest.approx(60.0)
        np.testing.assert_allclose(np.diff(next_x), 2.5)
        for x, y in zip(next_x, next_y):
            assert y == pytest.approx(polyeval(model.coefficients, x))

    def test_custom_spacing(self):
        model = PolynomialModel(coefficients=np.array([0.0, 0.0, 0.0, 0.0]))
        next_x, next_y = sample_reference_line(model, num_points=5, spacing=1.0)
        assert next_x == [0.0, 1.0, 2.0, 3.0, 4.0]
        assert next_y == [0.0] * 5


class TestPolyeval:

    def test_at_origin_returns_constant_term(self):
        coeffs = [0.123456789, 5.0, -7.0, 11.0]
        assert polyeval(coeffs, 0.0) == coeffs[0]

    def test_derivative(self):
        coeffs = [1.0, 2.0, 3.0, 4.0]
        # 2 + 6x + 12x^2 at x = 2
        assert polyderiv(coeffs, 2.0) == pytest.approx(2.0 + 12.0 + 48.0)
