"""
Tests for SPH smoothing kernels.

Validates:
- Normalisation of every kernel to 1 over its support (2D and 3D)
- Analytic radial derivatives against finite differences
- Compact support and recomputation on radius change
- Agreement between numba scalar kernels and vectorised kernels
"""

import numpy as np
import pytest

from sph_fluid.core.errors import InvalidConfiguration
from sph_fluid.sph.kernels import (
    SmoothingKernels,
    derivative_spiky_pow2,
    derivative_spiky_pow3,
    smoothing_kernel_poly6,
    spiky_kernel_pow2,
    spiky_kernel_pow3,
)


def radial_integral(kernel_fn, radius, dim, n_samples=200_000):
    """Midpoint-rule integral of a radial kernel over its support."""
    edges = np.linspace(0.0, radius, n_samples + 1)
    mid = 0.5 * (edges[:-1] + edges[1:])
    dr = radius / n_samples
    shell = 2.0 * np.pi * mid if dim == 2 else 4.0 * np.pi * mid**2
    return float(np.sum(kernel_fn(mid) * shell) * dr)


class TestKernelNormalisation:
    """Each kernel integrates to 1 over its support."""

    @pytest.mark.parametrize("dim", [2, 3])
    @pytest.mark.parametrize("radius", [0.35, 1.0, 2.5])
    def test_density_kernel_normalised(self, dim, radius):
        kernels = SmoothingKernels(radius, dim=dim)
        assert radial_integral(kernels.density_kernel, radius, dim) == pytest.approx(1.0, abs=1e-3)

    @pytest.mark.parametrize("dim", [2, 3])
    @pytest.mark.parametrize("radius", [0.35, 1.0, 2.5])
    def test_near_density_kernel_normalised(self, dim, radius):
        kernels = SmoothingKernels(radius, dim=dim)
        assert radial_integral(kernels.near_density_kernel, radius, dim) == pytest.approx(1.0, abs=1e-3)

    @pytest.mark.parametrize("dim", [2, 3])
    def test_pressure_kernel_normalised(self, dim):
        kernels = SmoothingKernels(0.8, dim=dim)
        assert radial_integral(kernels.pressure_kernel, 0.8, dim) == pytest.approx(1.0, abs=1e-3)

    def test_viscosity_kernel_is_poly6(self):
        kernels = SmoothingKernels(1.0, dim=2)
        d = np.linspace(0.0, 1.2, 50)
        np.testing.assert_array_equal(kernels.viscosity_kernel(d), kernels.density_kernel(d))


class TestKernelShape:
    """Support, derivatives and parameter updates."""

    def test_zero_outside_support(self):
        kernels = SmoothingKernels(1.0, dim=3)
        d = np.array([1.0, 1.5, 10.0])
        assert np.all(kernels.density_kernel(d) == 0.0)
        assert np.all(kernels.near_density_kernel(d) == 0.0)
        assert np.all(kernels.pressure_kernel(d) == 0.0)

    def test_kernels_decrease_monotonically(self):
        kernels = SmoothingKernels(1.0, dim=2)
        d = np.linspace(0.0, 0.99, 100)
        for fn in (kernels.density_kernel, kernels.near_density_kernel, kernels.pressure_kernel):
            assert np.all(np.diff(fn(d)) < 0.0)

    @pytest.mark.parametrize("dim", [2, 3])
    def test_derivatives_match_finite_differences(self, dim):
        radius = 1.3
        kernels = SmoothingKernels(radius, dim=dim)
        d = np.linspace(0.05, radius - 0.05, 40)
        eps = 1e-6

        numeric_pressure = (kernels.pressure_kernel(d + eps) - kernels.pressure_kernel(d - eps)) / (2 * eps)
        numeric_near = (kernels.near_density_kernel(d + eps) - kernels.near_density_kernel(d - eps)) / (2 * eps)

        np.testing.assert_allclose(kernels.density_derivative(d), numeric_pressure, rtol=1e-5)
        np.testing.assert_allclose(kernels.near_density_derivative(d), numeric_near, rtol=1e-5)

    def test_derivatives_non_positive(self):
        kernels = SmoothingKernels(1.0, dim=2)
        d = np.linspace(0.0, 1.5, 30)
        assert np.all(kernels.density_derivative(d) <= 0.0)
        assert np.all(kernels.near_density_derivative(d) <= 0.0)

    def test_update_recomputes_scales(self):
        kernels = SmoothingKernels(1.0, dim=2)
        poly6_before = kernels.poly6_scale
        kernels.update(2.0)
        assert kernels.smoothing_radius == 2.0
        assert kernels.poly6_scale == pytest.approx(poly6_before / 2.0**8)
        assert kernels.spiky_pow3_scale == pytest.approx(10.0 / (np.pi * 2.0**5))

    def test_3d_constants(self):
        r = 0.5
        kernels = SmoothingKernels(r, dim=3)
        assert kernels.poly6_scale == pytest.approx(315.0 / (64.0 * np.pi * r**9))
        assert kernels.spiky_pow3_scale == pytest.approx(15.0 / (np.pi * r**6))
        assert kernels.spiky_pow2_scale == pytest.approx(15.0 / (2.0 * np.pi * r**5))
        assert kernels.spiky_pow3_derivative_scale == pytest.approx(45.0 / (np.pi * r**6))
        assert kernels.spiky_pow2_derivative_scale == pytest.approx(15.0 / (np.pi * r**5))

    @pytest.mark.parametrize("radius", [0.0, -1.0, float("nan")])
    def test_invalid_radius_rejected(self, radius):
        with pytest.raises(InvalidConfiguration):
            SmoothingKernels(radius, dim=2)

    def test_invalid_dimension_rejected(self):
        with pytest.raises(InvalidConfiguration):
            SmoothingKernels(1.0, dim=4)


def test_scalar_kernels_match_vectorised():
    """The numba kernels used inside the solvers agree with the numpy versions."""
    kernels = SmoothingKernels(0.7, dim=2)
    r = kernels.smoothing_radius
    for d in (0.0, 0.1, 0.35, 0.69):
        assert smoothing_kernel_poly6(d, r, kernels.poly6_scale) == pytest.approx(
            float(kernels.density_kernel(d)), rel=1e-6)
        assert spiky_kernel_pow3(d, r, kernels.spiky_pow3_scale) == pytest.approx(
            float(kernels.near_density_kernel(d)), rel=1e-6)
        assert spiky_kernel_pow2(d, r, kernels.spiky_pow2_scale) == pytest.approx(
            float(kernels.pressure_kernel(d)), rel=1e-6)
        assert derivative_spiky_pow2(d, r, kernels.spiky_pow2_derivative_scale) == pytest.approx(
            float(kernels.density_derivative(d)), rel=1e-6)
        assert derivative_spiky_pow3(d, r, kernels.spiky_pow3_derivative_scale) == pytest.approx(
            float(kernels.near_density_derivative(d)), rel=1e-6)
