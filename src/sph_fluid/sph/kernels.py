"""
SPH smoothing kernels for density, pressure and viscosity.

Three compactly supported kernel families are used, all with support radius r
(the smoothing radius) and normalised so that each integrates to 1 over its
support in the active dimension:

    poly6      W(d) = σ_poly6 (r² - d²)³      density and viscosity
    spiky pow3 W(d) = σ_spiky3 (r - d)³       near-density
    spiky pow2 W(d) = σ_spiky2 (r - d)²       pressure gradient

Normalisation constants
-----------------------
        2D              3D
poly6   4 / (π r⁸)      315 / (64 π r⁹)
spiky3  10 / (π r⁵)     15 / (π r⁶)
spiky2  6 / (π r⁴)      15 / (2 π r⁵)

The density kernel is poly6. The pressure force uses the gradient of the
spiky kernels because poly6 has zero gradient at the origin, which lets
particles clump (Müller et al. 2003). The near-density term is the steep
spiky pow3 kernel, which supplies short-range repulsion (Clavet et al. 2005).

References
----------
.. [1] Müller, M., Charypar, D., & Gross, M. (2003), "Particle-based fluid
       simulation for interactive applications", SCA '03, 154-159.
.. [2] Clavet, S., Beaudoin, P., & Poulin, P. (2005), "Particle-based
       viscoelastic fluid simulation", SCA '05, 219-228.
"""

import numpy as np
import numpy.typing as npt
from numba import njit

from sph_fluid.core.errors import InvalidConfiguration

# Type alias for clarity
NDArrayFloat = npt.NDArray[np.float32]


@njit(fastmath=True)
def smoothing_kernel_poly6(dst, radius, scale):
    """Poly6 kernel value at distance ``dst``."""
    if dst < radius:
        v = radius * radius - dst * dst
        return v * v * v * scale
    return 0.0


@njit(fastmath=True)
def spiky_kernel_pow3(dst, radius, scale):
    """Spiky (r - d)³ kernel value at distance ``dst``."""
    if dst < radius:
        v = radius - dst
        return v * v * v * scale
    return 0.0


@njit(fastmath=True)
def spiky_kernel_pow2(dst, radius, scale):
    """Spiky (r - d)² kernel value at distance ``dst``."""
    if dst < radius:
        v = radius - dst
        return v * v * scale
    return 0.0


@njit(fastmath=True)
def derivative_spiky_pow3(dst, radius, scale):
    """Radial derivative of the spiky pow3 kernel (non-positive)."""
    if dst <= radius:
        v = radius - dst
        return -v * v * scale
    return 0.0


@njit(fastmath=True)
def derivative_spiky_pow2(dst, radius, scale):
    """Radial derivative of the spiky pow2 kernel (non-positive)."""
    if dst <= radius:
        v = radius - dst
        return -v * scale
    return 0.0


class SmoothingKernels:
    """
    Normalised SPH kernels for one smoothing radius and dimension.

    The scaling factors are analytic functions of the smoothing radius and
    must be recomputed whenever the radius changes; ``update`` does this and
    is the only way to change the radius.

    Attributes
    ----------
    dim : int
        Spatial dimension (2 or 3).
    smoothing_radius : float
        Kernel support radius r.
    poly6_scale, spiky_pow3_scale, spiky_pow2_scale : float
        Normalisation constants of the kernel values.
    spiky_pow3_derivative_scale, spiky_pow2_derivative_scale : float
        Normalisation constants of the radial derivatives.
    """

    def __init__(self, smoothing_radius: float, dim: int = 2):
        """
        Initialize kernels.

        Parameters
        ----------
        smoothing_radius : float
            Kernel support radius, must be positive.
        dim : int, optional
            Spatial dimension (2 or 3). Default is 2.
        """
        if dim not in (2, 3):
            raise InvalidConfiguration(f"Unsupported dimension: {dim}. Must be 2 or 3.")
        self.dim = dim
        self.update(smoothing_radius)

    def update(self, smoothing_radius: float) -> None:
        """Set a new smoothing radius and recompute every scaling factor."""
        r = float(smoothing_radius)
        if not np.isfinite(r) or r <= 0.0:
            raise InvalidConfiguration(
                f"smoothing_radius must be positive, got {smoothing_radius}"
            )
        self.smoothing_radius = r

        if self.dim == 2:
            self.poly6_scale = 4.0 / (np.pi * r**8)
            self.spiky_pow3_scale = 10.0 / (np.pi * r**5)
            self.spiky_pow2_scale = 6.0 / (np.pi * r**4)
            self.spiky_pow3_derivative_scale = 30.0 / (np.pi * r**5)
            self.spiky_pow2_derivative_scale = 12.0 / (np.pi * r**4)
        else:
            self.poly6_scale = 315.0 / (64.0 * np.pi * r**9)
            self.spiky_pow3_scale = 15.0 / (np.pi * r**6)
            self.spiky_pow2_scale = 15.0 / (2.0 * np.pi * r**5)
            self.spiky_pow3_derivative_scale = 45.0 / (np.pi * r**6)
            self.spiky_pow2_derivative_scale = 15.0 / (np.pi * r**5)

    def density_kernel(self, dst: NDArrayFloat) -> NDArrayFloat:
        """
        Density kernel W_density (poly6), vectorised over distances.

        Parameters
        ----------
        dst : NDArrayFloat
            Non-negative distance(s) between particles.

        Returns
        -------
        W : NDArrayFloat
            Kernel value(s), zero beyond the smoothing radius.
        """
        d = np.asarray(dst, dtype=np.float64)
        r = self.smoothing_radius
        v = np.clip(r * r - d * d, 0.0, None)
        return np.where(d < r, v**3 * self.poly6_scale, 0.0)

    def near_density_kernel(self, dst: NDArrayFloat) -> NDArrayFloat:
        """Near-density kernel W_near (spiky pow3)."""
        d = np.asarray(dst, dtype=np.float64)
        r = self.smoothing_radius
        v = np.clip(r - d, 0.0, None)
        return np.where(d < r, v**3 * self.spiky_pow3_scale, 0.0)

    def pressure_kernel(self, dst: NDArrayFloat) -> NDArrayFloat:
        """Spiky pow2 kernel whose gradient drives the pressure force."""
        d = np.asarray(dst, dtype=np.float64)
        r = self.smoothing_radius
        v = np.clip(r - d, 0.0, None)
        return np.where(d < r, v**2 * self.spiky_pow2_scale, 0.0)

    def viscosity_kernel(self, dst: NDArrayFloat) -> NDArrayFloat:
        """Viscosity smoothing kernel (poly6)."""
        return self.density_kernel(dst)

    def density_derivative(self, dst: NDArrayFloat) -> NDArrayFloat:
        """dW/dd of the pressure kernel (spiky pow2)."""
        d = np.asarray(dst, dtype=np.float64)
        r = self.smoothing_radius
        v = np.clip(r - d, 0.0, None)
        return np.where(d <= r, -v * self.spiky_pow2_derivative_scale, 0.0)

    def near_density_derivative(self, dst: NDArrayFloat) -> NDArrayFloat:
        """dW/dd of the near-density kernel (spiky pow3)."""
        d = np.asarray(dst, dtype=np.float64)
        r = self.smoothing_radius
        v = np.clip(r - d, 0.0, None)
        return np.where(d <= r, -v * v * self.spiky_pow3_derivative_scale, 0.0)

    def __repr__(self) -> str:
        return f"SmoothingKernels(smoothing_radius={self.smoothing_radius}, dim={self.dim})"
