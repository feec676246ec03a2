"""
Particle store for SPH fluid simulations.

This module implements the ParticleStore class that owns every per-particle
buffer (structure-of-arrays): positions, predicted positions, velocities,
densities and the derived pressures. Buffers are sized once at allocation and
rewritten in place by the solver stages every substep.

Physics lives in the stages; the store only allocates, seeds, validates and
exposes the raw arrays.
"""

from typing import Optional
import numpy as np
import numpy.typing as npt

from sph_fluid.core.errors import BufferSizeMismatch, InvalidConfiguration

# Type alias for clarity
NDArrayFloat = npt.NDArray[np.float32]

SUPPORTED_DIMENSIONS = (2, 3)


class ParticleStore:
    """
    Container for SPH particle buffers.

    Attributes
    ----------
    n_particles : int
        Number of particles (fixed for the lifetime of the allocation).
    dim : int
        Spatial dimension, 2 or 3.
    positions : NDArrayFloat, shape (N, dim)
        Committed particle positions.
    predicted_positions : NDArrayFloat, shape (N, dim)
        Look-ahead positions used by the neighbour stages of one substep.
    velocities : NDArrayFloat, shape (N, dim)
        Particle velocities.
    velocity_scratch : NDArrayFloat, shape (N, dim)
        Output buffer for stages that read neighbour velocities.
    density, near_density : NDArrayFloat, shape (N,)
        Kernel-weighted densities, recomputed every substep.
    pressure, near_pressure : NDArrayFloat, shape (N,)
        Pressures derived from the densities by the pressure stage.

    Notes
    -----
    Buffers are contiguous float32 so numba loops can index them directly.
    """

    def __init__(self, n_particles: int, dim: int):
        """
        Allocate zero-initialised buffers. Prefer ``ParticleStore.allocate``.

        Parameters
        ----------
        n_particles : int
            Number of particles, must be positive.
        dim : int
            Spatial dimension (2 or 3).

        Raises
        ------
        InvalidConfiguration
            If ``n_particles <= 0`` or ``dim`` is unsupported.
        """
        if int(n_particles) <= 0:
            raise InvalidConfiguration(
                f"particle count must be positive, got {n_particles}"
            )
        if dim not in SUPPORTED_DIMENSIONS:
            raise InvalidConfiguration(
                f"Unsupported dimension: {dim}. Must be 2 or 3."
            )

        self.n_particles = int(n_particles)
        self.dim = int(dim)

        n = self.n_particles
        self.positions = np.zeros((n, dim), dtype=np.float32)
        self.predicted_positions = np.zeros((n, dim), dtype=np.float32)
        self.velocities = np.zeros((n, dim), dtype=np.float32)
        self.velocity_scratch = np.zeros((n, dim), dtype=np.float32)

        self.density = np.zeros(n, dtype=np.float32)
        self.near_density = np.zeros(n, dtype=np.float32)
        self.pressure = np.zeros(n, dtype=np.float32)
        self.near_pressure = np.zeros(n, dtype=np.float32)

        self._allocated = True

    @classmethod
    def allocate(cls, n_particles: int, dim: int) -> "ParticleStore":
        """Create a store with zeroed buffers for ``n_particles`` in ``dim`` dimensions."""
        return cls(n_particles, dim)

    @property
    def allocated(self) -> bool:
        """Whether the buffers are still held."""
        return self._allocated

    def set_initial(
        self,
        positions: NDArrayFloat,
        velocities: Optional[NDArrayFloat] = None
    ) -> None:
        """
        Seed the particle state.

        Parameters
        ----------
        positions : NDArrayFloat, shape (N, dim)
            Initial positions; also copied into the predicted positions.
        velocities : NDArrayFloat, shape (N, dim), optional
            Initial velocities. If None, velocities are zeroed.

        Raises
        ------
        BufferSizeMismatch
            If an input does not match the allocated shape.
        """
        self._require_allocated()
        expected = (self.n_particles, self.dim)

        positions = np.asarray(positions, dtype=np.float32)
        if positions.shape != expected:
            raise BufferSizeMismatch(
                f"positions shape {positions.shape} does not match {expected}"
            )
        if velocities is None:
            velocities = np.zeros(expected, dtype=np.float32)
        velocities = np.asarray(velocities, dtype=np.float32)
        if velocities.shape != expected:
            raise BufferSizeMismatch(
                f"velocities shape {velocities.shape} does not match {expected}"
            )

        self.positions[:] = positions
        self.predicted_positions[:] = positions
        self.velocities[:] = velocities
        self.velocity_scratch[:] = velocities
        self.density.fill(0.0)
        self.near_density.fill(0.0)
        self.pressure.fill(0.0)
        self.near_pressure.fill(0.0)

    def validate_buffers(self) -> None:
        """
        Check that every buffer still matches the particle count.

        Raises
        ------
        BufferSizeMismatch
            On the first inconsistent buffer.
        """
        self._require_allocated()
        n, dim = self.n_particles, self.dim
        vectors = {
            "positions": self.positions,
            "predicted_positions": self.predicted_positions,
            "velocities": self.velocities,
            "velocity_scratch": self.velocity_scratch,
        }
        scalars = {
            "density": self.density,
            "near_density": self.near_density,
            "pressure": self.pressure,
            "near_pressure": self.near_pressure,
        }
        for name, buf in vectors.items():
            if buf is None or buf.shape != (n, dim):
                shape = None if buf is None else buf.shape
                raise BufferSizeMismatch(f"{name} shape mismatch: {shape}, expected {(n, dim)}")
        for name, buf in scalars.items():
            if buf is None or buf.shape != (n,):
                shape = None if buf is None else buf.shape
                raise BufferSizeMismatch(f"{name} shape mismatch: {shape}, expected {(n,)}")

    def has_buffer(self, name: str) -> bool:
        """Whether ``name`` is one of the store's particle buffers."""
        return name in BUFFER_NAMES and getattr(self, name, None) is not None

    def swap_velocity_scratch(self) -> None:
        """Make the scratch buffer the live velocity buffer."""
        self.velocities, self.velocity_scratch = self.velocity_scratch, self.velocities

    def release(self) -> None:
        """Drop every buffer; the store cannot be used afterwards."""
        for name in BUFFER_NAMES:
            setattr(self, name, None)
        self._allocated = False

    def _require_allocated(self) -> None:
        if not self._allocated:
            raise BufferSizeMismatch("particle buffers have been released")

    def kinetic_energy(self, mass: float = 1.0) -> float:
        """
        Compute total kinetic energy of the system.

        Parameters
        ----------
        mass : float
            Mass of every particle.

        Returns
        -------
        E_kin : float
            Total kinetic energy: ∑ (1/2) m v².
        """
        v_squared = np.sum(self.velocities.astype(np.float64)**2, axis=1)
        return float(0.5 * mass * np.sum(v_squared))

    def center_of_mass(self) -> NDArrayFloat:
        """Mean particle position (all particles share one mass)."""
        return np.mean(self.positions, axis=0)

    def max_speed(self) -> float:
        """Largest particle speed."""
        return float(np.max(np.linalg.norm(self.velocities, axis=1)))

    def __repr__(self) -> str:
        """String representation of the particle store."""
        if not self._allocated:
            return "ParticleStore(released)"
        return (
            f"ParticleStore(n_particles={self.n_particles}, dim={self.dim}, "
            f"E_kin={self.kinetic_energy():.3e}, "
            f"max_density={float(np.max(self.density)):.3e})"
        )


BUFFER_NAMES = (
    "positions",
    "predicted_positions",
    "velocities",
    "velocity_scratch",
    "density",
    "near_density",
    "pressure",
    "near_pressure",
)
