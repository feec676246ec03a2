"""
Grid spawn initial conditions for 2D and 3D fluid blocks.

Particles are laid out on a regular lattice spanning the spawn region, then
displaced by a small random jitter so the first pressure solve does not see a
perfectly symmetric lattice.

2D lattice
----------
For a region of size (s_x, s_y) and n particles the number of columns along x
is chosen so the lattice spacing is close to equal on both axes:

    n_x = ceil( sqrt( s_x/s_y n + (s_x - s_y)² / (4 s_y²) - (s_x - s_y) / (2 s_y) ) )
    n_y = ceil(n / n_x)

Jitter is a random direction scaled by ``jitter * (u - 0.5)``, u ~ U(0, 1).

3D lattice
----------
    n_x = n_z = floor(n^(1/3)),    n_y = ceil(n / n_x²)

Jitter is uniform inside a sphere of radius ``jitter``.

In both cases the lattice is filled x-major and truncated to n particles, and
an axis with a single layer sits at the centre of the region.
"""

import numpy as np
from typing import Optional, Sequence, Tuple

from sph_fluid.core.errors import InvalidConfiguration
from sph_fluid.core.interfaces import ICGenerator, NDArrayFloat


class SpawnGenerator(ICGenerator):
    """
    Generate a jittered block of fluid particles.

    Attributes
    ----------
    random_seed : Optional[int]
        Seed of the jitter random generator. The same seed always yields the
        same positions.
    """

    def __init__(self, random_seed: Optional[int] = 1):
        """
        Initialize spawn generator.

        Parameters
        ----------
        random_seed : Optional[int], default 1
            Random seed for reproducible jitter.
            Set to None for non-reproducible placement.
        """
        self.random_seed = random_seed

    def generate(
        self,
        n_particles: int,
        **kwargs
    ) -> Tuple[NDArrayFloat, NDArrayFloat]:
        """
        Generate spawn positions and velocities.

        Parameters
        ----------
        n_particles : int
            Number of particles.
        **kwargs
            spawn_center : Sequence[float]
                Centre of the spawn region; its length sets the dimension.
            spawn_dimensions : Sequence[float]
                Extent of the spawn region per axis (positive).
            initial_velocity : Sequence[float], optional
                Velocity given to every particle (zero by default).
            particle_jitter : float, optional
                Jitter magnitude (default 0).

        Returns
        -------
        positions : NDArrayFloat, shape (n_particles, dim)
        velocities : NDArrayFloat, shape (n_particles, dim)
        """
        if n_particles <= 0:
            raise InvalidConfiguration(f"particle count must be positive, got {n_particles}")

        center = np.asarray(kwargs["spawn_center"], dtype=np.float64)
        size = np.asarray(kwargs["spawn_dimensions"], dtype=np.float64)
        dim = center.shape[0]
        if dim not in (2, 3) or size.shape != (dim,):
            raise InvalidConfiguration(
                f"spawn_center and spawn_dimensions must both have 2 or 3 components, "
                f"got {center.shape[0]} and {size.shape[0]}"
            )
        if np.any(size <= 0.0):
            raise InvalidConfiguration(f"spawn_dimensions must be positive, got {size.tolist()}")

        initial_velocity = kwargs.get("initial_velocity")
        if initial_velocity is None:
            initial_velocity = np.zeros(dim)
        initial_velocity = np.asarray(initial_velocity, dtype=np.float32)
        if initial_velocity.shape != (dim,):
            raise InvalidConfiguration(
                f"initial_velocity must have {dim} components, got {initial_velocity.shape[0]}"
            )
        jitter = float(kwargs.get("particle_jitter", 0.0))
        if jitter < 0.0:
            raise InvalidConfiguration(f"particle_jitter must be non-negative, got {jitter}")

        rng = np.random.default_rng(self.random_seed)

        counts = self.lattice_counts(n_particles, size)
        fractions = self._lattice_fractions(counts, n_particles)
        positions = (fractions - 0.5) * size + center

        if dim == 2:
            positions += self._jitter_2d(rng, n_particles, jitter)
        else:
            positions += self._jitter_3d(rng, n_particles, jitter)

        velocities = np.broadcast_to(initial_velocity, (n_particles, dim)).copy()
        return positions.astype(np.float32), velocities.astype(np.float32)

    @staticmethod
    def lattice_counts(n_particles: int, size: Sequence[float]) -> Tuple[int, ...]:
        """
        Lattice layers per axis for ``n_particles`` in a region of ``size``.

        The product of the counts is always at least ``n_particles``.
        """
        size = np.asarray(size, dtype=np.float64)
        if size.shape[0] == 2:
            sx, sy = size
            per_row = int(np.ceil(np.sqrt(
                sx / sy * n_particles
                + (sx - sy) ** 2 / (4.0 * sy ** 2)
                - (sx - sy) / (2.0 * sy)
            )))
            per_row = max(per_row, 1)
            per_col = int(np.ceil(n_particles / per_row))
            return per_row, per_col

        # Small epsilon so perfect cubes are not floored one layer short
        per_row = max(int(np.floor(n_particles ** (1.0 / 3.0) + 1e-9)), 1)
        per_col = int(np.ceil(n_particles / (per_row * per_row)))
        return per_row, per_col, per_row

    @staticmethod
    def _lattice_fractions(counts: Tuple[int, ...], n_particles: int) -> np.ndarray:
        """Normalised lattice coordinates in [0, 1], x-major, first n entries."""
        axes = [
            np.linspace(0.0, 1.0, c) if c > 1 else np.array([0.5])
            for c in counts
        ]
        grids = np.meshgrid(*axes, indexing="ij")
        fractions = np.stack([g.ravel() for g in grids], axis=1)
        return fractions[:n_particles]

    @staticmethod
    def _jitter_2d(rng: np.random.Generator, n: int, jitter: float) -> np.ndarray:
        angle = rng.random(n) * 2.0 * np.pi
        scale = jitter * (rng.random(n) - 0.5)
        return np.stack([np.cos(angle), np.sin(angle)], axis=1) * scale[:, None]

    @staticmethod
    def _jitter_3d(rng: np.random.Generator, n: int, jitter: float) -> np.ndarray:
        direction = rng.normal(size=(n, 3))
        norm = np.linalg.norm(direction, axis=1, keepdims=True)
        direction /= np.where(norm > 0.0, norm, 1.0)
        radius = jitter * np.cbrt(rng.random(n))
        return direction * radius[:, None]
