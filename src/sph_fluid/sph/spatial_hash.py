"""
Spatial hashing of particles onto a uniform grid.

Each particle is binned into the grid cell floor(x / r) of its predicted
position, r being the smoothing radius, so every neighbour within r lies in
the particle's own cell or one of the 3^dim - 1 adjacent cells. Cells are
folded into an unbounded hash with large-prime weights using unsigned 32-bit
wrap-around arithmetic, then reduced modulo the table size (the particle
count) to a bucket key.

Distinct cells may collide on a key; neighbour gathering always compares the
full hash and re-checks the true distance, so collisions only cost time.
"""

import itertools
import numpy as np
import numpy.typing as npt
from numba import njit

from sph_fluid.core.errors import BufferSizeMismatch, InvalidConfiguration
from sph_fluid.core.interfaces import SolverStage, SubstepContext

NDArrayFloat = npt.NDArray[np.float32]
NDArrayInt = npt.NDArray[np.int64]

# Per-axis hash weights (x, y, z)
HASH_WEIGHTS = np.array([15823, 9737333, 440817757], dtype=np.int64)

# All hash arithmetic wraps at 2^32
HASH_MASK = 0xFFFFFFFF


def neighbour_cell_offsets(dim: int) -> NDArrayInt:
    """
    Offsets of a cell and its adjacent cells.

    Returns
    -------
    offsets : NDArrayInt, shape (3**dim, dim)
        9 offsets in 2D, 27 in 3D; the zero offset comes first.
    """
    offsets = sorted(
        itertools.product((-1, 0, 1), repeat=dim),
        key=lambda o: (sum(abs(c) for c in o), o),
    )
    return np.array(offsets, dtype=np.int64)


def cell_coordinates(positions: NDArrayFloat, smoothing_radius: float) -> NDArrayInt:
    """Integer grid cell of each position: floor(x / r) per axis."""
    return np.floor(np.asarray(positions, dtype=np.float64) / smoothing_radius).astype(np.int64)


def hash_cells(cells: NDArrayInt) -> NDArrayInt:
    """
    Hash integer cell coordinates.

    Parameters
    ----------
    cells : NDArrayInt, shape (N, dim)
        Cell coordinates (may be negative).

    Returns
    -------
    hashes : NDArrayInt, shape (N,)
        Unsigned 32-bit hashes stored as int64.
    """
    cells = np.asarray(cells, dtype=np.int64)
    weights = HASH_WEIGHTS[:cells.shape[-1]]
    terms = ((cells & HASH_MASK) * weights) & HASH_MASK
    return np.sum(terms, axis=-1) & HASH_MASK


def key_from_hash(hashes: NDArrayInt, table_size: int) -> NDArrayInt:
    """Reduce hashes to bucket keys in [0, table_size)."""
    return np.asarray(hashes, dtype=np.int64) % table_size


@njit(fastmath=True)
def hash_offset_cell(cells, i, cell_offsets, c, hash_weights):
    """Hash of cell ``cells[i] + cell_offsets[c]`` (numba counterpart of ``hash_cells``)."""
    h = 0
    for a in range(cells.shape[1]):
        coord = cells[i, a] + cell_offsets[c, a]
        h += ((coord & HASH_MASK) * hash_weights[a]) & HASH_MASK
    return h & HASH_MASK


class SpatialHashGrid:
    """
    Per-substep spatial hash of predicted particle positions.

    Attributes
    ----------
    n_particles : int
        Number of particles, also the hash table size.
    dim : int
        Spatial dimension.
    smoothing_radius : float
        Grid cell edge length, rounded to float32.
    cell_offsets : NDArrayInt, shape (3**dim, dim)
        Offsets of the cells searched around a particle.
    hash_weights : NDArrayInt, shape (dim,)
        Per-axis hash weights.
    cells : NDArrayInt, shape (N, dim)
        Cell of every particle from the last ``build``.
    hashes, keys : NDArrayInt, shape (N,)
        Full hash and bucket key of every particle from the last ``build``.
    """

    def __init__(self, n_particles: int, dim: int, smoothing_radius: float):
        if n_particles <= 0:
            raise InvalidConfiguration(f"particle count must be positive, got {n_particles}")
        self.n_particles = int(n_particles)
        self.dim = int(dim)
        self.set_smoothing_radius(smoothing_radius)

        self.cell_offsets = neighbour_cell_offsets(self.dim)
        self.hash_weights = HASH_WEIGHTS[:self.dim].copy()

        self.cells = np.zeros((self.n_particles, self.dim), dtype=np.int64)
        self.hashes = np.zeros(self.n_particles, dtype=np.int64)
        self.keys = np.zeros(self.n_particles, dtype=np.int64)

    @property
    def table_size(self) -> int:
        return self.n_particles

    def set_smoothing_radius(self, smoothing_radius: float) -> None:
        if not smoothing_radius > 0.0:
            raise InvalidConfiguration(
                f"smoothing_radius must be positive, got {smoothing_radius}"
            )
        # Rounded to float32 so cell size matches the radius used in distance checks
        self.smoothing_radius = float(np.float32(smoothing_radius))

    def build(self, predicted_positions: NDArrayFloat) -> None:
        """
        Bin every particle and compute its hash and key.

        Parameters
        ----------
        predicted_positions : NDArrayFloat, shape (N, dim)
            Positions to hash.

        Raises
        ------
        BufferSizeMismatch
            If the positions do not match the grid size.
        """
        if predicted_positions.shape != (self.n_particles, self.dim):
            raise BufferSizeMismatch(
                f"cannot hash positions of shape {predicted_positions.shape}; "
                f"grid expects {(self.n_particles, self.dim)}"
            )
        self.cells[:] = cell_coordinates(predicted_positions, self.smoothing_radius)
        self.hashes[:] = hash_cells(self.cells)
        self.keys[:] = key_from_hash(self.hashes, self.table_size)


class SpatialHashStage(SolverStage):
    """Rebuild the spatial hash from the predicted positions."""

    reads = ("predicted_positions",)
    writes = ()

    def run(self, particles, context: SubstepContext) -> None:
        context.grid.build(particles.predicted_positions)
