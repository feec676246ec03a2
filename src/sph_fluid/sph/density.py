"""
SPH density summation over hashed neighbours.

    ρ_i      = ∑_j m W_density(|x_i - x_j|, r)
    ρnear_i  = ∑_j m W_near(|x_i - x_j|, r)

The sums run over the particle's own cell and the adjacent cells found
through the offset table, and include the particle itself (distance 0), so
both densities are strictly positive for any configuration.
"""

import numpy as np
import numpy.typing as npt
from numba import njit, prange

from sph_fluid.core.interfaces import SolverStage, SubstepContext
from sph_fluid.sph.kernels import SmoothingKernels, smoothing_kernel_poly6, spiky_kernel_pow3
from sph_fluid.sph.neighbours import NeighbourTable
from sph_fluid.sph.particles import ParticleStore
from sph_fluid.sph.spatial_hash import SpatialHashGrid, hash_offset_cell

NDArrayFloat = npt.NDArray[np.float32]


@njit(parallel=True, fastmath=True)
def _compute_density_numba(positions, mass, radius, density_scale, near_scale,
                           cells, cell_offsets, hash_weights,
                           sorted_indices, sorted_hashes, sorted_keys, offsets,
                           density_out, near_density_out):
    """Density and near-density of every particle."""
    N = positions.shape[0]
    dim = positions.shape[1]
    n_cells = cell_offsets.shape[0]
    sqr_radius = np.float64(radius) * np.float64(radius)

    for i in prange(N):
        visited = np.empty(n_cells, dtype=np.int64)
        rho = 0.0
        rho_near = 0.0
        for c in range(n_cells):
            h = hash_offset_cell(cells, i, cell_offsets, c, hash_weights)
            seen = False
            for v in range(c):
                if visited[v] == h:
                    seen = True
                    break
            visited[c] = h
            if seen:
                continue

            key = h % N
            k = offsets[key]
            while k < N:
                if sorted_keys[k] != key:
                    break
                if sorted_hashes[k] == h:
                    j = sorted_indices[k]
                    r2 = 0.0
                    for a in range(dim):
                        dx = np.float64(positions[j, a]) - np.float64(positions[i, a])
                        r2 += dx * dx
                    if r2 < sqr_radius:
                        dst = np.sqrt(r2)
                        rho += mass * smoothing_kernel_poly6(dst, radius, density_scale)
                        rho_near += mass * spiky_kernel_pow3(dst, radius, near_scale)
                k += 1

        density_out[i] = rho
        near_density_out[i] = rho_near


def compute_density(
    positions: NDArrayFloat,
    grid: SpatialHashGrid,
    table: NeighbourTable,
    kernels: SmoothingKernels,
    mass: float = 1.0,
    density_out: NDArrayFloat = None,
    near_density_out: NDArrayFloat = None,
):
    """
    Compute density and near-density through the spatial hash.

    ``grid`` and ``table`` must already be built from ``positions``.

    Parameters
    ----------
    positions : NDArrayFloat, shape (N, dim)
        Positions the grid was built from (the predicted positions).
    grid : SpatialHashGrid
        Spatial hash of ``positions``.
    table : NeighbourTable
        Sorted entries and offsets for ``grid``.
    kernels : SmoothingKernels
        Kernel constants for the current smoothing radius.
    mass : float, optional
        Mass of every particle.
    density_out, near_density_out : NDArrayFloat, shape (N,), optional
        Output buffers; allocated if omitted.

    Returns
    -------
    density, near_density : NDArrayFloat, shape (N,)
    """
    n = positions.shape[0]
    if density_out is None:
        density_out = np.zeros(n, dtype=np.float32)
    if near_density_out is None:
        near_density_out = np.zeros(n, dtype=np.float32)

    _compute_density_numba(
        positions,
        float(mass),
        grid.smoothing_radius,
        kernels.poly6_scale,
        kernels.spiky_pow3_scale,
        grid.cells,
        grid.cell_offsets,
        grid.hash_weights,
        table.sorted_indices,
        table.sorted_hashes,
        table.sorted_keys,
        table.offsets,
        density_out,
        near_density_out,
    )
    return density_out, near_density_out


class DensityStage(SolverStage):
    """Kernel-weighted density and near-density from predicted positions."""

    reads = ("predicted_positions",)
    writes = ("density", "near_density")

    def run(self, particles: ParticleStore, context: SubstepContext) -> None:
        compute_density(
            particles.predicted_positions,
            context.grid,
            context.table,
            context.kernels,
            mass=context.config.particle_mass,
            density_out=particles.density,
            near_density_out=particles.near_density,
        )
