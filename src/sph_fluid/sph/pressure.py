"""
Pressure forces from density and near-density.

Pressures follow a linear equation of state plus a near term:

    P_i     = k (ρ_i - ρ_0)
    Pnear_i = k_near ρnear_i

Neither is clamped, so an under-dense region pulls particles together. Each
pair contributes the symmetrised pressure along the gradient of the spiky
kernels (Clavet et al. 2005):

    F_i = ∑_j  dir_ij W'_pressure(d) (P_i + P_j) / 2 / ρ_j
             + dir_ij W'_near(d) (Pnear_i + Pnear_j) / 2 / ρnear_j
    v_i += F_i / ρ_i Δt

with dir_ij = (x_j - x_i) / d. Coincident particles (d = 0) get a fixed unit
direction along y whose sign depends on index order, so the pair is pushed
apart instead of producing NaN.
"""

import numpy as np
import numpy.typing as npt
from numba import njit, prange

from sph_fluid.core.interfaces import SolverStage, SubstepContext
from sph_fluid.sph.kernels import SmoothingKernels, derivative_spiky_pow2, derivative_spiky_pow3
from sph_fluid.sph.neighbours import NeighbourTable
from sph_fluid.sph.particles import ParticleStore
from sph_fluid.sph.spatial_hash import SpatialHashGrid, hash_offset_cell

NDArrayFloat = npt.NDArray[np.float32]


def compute_pressures(
    density: NDArrayFloat,
    near_density: NDArrayFloat,
    target_density: float,
    pressure_multiplier: float,
    near_pressure_multiplier: float,
    pressure_out: NDArrayFloat = None,
    near_pressure_out: NDArrayFloat = None,
):
    """Pressure and near-pressure from the equation of state above."""
    if pressure_out is None:
        pressure_out = np.empty_like(density)
    if near_pressure_out is None:
        near_pressure_out = np.empty_like(near_density)
    pressure_out[:] = pressure_multiplier * (density - target_density)
    near_pressure_out[:] = near_pressure_multiplier * near_density
    return pressure_out, near_pressure_out


@njit(parallel=True, fastmath=True, error_model="numpy")
def _pressure_acceleration_numba(positions, velocities, density, near_density,
                                 pressure, near_pressure, dt,
                                 radius, pressure_scale, near_scale,
                                 cells, cell_offsets, hash_weights,
                                 sorted_indices, sorted_hashes, sorted_keys, offsets):
    """Apply the pressure acceleration to ``velocities`` in place."""
    N = positions.shape[0]
    dim = positions.shape[1]
    n_cells = cell_offsets.shape[0]
    sqr_radius = np.float64(radius) * np.float64(radius)

    for i in prange(N):
        visited = np.empty(n_cells, dtype=np.int64)
        force = np.zeros(dim, dtype=np.float64)
        offset = np.empty(dim, dtype=np.float64)

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
                    if j != i:
                        r2 = 0.0
                        for a in range(dim):
                            offset[a] = np.float64(positions[j, a]) - np.float64(positions[i, a])
                            r2 += offset[a] * offset[a]
                        if r2 < sqr_radius:
                            dst = np.sqrt(r2)
                            if dst > 0.0:
                                for a in range(dim):
                                    offset[a] /= dst
                            else:
                                for a in range(dim):
                                    offset[a] = 0.0
                                offset[1] = 1.0 if j > i else -1.0

                            shared_pressure = 0.5 * (pressure[i] + pressure[j])
                            shared_near = 0.5 * (near_pressure[i] + near_pressure[j])
                            grad = derivative_spiky_pow2(dst, radius, pressure_scale)
                            grad_near = derivative_spiky_pow3(dst, radius, near_scale)
                            magnitude = (grad * shared_pressure / density[j]
                                         + grad_near * shared_near / near_density[j])
                            for a in range(dim):
                                force[a] += offset[a] * magnitude
                k += 1

        inv_rho = 1.0 / density[i]
        for a in range(dim):
            velocities[i, a] += force[a] * inv_rho * dt


def compute_pressure_velocities(
    positions: NDArrayFloat,
    velocities: NDArrayFloat,
    density: NDArrayFloat,
    near_density: NDArrayFloat,
    pressure: NDArrayFloat,
    near_pressure: NDArrayFloat,
    grid: SpatialHashGrid,
    table: NeighbourTable,
    kernels: SmoothingKernels,
    dt: float,
) -> NDArrayFloat:
    """
    Add the pressure acceleration of one substep to ``velocities``.

    Parameters
    ----------
    positions : NDArrayFloat, shape (N, dim)
        Predicted positions the grid was built from.
    velocities : NDArrayFloat, shape (N, dim)
        Velocities, updated in place. Each particle only writes its own
        entry and no neighbour velocity is read, so the update is race-free.
    density, near_density : NDArrayFloat, shape (N,)
        Densities of this substep (strictly positive).
    pressure, near_pressure : NDArrayFloat, shape (N,)
        Pressures from ``compute_pressures``.
    grid, table : SpatialHashGrid, NeighbourTable
        Spatial structures of ``positions``.
    kernels : SmoothingKernels
        Kernel constants.
    dt : float
        Substep timestep.

    Returns
    -------
    velocities : NDArrayFloat, shape (N, dim)
        The updated input array.
    """
    _pressure_acceleration_numba(
        positions,
        velocities,
        density,
        near_density,
        pressure,
        near_pressure,
        float(dt),
        grid.smoothing_radius,
        kernels.spiky_pow2_derivative_scale,
        kernels.spiky_pow3_derivative_scale,
        grid.cells,
        grid.cell_offsets,
        grid.hash_weights,
        table.sorted_indices,
        table.sorted_hashes,
        table.sorted_keys,
        table.offsets,
    )
    return velocities


class PressureStage(SolverStage):
    """Pressure and near-pressure forces applied to velocities."""

    reads = ("predicted_positions", "density", "near_density", "velocities")
    writes = ("pressure", "near_pressure", "velocities")

    def run(self, particles: ParticleStore, context: SubstepContext) -> None:
        config = context.config
        compute_pressures(
            particles.density,
            particles.near_density,
            config.target_density,
            config.pressure_multiplier,
            config.near_pressure_multiplier,
            pressure_out=particles.pressure,
            near_pressure_out=particles.near_pressure,
        )
        compute_pressure_velocities(
            particles.predicted_positions,
            particles.velocities,
            particles.density,
            particles.near_density,
            particles.pressure,
            particles.near_pressure,
            context.grid,
            context.table,
            context.kernels,
            context.dt,
        )
