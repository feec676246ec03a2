"""
Velocity smoothing between neighbours.

    v_i' = v_i + μ Δt ∑_j (v_j - v_i) W_poly6(d)

This pulls each velocity toward the kernel-weighted velocities around it. It
is a drag-like smoothing term, not a viscous stress tensor. Neighbour
velocities are read from the input buffer and results written to a separate
output buffer so no particle sees a partially updated neighbour.
"""

import numpy as np
import numpy.typing as npt
from numba import njit, prange

from sph_fluid.core.interfaces import SolverStage, SubstepContext
from sph_fluid.sph.kernels import SmoothingKernels, smoothing_kernel_poly6
from sph_fluid.sph.neighbours import NeighbourTable
from sph_fluid.sph.particles import ParticleStore
from sph_fluid.sph.spatial_hash import SpatialHashGrid, hash_offset_cell

NDArrayFloat = npt.NDArray[np.float32]


@njit(parallel=True, fastmath=True)
def _viscosity_numba(positions, velocities, velocities_out, strength, dt,
                     radius, poly6_scale,
                     cells, cell_offsets, hash_weights,
                     sorted_indices, sorted_hashes, sorted_keys, offsets):
    N = positions.shape[0]
    dim = positions.shape[1]
    n_cells = cell_offsets.shape[0]
    sqr_radius = np.float64(radius) * np.float64(radius)

    for i in prange(N):
        visited = np.empty(n_cells, dtype=np.int64)
        accum = np.zeros(dim, dtype=np.float64)

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
                            dx = np.float64(positions[j, a]) - np.float64(positions[i, a])
                            r2 += dx * dx
                        if r2 < sqr_radius:
                            w = smoothing_kernel_poly6(np.sqrt(r2), radius, poly6_scale)
                            for a in range(dim):
                                accum[a] += (velocities[j, a] - velocities[i, a]) * w
                k += 1

        for a in range(dim):
            velocities_out[i, a] = velocities[i, a] + accum[a] * strength * dt


def compute_viscosity(
    positions: NDArrayFloat,
    velocities: NDArrayFloat,
    grid: SpatialHashGrid,
    table: NeighbourTable,
    kernels: SmoothingKernels,
    strength: float,
    dt: float,
    velocities_out: NDArrayFloat = None,
) -> NDArrayFloat:
    """
    Smoothed velocities after one substep of viscosity.

    ``velocities`` is only read; the result goes to ``velocities_out``
    (allocated if omitted), which must not alias the input.
    """
    if velocities_out is None:
        velocities_out = np.empty_like(velocities)
    _viscosity_numba(
        positions,
        velocities,
        velocities_out,
        float(strength),
        float(dt),
        grid.smoothing_radius,
        kernels.poly6_scale,
        grid.cells,
        grid.cell_offsets,
        grid.hash_weights,
        table.sorted_indices,
        table.sorted_hashes,
        table.sorted_keys,
        table.offsets,
    )
    return velocities_out


class ViscosityStage(SolverStage):
    """Velocity smoothing through the scratch buffer, swapped in afterwards."""

    reads = ("predicted_positions", "velocities")
    writes = ("velocity_scratch", "velocities")

    def run(self, particles: ParticleStore, context: SubstepContext) -> None:
        compute_viscosity(
            particles.predicted_positions,
            particles.velocities,
            context.grid,
            context.table,
            context.kernels,
            context.config.viscosity_strength,
            context.dt,
            velocities_out=particles.velocity_scratch,
        )
        particles.swap_velocity_scratch()
