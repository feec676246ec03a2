"""
Neighbour sort and offset table for hashed SPH neighbour search.

After the spatial hash stage every particle owns a bucket key. Sorting the
(key, particle) entries makes each bucket a contiguous run, and a single scan
records where every run starts. Looking up "all particles in the cell with
hash H" then becomes a slice walk from ``offsets[H % N]`` that stops as soon
as the key changes, giving expected O(1) work per visited cell instead of a
scan over all particles.

Two sorts are provided. The default is numpy's stable argsort. The bitonic
network sorts a composite (key, index) value so it yields the same stable
permutation while only using fixed compare-exchange passes, the layout a GPU
compute dispatch would run.

A brute-force O(N²) search is kept as the reference for testing the hashed
search.
"""

from typing import List, Tuple
import numpy as np
import numpy.typing as npt
from numba import njit, prange

from sph_fluid.core.errors import BufferSizeMismatch, InvalidConfiguration
from sph_fluid.core.interfaces import SolverStage, SubstepContext
from sph_fluid.sph.spatial_hash import SpatialHashGrid, hash_offset_cell

NDArrayFloat = npt.NDArray[np.float32]
NDArrayInt = npt.NDArray[np.int64]

# Offset-table value for a bucket with no particles (UINT32_MAX)
OFFSET_SENTINEL = 0xFFFFFFFF

SORT_METHODS = ("stable", "bitonic")


def bitonic_argsort(keys: NDArrayInt) -> NDArrayInt:
    """
    Stable argsort of non-negative integer keys with a bitonic sorting network.

    Each entry is encoded as ``key * m + index`` (m the padded power-of-two
    length), so ties are broken by particle index and the result equals
    ``np.argsort(keys, kind="stable")``. Padding entries use a key larger
    than every real key and sort to the end.

    Parameters
    ----------
    keys : NDArrayInt, shape (N,)
        Non-negative keys.

    Returns
    -------
    order : NDArrayInt, shape (N,)
        Permutation that sorts ``keys`` ascending.
    """
    keys = np.asarray(keys, dtype=np.int64)
    n = keys.shape[0]
    if n <= 1:
        return np.arange(n, dtype=np.int64)

    m = 1 << int(np.ceil(np.log2(n)))
    pad_key = int(keys.max()) + 1
    padded = np.full(m, pad_key, dtype=np.int64)
    padded[:n] = keys
    values = padded * m + np.arange(m, dtype=np.int64)

    idx = np.arange(m, dtype=np.int64)
    k = 2
    while k <= m:
        j = k // 2
        while j > 0:
            partner = idx ^ j
            lower = idx[partner > idx]
            upper = lower ^ j
            ascending = (lower & k) == 0
            a = values[lower]
            b = values[upper]
            swap = np.where(ascending, a > b, a < b)
            values[lower[swap]] = b[swap]
            values[upper[swap]] = a[swap]
            j //= 2
        k *= 2

    return (values[:n] % m).astype(np.int64)


def sort_spatial_entries(keys: NDArrayInt, method: str = "stable") -> NDArrayInt:
    """Return the permutation that sorts particle keys ascending (ties by index)."""
    if method == "stable":
        return np.argsort(keys, kind="stable").astype(np.int64)
    if method == "bitonic":
        return bitonic_argsort(keys)
    raise ValueError(f"sort method must be one of {list(SORT_METHODS)}, got '{method}'")


def build_offset_table(sorted_keys: NDArrayInt, table_size: int) -> NDArrayInt:
    """
    First sorted position of every bucket key.

    Parameters
    ----------
    sorted_keys : NDArrayInt, shape (N,)
        Keys in ascending order.
    table_size : int
        Number of buckets.

    Returns
    -------
    offsets : NDArrayInt, shape (table_size,)
        ``offsets[key]`` is the start of the run for ``key``, or
        ``OFFSET_SENTINEL`` if no particle has that key.
    """
    offsets = np.full(table_size, OFFSET_SENTINEL, dtype=np.int64)
    if sorted_keys.size == 0:
        return offsets
    is_start = np.empty(sorted_keys.shape[0], dtype=np.bool_)
    is_start[0] = True
    is_start[1:] = sorted_keys[1:] != sorted_keys[:-1]
    starts = np.nonzero(is_start)[0]
    offsets[sorted_keys[starts]] = starts
    return offsets


class NeighbourTable:
    """
    Sorted spatial entries plus the per-bucket offset table.

    Attributes
    ----------
    n_particles : int
        Number of entries and buckets.
    sort_method : str
        "stable" or "bitonic".
    sorted_indices : NDArrayInt, shape (N,)
        Particle index of each sorted entry.
    sorted_hashes, sorted_keys : NDArrayInt, shape (N,)
        Full hash and bucket key of each sorted entry.
    offsets : NDArrayInt, shape (N,)
        Start of each bucket's run in the sorted arrays, or the sentinel.
    """

    def __init__(self, n_particles: int, sort_method: str = "stable"):
        if n_particles <= 0:
            raise InvalidConfiguration(f"particle count must be positive, got {n_particles}")
        if sort_method not in SORT_METHODS:
            raise InvalidConfiguration(
                f"sort_method must be one of {list(SORT_METHODS)}, got '{sort_method}'"
            )
        self.n_particles = int(n_particles)
        self.sort_method = sort_method

        n = self.n_particles
        self.sorted_indices = np.arange(n, dtype=np.int64)
        self.sorted_hashes = np.zeros(n, dtype=np.int64)
        self.sorted_keys = np.zeros(n, dtype=np.int64)
        self.offsets = np.full(n, OFFSET_SENTINEL, dtype=np.int64)

    def update(self, grid: SpatialHashGrid) -> None:
        """Sort the grid's entries by key and rebuild the offset table."""
        if grid.n_particles != self.n_particles:
            raise BufferSizeMismatch(
                f"spatial hash holds {grid.n_particles} entries, table expects {self.n_particles}"
            )
        order = sort_spatial_entries(grid.keys, self.sort_method)
        self.sorted_indices[:] = order
        self.sorted_hashes[:] = grid.hashes[order]
        self.sorted_keys[:] = grid.keys[order]
        self.offsets[:] = build_offset_table(self.sorted_keys, self.n_particles)

    def cell_range(self, key: int) -> Tuple[int, int]:
        """
        Slice ``[start, end)`` of sorted entries holding bucket ``key``.

        Returns ``(0, 0)`` for an empty bucket.
        """
        start = int(self.offsets[key])
        if start == OFFSET_SENTINEL:
            return 0, 0
        end = start
        while end < self.n_particles and self.sorted_keys[end] == key:
            end += 1
        return start, end

    def particles_in_bucket(self, key: int) -> NDArrayInt:
        """Particle indices whose bucket key is ``key``."""
        start, end = self.cell_range(key)
        return self.sorted_indices[start:end]


@njit(parallel=True)
def _count_neighbours_hashed(positions, radius, cells, cell_offsets, hash_weights,
                             sorted_indices, sorted_hashes, sorted_keys, offsets):
    """Count neighbours (self excluded) of each particle through the offset table."""
    N = positions.shape[0]
    dim = positions.shape[1]
    n_cells = cell_offsets.shape[0]
    sqr_radius = np.float64(radius) * np.float64(radius)
    counts = np.zeros(N, dtype=np.int64)

    for i in prange(N):
        visited = np.empty(n_cells, dtype=np.int64)
        count = 0
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
                            count += 1
                k += 1
        counts[i] = count
    return counts


@njit(parallel=True)
def _fill_neighbours_hashed(positions, radius, cells, cell_offsets, hash_weights,
                            sorted_indices, sorted_hashes, sorted_keys, offsets,
                            neighbour_offsets, indices):
    """Fill neighbour indices in CSR layout; mirrors ``_count_neighbours_hashed``."""
    N = positions.shape[0]
    dim = positions.shape[1]
    n_cells = cell_offsets.shape[0]
    sqr_radius = np.float64(radius) * np.float64(radius)

    for i in prange(N):
        visited = np.empty(n_cells, dtype=np.int64)
        current = neighbour_offsets[i]
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
                            indices[current] = j
                            current += 1
                k += 1


def find_neighbours_hashed(
    positions: NDArrayFloat,
    smoothing_radius: float,
    sort_method: str = "stable",
) -> List[NDArrayInt]:
    """
    Find neighbours within ``smoothing_radius`` using the spatial hash.

    Parameters
    ----------
    positions : NDArrayFloat, shape (N, dim)
        Particle positions.
    smoothing_radius : float
        Search radius; pairs with distance < radius are neighbours.
    sort_method : str, optional
        Sort used to build the offset table.

    Returns
    -------
    neighbour_lists : List[NDArray[int64]]
        ``neighbour_lists[i]`` holds the sorted indices of particle i's
        neighbours (self excluded).
    """
    positions = np.ascontiguousarray(positions, dtype=np.float32)
    n, dim = positions.shape

    grid = SpatialHashGrid(n, dim, smoothing_radius)
    grid.build(positions)
    table = NeighbourTable(n, sort_method)
    table.update(grid)

    args = (
        positions, grid.smoothing_radius, grid.cells, grid.cell_offsets, grid.hash_weights,
        table.sorted_indices, table.sorted_hashes, table.sorted_keys, table.offsets,
    )
    counts = _count_neighbours_hashed(*args)
    neighbour_offsets = np.zeros(n + 1, dtype=np.int64)
    neighbour_offsets[1:] = np.cumsum(counts)
    indices = np.empty(neighbour_offsets[-1], dtype=np.int64)
    _fill_neighbours_hashed(*args, neighbour_offsets, indices)

    return [
        np.sort(indices[neighbour_offsets[i]:neighbour_offsets[i + 1]])
        for i in range(n)
    ]


def find_neighbours_bruteforce(
    positions: NDArrayFloat,
    smoothing_radius: float,
) -> List[NDArrayInt]:
    """
    Find neighbours with a pairwise O(N²) distance check.

    Uses the same criterion as the hashed search (distance < radius, self
    excluded) and the same arithmetic (float64 offsets of the float32
    positions against the float32-rounded radius), so both return
    identical sets.
    """
    positions = np.ascontiguousarray(positions, dtype=np.float32).astype(np.float64)
    n, dim = positions.shape
    radius = float(np.float32(smoothing_radius))
    sqr_radius = radius * radius
    neighbour_lists = []

    for i in range(n):
        r2 = np.zeros(n, dtype=np.float64)
        for a in range(dim):
            d = positions[:, a] - positions[i, a]
            r2 += d * d
        is_neighbour = r2 < sqr_radius
        is_neighbour[i] = False
        neighbour_lists.append(np.nonzero(is_neighbour)[0].astype(np.int64))

    return neighbour_lists


class NeighbourSortStage(SolverStage):
    """Sort the hash entries by key and rebuild the offset table."""

    reads = ()
    writes = ()

    def run(self, particles, context: SubstepContext) -> None:
        context.table.update(context.grid)
