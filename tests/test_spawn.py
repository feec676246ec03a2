"""
Tests for grid spawn initial conditions.

Validates:
- Determinism for a fixed seed
- Lattice layout and counts in 2D and 3D
- Jitter bounds
- Input validation
"""

import numpy as np
import pytest

from sph_fluid.core.errors import InvalidConfiguration
from sph_fluid.ICs import SpawnGenerator


SPAWN_2D = dict(spawn_center=(1.0, -1.0), spawn_dimensions=(4.0, 2.0))
SPAWN_3D = dict(spawn_center=(0.0, 0.0, 0.0), spawn_dimensions=(2.0, 2.0, 2.0))


class TestSpawnDeterminism:
    """Same seed, same particles."""

    @pytest.mark.parametrize("region", [SPAWN_2D, SPAWN_3D])
    def test_same_seed_identical(self, region):
        a = SpawnGenerator(random_seed=7).generate(250, particle_jitter=0.1, **region)
        b = SpawnGenerator(random_seed=7).generate(250, particle_jitter=0.1, **region)
        np.testing.assert_array_equal(a[0], b[0])
        np.testing.assert_array_equal(a[1], b[1])

    def test_repeated_calls_identical(self):
        generator = SpawnGenerator(random_seed=1)
        a, _ = generator.generate(100, particle_jitter=0.2, **SPAWN_2D)
        b, _ = generator.generate(100, particle_jitter=0.2, **SPAWN_2D)
        np.testing.assert_array_equal(a, b)

    def test_different_seed_differs(self):
        a, _ = SpawnGenerator(random_seed=1).generate(100, particle_jitter=0.2, **SPAWN_2D)
        b, _ = SpawnGenerator(random_seed=2).generate(100, particle_jitter=0.2, **SPAWN_2D)
        assert not np.array_equal(a, b)


class TestLattice:
    """Lattice layout without jitter."""

    def test_square_region_counts(self):
        assert SpawnGenerator.lattice_counts(100, (3.0, 3.0)) == (10, 10)

    def test_wide_region_has_more_columns(self):
        per_row, per_col = SpawnGenerator.lattice_counts(200, (4.0, 1.0))
        assert per_row > per_col
        assert per_row * per_col >= 200

    def test_3d_counts(self):
        assert SpawnGenerator.lattice_counts(27, (1.0, 1.0, 1.0)) == (3, 3, 3)
        assert SpawnGenerator.lattice_counts(64, (1.0, 1.0, 1.0)) == (4, 4, 4)
        per_row, per_col, per_width = SpawnGenerator.lattice_counts(100, (1.0, 1.0, 1.0))
        assert per_row == per_width == 4
        assert per_row * per_col * per_width >= 100

    def test_2d_positions_span_region(self):
        positions, velocities = SpawnGenerator().generate(100, particle_jitter=0.0, **SPAWN_2D)
        assert positions.shape == (100, 2)
        assert positions.dtype == np.float32
        np.testing.assert_allclose(positions.min(axis=0), [-1.0, -2.0], atol=1e-6)
        np.testing.assert_allclose(positions.max(axis=0), [3.0, 0.0], atol=1e-6)
        assert len({tuple(p) for p in positions.tolist()}) == 100
        np.testing.assert_array_equal(velocities, 0.0)

    def test_3d_positions_inside_region(self):
        positions, _ = SpawnGenerator().generate(125, particle_jitter=0.0, **SPAWN_3D)
        assert positions.shape == (125, 3)
        assert np.all(np.abs(positions) <= 1.0 + 1e-6)
        np.testing.assert_allclose(positions.mean(axis=0), 0.0, atol=1e-6)

    def test_single_particle_at_centre(self):
        positions, _ = SpawnGenerator().generate(1, particle_jitter=0.0, **SPAWN_2D)
        np.testing.assert_allclose(positions, [[1.0, -1.0]])
        positions, _ = SpawnGenerator().generate(1, particle_jitter=0.0, **SPAWN_3D)
        np.testing.assert_allclose(positions, [[0.0, 0.0, 0.0]])

    def test_initial_velocity_applied(self):
        _, velocities = SpawnGenerator().generate(
            10, initial_velocity=(0.5, -2.0), **SPAWN_2D
        )
        np.testing.assert_array_equal(velocities, np.tile([0.5, -2.0], (10, 1)).astype(np.float32))


class TestJitter:
    """Jitter stays within its magnitude."""

    def test_2d_jitter_bounded(self):
        jitter = 0.3
        base, _ = SpawnGenerator(random_seed=3).generate(200, particle_jitter=0.0, **SPAWN_2D)
        jittered, _ = SpawnGenerator(random_seed=3).generate(200, particle_jitter=jitter, **SPAWN_2D)
        displacement = np.linalg.norm(jittered - base, axis=1)
        assert np.all(displacement <= 0.5 * jitter + 1e-6)
        assert np.any(displacement > 0.0)

    def test_3d_jitter_inside_sphere(self):
        jitter = 0.25
        base, _ = SpawnGenerator(random_seed=3).generate(200, particle_jitter=0.0, **SPAWN_3D)
        jittered, _ = SpawnGenerator(random_seed=3).generate(200, particle_jitter=jitter, **SPAWN_3D)
        displacement = np.linalg.norm(jittered - base, axis=1)
        assert np.all(displacement <= jitter + 1e-6)
        assert np.any(displacement > 0.0)


class TestSpawnValidation:
    """Rejected inputs."""

    def test_non_positive_count(self):
        with pytest.raises(InvalidConfiguration):
            SpawnGenerator().generate(0, **SPAWN_2D)

    def test_mismatched_vectors(self):
        with pytest.raises(InvalidConfiguration):
            SpawnGenerator().generate(10, spawn_center=(0.0, 0.0), spawn_dimensions=(1.0, 1.0, 1.0))

    def test_negative_jitter(self):
        with pytest.raises(InvalidConfiguration):
            SpawnGenerator().generate(10, particle_jitter=-1.0, **SPAWN_2D)

    def test_zero_extent(self):
        with pytest.raises(InvalidConfiguration):
            SpawnGenerator().generate(10, spawn_center=(0.0, 0.0), spawn_dimensions=(0.0, 1.0))
