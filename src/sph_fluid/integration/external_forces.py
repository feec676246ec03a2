"""
External forces and position prediction.

Every substep starts by applying gravity (along the y axis) and the optional
pointer interaction to the velocities, then predicts positions one substep
ahead. The neighbour stages run on the predicted positions, which lets the
pressure solve react to where particles are about to be rather than where
they were.

Pointer interaction
-------------------
Within ``radius`` of the pointer, with t = 1 - d / radius:

    a = g (1 - t clip(strength / 10, 0, 1)) + dir_to_point t strength - v t

so a positive strength pulls particles toward the point (gravity fading out
near the centre) and a negative strength pushes them away. The ``- v t`` term
damps motion near the pointer.
"""

from dataclasses import dataclass
from typing import Optional, Sequence
import numpy as np
import numpy.typing as npt

from sph_fluid.core.errors import InvalidConfiguration
from sph_fluid.core.interfaces import SolverStage, SubstepContext
from sph_fluid.sph.particles import ParticleStore

NDArrayFloat = npt.NDArray[np.float32]


@dataclass(frozen=True)
class PointerInteraction:
    """
    Pointer force supplied by the host once per tick.

    Attributes
    ----------
    point : Sequence[float]
        Pointer position, one coordinate per active dimension.
    radius : float
        Radius of influence (positive).
    strength : float
        Signed strength; positive pulls, negative pushes, zero disables.
    """
    point: Sequence[float]
    radius: float = 2.0
    strength: float = 90.0

    def __post_init__(self):
        if not self.radius > 0.0:
            raise InvalidConfiguration(f"interaction radius must be positive, got {self.radius}")
        object.__setattr__(self, "point", tuple(float(c) for c in self.point))

    @property
    def active(self) -> bool:
        return self.strength != 0.0


def gravity_vector(gravity: float, dim: int) -> NDArrayFloat:
    """Gravity acceleration vector (0, g) or (0, g, 0)."""
    g = np.zeros(dim, dtype=np.float32)
    g[1] = gravity
    return g


def compute_external_acceleration(
    positions: NDArrayFloat,
    velocities: NDArrayFloat,
    gravity: float,
    interaction: Optional[PointerInteraction] = None,
) -> NDArrayFloat:
    """
    External acceleration of every particle.

    Parameters
    ----------
    positions, velocities : NDArrayFloat, shape (N, dim)
        Current particle state.
    gravity : float
        Signed gravitational acceleration along y.
    interaction : PointerInteraction, optional
        Pointer force; ignored when None or of zero strength.

    Returns
    -------
    accel : NDArrayFloat, shape (N, dim)
    """
    n, dim = positions.shape
    g = gravity_vector(gravity, dim)
    accel = np.broadcast_to(g, (n, dim)).copy()

    if interaction is None or not interaction.active:
        return accel

    point = np.asarray(interaction.point, dtype=np.float32)
    if point.shape != (dim,):
        raise InvalidConfiguration(
            f"interaction point has {point.shape[0]} coordinates, simulation is {dim}D"
        )

    offset = point - positions
    sqr_dst = np.sum(offset * offset, axis=1)
    inside = sqr_dst < interaction.radius * interaction.radius
    if not np.any(inside):
        return accel

    dst = np.sqrt(sqr_dst[inside])[:, None]
    centre_t = 1.0 - dst / interaction.radius
    # A particle sitting exactly on the pointer gets no directional pull
    safe_dst = np.where(dst > 0.0, dst, 1.0)
    direction = np.where(dst > 0.0, offset[inside] / safe_dst, 0.0)

    gravity_weight = 1.0 - centre_t * np.clip(interaction.strength / 10.0, 0.0, 1.0)
    accel[inside] = (
        g * gravity_weight
        + direction * centre_t * interaction.strength
        - velocities[inside] * centre_t
    )
    return accel


def predict_positions(
    positions: NDArrayFloat,
    velocities: NDArrayFloat,
    dt: float,
    out: NDArrayFloat = None,
) -> NDArrayFloat:
    """Look-ahead positions x + v dt."""
    if out is None:
        out = np.empty_like(positions)
    np.add(positions, velocities * np.float32(dt), out=out)
    return out


class ExternalForceStage(SolverStage):
    """Gravity and pointer force, then position prediction."""

    reads = ("positions", "velocities")
    writes = ("velocities", "predicted_positions")

    def run(self, particles: ParticleStore, context: SubstepContext) -> None:
        dt = np.float32(context.dt)
        accel = compute_external_acceleration(
            particles.positions,
            particles.velocities,
            context.config.gravity,
            context.interaction,
        )
        particles.velocities += (accel * dt).astype(np.float32)
        predict_positions(
            particles.positions, particles.velocities, dt, out=particles.predicted_positions
        )
