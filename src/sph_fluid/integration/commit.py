"""
Commit stage: advance positions with the final velocities of the substep,
then resolve collisions against the bounds and the obstacle.
"""

import numpy as np

from sph_fluid.core.interfaces import SolverStage, SubstepContext
from sph_fluid.integration.boundaries import (
    resolve_boundary_collisions,
    resolve_obstacle_collisions,
)
from sph_fluid.sph.particles import ParticleStore


class CommitStage(SolverStage):
    """
    Drift positions and resolve collisions.

    Positions advance from the committed positions, not the predicted ones:
    the prediction only served the neighbour stages.
    """

    reads = ("positions", "velocities")
    writes = ("positions", "velocities")

    def run(self, particles: ParticleStore, context: SubstepContext) -> None:
        config = context.config
        particles.positions += particles.velocities * np.float32(context.dt)

        resolve_boundary_collisions(
            particles.positions,
            particles.velocities,
            config.bounds_size,
            config.collision_dampening,
        )
        resolve_obstacle_collisions(
            particles.positions,
            particles.velocities,
            config.obstacle_size,
            config.obstacle_centre,
            config.collision_dampening,
        )
