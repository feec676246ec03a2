"""
Integration module: external forces, prediction, commit and boundaries.
"""

from sph_fluid.integration.external_forces import (
    PointerInteraction,
    ExternalForceStage,
    compute_external_acceleration,
    predict_positions,
)
from sph_fluid.integration.boundaries import (
    resolve_boundary_collisions,
    resolve_obstacle_collisions,
    clamp_to_bounds,
)
from sph_fluid.integration.commit import CommitStage

__all__ = [
    "PointerInteraction",
    "ExternalForceStage",
    "compute_external_acceleration",
    "predict_positions",
    "resolve_boundary_collisions",
    "resolve_obstacle_collisions",
    "clamp_to_bounds",
    "CommitStage",
]
