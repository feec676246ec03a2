"""
SPH module: particles, kernels, spatial hashing, neighbour search, and forces.
"""

from .particles import ParticleStore
from .kernels import SmoothingKernels
from .spatial_hash import SpatialHashGrid, SpatialHashStage
from .neighbours import (
    NeighbourTable,
    NeighbourSortStage,
    find_neighbours_bruteforce,
    find_neighbours_hashed,
)
from .density import compute_density, DensityStage
from .pressure import compute_pressures, compute_pressure_velocities, PressureStage
from .viscosity import compute_viscosity, ViscosityStage

__all__ = [
    # Particle management
    "ParticleStore",

    # Kernels
    "SmoothingKernels",

    # Spatial hashing and neighbour search
    "SpatialHashGrid",
    "SpatialHashStage",
    "NeighbourTable",
    "NeighbourSortStage",
    "find_neighbours_bruteforce",
    "find_neighbours_hashed",

    # Forces
    "compute_density",
    "DensityStage",
    "compute_pressures",
    "compute_pressure_velocities",
    "PressureStage",
    "compute_viscosity",
    "ViscosityStage",
]
