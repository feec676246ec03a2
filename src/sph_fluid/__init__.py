"""
sph-fluid: particle-based SPH fluid solver for 2D and 3D.

Spatial-hash neighbour search, density/pressure/viscosity kernels, and a
substepped integrator with boundary handling, accelerated with Numba.
"""

__version__ = "1.0.0"
__author__ = "SPH Fluid Dev Team"

# Core imports for convenience
from sph_fluid.core import (
    SPHFluidError,
    InvalidConfiguration,
    BufferSizeMismatch,
    NumericalInstability,
    SimulationStateError,
    SolverStage,
    ICGenerator,
    FluidSimulation,
    SimulationConfig,
    SimulationPhase,
    SimulationState,
)

__all__ = [
    "SPHFluidError",
    "InvalidConfiguration",
    "BufferSizeMismatch",
    "NumericalInstability",
    "SimulationStateError",
    "SolverStage",
    "ICGenerator",
    "FluidSimulation",
    "SimulationConfig",
    "SimulationPhase",
    "SimulationState",
]
