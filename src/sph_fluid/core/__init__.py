"""
Core module: errors, interfaces, and the frame orchestrator.
"""

from sph_fluid.core.errors import (
    SPHFluidError,
    InvalidConfiguration,
    BufferSizeMismatch,
    NumericalInstability,
    SimulationStateError,
)
from sph_fluid.core.interfaces import (
    SolverStage,
    ICGenerator,
    SubstepContext,
)
from sph_fluid.core.simulation import (
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
    "SubstepContext",
    "FluidSimulation",
    "SimulationConfig",
    "SimulationPhase",
    "SimulationState",
]
