"""
Error taxonomy for the SPH fluid solver.

Configuration problems are rejected before a run starts. Buffer mismatches and
non-finite state are fatal for the current run. Numerical singularities such as
coincident particles are recovered locally inside the solvers and never raise.
"""


class SPHFluidError(Exception):
    """Base class for all solver errors."""


class InvalidConfiguration(SPHFluidError, ValueError):
    """Raised when a configuration is rejected (bad counts, radius, bounds)."""


class BufferSizeMismatch(SPHFluidError, RuntimeError):
    """Raised when a particle buffer no longer matches the particle count."""


class NumericalInstability(SPHFluidError, RuntimeError):
    """Raised when a substep produces non-finite positions or velocities."""


class SimulationStateError(SPHFluidError, RuntimeError):
    """Raised when an operation is called in the wrong lifecycle phase."""
