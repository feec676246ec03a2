"""
Abstract base classes defining interfaces for pluggable solver modules.

This module establishes the contract every solver stage and initial-condition
generator implements, so the frame orchestrator can wire stages once at
initialisation and run them in a fixed order without looking anything up by
name at run time.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Tuple
import numpy as np
import numpy.typing as npt

from sph_fluid.core.errors import InvalidConfiguration

if TYPE_CHECKING:
    from sph_fluid.integration.external_forces import PointerInteraction
    from sph_fluid.sph.kernels import SmoothingKernels
    from sph_fluid.sph.neighbours import NeighbourTable
    from sph_fluid.sph.particles import ParticleStore
    from sph_fluid.sph.spatial_hash import SpatialHashGrid


# Type aliases for clarity
NDArrayFloat = npt.NDArray[np.float32]


@dataclass
class SubstepContext:
    """
    Everything a stage needs besides the particle buffers.

    Attributes
    ----------
    dt : float
        Substep timestep (already divided by iterations per frame and scaled).
    config : SimulationConfig
        Active configuration.
    kernels : SmoothingKernels
        Kernel constants for the current smoothing radius.
    grid : SpatialHashGrid
        Spatial hash, rebuilt by the hash stage every substep.
    table : NeighbourTable
        Sorted entries and offsets, rebuilt by the sort stage every substep.
    interaction : PointerInteraction, optional
        Pointer force for this frame, or None.
    """
    dt: float
    config: Any
    kernels: "SmoothingKernels"
    grid: "SpatialHashGrid"
    table: "NeighbourTable"
    interaction: Optional["PointerInteraction"] = None


class SolverStage(ABC):
    """
    Abstract base class for one data-parallel step of a substep.

    Each stage declares the particle buffers it reads and writes. The
    declarations are checked against the particle store when the pipeline is
    wired, and a stage returns only once every particle has been processed.

    Implementations: ExternalForceStage, SpatialHashStage, NeighbourSortStage,
    DensityStage, PressureStage, ViscosityStage, CommitStage.
    """

    reads: Tuple[str, ...] = ()
    writes: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        """Stage identifier used in timings and log messages."""
        return type(self).__name__

    def validate(self, particles: "ParticleStore") -> None:
        """
        Check the declared buffers against a particle store.

        Raises
        ------
        InvalidConfiguration
            If a declared buffer does not exist on the store.
        """
        for buffer in self.reads + self.writes:
            if not particles.has_buffer(buffer):
                raise InvalidConfiguration(
                    f"stage {self.name} declares unknown buffer '{buffer}'"
                )

    @abstractmethod
    def run(self, particles: "ParticleStore", context: SubstepContext) -> None:
        """
        Execute the stage for every particle.

        Parameters
        ----------
        particles : ParticleStore
            Particle buffers; only the declared ``writes`` may be modified.
        context : SubstepContext
            Timestep, configuration, kernels and spatial structures.
        """
        pass


class ICGenerator(ABC):
    """
    Abstract base class for initial conditions generators.

    Implementations: SpawnGenerator.
    """

    @abstractmethod
    def generate(
        self,
        n_particles: int,
        **kwargs
    ) -> Tuple[NDArrayFloat, NDArrayFloat]:
        """
        Generate initial particle distribution.

        Parameters
        ----------
        n_particles : int
            Number of particles to generate.
        **kwargs : model-specific parameters (spawn region, jitter, etc.).

        Returns
        -------
        positions : NDArrayFloat, shape (n_particles, dim)
            Initial positions.
        velocities : NDArrayFloat, shape (n_particles, dim)
            Initial velocities.
        """
        pass
