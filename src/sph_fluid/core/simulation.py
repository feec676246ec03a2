"""
Frame orchestrator for the SPH fluid solver.

This module implements the FluidSimulation class that owns the particle
buffers, wires the solver stages once at initialisation and runs a fixed
number of substeps per host tick.

Design:
- Every substep runs the same stage sequence in strict order:
  external forces + predict, spatial hash, sort/offsets, density, pressure,
  viscosity, commit + collisions.
- Stages are typed SolverStage objects whose buffer declarations are checked
  against the particle store when they are wired.
- A re-entrant lock held for a whole frame serialises tick, reset,
  update_parameters and shutdown.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from dataclasses import dataclass, field
from enum import Enum
import threading
import warnings
import numpy as np
import numpy.typing as npt
import time as time_module
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator, ConfigDict

from sph_fluid.core.errors import (
    BufferSizeMismatch,
    InvalidConfiguration,
    NumericalInstability,
    SimulationStateError,
)
from sph_fluid.core.interfaces import ICGenerator, SolverStage, SubstepContext
from sph_fluid.geometry import Box
from sph_fluid.ICs import SpawnGenerator
from sph_fluid.integration import (
    CommitStage,
    ExternalForceStage,
    PointerInteraction,
    clamp_to_bounds,
)
from sph_fluid.sph import (
    DensityStage,
    NeighbourSortStage,
    NeighbourTable,
    ParticleStore,
    PressureStage,
    SmoothingKernels,
    SpatialHashGrid,
    SpatialHashStage,
    ViscosityStage,
)


NDArrayFloat = npt.NDArray[np.float32]

# Per-dimension defaults for the vector fields
_VECTOR_DEFAULTS = {
    2: {
        "bounds_size": (17.0, 9.0),
        "spawn_center": (0.0, 0.0),
        "spawn_dimensions": (7.0, 7.0),
        "initial_velocity": (0.0, 0.0),
    },
    3: {
        "bounds_size": (10.0, 10.0, 10.0),
        "spawn_center": (0.0, 0.0, 0.0),
        "spawn_dimensions": (4.0, 4.0, 4.0),
        "initial_velocity": (0.0, 0.0, 0.0),
    },
}

_VECTOR_FIELDS = (
    "bounds_size",
    "spawn_center",
    "spawn_dimensions",
    "initial_velocity",
    "obstacle_size",
    "obstacle_centre",
)


class SimulationConfig(BaseModel):
    """
    Configuration for an SPH fluid run with Pydantic validation.

    Vector fields left unset take per-dimension defaults; every vector must
    have one component per active dimension.

    Attributes
    ----------
    particle_count : int
        Number of particles (fixed for a run; changing it needs a reset).
    dimensionality : str
        "2D" or "3D".
    smoothing_radius : float
        Kernel support radius and spatial hash cell size.
    gravity : float
        Signed acceleration along y (negative points down).
    target_density, pressure_multiplier, near_pressure_multiplier : float
        Equation of state parameters.
    viscosity_strength : float
        Velocity smoothing strength.
    collision_dampening : float
        Fraction of normal velocity kept on a wall bounce, in [0, 1].
    iterations_per_frame : int
        Substeps per host tick.
    use_fixed_timestep : bool
        Use ``fixed_timestep`` instead of the host's delta time.
    """

    # Particles
    particle_count: int = Field(default=400, gt=0, description="Number of particles")
    dimensionality: str = Field(default="2D", description="'2D' or '3D'")
    particle_mass: float = Field(default=1.0, gt=0.0, description="Mass of every particle")

    # Fluid
    smoothing_radius: float = Field(default=0.35, gt=0.0, description="Kernel support radius")
    gravity: float = Field(default=-9.8, description="Gravitational acceleration along y")
    target_density: float = Field(default=55.0, description="Rest density")
    pressure_multiplier: float = Field(default=500.0, description="Pressure stiffness")
    near_pressure_multiplier: float = Field(default=18.0, description="Near-pressure stiffness")
    viscosity_strength: float = Field(default=0.06, description="Viscosity strength")
    collision_dampening: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Velocity fraction kept after a wall collision"
    )

    # Domain
    bounds_size: Optional[Tuple[float, ...]] = Field(
        default=None,
        description="Full extent of the centred bounding box"
    )
    obstacle_size: Optional[Tuple[float, ...]] = Field(
        default=None,
        description="Full extent of the box obstacle (None = no obstacle)"
    )
    obstacle_centre: Optional[Tuple[float, ...]] = Field(
        default=None,
        description="Centre of the box obstacle"
    )

    # Spawn
    spawn_center: Optional[Tuple[float, ...]] = Field(default=None, description="Spawn region centre")
    spawn_dimensions: Optional[Tuple[float, ...]] = Field(default=None, description="Spawn region extent")
    initial_velocity: Optional[Tuple[float, ...]] = Field(default=None, description="Initial velocity")
    particle_jitter: float = Field(default=0.0, ge=0.0, description="Spawn jitter magnitude")
    random_seed: Optional[int] = Field(default=1, description="Random seed for reproducibility")

    # Time stepping
    iterations_per_frame: int = Field(default=3, gt=0, description="Substeps per tick")
    use_fixed_timestep: bool = Field(default=False, description="Ignore host delta time")
    fixed_timestep: float = Field(default=1.0 / 60.0, gt=0.0, description="Frame time when fixed")
    time_scale: float = Field(default=1.0, ge=0.0, description="Global time scale")

    # Pointer interaction
    interaction_radius: float = Field(default=2.0, gt=0.0, description="Pointer radius")
    interaction_strength: float = Field(default=90.0, description="Pointer strength")

    # Neighbour search
    sort_method: str = Field(default="stable", description="'stable' or 'bitonic'")

    # Misc
    verbose: bool = Field(default=True, description="Enable verbose logging")
    log_interval: int = Field(
        default=0,
        ge=0,
        description="Frames between status lines (0 = off)"
    )

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",  # Raise error on unknown fields
    )

    @field_validator('dimensionality')
    @classmethod
    def validate_dimensionality(cls, v: str) -> str:
        """Validate dimensionality."""
        valid = ["2D", "3D"]
        if v not in valid:
            raise ValueError(f"dimensionality must be one of {valid}, got '{v}'")
        return v

    @field_validator('sort_method')
    @classmethod
    def validate_sort_method(cls, v: str) -> str:
        """Validate sort method."""
        valid_methods = ["stable", "bitonic"]
        if v not in valid_methods:
            raise ValueError(f"sort_method must be one of {valid_methods}, got '{v}'")
        return v

    @field_validator(*_VECTOR_FIELDS)
    @classmethod
    def validate_finite_vector(cls, v):
        """Reject non-finite vector components."""
        if v is not None and not all(np.isfinite(c) for c in v):
            raise ValueError(f"vector components must be finite, got {v}")
        return v

    @property
    def dim(self) -> int:
        """Spatial dimension as an integer."""
        return 2 if self.dimensionality == "2D" else 3

    @model_validator(mode='after')
    def validate_configuration_consistency(self):
        """
        Cross-field validation and per-dimension defaults.

        1. Unset vectors take the defaults of the active dimension
        2. Every vector has one component per dimension
        3. Bounds and spawn extents are positive
        4. Warnings for settings that run but are probably unintended
        """
        dim = self.dim

        # Rule 1: defaults (bypass validate_assignment to avoid recursion)
        for name, default in _VECTOR_DEFAULTS[dim].items():
            if getattr(self, name) is None:
                object.__setattr__(self, name, default)
        if self.obstacle_size is not None and self.obstacle_centre is None:
            object.__setattr__(self, 'obstacle_centre', (0.0,) * dim)

        # Rule 2: vector lengths
        for name in _VECTOR_FIELDS:
            value = getattr(self, name)
            if value is not None and len(value) != dim:
                raise ValueError(
                    f"{name} must have {dim} components for {self.dimensionality}, got {len(value)}"
                )

        # Rule 3: positive extents
        if any(s <= 0.0 for s in self.bounds_size):
            raise ValueError(f"bounds_size must be positive, got {self.bounds_size}")
        if any(s <= 0.0 for s in self.spawn_dimensions):
            raise ValueError(f"spawn_dimensions must be positive, got {self.spawn_dimensions}")

        # Rule 4: warnings
        if self.near_pressure_multiplier < 0.0:
            warnings.warn(
                f"near_pressure_multiplier={self.near_pressure_multiplier} is negative; "
                "near pressure will attract particles instead of separating them."
            )
        spawn_lo = np.subtract(self.spawn_center, np.multiply(self.spawn_dimensions, 0.5))
        spawn_hi = np.add(self.spawn_center, np.multiply(self.spawn_dimensions, 0.5))
        half_bounds = np.multiply(self.bounds_size, 0.5)
        if np.any(spawn_lo < -half_bounds) or np.any(spawn_hi > half_bounds):
            warnings.warn(
                "Spawn region extends outside the bounds; particles outside will be "
                "clamped to the walls on the first substep."
            )
        if self.smoothing_radius > 0.5 * min(self.bounds_size):
            warnings.warn(
                f"smoothing_radius {self.smoothing_radius} exceeds half the smallest "
                "bounds extent; every particle will interact with most of the fluid."
            )

        return self


class SimulationPhase(str, Enum):
    """Lifecycle phase of a FluidSimulation."""
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    ABORTED = "aborted"
    SHUTDOWN = "shutdown"


@dataclass
class SimulationState:
    """
    Current state of the simulation.
    """
    time: float = 0.0
    frame: int = 0
    substep: int = 0
    dt: float = 0.0

    # Timing diagnostics (seconds spent in the last frame)
    timing_external_forces: float = 0.0
    timing_spatial_hash: float = 0.0
    timing_sort: float = 0.0
    timing_density: float = 0.0
    timing_pressure: float = 0.0
    timing_viscosity: float = 0.0
    timing_commit: float = 0.0
    timing_total: float = 0.0

    # Timing
    wall_time_start: float = field(default_factory=time_module.time)
    wall_time_elapsed: float = 0.0


def _coerce_config(config: Union[SimulationConfig, Dict[str, Any], None]) -> SimulationConfig:
    """Accept a config object or plain dict; wrap validation errors."""
    if config is None:
        return SimulationConfig()
    if isinstance(config, SimulationConfig):
        return config
    try:
        return SimulationConfig(**config)
    except ValidationError as exc:
        raise InvalidConfiguration(f"Invalid configuration: {exc}") from exc


class FluidSimulation:
    """
    Frame orchestrator for the SPH fluid solver.

    Owns the particle store, kernels and spatial structures and runs the
    solver stages for a fixed number of substeps per host tick.

    Lifecycle::

        UNINITIALIZED --init--> INITIALIZED --tick--> RUNNING
        RUNNING/INITIALIZED/ABORTED --reset--> INITIALIZED
        any --shutdown--> SHUTDOWN

    A substep that hits a buffer mismatch or produces non-finite state moves
    the simulation to ABORTED, where only ``reset`` and ``shutdown`` are
    accepted.

    Usage:
        >>> sim = FluidSimulation()
        >>> sim.init(SimulationConfig(particle_count=200, verbose=False))
        >>> sim.tick(1.0 / 60.0)
        >>> positions = sim.positions()
        >>> sim.shutdown()
    """

    def __init__(self, ic_generator: Optional[ICGenerator] = None):
        """
        Create an uninitialised simulation.

        Parameters
        ----------
        ic_generator : Optional[ICGenerator]
            Source of initial positions and velocities. If None, a
            SpawnGenerator seeded from the configuration is used.
        """
        self._lock = threading.RLock()
        self._ic_generator = ic_generator
        self.phase = SimulationPhase.UNINITIALIZED
        self.config: Optional[SimulationConfig] = None
        self.state = SimulationState()

        self.particles: Optional[ParticleStore] = None
        self.kernels: Optional[SmoothingKernels] = None
        self.grid: Optional[SpatialHashGrid] = None
        self.table: Optional[NeighbourTable] = None
        self._pipeline: List[Tuple[SolverStage, str]] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self, config: Union[SimulationConfig, Dict[str, Any], None] = None) -> None:
        """
        Validate the configuration, allocate buffers and spawn particles.

        Raises
        ------
        InvalidConfiguration
            If the configuration is rejected.
        SimulationStateError
            If the simulation was already initialised.
        """
        with self._lock:
            if self.phase != SimulationPhase.UNINITIALIZED:
                raise SimulationStateError(
                    f"init() called in phase '{self.phase.value}'; use reset() to reinitialise"
                )
            self.config = _coerce_config(config)
            self._allocate()
            self.phase = SimulationPhase.INITIALIZED

            self._log(f"Initialized {self.config.dimensionality} SPH fluid simulation")
            self._log(f"  Particles: {self.particles.n_particles}")
            self._log(f"  Smoothing radius: {self.config.smoothing_radius}")
            self._log(f"  Bounds: {self.config.bounds_size}")
            self._log(f"  Substeps per frame: {self.config.iterations_per_frame}")

    def reset(self, config: Union[SimulationConfig, Dict[str, Any], None] = None) -> None:
        """
        Release all buffers and reinitialise, optionally with a new config.

        Blocks until an in-flight frame on another thread has finished.
        """
        with self._lock:
            if self.phase in (SimulationPhase.UNINITIALIZED, SimulationPhase.SHUTDOWN):
                raise SimulationStateError(f"reset() called in phase '{self.phase.value}'")
            if config is not None:
                self.config = _coerce_config(config)
            self._release()
            self._allocate()
            self.phase = SimulationPhase.INITIALIZED
            self._log(f"Reset: {self.particles.n_particles} particles, {self.config.dimensionality}")

    def shutdown(self) -> None:
        """Release all buffers. Further calls other than shutdown raise."""
        with self._lock:
            if self.phase == SimulationPhase.SHUTDOWN:
                return
            self._release()
            self.phase = SimulationPhase.SHUTDOWN
            self.state.wall_time_elapsed = time_module.time() - self.state.wall_time_start
            self._log("Shutdown")

    def update_parameters(self, **changes) -> SimulationConfig:
        """
        Apply a validated configuration change before the next tick.

        Kernel constants and the hash cell size follow a new smoothing radius
        immediately. Particle count and dimensionality can only change
        through ``reset``.

        Returns
        -------
        config : SimulationConfig
            The new active configuration.

        Raises
        ------
        SimulationStateError
            If the change needs reallocation or the phase does not allow it.
        InvalidConfiguration
            If the resulting configuration is rejected.
        """
        with self._lock:
            self._require_phase(SimulationPhase.INITIALIZED, SimulationPhase.RUNNING)
            for name in ("particle_count", "dimensionality"):
                if name in changes and changes[name] != getattr(self.config, name):
                    raise SimulationStateError(
                        f"changing {name} requires reset(), not update_parameters()"
                    )
            merged = self.config.model_dump()
            merged.update(changes)
            new_config = _coerce_config(merged)

            self.kernels.update(new_config.smoothing_radius)
            self.grid.set_smoothing_radius(new_config.smoothing_radius)
            self.table.sort_method = new_config.sort_method
            self.config = new_config
            self._log(f"Parameters updated: {sorted(changes)}")
            return new_config

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def tick(
        self,
        delta_time: float,
        time_scale: float = 1.0,
        interaction: Optional[PointerInteraction] = None,
    ) -> SimulationState:
        """
        Advance one host frame.

        The substep size is ``frame_dt / iterations_per_frame * time_scale``,
        with ``frame_dt`` the fixed timestep when ``use_fixed_timestep`` is
        set and ``delta_time`` otherwise; ``time_scale`` combines the host
        factor with the configured one.

        Parameters
        ----------
        delta_time : float
            Host frame time in seconds.
        time_scale : float, optional
            Host time-scale factor.
        interaction : PointerInteraction, optional
            Pointer force for this frame.

        Returns
        -------
        state : SimulationState

        Raises
        ------
        InvalidConfiguration
            Bad frame arguments; nothing is advanced.
        BufferSizeMismatch, NumericalInstability
            Fatal substep errors; the simulation enters ABORTED.
        """
        with self._lock:
            self._require_phase(SimulationPhase.INITIALIZED, SimulationPhase.RUNNING)
            config = self.config

            if not np.isfinite(delta_time) or delta_time < 0.0:
                raise InvalidConfiguration(f"delta_time must be finite and non-negative, got {delta_time}")
            if not np.isfinite(time_scale) or time_scale < 0.0:
                raise InvalidConfiguration(f"time_scale must be finite and non-negative, got {time_scale}")
            if interaction is not None and len(interaction.point) != config.dim:
                raise InvalidConfiguration(
                    f"interaction point has {len(interaction.point)} components; "
                    f"simulation is {config.dimensionality}"
                )

            frame_dt = config.fixed_timestep if config.use_fixed_timestep else float(delta_time)
            scale = float(time_scale) * config.time_scale
            dt = frame_dt / config.iterations_per_frame * scale

            context = SubstepContext(
                dt=dt,
                config=config,
                kernels=self.kernels,
                grid=self.grid,
                table=self.table,
                interaction=interaction,
            )

            t0_frame = time_module.time()
            timings = {attr: 0.0 for _, attr in self._pipeline}
            for _ in range(config.iterations_per_frame):
                self._substep(context, timings)

            for attr, elapsed in timings.items():
                setattr(self.state, attr, elapsed)
            self.state.timing_total = time_module.time() - t0_frame
            self.state.dt = dt
            self.state.time += frame_dt * scale
            self.state.frame += 1
            self.phase = SimulationPhase.RUNNING

            if config.log_interval and self.state.frame % config.log_interval == 0:
                self._log(
                    f"Frame {self.state.frame:6d}  "
                    f"dt={dt:.2e}  "
                    f"max|v|={self.particles.max_speed():.3e}  "
                    f"E_kin={self.particles.kinetic_energy(config.particle_mass):.6e}  "
                    f"frame={self.state.timing_total * 1e3:.1f} ms"
                )
            return self.state

    def run(self, n_frames: int, delta_time: Optional[float] = None) -> SimulationState:
        """
        Run ``n_frames`` ticks headlessly.

        Parameters
        ----------
        n_frames : int
            Number of frames.
        delta_time : Optional[float]
            Host frame time; defaults to the configured fixed timestep.
        """
        if delta_time is None:
            delta_time = self.config.fixed_timestep if self.config else 1.0 / 60.0

        self._log("=" * 60)
        self._log("Starting simulation")
        self._log("=" * 60)

        for _ in range(n_frames):
            self.tick(delta_time)

        self.state.wall_time_elapsed = time_module.time() - self.state.wall_time_start
        self._log("=" * 60)
        self._log("Simulation complete")
        self._log(f"  Frames: {self.state.frame}")
        self._log(f"  Substeps: {self.state.substep}")
        self._log(f"  Simulated time: {self.state.time:.4f}")
        self._log(f"  Wall time: {self.state.wall_time_elapsed:.2f} s")
        self._log("=" * 60)
        return self.state

    def _substep(self, context: SubstepContext, timings: Dict[str, float]) -> None:
        particles = self.particles
        try:
            particles.validate_buffers()
            for stage, timing_attr in self._pipeline:
                t0 = time_module.time()
                stage.run(particles, context)
                timings[timing_attr] += time_module.time() - t0

            if not (np.all(np.isfinite(particles.positions))
                    and np.all(np.isfinite(particles.velocities))):
                raise NumericalInstability(
                    f"non-finite particle state after substep {self.state.substep + 1}"
                )
        except (BufferSizeMismatch, NumericalInstability) as exc:
            self.phase = SimulationPhase.ABORTED
            self._log(f"ERROR: {exc}; simulation aborted")
            raise
        self.state.substep += 1

    # ------------------------------------------------------------------
    # Snapshot accessors
    # ------------------------------------------------------------------

    def positions(self) -> NDArrayFloat:
        """Read-only copy of particle positions."""
        return self._snapshot("positions")

    def velocities(self) -> NDArrayFloat:
        """Read-only copy of particle velocities."""
        return self._snapshot("velocities")

    def densities(self) -> NDArrayFloat:
        """Read-only copy of particle densities."""
        return self._snapshot("density")

    def near_densities(self) -> NDArrayFloat:
        """Read-only copy of particle near-densities."""
        return self._snapshot("near_density")

    def bounds_region(self) -> Box:
        """Bounding box of the active dimensionality, centred on the origin."""
        config = self._require_config()
        return Box.from_size((0.0,) * config.dim, config.bounds_size)

    def spawn_region(self) -> Box:
        """Region particles are spawned into."""
        config = self._require_config()
        return Box.from_size(config.spawn_center, config.spawn_dimensions)

    def clamp_to_bounds(self, point: Sequence[float]) -> NDArrayFloat:
        """
        Clamp a pointer position into the bounds of the active dimensionality.

        Raises
        ------
        InvalidConfiguration
            If the point does not have one coordinate per active dimension.
        """
        config = self._require_config()
        if len(point) != config.dim:
            raise InvalidConfiguration(
                f"point has {len(point)} coordinates, simulation is {config.dimensionality}"
            )
        return clamp_to_bounds(point, config.bounds_size)

    def default_interaction(self, point: Sequence[float], pull: bool = True) -> PointerInteraction:
        """Pointer interaction at ``point`` with the configured radius and strength."""
        config = self._require_config()
        strength = config.interaction_strength if pull else -config.interaction_strength
        return PointerInteraction(
            point=self.clamp_to_bounds(point),
            radius=config.interaction_radius,
            strength=strength,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _allocate(self) -> None:
        """Allocate buffers, kernels and spatial structures, wire stages, spawn."""
        config = self.config
        dim = config.dim
        n = config.particle_count

        self.particles = ParticleStore.allocate(n, dim)
        self.kernels = SmoothingKernels(config.smoothing_radius, dim=dim)
        self.grid = SpatialHashGrid(n, dim, config.smoothing_radius)
        self.table = NeighbourTable(n, config.sort_method)
        self._pipeline = self._wire_pipeline(self.particles)

        generator = self._ic_generator or SpawnGenerator(random_seed=config.random_seed)
        positions, velocities = generator.generate(
            n,
            spawn_center=config.spawn_center,
            spawn_dimensions=config.spawn_dimensions,
            initial_velocity=config.initial_velocity,
            particle_jitter=config.particle_jitter,
        )
        self.particles.set_initial(positions, velocities)
        self.state = SimulationState()

    @staticmethod
    def _wire_pipeline(particles: ParticleStore) -> List[Tuple[SolverStage, str]]:
        pipeline = [
            (ExternalForceStage(), "timing_external_forces"),
            (SpatialHashStage(), "timing_spatial_hash"),
            (NeighbourSortStage(), "timing_sort"),
            (DensityStage(), "timing_density"),
            (PressureStage(), "timing_pressure"),
            (ViscosityStage(), "timing_viscosity"),
            (CommitStage(), "timing_commit"),
        ]
        for stage, _ in pipeline:
            stage.validate(particles)
        return pipeline

    def _release(self) -> None:
        if self.particles is not None:
            self.particles.release()
        self.particles = None
        self.kernels = None
        self.grid = None
        self.table = None
        self._pipeline = []

    def _require_phase(self, *allowed: SimulationPhase) -> None:
        if self.phase not in allowed:
            raise SimulationStateError(
                f"operation not allowed in phase '{self.phase.value}'"
            )

    def _require_config(self) -> SimulationConfig:
        if self.config is None:
            raise SimulationStateError("simulation has no configuration; call init() first")
        return self.config

    def _snapshot(self, buffer: str) -> NDArrayFloat:
        with self._lock:
            self._require_phase(
                SimulationPhase.INITIALIZED, SimulationPhase.RUNNING, SimulationPhase.ABORTED
            )
            copy = np.array(getattr(self.particles, buffer), copy=True)
            copy.flags.writeable = False
            return copy

    def _log(self, message: str):
        """Log message if verbose."""
        if self.config is not None and self.config.verbose:
            print(f"[{self.state.time:.4f}] {message}")
