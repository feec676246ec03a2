"""
Region shapes shared between the solver and its host.

``Sphere`` and ``Box`` form a small closed family of regions: the bounds and
the spawn region are reported as boxes, and a host can test any point with
``contains`` without knowing which shape it holds.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple, Union
import numpy as np


@dataclass(frozen=True)
class Sphere:
    """Ball (disc in 2D) of ``radius`` around ``center``."""
    center: Tuple[float, ...]
    radius: float

    def __post_init__(self):
        object.__setattr__(self, "center", tuple(float(c) for c in self.center))
        if self.radius < 0.0:
            raise ValueError(f"radius must be non-negative, got {self.radius}")

    @property
    def dim(self) -> int:
        return len(self.center)

    def contains(self, point: Sequence[float]) -> bool:
        offset = np.asarray(point, dtype=np.float64) - np.asarray(self.center)
        return bool(np.dot(offset, offset) <= self.radius * self.radius)


@dataclass(frozen=True)
class Box:
    """Axis-aligned box with ``center`` and per-axis ``half_extents``."""
    center: Tuple[float, ...]
    half_extents: Tuple[float, ...]

    def __post_init__(self):
        object.__setattr__(self, "center", tuple(float(c) for c in self.center))
        object.__setattr__(self, "half_extents", tuple(float(h) for h in self.half_extents))
        if len(self.center) != len(self.half_extents):
            raise ValueError("center and half_extents must have the same length")
        if any(h < 0.0 for h in self.half_extents):
            raise ValueError(f"half_extents must be non-negative, got {self.half_extents}")

    @classmethod
    def from_size(cls, center: Sequence[float], size: Sequence[float]) -> "Box":
        """Box from its centre and full extent per axis."""
        return cls(tuple(center), tuple(0.5 * float(s) for s in size))

    @property
    def dim(self) -> int:
        return len(self.center)

    @property
    def size(self) -> Tuple[float, ...]:
        return tuple(2.0 * h for h in self.half_extents)

    def contains(self, point: Sequence[float]) -> bool:
        offset = np.abs(np.asarray(point, dtype=np.float64) - np.asarray(self.center))
        return bool(np.all(offset <= np.asarray(self.half_extents)))


Shape = Union[Sphere, Box]
