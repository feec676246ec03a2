"""
Boundary handling: the centred bounding box and an optional box obstacle.

Bounding box
------------
The domain is the axis-aligned box of size ``bounds_size`` centred on the
origin. Each axis is resolved independently: a particle with |x_a| > h_a
(h = bounds_size / 2) is placed on the wall and its velocity on that axis
reflected with damping,

    x_a = sign(x_a) h_a,    v_a = -damping v_a

Other axes are left untouched.

Obstacle
--------
A particle inside the obstacle box is pushed out through the nearest face
(the axis with the least penetration) with the same damped reflection.
"""

from typing import Optional, Sequence
import numpy as np
import numpy.typing as npt

NDArrayFloat = npt.NDArray[np.float32]


def resolve_boundary_collisions(
    positions: NDArrayFloat,
    velocities: NDArrayFloat,
    bounds_size: Sequence[float],
    collision_dampening: float,
) -> None:
    """
    Clamp particles into the bounding box and reflect their velocities.

    Parameters
    ----------
    positions, velocities : NDArrayFloat, shape (N, dim)
        Modified in place.
    bounds_size : Sequence[float]
        Full box extent per axis.
    collision_dampening : float
        Fraction of the normal velocity kept after a bounce, in [0, 1].
    """
    half = np.asarray(bounds_size, dtype=np.float32) * np.float32(0.5)
    outside = np.abs(positions) > half
    if not np.any(outside):
        return
    clamped = np.sign(positions) * half
    positions[outside] = clamped[outside]
    velocities[outside] *= np.float32(-collision_dampening)


def resolve_obstacle_collisions(
    positions: NDArrayFloat,
    velocities: NDArrayFloat,
    obstacle_size: Optional[Sequence[float]],
    obstacle_centre: Optional[Sequence[float]],
    collision_dampening: float,
) -> None:
    """
    Push particles strictly inside an axis-aligned box obstacle out to its nearest face.

    Does nothing when ``obstacle_size`` is None or has a non-positive extent.
    """
    if obstacle_size is None:
        return
    size = np.asarray(obstacle_size, dtype=np.float32)
    if np.any(size <= 0.0):
        return
    centre = np.zeros_like(size) if obstacle_centre is None else np.asarray(obstacle_centre, dtype=np.float32)
    half = size * np.float32(0.5)

    rel = positions - centre
    edge_dst = half - np.abs(rel)
    inside = np.all(edge_dst > 0.0, axis=1)
    if not np.any(inside):
        return

    idx = np.nonzero(inside)[0]
    axis = np.argmin(edge_dst[idx], axis=1)
    side = np.where(rel[idx, axis] >= 0.0, 1.0, -1.0).astype(np.float32)
    positions[idx, axis] = centre[axis] + side * half[axis]
    velocities[idx, axis] *= np.float32(-collision_dampening)


def clamp_to_bounds(point: Sequence[float], bounds_size: Sequence[float]) -> NDArrayFloat:
    """
    Clamp a point into the bounding box.

    The point and the box must have the same number of axes, so a 2D point is
    only ever clamped against 2D bounds.

    Raises
    ------
    ValueError
        If the dimensions differ.
    """
    point = np.asarray(point, dtype=np.float32)
    half = np.asarray(bounds_size, dtype=np.float32) * np.float32(0.5)
    if point.shape != half.shape:
        raise ValueError(
            f"point has {point.shape[0]} coordinates but bounds have {half.shape[0]}"
        )
    return np.clip(point, -half, half)
