"""
Ray geometry helpers shared by the canopy simulators.

Vectors are length-3 ``float64`` arrays. Randomised helpers take an explicit
``numpy.random.Generator`` so that callers control seeding.
"""

import math
from typing import Optional, Tuple

import numpy as np

_EPS = 1e-12


def normalize(vector) -> Optional[np.ndarray]:
    """Return the unit vector along ``vector``, or None for a zero-length input."""
    v = np.asarray(vector, dtype=np.float64)
    length = math.sqrt(v[0] * v[0] + v[1] * v[1] + v[2] * v[2])
    if length < _EPS:
        return None
    return v / length


def orthonormal_basis(normal: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Two unit vectors perpendicular to ``normal`` and to each other."""
    helper = np.array([0.0, 1.0, 0.0]) if abs(normal[0]) > 0.9 else np.array([1.0, 0.0, 0.0])
    tangent = np.cross(helper, normal)
    tangent /= np.linalg.norm(tangent)
    bitangent = np.cross(normal, tangent)
    return tangent, bitangent


def random_hemisphere_direction(normal, rng: np.random.Generator) -> np.ndarray:
    """
    Cosine-weighted (Lambertian) direction in the hemisphere around ``normal``.

    Samples ``r = sqrt(u1)``, ``phi = 2*pi*u2`` on the unit disk and lifts the
    point onto the hemisphere with ``z = sqrt(1 - u1)``.
    """
    n = np.asarray(normal, dtype=np.float64)
    u1, u2 = rng.random(2)
    r = math.sqrt(u1)
    phi = 2.0 * math.pi * u2
    local_x = r * math.cos(phi)
    local_y = r * math.sin(phi)
    local_z = math.sqrt(max(0.0, 1.0 - u1))
    tangent, bitangent = orthonormal_basis(n)
    direction = local_x * tangent + local_y * bitangent + local_z * n
    return direction / np.linalg.norm(direction)


def jitter_direction(direction, jitter: float, rng: np.random.Generator) -> Optional[np.ndarray]:
    """Add uniform noise in ``[-jitter/2, jitter/2]`` to each component and renormalise."""
    d = np.asarray(direction, dtype=np.float64)
    if jitter > 0.0:
        d = d + (rng.random(3) - 0.5) * jitter
    return normalize(d)


def angle_from_nadir(direction: np.ndarray) -> float:
    """Angle (rad) between ``direction`` and straight down."""
    return math.acos(min(1.0, max(-1.0, -float(direction[2]))))


def intersect_slab(origin: np.ndarray, direction: np.ndarray,
                   bottom: float, top: float) -> Optional[Tuple[float, float]]:
    """
    Ray parameters ``(t_entry, t_exit)`` where the ray crosses ``bottom <= z <= top``.

    Returns None for horizontal rays, for slabs entirely behind the origin and
    for degenerate crossings with ``t_entry >= t_exit``.
    """
    dz = float(direction[2])
    if abs(dz) < _EPS:
        return None
    t_bottom = (bottom - origin[2]) / dz
    t_top = (top - origin[2]) / dz
    t_entry = max(min(t_bottom, t_top), 0.0)
    t_exit = max(t_bottom, t_top)
    if t_entry >= t_exit:
        return None
    return t_entry, t_exit


_FACE_NORMALS = (
    np.array([1.0, 0.0, 0.0]), np.array([-1.0, 0.0, 0.0]),
    np.array([0.0, 1.0, 0.0]), np.array([0.0, -1.0, 0.0]),
    np.array([0.0, 0.0, 1.0]), np.array([0.0, 0.0, -1.0]),
)


def ray_exit_box(origin: np.ndarray, direction: np.ndarray,
                 size: Tuple[float, float, float]) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """
    Where a ray starting inside the box ``[0, size]`` leaves it.

    Returns ``(hit_point, inward_normal)`` or None when the origin lies
    outside the box. The hit point is clamped onto the box boundary.
    """
    for axis in range(3):
        if origin[axis] < -1e-9 or origin[axis] > size[axis] + 1e-9:
            return None

    t_far = math.inf
    face = -1
    for axis in range(3):
        d = float(direction[axis])
        if d > _EPS:
            t = (size[axis] - origin[axis]) / d
            candidate = 2 * axis
        elif d < -_EPS:
            t = -origin[axis] / d
            candidate = 2 * axis + 1
        else:
            continue
        if t < t_far:
            t_far = t
            face = candidate
    if face < 0:
        return None

    hit = origin + max(t_far, 0.0) * direction
    hit = np.clip(hit, 0.0, size)
    # The exit face normal points outward; reflections leave along its opposite.
    inward = -_FACE_NORMALS[face]
    return hit, inward


def specular_reflection(direction: np.ndarray, normal: np.ndarray) -> np.ndarray:
    return direction - 2.0 * float(np.dot(direction, normal)) * normal


__all__ = [
    "normalize",
    "orthonormal_basis",
    "random_hemisphere_direction",
    "jitter_direction",
    "angle_from_nadir",
    "intersect_slab",
    "ray_exit_box",
    "specular_reflection",
]
