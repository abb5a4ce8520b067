"""Vector helpers for world-space math.

Positions, velocities and directions are plain ``(x, y, z)`` tuples in game
units (Quake-style: z is up, yaw is measured from +x toward +y in degrees).
"""

import math
from typing import Iterable, Tuple

Vec3 = Tuple[float, float, float]

ORIGIN: Vec3 = (0.0, 0.0, 0.0)
UP: Vec3 = (0.0, 0.0, 1.0)


def add(a: Vec3, b: Vec3) -> Vec3:
    return (a[0] + b[0], a[1] + b[1], a[2] + b[2])


def sub(a: Vec3, b: Vec3) -> Vec3:
    return (a[0] - b[0], a[1] - b[1], a[2] - b[2])


def scale(a: Vec3, s: float) -> Vec3:
    return (a[0] * s, a[1] * s, a[2] * s)


def mad(a: Vec3, s: float, b: Vec3) -> Vec3:
    """a + s * b"""
    return (a[0] + s * b[0], a[1] + s * b[1], a[2] + s * b[2])


def dot(a: Vec3, b: Vec3) -> float:
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]


def length(a: Vec3) -> float:
    return math.sqrt(a[0] * a[0] + a[1] * a[1] + a[2] * a[2])


def length_2d(a: Vec3) -> float:
    return math.hypot(a[0], a[1])


def distance(a: Vec3, b: Vec3) -> float:
    return length(sub(a, b))


def distance_2d(a: Vec3, b: Vec3) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def normalize(a: Vec3) -> Vec3:
    n = length(a)
    if n < 1e-9:
        return ORIGIN
    return (a[0] / n, a[1] / n, a[2] / n)


def flatten(a: Vec3) -> Vec3:
    """Drop the vertical component."""
    return (a[0], a[1], 0.0)


def perpendicular(a: Vec3) -> Vec3:
    """Horizontal right-hand perpendicular: (y, -x, 0)."""
    return (a[1], -a[0], 0.0)


def lerp(a: Vec3, b: Vec3, t: float) -> Vec3:
    return (a[0] + (b[0] - a[0]) * t, a[1] + (b[1] - a[1]) * t, a[2] + (b[2] - a[2]) * t)


def average(points: Iterable[Vec3]) -> Vec3:
    sx = sy = sz = 0.0
    n = 0
    for p in points:
        sx += p[0]
        sy += p[1]
        sz += p[2]
        n += 1
    if n == 0:
        return ORIGIN
    return (sx / n, sy / n, sz / n)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_length(a: Vec3, max_len: float) -> Vec3:
    n = length(a)
    if n <= max_len or n < 1e-9:
        return a
    return scale(a, max_len / n)


def rotate_z(a: Vec3, degrees: float) -> Vec3:
    rad = math.radians(degrees)
    c, s = math.cos(rad), math.sin(rad)
    return (a[0] * c - a[1] * s, a[0] * s + a[1] * c, a[2])


def vector_to_angles(a: Vec3) -> Vec3:
    """Convert a direction to (pitch, yaw, roll) in degrees.

    Pitch is positive looking down, as the engine expects.
    """
    if abs(a[0]) < 1e-9 and abs(a[1]) < 1e-9:
        yaw = 0.0
        pitch = 270.0 if a[2] > 0 else 90.0
    else:
        yaw = math.degrees(math.atan2(a[1], a[0]))
        if yaw < 0:
            yaw += 360.0
        forward = math.hypot(a[0], a[1])
        pitch = math.degrees(math.atan2(a[2], forward))
        if pitch < 0:
            pitch += 360.0
        pitch = -pitch
        if pitch < 0:
            pitch += 360.0
    return (pitch, yaw, 0.0)


def angle_vectors(angles: Vec3) -> Tuple[Vec3, Vec3, Vec3]:
    """Return (forward, right, up) basis vectors for view angles."""
    pitch, yaw, roll = (math.radians(v) for v in angles)
    sp, cp = math.sin(pitch), math.cos(pitch)
    sy, cy = math.sin(yaw), math.cos(yaw)
    sr, cr = math.sin(roll), math.cos(roll)
    forward = (cp * cy, cp * sy, -sp)
    right = (-sr * sp * cy + cr * sy, -sr * sp * sy - cr * cy, -sr * cp)
    up = (cr * sp * cy + sr * sy, cr * sp * sy - sr * cy, cr * cp)
    return forward, right, up


def angle_mod(a: float) -> float:
    """Wrap an angle into [0, 360)."""
    return a % 360.0


def angle_delta(a: float, b: float) -> float:
    """Shortest signed difference a - b in degrees, in (-180, 180]."""
    d = (a - b) % 360.0
    if d > 180.0:
        d -= 360.0
    return d


def angle_between(a: Vec3, b: Vec3) -> float:
    """Unsigned angle between two vectors in degrees."""
    na, nb = normalize(a), normalize(b)
    if na == ORIGIN or nb == ORIGIN:
        return 0.0
    return math.degrees(math.acos(clamp(dot(na, nb), -1.0, 1.0)))


def is_finite(a: Vec3) -> bool:
    return all(math.isfinite(c) for c in a)
