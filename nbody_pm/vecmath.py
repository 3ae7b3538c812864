"""
nbody_pm.vecmath

3D vector and 4x4 matrix primitives.

:class:`Vec3` is a small immutable value type used for single-particle
views. Matrices are plain ``(4, 4)`` float64 NumPy arrays built by the
``mat4_*`` helpers, so they compose with ``@``.
"""
from __future__ import annotations

import math
from typing import NamedTuple

import numpy as np

__all__ = [
    "Vec3",
    "mat4_identity",
    "mat4_translation",
    "mat4_scale",
    "mat4_rotation_x",
    "mat4_rotation_y",
    "mat4_rotation_z",
    "mat4_look_at",
    "mat4_perspective",
    "mat4_orthographic",
    "transform_point",
    "transform_vector",
]


# ============================================================================
# VECTORS
# ============================================================================

class Vec3(NamedTuple):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def from_array(cls, arr) -> "Vec3":
        a = np.asarray(arr, dtype=float).reshape(3)
        return cls(float(a[0]), float(a[1]), float(a[2]))

    def to_array(self) -> np.ndarray:
        return np.array(self, dtype=float)

    def add(self, other: "Vec3") -> "Vec3":
        return Vec3(self.x + other.x, self.y + other.y, self.z + other.z)

    def sub(self, other: "Vec3") -> "Vec3":
        return Vec3(self.x - other.x, self.y - other.y, self.z - other.z)

    def scale(self, s: float) -> "Vec3":
        return Vec3(self.x * s, self.y * s, self.z * s)

    def dot(self, other: "Vec3") -> float:
        return self.x * other.x + self.y * other.y + self.z * other.z

    def cross(self, other: "Vec3") -> "Vec3":
        return Vec3(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x,
        )

    def length(self) -> float:
        return math.sqrt(self.dot(self))

    def normalize(self) -> "Vec3":
        """Unit vector along ``self``; the zero vector maps to itself."""
        n = self.length()
        if n == 0:
            return Vec3()
        return self.scale(1.0 / n)

    # NamedTuple's + and * mean concatenation/repetition; route them to the
    # vector operations instead.
    def __add__(self, other):  # type: ignore[override]
        return self.add(other)

    def __sub__(self, other):
        return self.sub(other)

    def __mul__(self, s):  # type: ignore[override]
        return self.scale(s)

    __rmul__ = __mul__

    def __neg__(self):
        return self.scale(-1.0)


# ============================================================================
# 4x4 MATRICES
# ============================================================================

def mat4_identity() -> np.ndarray:
    return np.eye(4)


def mat4_translation(x: float, y: float, z: float) -> np.ndarray:
    m = np.eye(4)
    m[:3, 3] = (x, y, z)
    return m


def mat4_scale(x: float, y: float, z: float) -> np.ndarray:
    return np.diag([x, y, z, 1.0])


def mat4_rotation_x(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([
        [1.0, 0.0, 0.0, 0.0],
        [0.0, c, -s, 0.0],
        [0.0, s, c, 0.0],
        [0.0, 0.0, 0.0, 1.0],
    ])


def mat4_rotation_y(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([
        [c, 0.0, s, 0.0],
        [0.0, 1.0, 0.0, 0.0],
        [-s, 0.0, c, 0.0],
        [0.0, 0.0, 0.0, 1.0],
    ])


def mat4_rotation_z(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([
        [c, -s, 0.0, 0.0],
        [s, c, 0.0, 0.0],
        [0.0, 0.0, 1.0, 0.0],
        [0.0, 0.0, 0.0, 1.0],
    ])


def mat4_look_at(eye: Vec3, target: Vec3, up: Vec3) -> np.ndarray:
    """Right-handed view matrix looking from *eye* towards *target*."""
    forward = target.sub(eye).normalize()
    right = forward.cross(up).normalize()
    new_up = right.cross(forward)
    return np.array([
        [right.x, right.y, right.z, -right.dot(eye)],
        [new_up.x, new_up.y, new_up.z, -new_up.dot(eye)],
        [-forward.x, -forward.y, -forward.z, forward.dot(eye)],
        [0.0, 0.0, 0.0, 1.0],
    ])


def mat4_perspective(fov_y: float, aspect: float, near: float, far: float) -> np.ndarray:
    """OpenGL-style perspective projection; *fov_y* in radians."""
    if aspect == 0 or near == far:
        raise ValueError(f"degenerate projection: aspect={aspect}, near={near}, far={far}")
    f = 1.0 / math.tan(fov_y / 2.0)
    return np.array([
        [f / aspect, 0.0, 0.0, 0.0],
        [0.0, f, 0.0, 0.0],
        [0.0, 0.0, (far + near) / (near - far), 2.0 * far * near / (near - far)],
        [0.0, 0.0, -1.0, 0.0],
    ])


def mat4_orthographic(left: float, right: float, bottom: float, top: float,
                      near: float, far: float) -> np.ndarray:
    if left == right or bottom == top or near == far:
        raise ValueError("degenerate orthographic volume")
    return np.array([
        [2.0 / (right - left), 0.0, 0.0, -(right + left) / (right - left)],
        [0.0, 2.0 / (top - bottom), 0.0, -(top + bottom) / (top - bottom)],
        [0.0, 0.0, -2.0 / (far - near), -(far + near) / (far - near)],
        [0.0, 0.0, 0.0, 1.0],
    ])


def transform_point(m: np.ndarray, p: Vec3) -> Vec3:
    """Apply *m* to the point *p* (w = 1), with perspective divide."""
    x, y, z, w = np.asarray(m, dtype=float) @ np.array([p.x, p.y, p.z, 1.0])
    if w != 0 and w != 1:
        x, y, z = x / w, y / w, z / w
    return Vec3(float(x), float(y), float(z))


def transform_vector(m: np.ndarray, v: Vec3) -> Vec3:
    """Apply the linear part of *m* to *v* (w = 0, translation ignored)."""
    out = np.asarray(m, dtype=float)[:3, :3] @ np.array([v.x, v.y, v.z])
    return Vec3(float(out[0]), float(out[1]), float(out[2]))
