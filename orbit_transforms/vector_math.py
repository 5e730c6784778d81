"""
Vector, Basis and Quaternion Primitives

Pure value types used by the propagators:

- Vector3: immutable (x, y, z) triple.
- Quaternion: (x, y, z, w) rotation, scalar-last, composed with the
  Hamilton product. A rotation q maps a vector v to q * v * conjugate(q).
- Basis3D: orthonormal 3x3 basis stored as a numpy matrix whose columns are
  the basis axes. ``apply`` maps basis-local coordinates to the parent frame.

All operations return new values; nothing is mutated in place, so samples
can be copied and shared freely.
"""

import math
from typing import NamedTuple

import numpy as np


class Vector3(NamedTuple):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def __add__(self, other: "Vector3") -> "Vector3":
        return Vector3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: "Vector3") -> "Vector3":
        return Vector3(self.x - other.x, self.y - other.y, self.z - other.z)

    def __neg__(self) -> "Vector3":
        return Vector3(-self.x, -self.y, -self.z)

    def scaled(self, factor: float) -> "Vector3":
        return Vector3(self.x * factor, self.y * factor, self.z * factor)

    def dot(self, other: "Vector3") -> float:
        return self.x * other.x + self.y * other.y + self.z * other.z

    def cross(self, other: "Vector3") -> "Vector3":
        return Vector3(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x,
        )

    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def normalized(self) -> "Vector3":
        """Unit vector in the same direction; the zero vector stays zero."""
        mag = self.magnitude()
        if mag == 0.0:
            return Vector3()
        return Vector3(self.x / mag, self.y / mag, self.z / mag)

    def distance_to(self, other: "Vector3") -> float:
        return (self - other).magnitude()

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)

    @classmethod
    def from_array(cls, arr) -> "Vector3":
        return cls(float(arr[0]), float(arr[1]), float(arr[2]))


X_AXIS = Vector3(1.0, 0.0, 0.0)
Y_AXIS = Vector3(0.0, 1.0, 0.0)
Z_AXIS = Vector3(0.0, 0.0, 1.0)


class Quaternion(NamedTuple):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 1.0

    @classmethod
    def identity(cls) -> "Quaternion":
        return cls(0.0, 0.0, 0.0, 1.0)

    @classmethod
    def from_axis_angle(cls, axis: Vector3, angle_rad: float) -> "Quaternion":
        """Rotation of ``angle_rad`` about ``axis`` (any non-zero length)."""
        half = angle_rad / 2.0
        s = math.sin(half)
        a = Vector3(*axis).normalized()
        return cls(a.x * s, a.y * s, a.z * s, math.cos(half))

    @classmethod
    def from_basis(cls, right: Vector3, up: Vector3, forward: Vector3) -> "Quaternion":
        """
        Rotation taking the local X, Y, Z axes onto ``right``, ``up`` and
        ``forward``. The three vectors must form a right-handed orthonormal
        basis.
        """
        m00, m01, m02 = right.x, up.x, forward.x
        m10, m11, m12 = right.y, up.y, forward.y
        m20, m21, m22 = right.z, up.z, forward.z

        trace = m00 + m11 + m22
        if trace > 0:
            s = 0.5 / math.sqrt(trace + 1.0)
            w = 0.25 / s
            x = (m21 - m12) * s
            y = (m02 - m20) * s
            z = (m10 - m01) * s
        elif m00 > m11 and m00 > m22:
            s = 2.0 * math.sqrt(1.0 + m00 - m11 - m22)
            w = (m21 - m12) / s
            x = 0.25 * s
            y = (m01 + m10) / s
            z = (m02 + m20) / s
        elif m11 > m22:
            s = 2.0 * math.sqrt(1.0 + m11 - m00 - m22)
            w = (m02 - m20) / s
            x = (m01 + m10) / s
            y = 0.25 * s
            z = (m12 + m21) / s
        else:
            s = 2.0 * math.sqrt(1.0 + m22 - m00 - m11)
            w = (m10 - m01) / s
            x = (m02 + m20) / s
            y = (m12 + m21) / s
            z = 0.25 * s

        return cls(x, y, z, w).normalized()

    def mul(self, q: "Quaternion") -> "Quaternion":
        """Hamilton product ``self * q`` (apply q first, then self)."""
        return Quaternion(
            self.w * q.x + self.x * q.w + self.y * q.z - self.z * q.y,
            self.w * q.y - self.x * q.z + self.y * q.w + self.z * q.x,
            self.w * q.z + self.x * q.y - self.y * q.x + self.z * q.w,
            self.w * q.w - self.x * q.x - self.y * q.y - self.z * q.z,
        )

    __mul__ = mul

    def length(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z + self.w * self.w)

    def normalized(self) -> "Quaternion":
        length = self.length()
        if length < 1e-6:
            return Quaternion.identity()
        inv = 1.0 / length
        return Quaternion(self.x * inv, self.y * inv, self.z * inv, self.w * inv)

    def conjugate(self) -> "Quaternion":
        return Quaternion(-self.x, -self.y, -self.z, self.w)

    def inverse(self) -> "Quaternion":
        length_sq = self.x * self.x + self.y * self.y + self.z * self.z + self.w * self.w
        if length_sq < 1e-6:
            return Quaternion.identity()
        inv = 1.0 / length_sq
        return Quaternion(-self.x * inv, -self.y * inv, -self.z * inv, self.w * inv)

    def rotate_vector(self, v: Vector3) -> Vector3:
        qv = Quaternion(v[0], v[1], v[2], 0.0)
        r = self.mul(qv).mul(self.conjugate())
        return Vector3(r.x, r.y, r.z)

    def slerp(self, target: "Quaternion", t: float) -> "Quaternion":
        """Spherical linear interpolation from self (t=0) to target (t=1)."""
        if t <= 0:
            return self
        if t >= 1:
            return target

        dot = self.x * target.x + self.y * target.y + self.z * target.z + self.w * target.w

        # Take the short way round
        q2 = target
        if dot < 0:
            dot = -dot
            q2 = Quaternion(-target.x, -target.y, -target.z, -target.w)

        if dot > 0.9995:
            return Quaternion(
                self.x + t * (q2.x - self.x),
                self.y + t * (q2.y - self.y),
                self.z + t * (q2.z - self.z),
                self.w + t * (q2.w - self.w),
            ).normalized()

        theta_0 = math.acos(dot)
        theta = theta_0 * t
        sin_theta_0 = math.sin(theta_0)
        s0 = math.cos(theta) - dot * math.sin(theta) / sin_theta_0
        s1 = math.sin(theta) / sin_theta_0
        return Quaternion(
            s0 * self.x + s1 * q2.x,
            s0 * self.y + s1 * q2.y,
            s0 * self.z + s1 * q2.z,
            s0 * self.w + s1 * q2.w,
        )


def rotation_matrix(axis: Vector3, angle_rad: float) -> np.ndarray:
    """Rodrigues rotation matrix for ``angle_rad`` about ``axis``."""
    ux, uy, uz = Vector3(*axis).normalized()
    c = math.cos(angle_rad)
    s = math.sin(angle_rad)
    t = 1.0 - c

    return np.array([
        [c + ux * ux * t, ux * uy * t - uz * s, ux * uz * t + uy * s],
        [uy * ux * t + uz * s, c + uy * uy * t, uy * uz * t - ux * s],
        [uz * ux * t - uy * s, uz * uy * t + ux * s, c + uz * uz * t],
    ])


class Basis3D:
    """
    Orthonormal basis. Columns of ``matrix`` are the x, y and z axes
    expressed in the parent frame.
    """

    __slots__ = ("matrix",)

    def __init__(self, matrix=None):
        self.matrix = np.identity(3) if matrix is None else np.array(matrix, dtype=float)

    @classmethod
    def identity(cls) -> "Basis3D":
        return cls()

    @classmethod
    def from_vectors(cls, x: Vector3, y: Vector3, z: Vector3) -> "Basis3D":
        return cls(np.column_stack([tuple(x), tuple(y), tuple(z)]))

    @property
    def x(self) -> Vector3:
        return Vector3.from_array(self.matrix[:, 0])

    @property
    def y(self) -> Vector3:
        return Vector3.from_array(self.matrix[:, 1])

    @property
    def z(self) -> Vector3:
        return Vector3.from_array(self.matrix[:, 2])

    def apply(self, v: Vector3) -> Vector3:
        """Map basis-local coordinates into the parent frame."""
        return Vector3.from_array(self.matrix @ np.asarray(v, dtype=float))

    def rotated(self, axis: Vector3, angle_rad: float) -> "Basis3D":
        """Rotate every axis of this basis about a parent-frame ``axis``."""
        if Vector3(*axis).magnitude() == 0.0:
            return self
        return Basis3D(rotation_matrix(axis, angle_rad) @ self.matrix)

    def inverse(self) -> "Basis3D":
        return Basis3D(self.matrix.T)

    def to_quaternion(self) -> Quaternion:
        return Quaternion.from_basis(self.x, self.y, self.z)
