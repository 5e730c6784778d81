"""
Body orientation as a unit quaternion.

Two regimes:

- Free rotation: tilt about Z, then spin longitude about the polar (Y)
  axis, then the spin angle accumulated since the reference epoch, also
  about Y.
- Tidal lock: local X points at the primary, local Y follows the orbit
  normal, and tilt / spin longitude are fixed offsets on top. The result
  depends only on where the body is, not on elapsed time.
"""

import math
from typing import List, Optional

from config import SECONDS_PER_HOUR
from orbit_transforms.exceptions import ElementValidationError
from orbit_transforms.models import RotationParameters
from orbit_transforms.vector_math import Quaternion, Vector3, X_AXIS, Y_AXIS, Z_AXIS

TAU = 2.0 * math.pi

# Below this the orbit normal is treated as undefined
DEGENERATE_NORM = 1e-12


def check_rotation_parameters(rotation: RotationParameters) -> List[str]:
    problems = []
    if not rotation.tidal_locked:
        period = rotation.rotation_period_hours
        if not math.isfinite(period) or period <= 0:
            problems.append("rotation_period_hours must be positive when not tidally locked")
    return problems


def look_rotation(right: Vector3, up: Vector3) -> Quaternion:
    """
    Quaternion aligning local X with ``right`` and local Y with ``up``.

    ``up`` only needs to be non-parallel to ``right``; it is re-orthogonalised.
    """
    right = right.normalized()
    up = up.normalized()

    forward = right.cross(up).normalized()
    corrected_up = forward.cross(right).normalized()

    return Quaternion.from_basis(right, corrected_up, forward)


def default_up(toward: Vector3) -> Vector3:
    """Fallback orbit normal: the polar axis, unless the body sits on it."""
    if abs(toward.dot(Y_AXIS)) > 0.999:
        return Z_AXIS
    return Y_AXIS


class OrientationPropagator:
    """Orientation of one body over time."""

    def __init__(self, rotation: RotationParameters, reference_time_s: float = 0.0,
                 object_id: Optional[str] = None):
        problems = check_rotation_parameters(rotation)
        if problems:
            raise ElementValidationError(problems, object_id)

        self.rotation = rotation
        self.reference_time_s = reference_time_s
        self.tilt = Quaternion.from_axis_angle(Z_AXIS, rotation.tilt_rad)
        self.spin_longitude = Quaternion.from_axis_angle(Y_AXIS, rotation.spin_longitude_rad)

        if rotation.tidal_locked:
            self.rotation_rate_rad_s = 0.0
        else:
            self.rotation_rate_rad_s = TAU / (rotation.rotation_period_hours * SECONDS_PER_HOUR)

    def tidal_rotation(self, position: Vector3, previous: Optional[Vector3] = None) -> Quaternion:
        toward_primary = (-position).normalized()

        up = position.cross(previous) if previous is not None else Vector3()
        if up.magnitude() < DEGENERATE_NORM * max(position.magnitude() ** 2, 1.0):
            up = default_up(toward_primary)

        q = look_rotation(toward_primary, up)
        return q.mul(self.tilt).mul(self.spin_longitude)

    def free_rotation(self, time_s: float) -> Quaternion:
        spin_angle = self.rotation_rate_rad_s * (time_s - self.reference_time_s)
        spin = Quaternion.from_axis_angle(Y_AXIS, spin_angle)
        return self.tilt.mul(self.spin_longitude).mul(spin)

    def rotation_at(self, time_s: float, position: Optional[Vector3] = None,
                    previous: Optional[Vector3] = None) -> Quaternion:
        """
        Orientation at ``time_s``.

        Args:
            time_s: Absolute time (s)
            position: Current orbital position, required for tidal lock
            previous: Position one step earlier, used for the orbit normal

        Returns:
            Unit quaternion
        """
        if self.rotation.tidal_locked and position is not None:
            return self.tidal_rotation(position, previous)
        return self.free_rotation(time_s)


def primary_facing_axis(q: Quaternion) -> Vector3:
    """Direction the local X axis points in after rotating by ``q``."""
    return q.rotate_vector(X_AXIS)
