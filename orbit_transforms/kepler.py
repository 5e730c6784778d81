"""
Kepler Orbit Propagation

Closed-form two-body propagation of one body about its primary. The mean
anomaly advances linearly with time and Kepler's equation

    E - e*sin(E) = M

is solved by Newton-Raphson for the eccentric anomaly E. The position in
the orbital plane is

    (a*(cos(E) - e), 0, a*sqrt(1 - e^2)*sin(E))

and is carried into the reference frame by the orbit basis, built from the
longitude of the ascending node, the inclination and the argument of
periapsis, each about a fixed reference axis (Z, X, Z). Plane
coordinates are mapped by the transpose of Rz(argp) * Rx(inc) * Rz(node).

No perturbations, no n-body interaction, no light-time correction.

References:
    Vallado, D. A. (2013). Fundamentals of Astrodynamics and Applications (4th ed.).
"""

import math
from typing import Dict, List, Optional

from config import AU_M, G, SECONDS_PER_DAY, SECONDS_PER_YEAR
from logging_config import get_logger
from orbit_transforms.exceptions import ElementValidationError
from orbit_transforms.models import OrbitalElements
from orbit_transforms.vector_math import Basis3D, Vector3, X_AXIS, Z_AXIS

logger = get_logger(__name__)

TAU = 2.0 * math.pi

KEPLER_MAX_ITER = 16
KEPLER_TOLERANCE = 1e-12


def normalize_angle(angle: float) -> float:
    """Reduce an angle to [0, 2*pi)."""
    x = math.fmod(angle, TAU)
    if x < 0:
        x += TAU
    # fmod of a tiny negative can round back up to TAU
    return 0.0 if x >= TAU else x


def solve_kepler_equation(M: float, e: float, tolerance: float = KEPLER_TOLERANCE,
                          max_iter: int = KEPLER_MAX_ITER) -> float:
    """
    Solve Kepler's equation for eccentric anomaly.

    Args:
        M: Mean anomaly (rad), any value
        e: Eccentricity in [0, 1)
        tolerance: Stop once the Newton step is smaller than this
        max_iter: Maximum iterations

    Returns:
        Eccentric anomaly E (rad) in [0, 2*pi)
    """
    Mm = normalize_angle(M)

    # Initial guess
    E = math.pi if e > 0.8 else Mm

    # Newton-Raphson iteration
    for _ in range(max_iter):
        f = E - e * math.sin(E) - Mm
        fp = 1.0 - e * math.cos(E)
        step = -f / max(fp, 1e-12)
        E += step
        if abs(step) < tolerance:
            break

    return normalize_angle(E)


def _ordered_apsides(elements: OrbitalElements):
    rp = elements.periapsis_au
    ra = elements.apoapsis_au
    if ra < rp:
        rp, ra = ra, rp
    return rp, ra


def check_orbital_elements(elements: OrbitalElements) -> List[str]:
    """
    List everything physically wrong with a set of elements.

    An empty list means the elements can be propagated.
    """
    problems = []

    if elements.periapsis_au <= 0 or elements.apoapsis_au <= 0:
        problems.append("periapsis_au and apoapsis_au must be positive")
    else:
        rp, ra = _ordered_apsides(elements)
        eccentricity = (ra - rp) / (ra + rp)
        if eccentricity < 0 or eccentricity >= 1:
            problems.append(f"Eccentricity {eccentricity:.3f} is out of valid range [0, 1)")

    if elements.primary_mass_kg <= 0 or elements.object_mass_kg <= 0:
        problems.append("Masses must be positive")

    for name in ("periapsis_au", "apoapsis_au", "primary_mass_kg", "object_mass_kg",
                 "inclination_rad", "node_rad", "arg_periapsis_rad", "mean_anomaly_rad"):
        if not math.isfinite(getattr(elements, name)):
            problems.append(f"{name} must be finite")

    return problems


def orbital_info(elements: OrbitalElements) -> Dict[str, float]:
    """
    Derived orbit size, shape and period.

    Returns:
        Dictionary with:
        - semi_major_axis_au, semi_major_axis_km, semi_major_axis_m
        - eccentricity
        - period_seconds, period_days, period_years
    """
    rp, ra = _ordered_apsides(elements)
    semi_major_axis_au = (rp + ra) / 2.0
    semi_major_axis_m = semi_major_axis_au * AU_M
    eccentricity = (ra - rp) / (ra + rp) if (ra + rp) > 0 else 0.0

    mu = G * (elements.primary_mass_kg + elements.object_mass_kg)
    period_s = TAU * math.sqrt(semi_major_axis_m ** 3 / mu) if mu > 0 else 0.0

    return {
        "semi_major_axis_au": semi_major_axis_au,
        "semi_major_axis_km": semi_major_axis_m / 1000.0,
        "semi_major_axis_m": semi_major_axis_m,
        "eccentricity": eccentricity,
        "period_seconds": period_s,
        "period_days": period_s / SECONDS_PER_DAY,
        "period_years": period_s / SECONDS_PER_YEAR,
    }


def create_orbit_basis(node_rad: float, inclination_rad: float, arg_periapsis_rad: float) -> Basis3D:
    """
    Orbit plane orientation.

    The node, inclination and argp rotations are taken about the fixed
    reference Z, X and Z axes in that order. Orbit-plane coordinates are
    mapped through the rows of the resulting basis, which is the inverse
    (transpose) of that rotation.
    """
    b = Basis3D.identity().rotated(Z_AXIS, node_rad)
    b = b.rotated(X_AXIS, inclination_rad)
    b = b.rotated(Z_AXIS, arg_periapsis_rad)
    return b.inverse()


class KeplerPropagator:
    """
    Two-body propagator for one body.

    Elements are taken to be valid at T=0. ``reference_time_s`` positions the
    stateful cursor used by ``advance``; ``position_at`` is absolute and does
    not depend on the cursor.
    """

    def __init__(self, elements: OrbitalElements, reference_time_s: float = 0.0,
                 object_id: Optional[str] = None):
        problems = check_orbital_elements(elements)
        if problems:
            raise ElementValidationError(problems, object_id)

        if elements.apoapsis_au < elements.periapsis_au:
            logger.warning(
                "⚠️ Apoapsis below periapsis, swapping",
                object_id=object_id,
                periapsis_au=elements.periapsis_au,
                apoapsis_au=elements.apoapsis_au,
            )

        if not 0.0 <= elements.inclination_rad <= math.pi:
            logger.warning(
                f"⚠️ Inclination {math.degrees(elements.inclination_rad):.2f}° should be in [0, 180]",
                object_id=object_id,
            )

        rp, ra = _ordered_apsides(elements)

        self.elements = elements
        self.object_id = object_id
        self.reference_time_s = reference_time_s
        self.semi_major_axis_m = 0.5 * (rp + ra) * AU_M
        self.eccentricity = max(0.0, (ra - rp) / max(ra + rp, 1e-12))

        mu = G * (elements.primary_mass_kg + elements.object_mass_kg)
        self.mean_motion = math.sqrt(mu / self.semi_major_axis_m ** 3)

        self.basis = create_orbit_basis(
            elements.node_rad,
            elements.inclination_rad,
            elements.arg_periapsis_rad,
        )
        self._b_factor = self.semi_major_axis_m * math.sqrt(max(1.0 - self.eccentricity ** 2, 0.0))

        self.mean_anomaly = self.mean_anomaly_at(reference_time_s)

        initial_pos = self.position
        initial_distance = initial_pos.magnitude()
        logger.debug(
            "📐 Orbit parameters",
            object_id=object_id,
            semi_major_axis_au=round(self.semi_major_axis_m / AU_M, 6),
            eccentricity=round(self.eccentricity, 6),
            mean_anomaly_rad=round(self.mean_anomaly, 6),
            distance_m=initial_distance,
        )

        min_r = self.semi_major_axis_m * (1 - self.eccentricity)
        max_r = self.semi_major_axis_m * (1 + self.eccentricity)
        if initial_distance < min_r * 0.99 or initial_distance > max_r * 1.01:
            logger.warning(
                "⚠️ Initial position may be off orbit",
                object_id=object_id,
                expected_range_m=(min_r, max_r),
                actual_m=initial_distance,
            )

    @property
    def orbital_period(self) -> float:
        """Orbital period in seconds (0 if the orbit does not move)."""
        if self.mean_motion == 0:
            return 0.0
        return TAU / self.mean_motion

    def mean_anomaly_at(self, time_s: float) -> float:
        return normalize_angle(self.elements.mean_anomaly_rad + self.mean_motion * time_s)

    def position_for_mean_anomaly(self, M: float) -> Vector3:
        E = solve_kepler_equation(M, self.eccentricity)
        in_plane = Vector3(
            self.semi_major_axis_m * (math.cos(E) - self.eccentricity),
            0.0,
            self._b_factor * math.sin(E),
        )
        return self.basis.apply(in_plane)

    def position_at(self, time_s: float) -> Vector3:
        """Body-centric position (m) at absolute time ``time_s``."""
        return self.position_for_mean_anomaly(self.mean_anomaly_at(time_s))

    @property
    def position(self) -> Vector3:
        """Position at the cursor."""
        return self.position_for_mean_anomaly(self.mean_anomaly)

    def advance(self, dt: float) -> Vector3:
        """Move the cursor forward by ``dt`` seconds and return the new position."""
        self.mean_anomaly = normalize_angle(self.mean_anomaly + self.mean_motion * dt)
        return self.position
