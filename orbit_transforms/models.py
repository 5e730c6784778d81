"""
Data models for orbital elements, rotation parameters, requests and samples.

All angles are in radians. Distances in the elements are in astronomical
units; propagated positions are in metres, relative to the primary body.
"""

from typing import Any, Dict, NamedTuple

from pydantic import BaseModel, ConfigDict, Field

from orbit_transforms.vector_math import Quaternion, Vector3


class OrbitalElements(BaseModel):
    """Keplerian elements of one body about its primary."""

    model_config = ConfigDict(frozen=True)

    primary_mass_kg: float
    object_mass_kg: float
    periapsis_au: float
    apoapsis_au: float
    inclination_rad: float = 0.0
    node_rad: float = 0.0
    arg_periapsis_rad: float = 0.0
    mean_anomaly_rad: float = 0.0


class RotationParameters(BaseModel):
    """Spin state of a body. ``rotation_period_hours`` is ignored when tidally locked."""

    model_config = ConfigDict(frozen=True)

    tidal_locked: bool = False
    rotation_period_hours: float = 24.0
    tilt_rad: float = 0.0
    spin_longitude_rad: float = 0.0


class OrbitalObject(BaseModel):
    """Everything needed to propagate one body."""

    model_config = ConfigDict(frozen=True)

    elements: OrbitalElements
    rotation: RotationParameters = Field(default_factory=RotationParameters)


class CacheQuery(BaseModel):
    """
    Time window request understood by the transform cache.

    ``start_time`` may be negative or exceed one orbital period; callers that
    want a canonical start normalise it modulo the period themselves.
    """

    model_config = ConfigDict(frozen=True)

    object_id: str = Field(min_length=1)
    start_time: float
    duration: float = Field(ge=0)
    frequency: float = Field(gt=0)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    @property
    def sampling_interval(self) -> float:
        return 1.0 / self.frequency


class TransformRequest(CacheQuery):
    """Cache query carrying the body it is about."""

    orbital_object: OrbitalObject


class Transform(NamedTuple):
    """Position and orientation of a body at one instant."""

    time_s: float
    position: Vector3
    rotation: Quaternion

    def as_dict(self) -> Dict[str, Any]:
        return {
            "time_s": self.time_s,
            "position": self.position._asdict(),
            "rotation": self.rotation._asdict(),
        }
