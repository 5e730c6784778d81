"""
Orbit Transforms Package

Keplerian propagation of celestial bodies and a time-windowed cache that
serves position + orientation samples to many overlapping subscribers.

Modules:
    vector_math: Vector3, Quaternion and Basis3D primitives
    models: Orbital elements, rotation parameters, requests and samples
    kepler: Kepler equation solver and orbit propagator
    orientation: Free-rotation and tidally locked orientation
    transform_cache: Window cache with eviction and look-ahead prefetch
    orbit_service: Service tying propagation and caching together

References:
    Vallado, D. A. (2013). Fundamentals of Astrodynamics and Applications (4th ed.).
"""

from orbit_transforms.exceptions import (
    ComputationFailure,
    ElementValidationError,
    NotFoundError,
    OrbitTransformError,
)
from orbit_transforms.models import (
    CacheQuery,
    OrbitalElements,
    OrbitalObject,
    RotationParameters,
    Transform,
    TransformRequest,
)
from orbit_transforms.orbit_service import InMemoryElementProvider, OrbitService
from orbit_transforms.transform_cache import CacheStrategy, EvictionPolicy, PrefetchConfig, TransformCache

__version__ = "1.0.0"
