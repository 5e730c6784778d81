"""
Orbit Service

Answers "give me transforms for object X over window Y at frequency Z".

Combines the Kepler propagator, the orientation propagator and the transform
cache. Each uncached window is computed once; overlapping requests are served
by slicing the cached window.

Orbital elements come either with the request (``get_transforms``) or from
an element provider looked up by object id (``transforms_for``). Positions
are relative to the body's primary; for a moon that is its planet.
"""

import math
from typing import Dict, List, Optional, Protocol, Tuple

from logging_config import Timer, get_logger, log_performance
from orbit_transforms.exceptions import NotFoundError
from orbit_transforms.kepler import KeplerPropagator
from orbit_transforms.models import OrbitalObject, Transform, TransformRequest
from orbit_transforms.orientation import OrientationPropagator
from orbit_transforms.transform_cache import TransformCache

logger = get_logger(__name__)

# ceil(duration * frequency) would count 3.0000000001 as 4 samples
SAMPLE_COUNT_EPSILON = 1e-9


class ElementProvider(Protocol):
    """Lookup of orbital data by object id."""

    def lookup(self, object_id: str) -> OrbitalObject:
        """Elements and rotation for ``object_id``; raises NotFoundError if unknown."""
        ...

    def primary_of(self, object_id: str) -> Optional[str]:
        """Id of the body ``object_id`` orbits, or None for a root body."""
        ...


class InMemoryElementProvider:
    """Dict-backed element provider."""

    def __init__(self, objects: Optional[Dict[str, Tuple[OrbitalObject, Optional[str]]]] = None):
        self._objects: Dict[str, Tuple[OrbitalObject, Optional[str]]] = dict(objects or {})

    def add(self, object_id: str, orbital_object: OrbitalObject, primary_id: Optional[str] = None) -> None:
        self._objects[object_id] = (orbital_object, primary_id)

    def lookup(self, object_id: str) -> OrbitalObject:
        try:
            return self._objects[object_id][0]
        except KeyError:
            raise NotFoundError(object_id) from None

    def primary_of(self, object_id: str) -> Optional[str]:
        try:
            return self._objects[object_id][1]
        except KeyError:
            raise NotFoundError(object_id) from None

    def __contains__(self, object_id: str) -> bool:
        return object_id in self._objects


def sample_count(duration: float, frequency: float) -> int:
    """Number of samples in a window: ceil(duration / interval)."""
    if duration <= 0:
        return 0
    return int(math.ceil(duration * frequency - SAMPLE_COUNT_EPSILON))


def compute_transforms(request: TransformRequest) -> List[Transform]:
    """
    Propagate one body over the request window.

    Sample i is at start_time + i / frequency, rounded to the millisecond.
    Both propagators use T=0 as their epoch so that the same instant gives
    the same sample whichever window it is computed in.
    """
    timer = Timer()

    orbital_object = request.orbital_object
    orbit = KeplerPropagator(orbital_object.elements, request.start_time, object_id=request.object_id)
    orientation = OrientationPropagator(orbital_object.rotation, object_id=request.object_id)

    interval = request.sampling_interval
    steps = sample_count(request.duration, request.frequency)

    logger.debug(
        f"🕐 Calculating orbit starting at T={request.start_time}s",
        object_id=request.object_id,
        steps=steps,
    )

    transforms: List[Transform] = []
    previous = orbit.position_at(request.start_time - interval) if steps else None

    for i in range(steps):
        time_s = request.start_time + i * interval
        position = orbit.position_at(time_s)
        rotation = orientation.rotation_at(time_s, position, previous)
        transforms.append(Transform(round(time_s * 1000) / 1000, position, rotation))
        previous = position

    duration_ms = timer.elapsed_ms()
    rate = steps / duration_ms * 1000 if duration_ms > 0 else float("inf")
    log_performance(
        logger,
        f"Calculated {steps} transforms ({rate:.0f} transforms/sec)",
        duration_ms,
        object_id=request.object_id,
    )
    return transforms


class OrbitService:
    """
    Transform service shared by all requesters.

    Owns its cache; two services never share state.
    """

    def __init__(self, cache: Optional[TransformCache[Transform]] = None,
                 provider: Optional[ElementProvider] = None,
                 cache_strategy=None, prefetch_config=None):
        """
        Initialize the service.

        Args:
            cache: Cache to use; built from cache_strategy / prefetch_config if None
            provider: Element provider used by transforms_for
            cache_strategy: Overrides for a newly built cache
            prefetch_config: Overrides for a newly built cache
        """
        if cache is None:
            cache = TransformCache(cache_strategy, prefetch_config)
        self.cache = cache
        self.provider = provider

    def get_transforms(self, request: TransformRequest) -> List[Transform]:
        """
        Transforms covering [start_time, start_time + duration).

        A start time before T=0 or past one orbital period is first reduced
        modulo the period, so every lap reuses the same cached windows.
        Returned sample times are the reduced ones.

        Raises:
            ElementValidationError: the elements or rotation are invalid
            ComputationFailure: the window yields no samples
        """
        return self.cache.get_transforms(self.normalize_request(request), compute_transforms)

    def normalize_request(self, request: TransformRequest) -> TransformRequest:
        """Reduce ``start_time`` into [0, period) when it lies outside it."""
        orbit = KeplerPropagator(request.orbital_object.elements, object_id=request.object_id)
        period = orbit.orbital_period
        if period <= 0 or 0.0 <= request.start_time < period:
            return request

        # ms rounding keeps t and t + P on the same sample grid
        start_time = round((request.start_time % period) * 1000) / 1000
        if start_time >= period:
            start_time = 0.0

        logger.debug(
            "🔁 Normalized start time to one orbital period",
            object_id=request.object_id,
            start_time=request.start_time,
            normalized_start_time=start_time,
            period_s=period,
        )
        return request.model_copy(update={"start_time": start_time})

    def transforms_for(self, object_id: str, start_time: float, duration: float,
                       frequency: float) -> List[Transform]:
        """
        Look up ``object_id`` through the provider and return its transforms.

        Raises:
            NotFoundError: the provider does not know the object
        """
        if self.provider is None:
            raise NotFoundError(object_id, "Element provider for")

        orbital_object = self.provider.lookup(object_id)
        primary_id = self.resolve_primary(object_id)

        logger.debug(
            "Querying transforms",
            object_id=object_id,
            primary_id=primary_id,
            start_time=start_time,
            duration=duration,
        )

        request = TransformRequest(
            object_id=object_id,
            start_time=start_time,
            duration=duration,
            frequency=frequency,
            orbital_object=orbital_object,
        )
        return self.get_transforms(request)

    def resolve_primary(self, object_id: str) -> Optional[str]:
        """Id of the body ``object_id`` orbits, None for a root body."""
        if self.provider is None:
            raise NotFoundError(object_id, "Element provider for")
        return self.provider.primary_of(object_id)
