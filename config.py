"""
Orbit Transforms Configuration and Constants

This module contains physical constants and the environment-driven defaults
used throughout the project.

Constants:
    Astronomical unit and gravitational constant used by the Kepler
    propagator (IAU 2012 value of the AU, CODATA 2018 value of G).

Cache defaults:
    Read once from the environment by CacheServiceConfig. Every value can be
    overridden per cache instance through CacheStrategy / PrefetchConfig.

    CACHE_MAX_SIZE            maximum number of active cache entries
    CACHE_TTL_MS              age after which an entry is discarded
    CACHE_EVICTION_POLICY     lru | lfu | fifo
    PREFETCH_ENABLED          true | false
    PREFETCH_MULTIPLIER       window inflation factor on a miss
    PREFETCH_MAX_TRANSFORMS   cap on samples per computed window
    PREFETCH_MIN_DURATION_S   requests shorter than this are not inflated
    PREFETCH_AUTO_THRESHOLD   consumed fraction that triggers look-ahead
"""

import os

# Physical constants (SI)
AU_M: float = 1.495978707e11  # Astronomical unit (m)
G: float = 6.6743e-11  # Gravitational constant (m^3 kg^-1 s^-2)
SOLAR_MASS_KG: float = 1.98892e30

SECONDS_PER_HOUR: float = 3600.0
SECONDS_PER_DAY: float = 86400.0
SECONDS_PER_YEAR: float = 31557600.0  # Julian year

# time_s, position.xyz, rotation.xyzw as float64
BYTES_PER_TRANSFORM: int = 64


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class CacheServiceConfig:
    MAX_CACHE_SIZE = int(os.getenv('CACHE_MAX_SIZE', '100'))
    CACHE_EXPIRATION_MS = float(os.getenv('CACHE_TTL_MS', '60000'))
    EVICTION_POLICY = os.getenv('CACHE_EVICTION_POLICY', 'lru').lower()
    PREFETCH_ENABLED = _env_bool('PREFETCH_ENABLED', 'true')
    PREFETCH_MULTIPLIER = float(os.getenv('PREFETCH_MULTIPLIER', '300'))
    PREFETCH_MAX_TRANSFORMS = int(os.getenv('PREFETCH_MAX_TRANSFORMS', '10000'))
    PREFETCH_MIN_DURATION_S = float(os.getenv('PREFETCH_MIN_DURATION_S', '1'))
    PREFETCH_AUTO_THRESHOLD = float(os.getenv('PREFETCH_AUTO_THRESHOLD', '0.7'))


config = CacheServiceConfig()
