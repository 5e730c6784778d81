"""
Error types raised by the orbit transforms engine.

Every failure is scoped to the single request (or the single speculative
computation) that produced it; none of these is process-fatal.
"""

from typing import List, Optional


class OrbitTransformError(Exception):
    """Base class for all errors raised by this package."""


class ElementValidationError(OrbitTransformError, ValueError):
    """Orbital elements or rotation parameters are physically invalid."""

    def __init__(self, problems: List[str], object_id: Optional[str] = None):
        self.problems = list(problems)
        self.object_id = object_id
        prefix = f"Invalid elements for {object_id}" if object_id else "Invalid elements"
        super().__init__(f"{prefix}: {'; '.join(self.problems)}")


class NotFoundError(OrbitTransformError, LookupError):
    """The element provider does not know the requested object."""

    def __init__(self, object_id: str, what: str = "Object"):
        self.object_id = object_id
        super().__init__(f"{what} not found: {object_id}")


class ComputationFailure(OrbitTransformError, RuntimeError):
    """Propagation produced no samples for the requested window."""
