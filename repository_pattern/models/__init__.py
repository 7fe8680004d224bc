"""
Declarative base and mixins for entities handled by the repositories.

Application models subclass Base and pick the mixins they need.
"""

from repository_pattern.models.base import (
    Base,
    TimestampMixin,
    UUIDMixin,
    ModelMixin,
    utc_now,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "ModelMixin",
    "utc_now",
]
