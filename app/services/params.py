from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from app.core.config import settings

DEFAULT_RADIUS_METERS = 5000.0
DEFAULT_EXPIRY_HOURS = 72
DEFAULT_ASSIGNMENT_TIMEOUT_SECONDS = 30
DEFAULT_LOCK_RESOLUTION = 4

DEFAULT_INACTIVITY_HOURS = 24
DEFAULT_RETENTION_DAYS = 3
DEFAULT_DELETION_BATCH_SIZE = 1000


class InvalidParametersError(ValueError):
    """Raised when a parameter object is built with out-of-range values."""


def _require_positive(name: str, value) -> None:
    if isinstance(value, bool) or value is None or value <= 0:
        raise InvalidParametersError(f"{name} must be greater than zero (got {value!r})")


@dataclass(frozen=True)
class ClusteringParams:
    """Thresholds used by the clustering engine and the assignment orchestrator."""
    radius_meters: float = DEFAULT_RADIUS_METERS
    expiry_hours: float = DEFAULT_EXPIRY_HOURS
    recompute_on_assign: bool = True
    timeout_seconds: Optional[int] = DEFAULT_ASSIGNMENT_TIMEOUT_SECONDS
    lock_resolution: int = DEFAULT_LOCK_RESOLUTION

    def __post_init__(self) -> None:
        _require_positive("radius_meters", self.radius_meters)
        _require_positive("expiry_hours", self.expiry_hours)
        if self.timeout_seconds is not None:
            _require_positive("timeout_seconds", self.timeout_seconds)
        if not 0 <= self.lock_resolution <= 15:
            raise InvalidParametersError(
                f"lock_resolution must be a valid H3 resolution (got {self.lock_resolution!r})"
            )

    @classmethod
    def from_settings(cls, config=None) -> "ClusteringParams":
        config = config or settings
        return cls(
            radius_meters=float(config.FIRE_CLUSTERING_DISTANCE_METERS),
            expiry_hours=config.FIRE_CLUSTERING_EXPIRY_HOURS,
            timeout_seconds=config.ASSIGNMENT_TIMEOUT_SECONDS,
            lock_resolution=config.ASSIGNMENT_LOCK_H3_RESOLUTION,
        )

    def with_overrides(
        self,
        radius_meters: Optional[float] = None,
        expiry_hours: Optional[float] = None,
    ) -> "ClusteringParams":
        """Return a copy with the given non-None thresholds replaced."""
        changes = {}
        if radius_meters is not None:
            changes["radius_meters"] = radius_meters
        if expiry_hours is not None:
            changes["expiry_hours"] = expiry_hours
        return replace(self, **changes) if changes else self

    def as_dict(self) -> dict:
        return {
            "radius_meters": self.radius_meters,
            "expiry_hours": self.expiry_hours,
            "recompute_on_assign": self.recompute_on_assign,
        }


@dataclass(frozen=True)
class LifecycleParams:
    """Thresholds for ending and purging incidents."""
    inactivity_hours: float = DEFAULT_INACTIVITY_HOURS
    retention_days: float = DEFAULT_RETENTION_DAYS
    deletion_batch_size: int = DEFAULT_DELETION_BATCH_SIZE

    def __post_init__(self) -> None:
        _require_positive("inactivity_hours", self.inactivity_hours)
        _require_positive("retention_days", self.retention_days)
        _require_positive("deletion_batch_size", self.deletion_batch_size)

    @classmethod
    def from_settings(cls, config=None) -> "LifecycleParams":
        config = config or settings
        return cls(
            inactivity_hours=config.INCIDENT_CLEANUP_THRESHOLD_HOURS,
            retention_days=config.INCIDENT_DELETION_THRESHOLD_DAYS,
            deletion_batch_size=config.INCIDENT_DELETION_BATCH_SIZE,
        )
