import pytest

from app.core.config import settings
from app.services.params import (
    ClusteringParams,
    InvalidParametersError,
    LifecycleParams,
)


def test_clustering_defaults():
    params = ClusteringParams()

    assert params.radius_meters == 5000.0
    assert params.expiry_hours == 72
    assert params.recompute_on_assign is True


def test_lifecycle_defaults():
    params = LifecycleParams()

    assert params.inactivity_hours == 24
    assert params.retention_days == 3
    assert params.deletion_batch_size == 1000


@pytest.mark.parametrize("field", ["radius_meters", "expiry_hours"])
@pytest.mark.parametrize("value", [0, -1])
def test_clustering_rejects_non_positive_thresholds(field, value):
    with pytest.raises(InvalidParametersError):
        ClusteringParams(**{field: value})


def test_lifecycle_rejects_non_positive_thresholds():
    with pytest.raises(InvalidParametersError):
        LifecycleParams(retention_days=0)


def test_from_settings_reads_configuration(monkeypatch):
    monkeypatch.setattr(settings, "FIRE_CLUSTERING_DISTANCE_METERS", 2500.0, raising=False)
    monkeypatch.setattr(settings, "FIRE_CLUSTERING_EXPIRY_HOURS", 48, raising=False)
    monkeypatch.setattr(settings, "INCIDENT_CLEANUP_THRESHOLD_HOURS", 12, raising=False)
    monkeypatch.setattr(settings, "INCIDENT_DELETION_THRESHOLD_DAYS", 5, raising=False)

    clustering = ClusteringParams.from_settings()
    lifecycle = LifecycleParams.from_settings()

    assert clustering.radius_meters == 2500.0
    assert clustering.expiry_hours == 48
    assert lifecycle.inactivity_hours == 12
    assert lifecycle.retention_days == 5


def test_with_overrides_ignores_none():
    params = ClusteringParams(radius_meters=1000.0, expiry_hours=10)

    assert params.with_overrides(None, None) is params
    assert params.with_overrides(2000.0, None).radius_meters == 2000.0
    assert params.with_overrides(None, 5).expiry_hours == 5
