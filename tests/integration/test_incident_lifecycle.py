"""
Time-driven incident transitions: active -> ended -> deleted.
"""
from datetime import timedelta

import pytest
from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy import func, select

from app.models import FireDetection, FireIncident
from app.services.incident_aggregate import create_incident, mark_as_ended
from app.services import incident_lifecycle as lifecycle_module
from app.services.incident_lifecycle import IncidentLifecycleService
from app.services.params import LifecycleParams
from tests.factories import NOW, hours_ago


@pytest.fixture()
def make_incident(db_session, make_detection):
    """Persist an incident seeded from one detection at ``detected_at``."""

    def _make(detected_at, latitude=37.0, longitude=-122.0, ended_at=None, extra=0):
        seed = make_detection(latitude, longitude, detected_at=detected_at)
        incident = create_incident(seed)
        db_session.add(incident)
        db_session.flush()
        seed.fire_incident_id = incident.id
        for n in range(extra):
            member = make_detection(latitude + 0.001 * (n + 1), longitude, detected_at=detected_at)
            member.fire_incident_id = incident.id
            incident.fire_count += 1
        if ended_at is not None:
            mark_as_ended(incident, ended_at)
        db_session.commit()
        return incident

    return _make


@pytest.fixture()
def lifecycle(db_session):
    return IncidentLifecycleService(
        db_session, LifecycleParams(inactivity_hours=24, retention_days=3, deletion_batch_size=1000)
    )


def _count(db_session, model):
    return db_session.execute(select(func.count()).select_from(model)).scalar_one()


# =============================================================================
# Cleanup
# =============================================================================


def test_incident_idle_for_25_hours_is_ended(lifecycle, make_incident, db_session):
    stale = make_incident(hours_ago(25))

    result = lifecycle.end_stale_incidents(now=NOW)

    assert result.as_dict() == {"processed": 1, "ended": 1, "failed": 0}
    incident = db_session.get(FireIncident, stale.id)
    assert incident.status == "ended"
    assert incident.ended_at == NOW


def test_recent_incident_stays_active(lifecycle, make_incident, db_session):
    fresh = make_incident(hours_ago(23))

    result = lifecycle.end_stale_incidents(now=NOW)

    assert result.processed == 0
    assert db_session.get(FireIncident, fresh.id).status == "active"


def test_already_ended_incidents_are_not_reprocessed(lifecycle, make_incident):
    make_incident(hours_ago(48), ended_at=hours_ago(20))

    assert lifecycle.incidents_to_end(now=NOW) == []


def test_incident_touched_after_scan_is_left_active(lifecycle, make_incident, db_session):
    incident = make_incident(hours_ago(30))
    incident_id = incident.id
    cutoff = lifecycle.inactivity_cutoff(NOW)

    # a detection joined between the scan and the row lock
    incident.last_detected_at = hours_ago(1)
    db_session.commit()

    assert lifecycle._end_one(incident_id, NOW, cutoff) is False
    assert db_session.get(FireIncident, incident_id).status == "active"


def test_soft_time_limit_aborts_cleanup(lifecycle, make_incident, db_session, monkeypatch):
    first = make_incident(hours_ago(30))
    second = make_incident(hours_ago(28), latitude=45.0, longitude=7.0)
    calls = []

    def _out_of_time(incident, now):
        calls.append(incident.id)
        raise SoftTimeLimitExceeded()

    monkeypatch.setattr(lifecycle_module, "mark_as_ended", _out_of_time)

    with pytest.raises(SoftTimeLimitExceeded):
        lifecycle.end_stale_incidents(now=NOW)

    assert len(calls) == 1
    assert db_session.get(FireIncident, first.id).status == "active"
    assert db_session.get(FireIncident, second.id).status == "active"


def test_errors_other_than_timeouts_are_collected(lifecycle, make_incident, monkeypatch):
    stale = make_incident(hours_ago(30))
    stale_id = stale.id

    def _broken(incident, now):
        raise ValueError("bad bbox")

    monkeypatch.setattr(lifecycle_module, "mark_as_ended", _broken)

    result = lifecycle.end_stale_incidents(now=NOW)

    assert result.failures == [(stale_id, "bad bbox")]
    assert result.ended == 0


def test_active_incidents_within_hours(lifecycle, make_incident):
    recent = make_incident(hours_ago(2), latitude=10.0)
    make_incident(hours_ago(30), latitude=20.0)
    make_incident(hours_ago(3), latitude=30.0, ended_at=hours_ago(1))

    active = lifecycle.active_incidents_within_hours(6, now=NOW)

    assert [incident.id for incident in active] == [recent.id]


# =============================================================================
# Deletion
# =============================================================================


def test_ended_incident_past_retention_is_deleted_with_detections(
    lifecycle, make_incident, db_session
):
    old = make_incident(hours_ago(120), ended_at=NOW - timedelta(days=4), extra=2)
    recent = make_incident(hours_ago(48), latitude=10.0, ended_at=NOW - timedelta(days=1))
    old_id, recent_id = old.id, recent.id

    result = lifecycle.delete_ended_incidents(now=NOW)

    assert result.as_dict() == {"incidents_deleted": 1, "detections_deleted": 3}
    db_session.expire_all()
    remaining = set(db_session.execute(select(FireIncident.id)).scalars())
    assert remaining == {recent_id}
    orphans = db_session.execute(
        select(func.count())
        .select_from(FireDetection)
        .where(FireDetection.fire_incident_id == old_id)
    ).scalar_one()
    assert orphans == 0
    assert _count(db_session, FireDetection) == 1


def test_active_incidents_are_never_deleted(lifecycle, make_incident, db_session):
    make_incident(NOW - timedelta(days=10))

    result = lifecycle.delete_ended_incidents(now=NOW)

    assert result.incidents_deleted == 0
    assert _count(db_session, FireIncident) == 1


def test_deletion_runs_in_batches(db_session, make_incident):
    for n in range(5):
        make_incident(hours_ago(200), latitude=float(n), ended_at=NOW - timedelta(days=5))
    lifecycle = IncidentLifecycleService(
        db_session, LifecycleParams(inactivity_hours=24, retention_days=3, deletion_batch_size=2)
    )

    result = lifecycle.delete_ended_incidents(now=NOW)

    assert result.incidents_deleted == 5
    assert result.detections_deleted == 5
    assert _count(db_session, FireIncident) == 0
