"""
Read-only HTTP surface over incidents and detections.
"""
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from app.services.incident_assignment import IncidentAssignmentService
from app.services.params import ClusteringParams


def _recent(hours):
    return datetime.now(timezone.utc) - timedelta(hours=hours)


def test_root_and_health(client):
    assert client.get("/").status_code == 200
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_list_incidents(client, db_session, make_detection):
    first = make_detection(37.0, -122.0, detected_at=_recent(2))
    second = make_detection(37.009, -122.0, detected_at=_recent(1))
    service = IncidentAssignmentService(db_session, ClusteringParams())
    service.assign(first)
    service.assign(second)

    response = client.get("/api/v1/incidents", params={"status": "active"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["count"] == 1
    assert payload["data"][0]["fire_count"] == 2
    assert payload["data"][0]["status"] == "active"


def test_list_incidents_rejects_unknown_status(client):
    response = client.get("/api/v1/incidents", params={"status": "burning"})

    assert response.status_code == 422


def test_incident_detail_lists_detections_in_time_order(client, db_session, make_detection):
    later = make_detection(37.001, -122.0, detected_at=_recent(1))
    earlier = make_detection(37.0, -122.0, detected_at=_recent(3))
    service = IncidentAssignmentService(db_session, ClusteringParams())
    service.assign(earlier)
    service.assign(later)

    response = client.get(f"/api/v1/incidents/{earlier.fire_incident_id}")

    assert response.status_code == 200
    payload = response.json()
    assert [d["id"] for d in payload["detections"]] == [str(earlier.id), str(later.id)]


def test_missing_incident_returns_404(client):
    incident_id = uuid4()

    response = client.get(f"/api/v1/incidents/{incident_id}")

    assert response.status_code == 404
    assert response.json()["incident_id"] == str(incident_id)


def test_fires_full_format(client, make_detection):
    make_detection(37.0, -122.0, detected_at=_recent(2))
    make_detection(38.0, -121.0, detected_at=_recent(40))

    response = client.get("/api/v1/fires", params={"hours_back": 24})

    assert response.status_code == 200
    payload = response.json()
    assert payload["count"] == 1
    assert payload["quality"] == "all"
    assert payload["data"][0]["latitude"] == 37.0


def test_fires_compact_format(client, make_detection):
    make_detection(37.0, -122.0, detected_at=_recent(2), frp=9.0)

    response = client.get("/api/v1/fires", params={"format": "compact"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["format"] == "compact_v1"
    assert payload["data"][0][:2] == [37.0, -122.0]
    assert payload["data"][0][4] == 9.0


def test_fires_near_location(client, make_detection):
    near = make_detection(37.01, -122.0, detected_at=_recent(1))
    make_detection(38.0, -122.0, detected_at=_recent(1))

    response = client.get(
        "/api/v1/fires", params={"lat": 37.0, "lng": -122.0, "radius_meters": 5000}
    )

    assert response.status_code == 200
    assert [d["id"] for d in response.json()["data"]] == [str(near.id)]


def test_fires_requires_lat_and_lng_together(client):
    response = client.get("/api/v1/fires", params={"lat": 37.0})

    assert response.status_code == 422


def test_database_outage_returns_503(client, monkeypatch):
    from sqlalchemy.exc import OperationalError

    from app.services import fire_queries

    def _down(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("server closed the connection"))

    monkeypatch.setattr(fire_queries, "list_incidents", _down)

    response = client.get("/api/v1/incidents")

    assert response.status_code == 503
    assert response.json()["detail"] == "Database temporarily unavailable"
