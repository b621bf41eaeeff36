import redis

from app.api.routes import health as health_module


def test_celery_health_returns_503_when_broker_is_unreachable(client, monkeypatch):
    def _raise_connection_error(*args, **kwargs):
        raise redis.ConnectionError("getaddrinfo failed")

    monkeypatch.setattr(
        health_module,
        "resolve_celery_broker_url",
        lambda: "redis://invalid-host:6379/0",
    )
    monkeypatch.setattr(health_module.redis, "from_url", _raise_connection_error)

    response = client.get("/api/v1/health/celery")

    assert response.status_code == 503
    payload = response.json()
    assert payload["status"] == "degraded"
    assert "Redis unavailable" in payload["message"]


def test_celery_health_returns_200_when_broker_is_healthy(client, monkeypatch):
    class _HealthyRedisClient:
        def ping(self):
            return True

    monkeypatch.setattr(
        health_module,
        "resolve_celery_broker_url",
        lambda: "redis://localhost:6379/0",
    )
    monkeypatch.setattr(
        health_module.redis,
        "from_url",
        lambda *args, **kwargs: _HealthyRedisClient(),
    )

    response = client.get("/api/v1/health/celery")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "healthy"


def test_db_health_is_healthy_on_sqlite(client):
    response = client.get("/api/v1/health/db")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_liveness_probe(client):
    response = client.get("/api/v1/health/live")

    assert response.status_code == 200
    assert response.json()["alive"] is True


def test_pipeline_reports_backlog(client, db_session, make_detection):
    from app.services.incident_assignment import IncidentAssignmentService
    from app.services.params import ClusteringParams

    assigned = make_detection(37.0, -122.0)
    make_detection(45.0, 7.0)
    IncidentAssignmentService(db_session, ClusteringParams()).assign(assigned)

    response = client.get("/api/v1/health/pipeline")

    assert response.status_code == 200
    payload = response.json()
    assert payload["unassigned_detections"] == 1
    assert payload["active_incidents"] == 1
    assert payload["oldest_unassigned_minutes"] is not None


def test_pipeline_is_empty_on_fresh_store(client):
    payload = client.get("/api/v1/health/pipeline").json()

    assert payload == {
        "unassigned_detections": 0,
        "active_incidents": 0,
        "oldest_unassigned_minutes": None,
    }
