from itertools import count

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api import deps as api_deps
from app.db.session import create_db_engine
from app.models import Base, FireDetection
from app.workers import locks
from tests.factories import NOW

# -----------------------------------------------------------------------------
# Database Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_engine():
    """
    In-memory SQLite engine shared by every session of one test.
    Foreign keys are enabled so ON DELETE CASCADE behaves like PostgreSQL.
    """
    engine = create_db_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()

    yield session

    session.close()


@pytest.fixture(scope="function")
def now():
    return NOW


@pytest.fixture(scope="function")
def make_detection(db_session):
    """
    Factory persisting a detection with sensible defaults.

    Usage:
        detection = make_detection(37.0, -122.0, detected_at=NOW)
    """
    sequence = count(1)

    def _make(
        latitude,
        longitude,
        detected_at=None,
        frp=10.0,
        confidence="h",
        satellite="N",
        inserted_at=None,
        fire_incident_id=None,
    ):
        n = next(sequence)
        detected_at = detected_at or NOW
        detection = FireDetection(
            natural_key=f"{latitude!r}_{longitude!r}_{detected_at:%Y-%m-%d}_{n}_{satellite}",
            latitude=latitude,
            longitude=longitude,
            detected_at=detected_at,
            acquisition_date=detected_at.date(),
            acquisition_time=f"{detected_at:%H:%M}",
            satellite=satellite,
            instrument="VIIRS",
            version="2.0NRT",
            confidence=confidence,
            daynight="D",
            bright_ti4=330.0,
            bright_ti5=290.0,
            frp=frp,
            scan=0.4,
            track=0.4,
            fire_incident_id=fire_incident_id,
        )
        if inserted_at is not None:
            detection.inserted_at = inserted_at
            detection.updated_at = inserted_at
        db_session.add(detection)
        db_session.commit()
        return detection

    return _make


# -----------------------------------------------------------------------------
# Redis Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(scope="function")
def fake_redis(monkeypatch):
    """Route task locks and the DLQ to an in-process fake Redis."""
    client = fakeredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(locks, "get_redis_client", lambda: client)
    return client


# -----------------------------------------------------------------------------
# Client Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(scope="function")
def client(db_session):
    """
    TestClient with overridden get_db dependency to use the test db_session.
    """
    from app.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[api_deps.get_db] = override_get_db

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
