import math
from datetime import datetime, timezone
from types import SimpleNamespace

import numpy as np
import pytest
from geoalchemy2 import Geography
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.schema import CreateIndex, CreateTable

from app.db.types import GeographyPoint, point_ewkt
from app.models import FireDetection
from app.services.spatial_clustering import (
    SpatialClusteringEngine,
    bounding_box,
    haversine_m,
    haversine_many,
)


def test_haversine_one_hundredth_degree_latitude():
    # 0.009 deg of latitude ~ 1 km
    distance = haversine_m(37.0, -122.0, 37.009, -122.0)
    assert distance == pytest.approx(1000.75, rel=1e-3)


def test_haversine_many_matches_scalar():
    lats = [37.0, 37.05, -34.6]
    lons = [-122.0, -122.05, -58.4]
    distances = haversine_many(37.01, -122.01, lats, lons)

    assert isinstance(distances, np.ndarray)
    for value, lat, lon in zip(distances, lats, lons):
        assert value == pytest.approx(haversine_m(37.01, -122.01, lat, lon))


def test_bounding_box_offsets():
    box = bounding_box(60.0, 10.0, 5000)

    assert box.max_lat - 60.0 == pytest.approx(5000 / 111000)
    (low, high), = box.lng_ranges
    assert high - 10.0 == pytest.approx(5000 / (111000 * math.cos(math.radians(60.0))))
    assert low < 10.0 < high


def test_bounding_box_contains_points_at_radius():
    lat, lng, radius = 45.0, 7.0, 5000
    box = bounding_box(lat, lng, radius)
    (low, high), = box.lng_ranges
    # a point due east at exactly the radius stays inside the longitude range
    east = lng + math.degrees(radius / (6371000.0 * math.cos(math.radians(lat))))
    assert low <= east <= high


def test_bounding_box_wraps_across_antimeridian():
    box = bounding_box(0.0, 179.99, 5000)

    assert len(box.lng_ranges) == 2
    assert (-180.0 <= box.lng_ranges[1][0]) and box.lng_ranges[1][1] < -179.9
    assert box.lng_ranges[0][1] == 180.0


def test_bounding_box_near_pole_scans_all_longitudes():
    box = bounding_box(89.99, 0.0, 5000)

    assert box.lng_ranges == ((-180.0, 180.0),)
    assert box.max_lat == 90.0


# =============================================================================
# Candidate query and the geography column
# =============================================================================


WINDOW = (datetime(2026, 8, 14, tzinfo=timezone.utc), datetime(2026, 8, 16, tzinfo=timezone.utc))


def _candidate_sql(dialect_name, dialect):
    detection = SimpleNamespace(latitude=37.0, longitude=-122.0)
    stmt = SpatialClusteringEngine(db=None).candidate_query(
        detection, 5000.0, *WINDOW, dialect=dialect_name
    )
    return str(stmt.compile(dialect=dialect))


def test_postgres_candidates_use_st_dwithin_on_location():
    sql = _candidate_sql("postgresql", postgresql.dialect())

    assert "ST_DWithin(fire_detections.location" in sql
    assert "geography(POINT,4326)" in sql
    assert "fire_detections.longitude BETWEEN" not in sql


def test_sqlite_candidates_use_bounding_box():
    sql = _candidate_sql("sqlite", sqlite.dialect())

    assert "ST_DWithin" not in sql
    assert "fire_detections.latitude BETWEEN" in sql
    assert "fire_detections.longitude BETWEEN" in sql


def test_location_is_geography_on_postgres_and_text_elsewhere():
    location = GeographyPoint()

    assert isinstance(location.load_dialect_impl(postgresql.dialect()), Geography)
    assert not isinstance(location.load_dialect_impl(sqlite.dialect()), Geography)


def test_postgres_ddl_declares_geography_column_and_gist_index():
    table = FireDetection.__table__
    ddl = str(CreateTable(table).compile(dialect=postgresql.dialect()))
    (index,) = [index for index in table.indexes if index.name == "ix_fire_detections_location"]
    index_ddl = str(CreateIndex(index).compile(dialect=postgresql.dialect()))

    assert "location geography(POINT,4326) NOT NULL" in ddl
    assert "USING gist (location)" in index_ddl


def test_point_ewkt_puts_longitude_first():
    assert point_ewkt(37.7749, -122.4194) == "SRID=4326;POINT(-122.4194 37.7749)"
