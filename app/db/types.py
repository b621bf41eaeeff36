from datetime import datetime, timezone

from geoalchemy2 import Geography
from sqlalchemy import DateTime, String
from sqlalchemy.types import TypeDecorator

WGS84_SRID = 4326


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime (naive values are assumed to be UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UtcDateTime(TypeDecorator):
    """Timezone-aware DateTime that always binds and loads UTC values.

    SQLite drops tzinfo on storage; values are normalised to UTC before
    binding so stored wall-clock times compare correctly on every backend.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = ensure_utc(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return ensure_utc(value)


def point_ewkt(latitude: float, longitude: float) -> str:
    """EWKT for a WGS84 point; PostGIS puts longitude first."""
    return f"SRID={WGS84_SRID};POINT({float(longitude)} {float(latitude)})"


class GeographyPoint(TypeDecorator):
    """WGS84 point stored as PostGIS ``geography(POINT,4326)``.

    Other backends keep the EWKT text, so the column round-trips on SQLite
    where distances are computed in Python instead.
    """

    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            # the GIST index is declared on the table
            return dialect.type_descriptor(
                Geography(geometry_type="POINT", srid=WGS84_SRID, spatial_index=False)
            )
        return dialect.type_descriptor(String(80))
