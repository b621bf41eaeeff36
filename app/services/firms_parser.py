"""
=============================================================================
FIREPING - NASA FIRMS ROW PARSER
=============================================================================
Turns raw FIRMS CSV rows (every field a string) into validated detection
records ready for insertion.

Rules:
- Optional numeric fields fall back to 0.0 when unparsable
- Mandatory fields (coordinates, acquisition date/time, satellite,
  confidence) reject the row instead
- acq_time arrives un-padded ("105" means 01:05 UTC)
- The natural key is stable across re-runs of the same source row
=============================================================================
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from app.core.config import settings
from app.db.types import point_ewkt

logger = logging.getLogger(__name__)

LATITUDE_RANGE = (-90.0, 90.0)
LONGITUDE_RANGE = (-180.0, 180.0)

REQUIRED_FIELDS = ("latitude", "longitude", "acq_date", "acq_time", "satellite", "confidence")
OPTIONAL_NUMERIC_FIELDS = ("bright_ti4", "bright_ti5", "frp", "scan", "track")

_CONFIDENCE_ALIASES = {
    "l": "l",
    "low": "l",
    "n": "n",
    "nominal": "n",
    "h": "h",
    "high": "h",
}


class FirmsRowError(ValueError):
    """Base class for rows rejected during parsing."""


class DetectionParseError(FirmsRowError):
    """Malformed date/time or unparsable mandatory numeric field."""


class DetectionValidationError(FirmsRowError):
    """Well-formed row whose values are out of range or missing."""


@dataclass(frozen=True)
class DetectionRecord:
    """Validated detection ready for bulk insertion."""
    natural_key: str
    latitude: float
    longitude: float
    detected_at: datetime
    acquisition_date: date
    acquisition_time: str
    satellite: str
    instrument: Optional[str]
    version: Optional[str]
    confidence: str
    daynight: Optional[str]
    bright_ti4: Optional[float]
    bright_ti5: Optional[float]
    frp: Optional[float]
    scan: Optional[float]
    track: Optional[float]

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row["id"] = uuid4()
        row["location"] = point_ewkt(self.latitude, self.longitude)
        return row


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_float(value: Any, default: float = 0.0) -> float:
    """Parse a feed value as float, falling back to ``default``."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    text = _clean(value)
    if text is None:
        return default
    try:
        return float(text)
    except ValueError:
        return default


def _parse_optional_float(value: Any) -> Optional[float]:
    if _clean(value) is None:
        return None
    return parse_float(value)


def _parse_required_float(row: Mapping[str, Any], field: str) -> float:
    value = row.get(field)
    if _clean(value) is None:
        raise DetectionValidationError(f"missing required field: {field}")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError as exc:
        raise DetectionParseError(f"{field} is not a number: {value!r}") from exc


def normalize_acquisition_time(acq_time: Any) -> Tuple[str, int, int]:
    """
    Normalize an un-padded FIRMS time.

    "105" -> ("01:05", 1, 5); "1842" -> ("18:42", 18, 42)
    """
    text = _clean(acq_time)
    if text is None:
        raise DetectionValidationError("missing required field: acq_time")
    if not text.isdigit() or len(text) > 4:
        raise DetectionParseError(f"acq_time must be 0-2359: {acq_time!r}")

    padded = text.zfill(4)
    hour, minute = int(padded[:2]), int(padded[2:])
    if hour > 23 or minute > 59:
        raise DetectionParseError(f"acq_time out of range: {acq_time!r}")
    return f"{hour:02d}:{minute:02d}", hour, minute


def parse_acquisition_date(acq_date: Any) -> date:
    text = _clean(acq_date)
    if text is None:
        raise DetectionValidationError("missing required field: acq_date")
    try:
        return datetime.strptime(text, "%Y-%m-%d").date()
    except ValueError as exc:
        raise DetectionParseError(f"acq_date must be YYYY-MM-DD: {acq_date!r}") from exc


def parse_acquisition_datetime(acq_date: Any, acq_time: Any) -> datetime:
    """Combine FIRMS date and time fields into an aware UTC datetime."""
    day = parse_acquisition_date(acq_date)
    _, hour, minute = normalize_acquisition_time(acq_time)
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def _key_time(acq_time: Any) -> str:
    """
    acq_time in its un-padded integer form: "0105" and "105" both give "105".

    The natural key is built from this normalized value, not from the raw
    feed text, so a feed that switches between padded and un-padded times
    still maps each source row to the same key.
    """
    return str(int(str(acq_time).strip()))


def build_natural_key(row: Mapping[str, Any]) -> str:
    """lat_lng_date_time_satellite with coordinates rounded to 4 decimals."""
    lat = round(parse_float(row.get("latitude")), 4)
    lng = round(parse_float(row.get("longitude")), 4)
    date_text = _clean(row.get("acq_date"))
    time_text = _key_time(row.get("acq_time"))
    satellite = _clean(row.get("satellite"))
    return f"{lat!r}_{lng!r}_{date_text}_{time_text}_{satellite}"


def normalize_confidence(value: Any) -> str:
    """Map FIRMS confidence (l/n/h, words, or MODIS 0-100) to l/n/h."""
    text = _clean(value)
    if text is None:
        raise DetectionValidationError("missing required field: confidence")

    alias = _CONFIDENCE_ALIASES.get(text.lower())
    if alias:
        return alias

    try:
        numeric = float(text)
    except ValueError as exc:
        raise DetectionValidationError(f"unknown confidence value: {value!r}") from exc

    if numeric < 0 or numeric > 100:
        raise DetectionValidationError(f"confidence out of range: {value!r}")
    if numeric < 30:
        return "l"
    if numeric < 80:
        return "n"
    return "h"


def _normalize_daynight(value: Any) -> Optional[str]:
    text = _clean(value)
    if text is None:
        return None
    text = text[0].upper()
    return text if text in ("D", "N") else None


def parse_firms_row(
    row: Mapping[str, Any],
    now: Optional[datetime] = None,
    max_future_skew_hours: Optional[int] = None,
) -> DetectionRecord:
    """Validate one FIRMS row; raises a FirmsRowError subclass on rejection."""
    for field in REQUIRED_FIELDS:
        if _clean(row.get(field)) is None:
            raise DetectionValidationError(f"missing required field: {field}")

    latitude = _parse_required_float(row, "latitude")
    longitude = _parse_required_float(row, "longitude")
    if not LATITUDE_RANGE[0] <= latitude <= LATITUDE_RANGE[1]:
        raise DetectionValidationError(f"latitude must be between -90 and 90 (got {latitude})")
    if not LONGITUDE_RANGE[0] <= longitude <= LONGITUDE_RANGE[1]:
        raise DetectionValidationError(
            f"longitude must be between -180 and 180 (got {longitude})"
        )

    detected_at = parse_acquisition_datetime(row.get("acq_date"), row.get("acq_time"))
    now = now or datetime.now(timezone.utc)
    skew_hours = (
        settings.INGEST_MAX_FUTURE_SKEW_HOURS
        if max_future_skew_hours is None
        else max_future_skew_hours
    )
    if detected_at > now + timedelta(hours=skew_hours):
        raise DetectionValidationError(
            f"acquisition time {detected_at.isoformat()} is in the future"
        )

    numerics = {field: _parse_optional_float(row.get(field)) for field in OPTIONAL_NUMERIC_FIELDS}
    if numerics["frp"] is not None and numerics["frp"] < 0:
        raise DetectionValidationError(f"frp must be >= 0 (got {numerics['frp']})")

    time_label, _, _ = normalize_acquisition_time(row.get("acq_time"))

    return DetectionRecord(
        natural_key=build_natural_key(row),
        latitude=latitude,
        longitude=longitude,
        detected_at=detected_at,
        acquisition_date=detected_at.date(),
        acquisition_time=time_label,
        satellite=_clean(row.get("satellite")),
        instrument=_clean(row.get("instrument")),
        version=_clean(row.get("version")),
        confidence=normalize_confidence(row.get("confidence")),
        daynight=_normalize_daynight(row.get("daynight")),
        **numerics,
    )


def parse_firms_csv(text: str) -> List[Dict[str, str]]:
    """Split a FIRMS CSV body into dict rows; ragged rows are dropped."""
    reader = csv.DictReader(io.StringIO(text))
    rows: List[Dict[str, str]] = []
    skipped = 0
    for line_number, row in enumerate(reader, start=2):
        if None in row or any(value is None for value in row.values()):
            skipped += 1
            logger.warning("Skipping malformed FIRMS CSV line %s", line_number)
            continue
        rows.append(dict(row))

    if skipped:
        logger.info("FIRMS CSV parsed: %s rows, %s skipped", len(rows), skipped)
    return rows
