from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import delete
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.fire import FireDetection
from app.services.firms_parser import (
    DetectionRecord,
    FirmsRowError,
    build_natural_key,
    parse_firms_row,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 3000

# Bound parameters allowed in one statement. A multi-row INSERT binds every
# column of every row, so the row count per statement is capped at
# limit // columns; with 18 columns that is 3640 rows on PostgreSQL and
# 1820 on SQLite, so the SQLite cap applies below the default batch size.
_MAX_BIND_PARAMS = {
    "postgresql": 65535,
    "sqlite": 32766,
}

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass
class IngestionResult:
    received: int = 0
    inserted: int = 0
    duplicates: int = 0
    failures: List[Tuple[int, Optional[str], str]] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def as_dict(self) -> dict:
        return {
            "received": self.received,
            "inserted": self.inserted,
            "duplicates": self.duplicates,
            "failed": self.failed,
        }


def _chunks(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class IngestionService:
    """Insert-or-ignore persistence of parsed FIRMS detections."""
    def __init__(self, db: Session):
        self.db = db

    def _insert_factory(self, dialect: str):
        try:
            return _INSERT_BY_DIALECT[dialect]
        except KeyError as exc:
            raise RuntimeError(f"Unsupported database dialect for ingestion: {dialect}") from exc

    def bulk_insert(
        self,
        records: Sequence[DetectionRecord],
        batch_size: Optional[int] = None,
    ) -> int:
        """
        Insert records, skipping natural-key duplicates.

        Returns the number of rows actually inserted. Duplicates inside the
        input are collapsed first (the first occurrence wins).
        """
        batch_size = batch_size or settings.INGEST_BATCH_SIZE or DEFAULT_BATCH_SIZE
        unique = {}
        for record in records:
            unique.setdefault(record.natural_key, record)
        if not unique:
            return 0

        dialect = self.db.get_bind().dialect.name
        insert = self._insert_factory(dialect)
        rows = [record.to_row() for record in unique.values()]
        batch_size = min(batch_size, _MAX_BIND_PARAMS[dialect] // len(rows[0]))
        inserted = 0
        for chunk in _chunks(rows, batch_size):
            stmt = (
                insert(FireDetection)
                .values(list(chunk))
                .on_conflict_do_nothing(index_elements=["natural_key"])
                .returning(FireDetection.id)
            )
            inserted += len(self.db.execute(stmt).scalars().all())

        logger.info(
            "Bulk insert: %s candidates, %s inserted, batch_size=%s",
            len(rows),
            inserted,
            batch_size,
        )
        return inserted

    def ingest_rows(
        self,
        rows: Sequence[Mapping[str, Any]],
        now: Optional[datetime] = None,
        batch_size: Optional[int] = None,
    ) -> IngestionResult:
        """Parse raw feed rows and insert the valid ones."""
        now = now or datetime.now(timezone.utc)
        result = IngestionResult(received=len(rows))
        records: List[DetectionRecord] = []

        for index, row in enumerate(rows):
            try:
                records.append(parse_firms_row(row, now=now))
            except FirmsRowError as exc:
                result.failures.append((index, _safe_key(row), str(exc)))

        if result.failures:
            logger.warning(
                "Rejected %s of %s FIRMS rows: %s",
                len(result.failures),
                len(rows),
                result.failures[:20],
            )

        result.inserted = self.bulk_insert(records, batch_size=batch_size)
        result.duplicates = len(records) - result.inserted
        return result

    def purge_stale_detections(
        self, days: Optional[int] = None, now: Optional[datetime] = None
    ) -> int:
        """Delete unclustered detections older than the retention window."""
        days = days or settings.DETECTION_RETENTION_DAYS
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=days)

        stmt = (
            delete(FireDetection)
            .where(FireDetection.fire_incident_id.is_(None))
            .where(FireDetection.detected_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        deleted = self.db.execute(stmt).rowcount or 0
        logger.info("Purged %s unclustered detections older than %s", deleted, cutoff)
        return deleted


def _safe_key(row: Mapping[str, Any]) -> Optional[str]:
    try:
        return build_natural_key(row)
    except (TypeError, ValueError):
        return None
