"""
NASA FIRMS area API client.

Downloads the near-real-time CSV for each configured source:
    {base}/area/csv/{MAP_KEY}/{SOURCE}/{AREA}/{DAYS}
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import requests

from app.core.config import settings
from app.services.firms_parser import parse_firms_csv

logger = logging.getLogger(__name__)

MAX_DAYS_BACK = 10


class FirmsError(RuntimeError):
    """Raised when a FIRMS download fails (network, HTTP or payload)."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


@dataclass
class FirmsFetchResult:
    rows: List[Dict[str, str]] = field(default_factory=list)
    rows_by_source: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def all_failed(self) -> bool:
        return not self.rows_by_source and bool(self.errors)


class FirmsClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        area: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        if api_key is None and settings.NASA_FIRMS_API_KEY is not None:
            api_key = settings.NASA_FIRMS_API_KEY.get_secret_value()
        self.api_key = api_key
        self.base_url = (base_url or settings.FIRMS_BASE_URL).rstrip("/")
        self.area = area or settings.FIRMS_AREA
        self.timeout = timeout or settings.FIRMS_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", settings.FIRMS_USER_AGENT)

    def build_url(self, source: str, days_back: int) -> str:
        return f"{self.base_url}/area/csv/{self.api_key}/{source}/{self.area}/{days_back}"

    def fetch_rows(self, source: str, days_back: int = 1) -> List[Dict[str, str]]:
        """Download one source and return its CSV rows."""
        if not self.api_key:
            raise FirmsError(source, "NASA_FIRMS_API_KEY is not configured")
        if not 1 <= days_back <= MAX_DAYS_BACK:
            raise FirmsError(source, f"days_back must be between 1 and {MAX_DAYS_BACK}")

        try:
            response = self.session.get(self.build_url(source, days_back), timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as exc:
            raise FirmsError(source, str(exc)) from exc

        body = response.text.lstrip()
        if not body.lower().startswith("latitude"):
            # FIRMS answers 200 with a plain-text message for bad keys or sources
            raise FirmsError(source, f"unexpected payload: {body[:120]!r}")

        rows = parse_firms_csv(body)
        logger.info("FIRMS %s: %s rows (days_back=%s)", source, len(rows), days_back)
        return rows

    def fetch_all(
        self, sources: Optional[Sequence[str]] = None, days_back: int = 1
    ) -> FirmsFetchResult:
        """Download every source concurrently; failed sources are reported, not raised."""
        sources = list(sources or settings.FIRMS_SOURCES)
        result = FirmsFetchResult()
        if not sources:
            return result

        with ThreadPoolExecutor(max_workers=len(sources)) as executor:
            futures = {
                source: executor.submit(self.fetch_rows, source, days_back)
                for source in sources
            }
            for source, future in futures.items():
                try:
                    rows = future.result()
                except FirmsError as exc:
                    logger.warning("FIRMS source %s failed: %s", source, exc.reason)
                    result.errors[source] = exc.reason
                    continue
                result.rows.extend(rows)
                result.rows_by_source[source] = len(rows)

        return result
