"""
Nightscout provider.

Reads sensor glucose entries from ``/api/v1/entries.json`` using the
site's API token. The history request is sized from the detected CGM
sampling interval so it spans the retention window with headroom.
"""

import math
import statistics
from typing import Any

from ..core.exceptions import DataError
from ..core.logging import redact_url
from ..core.models import HistoryBatch, Reading
from .base import ProviderBase

API_PATH = "/api/v1/entries.json"
RETENTION_HOURS = 50
FETCH_HEADROOM = 1.2
DEFAULT_CGM_INTERVAL = 1  # minutes

INTERVAL_SAMPLE_SIZE = 20
INTERVAL_MIN_MINUTES = 0.5
INTERVAL_MAX_MINUTES = 30


def normalize_url(url: str | None) -> str | None:
    """Trim, drop one trailing slash and default the scheme to https."""
    if not url:
        return None
    url = url.strip()
    if url.endswith("/"):
        url = url[:-1]
    if not url:
        return None
    if not url.startswith("http"):
        url = "https://" + url
    return url


def detect_cgm_interval(readings: list[Reading]) -> float:
    """Estimate the sampling interval in minutes.

    Uses the gaps between neighbouring entries among the first twenty,
    keeps gaps within [0.5, 30] minutes, drops outliers beyond two
    standard deviations and averages the rest. Falls back to one minute
    when fewer than two gaps survive.
    """
    sample = readings[:INTERVAL_SAMPLE_SIZE]
    gaps = []
    for previous, current in zip(sample, sample[1:]):
        minutes = abs((previous.timestamp - current.timestamp).total_seconds()) / 60
        if INTERVAL_MIN_MINUTES <= minutes <= INTERVAL_MAX_MINUTES:
            gaps.append(minutes)

    if len(gaps) < 2:
        return DEFAULT_CGM_INTERVAL

    mean = statistics.fmean(gaps)
    spread = statistics.pstdev(gaps)
    kept = [gap for gap in gaps if abs(gap - mean) <= 2 * spread]
    if len(kept) < 2:
        return DEFAULT_CGM_INTERVAL
    return round(statistics.fmean(kept))


def history_count(interval_minutes: float, hours: float = RETENTION_HOURS) -> int:
    """Number of entries to request to cover ``hours``."""
    return math.ceil(hours * 60 / max(interval_minutes, 1) * FETCH_HEADROOM)


class NightscoutProvider(ProviderBase):
    """Nightscout REST API provider."""

    name = "nightscout"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.cgm_interval: float = DEFAULT_CGM_INTERVAL

    def is_configured(self) -> bool:
        return bool(self.config.get("nightscoutUrl") and self.config.get("apiToken"))

    def required_config(self) -> list[str]:
        return ["nightscoutUrl", "apiToken"]

    @property
    def base_url(self) -> str | None:
        return normalize_url(self.config.get("nightscoutUrl"))

    def build_url(self, count: int = 1) -> str | None:
        base = self.base_url
        token = self.config.get("apiToken")
        if not base or not token:
            return None
        return f"{base}{API_PATH}?count={count}&token={token}"

    async def _fetch_entries(self, count: int) -> list[Any]:
        self.ensure_configured()
        url = self.build_url(count)
        payload = await self._request_json("GET", url, log_url=redact_url(url))
        if not isinstance(payload, list):
            raise DataError(
                self.name,
                f"expected a list of entries, got {type(payload).__name__}",
                response_preview=str(payload)[:200],
            )
        if not payload:
            raise DataError(self.name, "no data in response")
        return payload

    async def fetch_current(self) -> Reading:
        entries = await self._fetch_entries(1)
        reading = Reading.from_dict(entries[0], provider=self.name)
        self.logger.info(f"Fetched current reading: {reading.value:g} mg/dL")
        return reading

    async def fetch_history(self) -> HistoryBatch:
        entries = await self._fetch_entries(history_count(self.cgm_interval))

        readings: HistoryBatch = []
        for entry in entries:
            try:
                readings.append(Reading.from_dict(entry, provider=self.name))
            except DataError as e:
                self.logger.debug(f"Skipping history entry: {e}")
        if not readings:
            raise DataError(
                self.name,
                f"none of {len(entries)} history entries were usable",
                response_preview=str(entries[0])[:200],
            )

        # Entries arrive newest first; interval detection uses that order.
        self.cgm_interval = detect_cgm_interval(readings)
        self.logger.info(
            f"Fetched {len(readings)} history entries "
            f"(CGM interval {self.cgm_interval:g} min)"
        )
        return sorted(readings, key=lambda r: r.timestamp)

    def get_cgm_interval(self) -> float:
        return self.cgm_interval
