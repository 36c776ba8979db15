"""
Two-tier cache for readings and history.

DurableCache persists the last reading and last history batch as one
JSON document (``{"lastReading": {...}, "history": [...]}``) so the
display can show last-known data right after a restart. Every write
replaces the whole document; only the slots passed to ``save`` change.

EphemeralCache keeps the last history batch in memory for one history
interval so a forced history refresh does not hit the network twice.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from .exceptions import DataError
from .models import CacheEntry, HistoryBatch, Reading, parse_timestamp

logger = logging.getLogger("cgmctl.core.cache")

CACHE_FILENAME = "cache.json"

_UNSET: Any = object()


def default_cache_path() -> Path:
    base = os.environ.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return Path(base).expanduser() / "cgmctl" / CACHE_FILENAME


def _decode_history(raw: Any) -> Optional[HistoryBatch]:
    if not isinstance(raw, list):
        return None
    history: HistoryBatch = []
    for item in raw:
        try:
            history.append(Reading.from_dict(item))
        except DataError as e:
            logger.debug(f"Skipping cached history entry: {e}")
    return history


class DurableCache:
    """JSON document cache on disk. Never raises."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path or default_cache_path()

    def _read_document(self) -> Optional[dict]:
        try:
            if not self.path.exists():
                return None
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Error loading CGM cache {self.path}: {e}")
            return None
        if not isinstance(document, dict):
            logger.warning(f"Ignoring CGM cache {self.path}: not a JSON object")
            return None
        return document

    def load(self) -> Optional[CacheEntry]:
        """Return the persisted entry, or None if absent or unreadable."""
        document = self._read_document()
        if document is None:
            return None

        reading = None
        if document.get("lastReading") is not None:
            try:
                reading = Reading.from_dict(document["lastReading"])
            except DataError as e:
                logger.warning(f"Ignoring cached last reading: {e}")

        history = _decode_history(document.get("history"))

        captured_at = datetime.now(timezone.utc)
        if document.get("capturedAt"):
            try:
                captured_at = parse_timestamp(document["capturedAt"])
            except ValueError:
                pass

        if reading is None and history is None:
            return None
        return CacheEntry(reading=reading, history=history, captured_at=captured_at)

    def save(
        self,
        reading: Optional[Reading] = _UNSET,
        history: Optional[HistoryBatch] = _UNSET,
        now: Optional[datetime] = None,
    ) -> bool:
        """Replace the given slots and rewrite the document.

        Slots that are not passed keep their persisted value. Passing
        None for a slot removes it.

        Returns:
            True if the document was written
        """
        document = self._read_document() or {}
        if reading is not _UNSET:
            document["lastReading"] = reading.to_dict() if reading is not None else None
        if history is not _UNSET:
            document["history"] = (
                [r.to_dict() for r in history] if history is not None else None
            )
        document["capturedAt"] = (now or datetime.now(timezone.utc)).isoformat()

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".cache-", suffix=".json", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.error(f"Error saving CGM cache {self.path}: {e}")
            return False
        return True

    def clear(self) -> None:
        """Delete the cache document."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Error clearing CGM cache {self.path}: {e}")


class EphemeralCache:
    """In-memory history cache valid for ``ttl``."""

    def __init__(self, ttl: timedelta):
        self.ttl = ttl
        self._history: Optional[HistoryBatch] = None
        self._captured_at: Optional[datetime] = None

    def get(self, now: datetime) -> Optional[HistoryBatch]:
        """Return the stored history if still fresh at ``now``."""
        if self._history is None or self._captured_at is None:
            return None
        if now - self._captured_at < self.ttl:
            return self._history
        return None

    def put(self, history: HistoryBatch, now: datetime) -> None:
        self._history = history
        self._captured_at = now

    def clear(self) -> None:
        self._history = None
        self._captured_at = None
