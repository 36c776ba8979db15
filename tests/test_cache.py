"""Tests for cgmctl/core/cache.py - Durable and in-memory caches."""

import json
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from cgmctl.core.cache import DurableCache, EphemeralCache, default_cache_path
from cgmctl.core.models import Reading, TrendDirection

from conftest import START, make_history

pytestmark = pytest.mark.unit


@pytest.fixture
def cache(tmp_path):
    return DurableCache(tmp_path / "cgmctl" / "cache.json")


class TestDurableCache:
    """Test the on-disk JSON document."""

    def test_load_missing_returns_none(self, cache):
        assert cache.load() is None

    def test_save_and_load_reading(self, cache):
        reading = Reading(value=142, timestamp=START, direction=TrendDirection.RISING)

        assert cache.save(reading=reading, now=START) is True

        entry = cache.load()
        assert entry.reading == reading
        assert entry.history is None
        assert entry.captured_at == START

    def test_save_history_keeps_reading(self, cache):
        """Each save replaces only the slots it is given."""
        reading = Reading(value=142, timestamp=START)
        history = make_history([100, 110, 120])

        cache.save(reading=reading, now=START)
        cache.save(history=history, now=START + timedelta(minutes=5))

        entry = cache.load()
        assert entry.reading == reading
        assert [r.value for r in entry.history] == [100, 110, 120]
        assert entry.captured_at == START + timedelta(minutes=5)

    def test_history_is_replaced_wholesale(self, cache):
        cache.save(history=make_history([100, 110, 120]), now=START)
        cache.save(history=make_history([90]), now=START)

        assert [r.value for r in cache.load().history] == [90]

    def test_document_shape(self, cache):
        cache.save(reading=Reading(value=99, timestamp=START), history=[], now=START)

        document = json.loads(cache.path.read_text())
        assert set(document) == {"lastReading", "history", "capturedAt"}
        assert document["lastReading"]["sgv"] == 99
        assert document["history"] == []

    def test_invalid_json_returns_none(self, cache):
        cache.path.parent.mkdir(parents=True)
        cache.path.write_text("{not json")

        assert cache.load() is None

    def test_non_object_document_returns_none(self, cache):
        cache.path.parent.mkdir(parents=True)
        cache.path.write_text("[1, 2, 3]")

        assert cache.load() is None

    def test_bad_entries_are_skipped(self, cache):
        cache.path.parent.mkdir(parents=True)
        cache.path.write_text(json.dumps({
            "lastReading": {"sgv": "high"},
            "history": [
                {"sgv": 100, "date": 1772366400000},
                {"sgv": None},
            ],
        }))

        entry = cache.load()
        assert entry.reading is None
        assert [r.value for r in entry.history] == [100]

    def test_invalid_json_is_overwritten_on_save(self, cache):
        cache.path.parent.mkdir(parents=True)
        cache.path.write_text("garbage")

        assert cache.save(reading=Reading(value=100, timestamp=START), now=START)
        assert cache.load().reading.value == 100

    def test_write_failure_is_logged_not_raised(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file where a directory should be")
        cache = DurableCache(blocker / "cache.json")

        assert cache.save(reading=Reading(value=100, timestamp=START)) is False

    def test_unreadable_directory_is_logged_not_raised(self, cache):
        """A PermissionError while probing the path is treated as no cache."""
        with patch.object(Path, "exists", side_effect=PermissionError("denied")):
            assert cache.load() is None
            assert cache.save(reading=Reading(value=100, timestamp=START), now=START) is True

        assert cache.load().reading.value == 100

    def test_no_temp_files_left_behind(self, cache):
        cache.save(history=make_history([100, 110]), now=START)

        assert [p.name for p in cache.path.parent.iterdir()] == ["cache.json"]

    def test_clear(self, cache):
        cache.save(reading=Reading(value=100, timestamp=START), now=START)
        cache.clear()
        cache.clear()

        assert cache.load() is None

    def test_default_path_uses_xdg_cache_home(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))
        assert default_cache_path() == tmp_path / "cgmctl" / "cache.json"


class TestEphemeralCache:
    """Test the in-memory history cache."""

    def test_empty_cache_misses(self):
        assert EphemeralCache(timedelta(minutes=5)).get(START) is None

    def test_hit_within_ttl(self):
        cache = EphemeralCache(timedelta(minutes=5))
        history = make_history([100, 110])
        cache.put(history, START)

        assert cache.get(START + timedelta(minutes=4, seconds=59)) is history

    def test_miss_at_ttl(self):
        cache = EphemeralCache(timedelta(minutes=5))
        cache.put(make_history([100]), START)

        assert cache.get(START + timedelta(minutes=5)) is None

    def test_put_replaces(self):
        cache = EphemeralCache(timedelta(minutes=5))
        cache.put(make_history([100]), START)
        newer = make_history([200])
        cache.put(newer, START + timedelta(minutes=1))

        assert cache.get(START + timedelta(minutes=2)) is newer

    def test_clear(self):
        cache = EphemeralCache(timedelta(minutes=5))
        cache.put(make_history([100]), START)
        cache.clear()

        assert cache.get(START) is None
