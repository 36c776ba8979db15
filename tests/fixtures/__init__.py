"""
Fixtures package for cgmctl testing.

Fixture modules:
- nightscout_entries: Nightscout /api/v1/entries.json payloads
- librelink_responses: LibreLink Up login, connections and graph payloads

Usage:
    def test_parse(uploader_sgv_entry):
        assert uploader_sgv_entry["type"] == "sgv"
"""

from .librelink_responses import *
from .nightscout_entries import *
