"""Pytest configuration for integration tests.

Everything here runs on the real event loop and real timers, so these
tests are slower than the unit suite and are marked as integration.
"""

import pytest


def pytest_collection_modifyitems(items):
    """Mark all tests in integration directory as integration tests."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
