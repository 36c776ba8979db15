"""Tests for the provider registry."""

import logging

import pytest

from cgmctl.core.config import Config
from cgmctl.core.secrets import MemorySecretStore
from cgmctl.providers.librelink import LibreLinkProvider
from cgmctl.providers.nightscout import NightscoutProvider
from cgmctl.providers.registry import (
    _providers,
    get_provider,
    list_providers,
    register_provider,
)

from conftest import ScriptedProvider

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def reset_registry():
    """Restore the registry after each test."""
    original = _providers.copy()
    yield
    _providers.clear()
    _providers.update(original)


class TestRegistry:
    """Test provider lookup."""

    def test_builtins_listed(self):
        assert {"nightscout", "librelink"} <= set(list_providers())

    def test_get_by_name(self):
        assert isinstance(get_provider("nightscout", Config()), NightscoutProvider)
        assert isinstance(get_provider("librelink", Config()), LibreLinkProvider)

    def test_name_is_case_insensitive(self):
        assert isinstance(get_provider("LibreLink", Config()), LibreLinkProvider)

    def test_none_gives_default(self):
        assert isinstance(get_provider(None, Config()), NightscoutProvider)

    def test_unknown_falls_back_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="cgmctl"):
            provider = get_provider("dexcom-share", Config())

        assert isinstance(provider, NightscoutProvider)
        assert "Unknown provider: dexcom-share" in caplog.text

    def test_kwargs_passed_through(self):
        secrets = MemorySecretStore()
        provider = get_provider("librelink", Config(), secrets=secrets)
        assert provider.secrets is secrets

    def test_register_custom_provider(self):
        register_provider("scripted", ScriptedProvider)

        assert "scripted" in list_providers()
        assert isinstance(get_provider("scripted", Config()), ScriptedProvider)

    def test_builtins_reload_after_clear(self):
        _providers.clear()
        assert isinstance(get_provider("nightscout", Config()), NightscoutProvider)
