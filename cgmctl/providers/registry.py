"""
Provider registry keyed by the ``provider`` config value.
"""

import logging
from typing import Type

from .base import ProviderBase

logger = logging.getLogger("cgmctl.providers.registry")

DEFAULT_PROVIDER = "nightscout"

# Global registry
_providers: dict[str, Type[ProviderBase]] = {}


def register_provider(name: str, provider_class: Type[ProviderBase]) -> None:
    """Register a provider class."""
    _providers[name] = provider_class


def get_provider(name: str | None, config, **kwargs) -> ProviderBase:
    """Build a provider instance by name.

    Unknown names fall back to Nightscout with a warning.
    """
    _load_builtin_providers()
    key = (name or DEFAULT_PROVIDER).lower()
    if key not in _providers:
        available = ", ".join(sorted(_providers)) or "none"
        logger.warning(f"Unknown provider: {name}. Available: {available}. "
                       f"Falling back to {DEFAULT_PROVIDER}")
        key = DEFAULT_PROVIDER
    return _providers[key](config, **kwargs)


def list_providers() -> list[str]:
    """List available provider names."""
    _load_builtin_providers()
    return list(_providers.keys())


def _load_builtin_providers() -> None:
    if DEFAULT_PROVIDER in _providers and "librelink" in _providers:
        return
    from .librelink import LibreLinkProvider
    from .nightscout import NightscoutProvider

    _providers.setdefault("nightscout", NightscoutProvider)
    _providers.setdefault("librelink", LibreLinkProvider)
