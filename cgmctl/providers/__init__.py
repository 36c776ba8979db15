"""CGM data providers for cgmctl."""

from .base import ProviderBase
from .registry import get_provider, list_providers, register_provider

__all__ = ["ProviderBase", "get_provider", "list_providers", "register_provider"]
