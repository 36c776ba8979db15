"""
Shared utilities for command implementations.
"""

import asyncio
from pathlib import Path
from typing import Any, Coroutine, Optional

import click

from ..core.config import Config, load_config
from ..core.secrets import KeyringSecretStore
from ..providers import ProviderBase, get_provider


def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Execute an async coroutine synchronously.

    Usage:
        def my_command(...):
            run_async(_my_command_async(...))
    """
    return asyncio.run(coro)


def load_context_config(ctx: click.Context) -> Config:
    """Load the config named by the global --config option."""
    path: Optional[Path] = ctx.obj.get("config_path") if ctx.obj else None
    return load_config(path)


def build_provider(config: Config) -> ProviderBase:
    """Provider for one-shot commands; passwords may come from the keychain."""
    return get_provider(config.provider, config, secrets=KeyringSecretStore())
