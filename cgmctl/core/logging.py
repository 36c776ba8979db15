"""
Logging configuration for cgmctl.

Provides centralized logging setup with verbosity levels:
- 0 (default): WARNING - errors and warnings only
- 1 (-v):      INFO - fetch results, provider switches, alerts
- 2 (-vv):     DEBUG - request URLs, retry scheduling, cache hits
- 3+ (-vvv):   TRACE - everything (raw payload previews, timer events)

ProviderLoggerAdapter adds the active provider and config generation
to messages, so log lines from a superseded provider are easy to spot.
"""

import logging
import re
import sys
from dataclasses import dataclass
from typing import Optional

# Custom TRACE level (more verbose than DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")


def trace(self, message, *args, **kwargs):
    """Log at TRACE level."""
    if self.isEnabledFor(TRACE):
        self._log(TRACE, message, args, **kwargs)


logging.Logger.trace = trace


@dataclass
class ProviderContext:
    """Provider identity attached to log messages."""
    provider: Optional[str] = None
    generation: Optional[int] = None

    def format_prefix(self) -> str:
        """Format the context as a log prefix.

        Examples:
            [nightscout]
            [librelink:2]
        """
        if not self.provider:
            return ""
        if self.generation is None:
            return f"[{self.provider}]"
        return f"[{self.provider}:{self.generation}]"


class ProviderLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that includes provider context in messages.

    Usage:
        ctx = ProviderContext(provider="nightscout", generation=1)
        logger = ProviderLoggerAdapter(get_logger("cgmctl.core.poller"), ctx)
        logger.info("History fetched")  # Logs: [nightscout:1] History fetched
    """

    def __init__(self, logger: logging.Logger, context: ProviderContext):
        super().__init__(logger, {})
        self.context = context

    def process(self, msg, kwargs):
        prefix = self.context.format_prefix()
        if prefix:
            return f"{prefix} {msg}", kwargs
        return msg, kwargs

    def update_context(self, **kwargs):
        """Update context fields.

        Example:
            logger.update_context(provider="librelink", generation=3)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)

    def trace(self, msg, *args, **kwargs):
        if self.isEnabledFor(TRACE):
            self.log(TRACE, msg, *args, **kwargs)


_TOKEN_PATTERN = re.compile(r"(token=)[^&\s]+")


def redact_url(url: str) -> str:
    """Hide the value of any token= query parameter."""
    return _TOKEN_PATTERN.sub(r"\1***", url)


def mask_email(email: Optional[str]) -> str:
    """Keep the first three characters of an email address."""
    if not email:
        return "NOT SET"
    return f"{email[:3]}***"


def setup_logging(verbosity: int = 0, quiet: bool = False) -> logging.Logger:
    """Configure logging based on verbosity level.

    Args:
        verbosity: Number of -v flags (0=WARNING, 1=INFO, 2=DEBUG, 3+=TRACE)
        quiet: If True, suppress all output except errors

    Returns:
        The configured root logger for cgmctl
    """
    if quiet:
        level = logging.ERROR
    elif verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    elif verbosity == 2:
        level = logging.DEBUG
    else:  # verbosity >= 3
        level = TRACE

    logger = logging.getLogger("cgmctl")
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    if verbosity >= 2:
        fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        datefmt = "%H:%M:%S"
    elif verbosity == 1:
        fmt = "[%(levelname)s] %(message)s"
        datefmt = None
    else:
        fmt = "%(message)s"
        datefmt = None

    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    logger.addHandler(handler)

    # At TRACE level, also show httpx/httpcore request logging
    if verbosity >= 3:
        logging.getLogger().setLevel(logging.DEBUG)

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger for a module.

    Args:
        name: Module name (e.g., "cgmctl.providers.nightscout").
              If None, returns the root cgmctl logger.
    """
    if name is None:
        return logging.getLogger("cgmctl")
    return logging.getLogger(name)


def get_provider_logger(
    name: str,
    provider: Optional[str] = None,
    generation: Optional[int] = None,
) -> ProviderLoggerAdapter:
    """Get a logger with provider context.

    Example:
        logger = get_provider_logger("cgmctl.core.poller", provider="nightscout")
    """
    return ProviderLoggerAdapter(
        get_logger(name), ProviderContext(provider=provider, generation=generation)
    )
