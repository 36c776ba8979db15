"""Core components for cgmctl."""

from .alerts import AlertEvaluator, Notification, NotificationSettings
from .cache import DurableCache, EphemeralCache
from .config import Config, ConfigWatcher, load_config
from .display import DisplaySnapshot, DisplayStatus, PollerContext, build_snapshot
from .logging import get_logger, setup_logging
from .models import FetchKind, FetchState, Reading, Thresholds, TrendDirection, Units
from .poller import Poller

__all__ = [
    "AlertEvaluator",
    "Config",
    "ConfigWatcher",
    "DisplaySnapshot",
    "DisplayStatus",
    "DurableCache",
    "EphemeralCache",
    "FetchKind",
    "FetchState",
    "Notification",
    "NotificationSettings",
    "Poller",
    "PollerContext",
    "Reading",
    "Thresholds",
    "TrendDirection",
    "Units",
    "build_snapshot",
    "get_logger",
    "load_config",
    "setup_logging",
]
