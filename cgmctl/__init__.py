"""
cgmctl - Continuous Glucose Monitor Control

Polls a remote CGM telemetry provider (Nightscout or LibreLink Up),
keeps a durable view of the latest reading and history, and derives
trend, delta, time-in-range and alert transitions for display.
"""

__version__ = "0.1.0"

from .core.models import Reading, Thresholds, TrendDirection
from .core.poller import Poller

__all__ = ["Poller", "Reading", "Thresholds", "TrendDirection", "__version__"]
