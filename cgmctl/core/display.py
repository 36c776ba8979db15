"""
Display-ready snapshot of the poller state.

The display collaborator (terminal renderer, panel widget, ...) only
ever sees a DisplaySnapshot; it never reads poller internals.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .analytics import (
    DisplayColor,
    TrendSymbol,
    classify_color,
    compute_delta,
    compute_trend,
    format_delta,
    format_time_ago,
    format_value,
    time_in_range,
)
from .models import HistoryBatch, Reading, Thresholds, Units


class DisplayStatus(Enum):
    """Top-level state of the display."""
    OK = "ok"
    WAITING = "waiting"
    NO_CONFIG = "no-config"
    ERROR = "error"


@dataclass
class PollerContext:
    """Mutable state shared by the poller with analytics and display."""
    reading: Optional[Reading] = None
    raw_history: HistoryBatch = field(default_factory=list)
    history: HistoryBatch = field(default_factory=list)
    window_hours: float = 6
    generation: int = 0
    last_error: Optional[Exception] = None
    error_indicator: bool = False

    def clear_data(self) -> None:
        self.reading = None
        self.raw_history = []
        self.history = []
        self.last_error = None
        self.error_indicator = False


@dataclass(frozen=True)
class DisplaySnapshot:
    """Everything the display needs for one refresh."""
    status: DisplayStatus
    provider: str
    units: Units
    value_text: str = "--"
    trend: Optional[TrendSymbol] = None
    delta_text: str = ""
    time_in_range: Optional[int] = None
    time_ago: str = "never"
    color: DisplayColor = DisplayColor.STALE
    window_hours: float = 6
    history_points: int = 0
    reading: Optional[Reading] = None

    @property
    def label(self) -> str:
        """Compact panel text, e.g. "142 ↗" or "No Config"."""
        if self.status is DisplayStatus.NO_CONFIG:
            return "No Config"
        if self.status is DisplayStatus.ERROR:
            return "ERR"
        if self.trend is None:
            return self.value_text
        return f"{self.value_text} {self.trend.value}"

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "provider": self.provider,
            "units": self.units.value,
            "value": self.value_text,
            "trend": self.trend.value if self.trend else None,
            "delta": self.delta_text or None,
            "time_in_range": self.time_in_range,
            "updated": self.time_ago,
            "color": self.color.value,
            "window_hours": self.window_hours,
            "history_points": self.history_points,
            "timestamp": self.reading.timestamp.isoformat() if self.reading else None,
        }


def build_snapshot(
    context: PollerContext,
    *,
    provider: str,
    configured: bool,
    units: Units,
    thresholds: Thresholds,
    stale_minutes: float,
    now: datetime,
) -> DisplaySnapshot:
    """Derive the display state from the poller context."""
    reading = context.reading

    if not configured:
        status = DisplayStatus.NO_CONFIG
    elif reading is None and context.error_indicator:
        status = DisplayStatus.ERROR
    elif reading is None:
        status = DisplayStatus.WAITING
    else:
        status = DisplayStatus.OK

    if reading is None:
        return DisplaySnapshot(
            status=status,
            provider=provider,
            units=units,
            time_in_range=time_in_range(context.history, thresholds),
            window_hours=context.window_hours,
            history_points=len(context.history),
        )

    return DisplaySnapshot(
        status=status,
        provider=provider,
        units=units,
        value_text=format_value(reading.value, units),
        trend=compute_trend(reading, context.raw_history),
        delta_text=format_delta(compute_delta(context.raw_history), units),
        time_in_range=time_in_range(context.history, thresholds),
        time_ago=format_time_ago(reading.timestamp, now),
        color=classify_color(reading, thresholds, now, stale_minutes),
        window_hours=context.window_hours,
        history_points=len(context.history),
        reading=reading,
    )
