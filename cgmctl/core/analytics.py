"""
Derived metrics for the display: trend, delta, time-in-range, staleness.

Every function here is pure and works in mg/dL; unit conversion happens
only in the ``format_*`` helpers. Inputs are normalized readings, so
"valid" means a positive value with a timestamp, which Reading already
guarantees.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional

from .models import HistoryBatch, Reading, Thresholds, TrendDirection, Units, to_mmol

TREND_SAMPLE_SIZE = 6
TREND_COMPARE_INDEX = 3
TREND_MAX_SPAN_MINUTES = 60

DELTA_SAMPLE_SIZE = 10
DELTA_MIN_MINUTES = 10
DELTA_MAX_MINUTES = 30


class TrendSymbol(Enum):
    """Display trend classes, valued by their arrow."""
    RAPID_RISE = "↗↗"
    MODERATE_RISE = "↗"
    STABLE = "→"
    MODERATE_FALL = "↘"
    RAPID_FALL = "↘↘"
    VERY_RAPID_FALL = "↓"


# Lower bounds in mg/dL per minute, checked in order
TREND_THRESHOLDS: list[tuple[float, TrendSymbol]] = [
    (2.5, TrendSymbol.RAPID_RISE),
    (1.2, TrendSymbol.MODERATE_RISE),
    (0.6, TrendSymbol.STABLE),
    (-1.2, TrendSymbol.MODERATE_FALL),
    (-2.5, TrendSymbol.RAPID_FALL),
]

_DIRECTION_SYMBOLS = {
    TrendDirection.RISING_FAST: TrendSymbol.RAPID_RISE,
    TrendDirection.RISING: TrendSymbol.MODERATE_RISE,
    TrendDirection.STABLE: TrendSymbol.STABLE,
    TrendDirection.FALLING: TrendSymbol.MODERATE_FALL,
    TrendDirection.FALLING_FAST: TrendSymbol.RAPID_FALL,
}


class DisplayColor(Enum):
    """Color class of the current reading."""
    LOW = "low"
    HIGH = "high"
    NORMAL = "normal"
    STALE = "stale"


@dataclass(frozen=True)
class Delta:
    """Change between the newest reading and an earlier comparison."""
    value: float
    minutes: int


def _newest_first(history: Iterable[Reading], limit: int) -> list[Reading]:
    return sorted(history, key=lambda r: r.timestamp, reverse=True)[:limit]


def _minutes_between(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds() / 60


def classify_direction(direction: TrendDirection) -> Optional[TrendSymbol]:
    """Map a provider direction to a symbol; None for unknown."""
    return _DIRECTION_SYMBOLS.get(direction)


def classify_rate(mgdl_per_minute: float) -> TrendSymbol:
    for bound, symbol in TREND_THRESHOLDS:
        if mgdl_per_minute >= bound:
            return symbol
    return TrendSymbol.VERY_RAPID_FALL


def trend_rate(history: HistoryBatch) -> Optional[float]:
    """Rate of change in mg/dL per minute over the recent samples.

    Compares the newest entry with the fourth newest (or the oldest when
    fewer are available). Returns None when fewer than two samples exist
    or their time span is not within (0, 60] minutes.
    """
    recent = _newest_first(history, TREND_SAMPLE_SIZE)
    if len(recent) < 2:
        return None

    newest = recent[0]
    older = recent[min(TREND_COMPARE_INDEX, len(recent) - 1)]
    span = _minutes_between(newest.timestamp, older.timestamp)
    if span <= 0 or span > TREND_MAX_SPAN_MINUTES:
        return None
    return (newest.value - older.value) / span


def compute_trend(
    reading: Optional[Reading], history: HistoryBatch
) -> Optional[TrendSymbol]:
    """Trend symbol for the current reading.

    A provider-supplied direction wins; otherwise the trend is computed
    from history.
    """
    if reading is not None:
        symbol = classify_direction(reading.direction)
        if symbol is not None:
            return symbol

    rate = trend_rate(history)
    if rate is None:
        return None
    return classify_rate(rate)


def compute_delta(history: HistoryBatch) -> Optional[Delta]:
    """Delta between the newest entry and one 10-30 minutes older.

    Falls back to the second newest entry when nothing lies in that
    window. Returns None with fewer than two entries.
    """
    recent = _newest_first(history, DELTA_SAMPLE_SIZE)
    if len(recent) < 2:
        return None

    newest = recent[0]
    comparison = recent[1]
    for entry in recent[1:]:
        minutes_ago = _minutes_between(newest.timestamp, entry.timestamp)
        if DELTA_MIN_MINUTES <= minutes_ago <= DELTA_MAX_MINUTES:
            comparison = entry
            break

    return Delta(
        value=newest.value - comparison.value,
        minutes=round(_minutes_between(newest.timestamp, comparison.timestamp)),
    )


def time_in_range(history: HistoryBatch, thresholds: Thresholds) -> Optional[int]:
    """Percentage of entries within [low, high]; None for empty history."""
    if not history:
        return None
    in_range = sum(1 for r in history if thresholds.contains(r.value))
    return round(100 * in_range / len(history))


def window_history(raw: HistoryBatch, hours: float, now: datetime) -> HistoryBatch:
    """Entries within [now - hours, now], oldest first."""
    start = now - timedelta(hours=hours)
    windowed = [r for r in raw if start <= r.timestamp <= now and r.value > 0]
    return sorted(windowed, key=lambda r: r.timestamp)


def minutes_old(reading: Reading, now: datetime) -> float:
    return _minutes_between(now, reading.timestamp)


def is_stale(reading: Optional[Reading], now: datetime, stale_minutes: float) -> bool:
    if reading is None:
        return True
    return minutes_old(reading, now) > stale_minutes


def classify_color(
    reading: Optional[Reading],
    thresholds: Thresholds,
    now: datetime,
    stale_minutes: float,
) -> DisplayColor:
    """Color class of the reading; staleness overrides the thresholds."""
    if reading is None or is_stale(reading, now, stale_minutes):
        return DisplayColor.STALE
    if reading.value < thresholds.low:
        return DisplayColor.LOW
    if reading.value > thresholds.high:
        return DisplayColor.HIGH
    return DisplayColor.NORMAL


def format_value(value: Optional[float], units: Units) -> str:
    if value is None:
        return "--"
    if units is Units.MMOL:
        return f"{to_mmol(value):.1f}"
    return str(int(round(value)))


def format_delta(delta: Optional[Delta], units: Units) -> str:
    """Signed delta, e.g. "+12 (15min)" or "-0.4 (5min)"."""
    if delta is None:
        return ""
    if units is Units.MMOL:
        value = delta.value / 18
        text = f"{value:.1f}"
    else:
        value = delta.value
        text = str(int(round(value)))
    sign = "+" if value >= 0 else ""
    return f"{sign}{text} ({delta.minutes}min)"


def format_time_ago(timestamp: Optional[datetime], now: datetime) -> str:
    """Human "time since update" string."""
    if timestamp is None:
        return "never"

    seconds = int((now - timestamp).total_seconds())
    if seconds < 60:
        return "less than 1 minute ago"
    if seconds / 3600 > 12:
        return "more than 12 hours ago"
    if seconds / 3600 > 1:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        return f"{hours}h{minutes}m ago" if minutes else f"{hours}h ago"
    if seconds / 60 > 1:
        return f"{seconds // 60}m ago"
    return "less than 1 minute ago"
