"""
Data model for cgmctl.

All glucose values are held in mg/dL internally; conversion to mmol/L
happens only at the display/config boundary through ``to_mmol`` and
``to_mgdl``, which together form the one canonical rounding rule.

Readings serialize to the Nightscout entry shape
(``sgv``/``date``/``dateString``/``direction``) so cached documents
stay readable by other Nightscout tooling.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .exceptions import DataError

MGDL_PER_MMOL = 18


class Units(str, Enum):
    """Display units for glucose values."""
    MGDL = "mg/dL"
    MMOL = "mmol/L"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Units":
        """Parse a units string, defaulting to mg/dL."""
        if value == cls.MMOL.value:
            return cls.MMOL
        return cls.MGDL


def to_mmol(mgdl: float) -> float:
    """Convert mg/dL to mmol/L, rounded to one decimal."""
    return round(mgdl / MGDL_PER_MMOL, 1)


def to_mgdl(mmol: float) -> int:
    """Convert mmol/L to mg/dL, rounded to the nearest integer."""
    return int(round(mmol * MGDL_PER_MMOL))


class TrendDirection(Enum):
    """Provider-supplied trend direction."""
    RISING_FAST = "rising-fast"
    RISING = "rising"
    STABLE = "stable"
    FALLING = "falling"
    FALLING_FAST = "falling-fast"
    UNKNOWN = "unknown"

    @classmethod
    def from_nightscout(cls, name: Optional[str]) -> "TrendDirection":
        """Map a Nightscout direction string (e.g. "FortyFiveUp")."""
        return _NIGHTSCOUT_DIRECTIONS.get(name or "", cls.UNKNOWN)

    @property
    def nightscout_name(self) -> str:
        return _NIGHTSCOUT_NAMES[self]


_NIGHTSCOUT_DIRECTIONS = {
    "TripleUp": TrendDirection.RISING_FAST,
    "DoubleUp": TrendDirection.RISING_FAST,
    "SingleUp": TrendDirection.RISING,
    "FortyFiveUp": TrendDirection.RISING,
    "Flat": TrendDirection.STABLE,
    "FortyFiveDown": TrendDirection.FALLING,
    "SingleDown": TrendDirection.FALLING,
    "DoubleDown": TrendDirection.FALLING_FAST,
    "TripleDown": TrendDirection.FALLING_FAST,
}

_NIGHTSCOUT_NAMES = {
    TrendDirection.RISING_FAST: "DoubleUp",
    TrendDirection.RISING: "SingleUp",
    TrendDirection.STABLE: "Flat",
    TrendDirection.FALLING: "SingleDown",
    TrendDirection.FALLING_FAST: "DoubleDown",
    TrendDirection.UNKNOWN: "NONE",
}


def parse_timestamp(value: Any) -> datetime:
    """Parse an epoch-milliseconds number or ISO-8601 string to aware UTC.

    Naive timestamps are taken to be UTC.

    Raises:
        ValueError: If the value cannot be interpreted as an instant
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        raise ValueError(f"not a timestamp: {value!r}")
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"not a timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class Reading:
    """One normalized glucose measurement."""

    value: float
    timestamp: datetime
    direction: TrendDirection = TrendDirection.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a Nightscout-compatible entry."""
        return {
            "type": "sgv",
            "sgv": self.value,
            "date": int(self.timestamp.timestamp() * 1000),
            "dateString": self.timestamp.isoformat(),
            "direction": self.direction.nightscout_name,
        }

    @classmethod
    def from_dict(cls, data: Any, provider: str = "cache") -> "Reading":
        """Build a Reading from a Nightscout-style entry.

        Raises:
            DataError: If the value or timestamp is missing or invalid
        """
        if not isinstance(data, dict):
            raise DataError(provider, f"entry is not an object: {type(data).__name__}")

        value = data.get("sgv")
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
            raise DataError(provider, f"invalid glucose value: {value!r}")
        if value <= 0:
            raise DataError(provider, f"non-positive glucose value: {value!r}")

        # dateString wins when it parses; epoch-ms date is the fallback.
        timestamp = None
        errors = []
        for key in ("dateString", "date"):
            raw_time = data.get(key)
            if raw_time is None or raw_time == "":
                continue
            try:
                timestamp = parse_timestamp(raw_time)
                break
            except (ValueError, OverflowError, OSError) as e:
                errors.append(f"{key}={raw_time!r}: {e}")
        if timestamp is None:
            raise DataError(provider, f"invalid timestamp: {'; '.join(errors) or 'missing'}")

        return cls(
            value=float(value),
            timestamp=timestamp,
            direction=TrendDirection.from_nightscout(data.get("direction")),
        )


HistoryBatch = list[Reading]


@dataclass(frozen=True)
class Thresholds:
    """Low/high glucose limits in mg/dL."""

    low: float = 70
    high: float = 180

    def classify(self, value: float) -> "AlertState":
        if value < self.low:
            return AlertState.LOW
        if value > self.high:
            return AlertState.HIGH
        return AlertState.NORMAL

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high


class AlertState(Enum):
    """Alert machine state derived from the latest value."""
    NORMAL = "normal"
    LOW = "low"
    HIGH = "high"


class FetchKind(Enum):
    """The two independently scheduled fetch types."""
    CURRENT = "current"
    HISTORY = "history"


class FetchPhase(Enum):
    """Scheduler phase of a fetch type."""
    IDLE = "idle"
    IN_FLIGHT = "in-flight"
    BACKOFF_WAIT = "backoff-wait"
    COOLDOWN = "cooldown"


@dataclass
class FetchState:
    """Mutable per-kind scheduler record, owned by the poller.

    ``in_progress`` is true from dispatch until completion or failure;
    no second fetch of the same kind is dispatched while it is set.
    """

    kind: FetchKind
    in_progress: bool = False
    last_attempt_at: Optional[datetime] = None
    retry_count: int = 0
    last_success_at: Optional[datetime] = None
    phase: FetchPhase = FetchPhase.IDLE
    last_error: Optional[Exception] = None

    def reset(self) -> None:
        self.in_progress = False
        self.retry_count = 0
        self.phase = FetchPhase.IDLE
        self.last_error = None


@dataclass
class CacheEntry:
    """Snapshot of the last known reading and history."""

    reading: Optional[Reading] = None
    history: Optional[HistoryBatch] = None
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
