"""
Low/high glucose alerting.

The evaluator tracks a three-state machine (normal, low, high) derived
from the latest value only. A notification is produced when the state
moves into low or high from a different state; staying in the same
state is silent, and returning to normal resets without a message.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .analytics import format_value
from .models import AlertState, Thresholds, Units

logger = logging.getLogger("cgmctl.core.alerts")

NOTIFICATION_TITLE = "cgmctl"


@dataclass(frozen=True)
class NotificationSettings:
    """Global and per-direction notification switches."""
    enabled: bool = True
    low: bool = True
    high: bool = True

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "NotificationSettings":
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", True)),
            low=bool(data.get("low", True)),
            high=bool(data.get("high", True)),
        )

    def allows(self, state: AlertState) -> bool:
        if not self.enabled:
            return False
        if state is AlertState.LOW:
            return self.low
        if state is AlertState.HIGH:
            return self.high
        return False


@dataclass(frozen=True)
class Notification:
    """Message for the display collaborator."""
    title: str
    body: str
    state: AlertState


class AlertEvaluator:
    """Decides when a glucose value warrants a notification."""

    def __init__(self) -> None:
        self.state = AlertState.NORMAL

    def reset(self) -> None:
        """Forget the last state (used on provider switch)."""
        self.state = AlertState.NORMAL

    def evaluate(
        self,
        value: float,
        thresholds: Thresholds,
        settings: NotificationSettings,
        units: Units = Units.MGDL,
    ) -> Optional[Notification]:
        """Update state from ``value``; return a notification on entry to low/high."""
        new_state = thresholds.classify(value)
        previous = self.state
        self.state = new_state

        if new_state is AlertState.NORMAL or new_state is previous:
            return None
        if not settings.allows(new_state):
            logger.debug(f"Alert {new_state.value} suppressed by notification settings")
            return None

        label = "Low" if new_state is AlertState.LOW else "High"
        body = f"{label} Glucose: {format_value(value, units)} {units.value}"
        logger.info(f"Alert: {body}")
        return Notification(title=NOTIFICATION_TITLE, body=body, state=new_state)
