"""Shared pytest fixtures for cgmctl tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import keyring
import pytest
from keyring.backend import KeyringBackend

from cgmctl.core.config import Config
from cgmctl.core.models import HistoryBatch, Reading, TrendDirection
from cgmctl.providers.base import ProviderBase

from fixtures import *  # noqa: F401,F403

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class ManualTimer:
    """Timer handle driven by ManualTimers.advance()."""

    def __init__(self, owner, due: float, callback, interval: Optional[float] = None):
        self._owner = owner
        self.due = due
        self.callback = callback
        self.interval = interval
        self.cancelled = False
        self.fired = 0

    @property
    def active(self) -> bool:
        return not self.cancelled and (self.interval is not None or self.fired == 0)

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimers:
    """Deterministic timer factory and clock for poller tests.

    Time only moves when advance() is called; callbacks due inside the
    advanced span fire in due order with the clock set to their due time.
    """

    def __init__(self, start: datetime = START):
        self.start = start
        self.elapsed = 0.0
        self.timers: list[ManualTimer] = []

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.elapsed)

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self, self.elapsed + delay, callback)
        self.timers.append(timer)
        return timer

    def call_every(self, interval: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self, self.elapsed + interval, callback, interval=interval)
        self.timers.append(timer)
        return timer

    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if t.active]

    def advance(self, seconds: float) -> None:
        target = self.elapsed + seconds
        while True:
            due = [t for t in self.pending() if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.elapsed = max(self.elapsed, timer.due)
            timer.fired += 1
            if timer.interval is not None:
                timer.due += timer.interval
            timer.callback()
        self.elapsed = target


class ScriptedProvider(ProviderBase):
    """Provider whose results are queued by the test.

    Each queued item is a value to return or an exception to raise. When
    ``gate`` is set, fetches wait on it before answering.
    """

    name = "scripted"

    def __init__(self, config=None, configured: bool = True, **kwargs):
        super().__init__(config or Config(), **kwargs)
        self.configured = configured
        self.current_results: list = []
        self.history_results: list = []
        self.calls: list[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.destroy_calls = 0

    def is_configured(self) -> bool:
        return self.configured

    def required_config(self) -> list[str]:
        return ["scripted.url"]

    async def _answer(self, queue: list):
        if self.gate is not None:
            await self.gate.wait()
        result = queue.pop(0) if queue else RuntimeError("no scripted result")
        if isinstance(result, BaseException):
            raise result
        return result

    async def fetch_current(self) -> Reading:
        self.calls.append("current")
        return await self._answer(self.current_results)

    async def fetch_history(self) -> HistoryBatch:
        self.calls.append("history")
        return await self._answer(self.history_results)

    def get_cgm_interval(self) -> float:
        return 5

    async def destroy(self) -> None:
        self.destroy_calls += 1
        await super().destroy()


class MemoryKeyring(KeyringBackend):
    """keyring backend holding passwords in a dict."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords: dict[tuple[str, str], str] = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        self.passwords.pop((service, username), None)


def make_history(
    values: list[float],
    end: datetime = START,
    step_minutes: float = 5,
) -> HistoryBatch:
    """Readings oldest first, the last one at ``end``."""
    count = len(values)
    return [
        Reading(value=v, timestamp=end - timedelta(minutes=step_minutes * (count - 1 - i)))
        for i, v in enumerate(values)
    ]


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks run to their next suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def memory_keyring():
    """Keep every test away from the real system keychain."""
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture
def manual_timers():
    """Manual timer factory doubling as the clock."""
    return ManualTimers()


@pytest.fixture
def scripted_provider():
    return ScriptedProvider()


@pytest.fixture
def reading_at_start():
    return Reading(value=120, timestamp=START, direction=TrendDirection.STABLE)


@pytest.fixture
def cache_home(tmp_path, monkeypatch):
    """Point XDG cache and config dirs into tmp_path."""
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.delenv("CGMCTL_CONFIG", raising=False)
    return tmp_path
