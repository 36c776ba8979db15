"""
Cancel-able timers over the asyncio event loop.

The poller never touches ``loop.call_later`` directly; it asks a
``Timers`` instance for handles so that teardown can cancel everything
it scheduled, and so tests can swap in a simulated clock.
"""

import asyncio
from typing import Callable, Optional, Protocol


class TimerHandle(Protocol):
    """A pending (possibly repeating) callback."""

    @property
    def active(self) -> bool: ...

    def cancel(self) -> None: ...


class Timers(Protocol):
    """Factory for timer handles."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle: ...


class _LoopTimer:
    """One-shot or repeating timer backed by ``loop.call_later``."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        delay: float,
        callback: Callable[[], None],
        repeat: bool = False,
    ):
        self._loop = loop
        self._delay = delay
        self._callback = callback
        self._repeat = repeat
        self._handle: Optional[asyncio.TimerHandle] = loop.call_later(delay, self._fire)
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def _fire(self) -> None:
        if not self._active:
            return
        if self._repeat:
            self._handle = self._loop.call_later(self._delay, self._fire)
        else:
            self._active = False
            self._handle = None
        self._callback()

    def cancel(self) -> None:
        self._active = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class LoopTimers:
    """Timers scheduled on the running asyncio loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> _LoopTimer:
        return _LoopTimer(self.loop, delay, callback)

    def call_every(self, interval: float, callback: Callable[[], None]) -> _LoopTimer:
        return _LoopTimer(self.loop, interval, callback, repeat=True)
