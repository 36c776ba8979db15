"""
Polling orchestrator.

The Poller owns the provider, both caches and one FetchState per fetch
kind (current reading, history). Each kind runs its own state machine:

    idle --tick--> in-flight --ok--> idle
                       |
                       +--fail, retries < 3--> backoff-wait --timer--> in-flight
                       +--fail, retries = 3--> cooldown --300s--> idle

Everything runs on one asyncio loop; suspension points are the provider
network calls and the timers. Each config generation tags the fetches
dispatched under it, and results from an older generation (or after
stop) are dropped without touching state.

Usage:
    poller = Poller(load_config(), on_update=render)
    poller.start()
    ...
    await poller.stop()
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from . import analytics
from .alerts import AlertEvaluator, Notification, NotificationSettings
from .cache import DurableCache, EphemeralCache
from .config import Config, ConfigSnapshot
from .display import DisplaySnapshot, PollerContext, build_snapshot
from .exceptions import FetchError
from .logging import get_provider_logger
from .models import FetchKind, FetchPhase, FetchState, HistoryBatch, Reading
from .secrets import SecretStore
from .timers import LoopTimers, TimerHandle, Timers
from ..providers.base import ProviderBase
from ..providers.registry import get_provider

CURRENT_TICK_SECONDS = 60
MIN_FETCH_INTERVAL_SECONDS = 30
RETRY_MAX = 3
RETRY_BASE_DELAY = 5
RETRY_MAX_DELAY = 30
COOLDOWN_SECONDS = 300
RELOAD_DEBOUNCE_SECONDS = 1.0
STARTUP_DELAY_SECONDS = 2.0
STALE_REFRESH_SECONDS = 300


def retry_delay(retry_count: int) -> float:
    """Backoff before retry number ``retry_count`` (1-based): 5, 10, 20, capped at 30."""
    return min(RETRY_MAX_DELAY, RETRY_BASE_DELAY * 2 ** (retry_count - 1))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Poller:
    """Schedules provider fetches and keeps the derived display state."""

    def __init__(
        self,
        config: Config,
        *,
        provider: Optional[ProviderBase] = None,
        durable_cache: Optional[DurableCache] = None,
        ephemeral_cache: Optional[EphemeralCache] = None,
        timers: Optional[Timers] = None,
        clock: Optional[Callable[[], datetime]] = None,
        secrets: Optional[SecretStore] = None,
        provider_factory: Callable[..., ProviderBase] = get_provider,
        on_update: Optional[Callable[[DisplaySnapshot], None]] = None,
        on_notify: Optional[Callable[[Notification], None]] = None,
        min_fetch_interval: float = MIN_FETCH_INTERVAL_SECONDS,
        startup_delay: float = STARTUP_DELAY_SECONDS,
    ):
        self.config = config
        self.secrets = secrets
        self._provider_factory = provider_factory
        self.provider = provider or self._build_provider()
        self.durable_cache = durable_cache or DurableCache()
        self.ephemeral_cache = ephemeral_cache or EphemeralCache(
            timedelta(minutes=config.history_fetch_interval)
        )
        self.timers = timers or LoopTimers()
        self.clock = clock or _utcnow
        self.on_update = on_update
        self.on_notify = on_notify
        self.min_fetch_interval = min_fetch_interval
        self.startup_delay = startup_delay

        self.alerts = AlertEvaluator()
        self.context = PollerContext(window_hours=config.graph_hours)
        self.states = {kind: FetchState(kind) for kind in FetchKind}
        self.snapshot: Optional[DisplaySnapshot] = None
        self._config_snapshot: ConfigSnapshot = config.snapshot()
        self._history_interval = config.history_fetch_interval

        self._tasks: dict[FetchKind, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._retry_timers: dict[FetchKind, TimerHandle] = {}
        self._cooldown_timers: dict[FetchKind, TimerHandle] = {}
        self._tick_timers: dict[FetchKind, TimerHandle] = {}
        self._startup_timer: Optional[TimerHandle] = None
        self._reload_timer: Optional[TimerHandle] = None
        self._started = False
        self._stopped = False

        self.logger = get_provider_logger(
            "cgmctl.core.poller", provider=self.provider.name, generation=0
        )

    # Lifecycle

    def _build_provider(self) -> ProviderBase:
        return self._provider_factory(self.config.provider, self.config, secrets=self.secrets)

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start(self) -> None:
        """Hydrate from the durable cache and schedule the first fetch."""
        if self._started or self._stopped:
            return
        self._started = True
        self.hydrate()
        self.publish()
        self._startup_timer = self.timers.call_later(self.startup_delay, self._on_startup)

    def hydrate(self) -> bool:
        """Load last-known data from the durable cache."""
        entry = self.durable_cache.load()
        if entry is None:
            return False
        self.logger.info("Loaded data from disk cache")
        if entry.reading is not None:
            self.context.reading = entry.reading
        if entry.history is not None:
            self.context.raw_history = entry.history
            self.reprocess(publish=False)
        return True

    def _on_startup(self) -> None:
        self._startup_timer = None
        if self._stopped:
            return
        self.dispatch(FetchKind.CURRENT, force=True)
        self.dispatch(FetchKind.HISTORY, force=True)
        self._start_ticks()

    def _start_ticks(self) -> None:
        self._cancel_timer(self._tick_timers.pop(FetchKind.CURRENT, None))
        self._cancel_timer(self._tick_timers.pop(FetchKind.HISTORY, None))
        self._tick_timers[FetchKind.CURRENT] = self.timers.call_every(
            CURRENT_TICK_SECONDS, self._on_current_tick
        )
        self._tick_timers[FetchKind.HISTORY] = self.timers.call_every(
            self._history_interval * 60, self._on_history_tick
        )

    def _on_current_tick(self) -> None:
        if self._stopped:
            return
        self.dispatch(FetchKind.CURRENT)
        # Staleness coloring depends on the clock, so refresh every tick.
        self.publish()

    def _on_history_tick(self) -> None:
        if self._stopped:
            return
        self.dispatch(FetchKind.HISTORY)

    async def stop(self) -> None:
        """Cancel every timer and in-flight fetch and destroy the provider.

        Idempotent, and safe before start().
        """
        if self._stopped:
            return
        self._stopped = True
        self.logger.debug("Stopping poller")

        self._cancel_timer(self._startup_timer)
        self._cancel_timer(self._reload_timer)
        self._startup_timer = None
        self._reload_timer = None
        for timers in (self._tick_timers, self._retry_timers, self._cooldown_timers):
            for handle in timers.values():
                self._cancel_timer(handle)
            timers.clear()

        pending = list(self._tasks.values()) + list(self._background)
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()
        await self.provider.destroy()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._background.clear()

    async def wait_idle(self) -> None:
        """Wait for the fetches currently in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    # Dispatch

    def dispatch(self, kind: FetchKind, force: bool = False) -> Optional[asyncio.Task]:
        """Start a fetch of ``kind`` unless one is already in flight.

        Scheduled current-reading fetches also require MIN_FETCH_INTERVAL
        since the last attempt; ``force`` skips that guard only.

        Returns:
            The fetch task, or None when nothing was dispatched
        """
        if self._stopped:
            return None
        state = self.states[kind]
        if state.in_progress:
            self.logger.debug(f"{kind.value} fetch already in flight")
            return None
        if not self.provider.is_configured():
            self.logger.debug("Provider not configured, skipping fetch")
            self.publish()
            return None

        now = self.clock()
        if kind is FetchKind.CURRENT and not force and state.last_attempt_at is not None:
            elapsed = (now - state.last_attempt_at).total_seconds()
            if elapsed < self.min_fetch_interval:
                return None

        if kind is FetchKind.HISTORY:
            cached = self.ephemeral_cache.get(now)
            if cached is not None:
                self.logger.debug(f"Using in-memory history cache ({len(cached)} entries)")
                self._apply_history(cached, persist=False)
                return None

        state.in_progress = True
        state.phase = FetchPhase.IN_FLIGHT
        state.last_attempt_at = now
        task = asyncio.get_running_loop().create_task(
            self._run_fetch(kind, self.provider, self.context.generation)
        )
        self._tasks[kind] = task
        return task

    def _is_live(self, generation: int, provider: ProviderBase) -> bool:
        return (
            not self._stopped
            and generation == self.context.generation
            and provider is self.provider
        )

    async def _run_fetch(self, kind: FetchKind, provider: ProviderBase, generation: int) -> None:
        try:
            if kind is FetchKind.CURRENT:
                result = await provider.fetch_current()
            else:
                result = await provider.fetch_history()
        except FetchError as e:
            if self._is_live(generation, provider):
                self._finish(kind)
                self._on_failure(kind, e, generation)
            else:
                self.logger.debug(f"Dropping {kind.value} error from superseded generation {generation}")
        except asyncio.CancelledError:
            if self._is_live(generation, provider):
                self._finish(kind)
            raise
        except Exception as e:
            self.logger.exception(f"Unexpected error during {kind.value} fetch")
            if self._is_live(generation, provider):
                self._finish(kind)
                self._on_failure(kind, e, generation)
        else:
            if self._is_live(generation, provider):
                self._finish(kind)
                self._on_success(kind, result)
            else:
                self.logger.debug(f"Dropping {kind.value} result from superseded generation {generation}")

    def _finish(self, kind: FetchKind) -> None:
        self.states[kind].in_progress = False
        self._tasks.pop(kind, None)

    # Outcomes

    def _on_success(self, kind: FetchKind, result) -> None:
        state = self.states[kind]
        state.retry_count = 0
        state.phase = FetchPhase.IDLE
        state.last_success_at = self.clock()
        state.last_error = None
        self._cancel_timer(self._retry_timers.pop(kind, None))
        self._cancel_timer(self._cooldown_timers.pop(kind, None))

        if kind is FetchKind.CURRENT:
            self._apply_reading(result)
        else:
            # Stamped with the dispatch time, not the completion time.
            self.ephemeral_cache.put(result, state.last_attempt_at or self.clock())
            self._apply_history(result)

    def _on_failure(self, kind: FetchKind, error: Exception, generation: int) -> None:
        state = self.states[kind]
        state.last_error = error
        self.context.last_error = error

        if isinstance(error, FetchError) and not error.retryable:
            self.logger.warning(f"{kind.value} fetch not retried: {error}")
            state.retry_count = 0
            state.phase = FetchPhase.IDLE
            self.publish()
            return

        if kind in self._cooldown_timers:
            # Still cooling down from an exhausted chain; a scheduled tick failed.
            self.logger.debug(f"{kind.value} fetch failed during cooldown: {error}")
            state.phase = FetchPhase.COOLDOWN
            return

        if state.retry_count < RETRY_MAX:
            state.retry_count += 1
            delay = retry_delay(state.retry_count)
            state.phase = FetchPhase.BACKOFF_WAIT
            self.logger.info(
                f"{kind.value} fetch failed (attempt {state.retry_count}/{RETRY_MAX}), "
                f"retrying in {delay:g}s: {error}"
            )
            self._cancel_timer(self._retry_timers.pop(kind, None))
            self._retry_timers[kind] = self.timers.call_later(
                delay, lambda: self._on_retry(kind, generation)
            )
            return

        state.phase = FetchPhase.COOLDOWN
        self.logger.warning(
            f"{kind.value} fetch failed after {RETRY_MAX} retries, "
            f"pausing retries for {COOLDOWN_SECONDS}s: {error}"
        )
        self._cooldown_timers[kind] = self.timers.call_later(
            COOLDOWN_SECONDS, lambda: self._end_cooldown(kind, generation)
        )
        if kind is FetchKind.CURRENT and self.context.reading is None:
            self.context.error_indicator = True
            self.publish()

    def _on_retry(self, kind: FetchKind, generation: int) -> None:
        self._retry_timers.pop(kind, None)
        if self._stopped or generation != self.context.generation:
            return
        self.dispatch(kind, force=True)

    def _end_cooldown(self, kind: FetchKind, generation: int) -> None:
        self._cooldown_timers.pop(kind, None)
        if self._stopped or generation != self.context.generation:
            return
        state = self.states[kind]
        state.retry_count = 0
        if not state.in_progress:
            state.phase = FetchPhase.IDLE
        self.logger.debug(f"{kind.value} retry cooldown over")

    def _apply_reading(self, reading: Reading) -> None:
        self.context.reading = reading
        self.context.error_indicator = False
        self.context.last_error = None
        self.durable_cache.save(reading=reading, now=self.clock())

        notification = self.alerts.evaluate(
            reading.value,
            self.config.thresholds,
            NotificationSettings.from_dict(self.config.get("notifications")),
            self.config.units,
        )
        self.publish()
        if notification is not None and self.on_notify is not None:
            self.on_notify(notification)

    def _apply_history(self, history: HistoryBatch, persist: bool = True) -> None:
        self.context.raw_history = history
        if persist:
            self.durable_cache.save(history=history, now=self.clock())
        self.reprocess()

    # Derived state

    def reprocess(self, publish: bool = True) -> None:
        """Re-window the raw history for the current display window."""
        self.context.history = analytics.window_history(
            self.context.raw_history, self.context.window_hours, self.clock()
        )
        self.logger.debug(
            f"Processed {len(self.context.history)} history entries "
            f"for {self.context.window_hours:g}h window"
        )
        if publish:
            self.publish()

    def set_window_hours(self, hours: float) -> None:
        """Change the display window without re-fetching."""
        if hours == self.context.window_hours:
            return
        self.context.window_hours = hours
        self.reprocess()

    def publish(self) -> DisplaySnapshot:
        """Rebuild the display snapshot and hand it to the display."""
        self.snapshot = build_snapshot(
            self.context,
            provider=self.provider.name,
            configured=self.provider.is_configured(),
            units=self.config.units,
            thresholds=self.config.thresholds,
            stale_minutes=self.config.stale_minutes,
            now=self.clock(),
        )
        if self.on_update is not None:
            self.on_update(self.snapshot)
        return self.snapshot

    # Manual triggers

    def refresh(self) -> None:
        """Fetch both kinds now (still one in flight per kind)."""
        self.dispatch(FetchKind.CURRENT, force=True)
        self.dispatch(FetchKind.HISTORY, force=True)

    def on_display_open(self) -> bool:
        """Refresh when the last current-reading attempt is over 5 minutes old."""
        last = self.states[FetchKind.CURRENT].last_attempt_at
        if last is not None and (self.clock() - last).total_seconds() <= STALE_REFRESH_SECONDS:
            return False
        self.refresh()
        return True

    # Config reload

    def notify_config_changed(self) -> None:
        """Debounce config file changes into one reload."""
        if self._stopped:
            return
        self._cancel_timer(self._reload_timer)
        self._reload_timer = self.timers.call_later(RELOAD_DEBOUNCE_SECONDS, self._on_reload_timer)

    def _on_reload_timer(self) -> None:
        self._reload_timer = None
        if self._stopped:
            return
        self.config.reload()
        self.reload_config()

    def reload_config(self) -> None:
        """React to the difference between the old and new config."""
        old = self._config_snapshot
        new = self.config.snapshot()
        self._config_snapshot = new

        interval = self.config.history_fetch_interval
        if interval != self._history_interval:
            self._history_interval = interval
            self.ephemeral_cache.ttl = timedelta(minutes=interval)
            if FetchKind.HISTORY in self._tick_timers:
                self._start_ticks()

        self.context.window_hours = self.config.graph_hours

        if new.provider != old.provider:
            self.logger.info(f"Provider changed from {old.provider} to {new.provider}")
            self._replace_provider()
            self.ephemeral_cache.clear()
            self.durable_cache.clear()
            self.context.clear_data()
            self.alerts.reset()
            self.refresh()
        elif new.connection_changed(old):
            self.logger.info("URL or credentials changed, clearing cache and re-fetching")
            self._replace_provider()
            self.ephemeral_cache.clear()
            self.refresh()
        else:
            self.reprocess()

    def _replace_provider(self) -> None:
        old_provider = self.provider
        self._bump_generation()
        self.provider = self._build_provider()
        self.logger.update_context(provider=self.provider.name)
        task = asyncio.get_running_loop().create_task(old_provider.destroy())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _bump_generation(self) -> None:
        self.context.generation += 1
        self.logger.update_context(generation=self.context.generation)
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()
        for timers in (self._retry_timers, self._cooldown_timers):
            for handle in timers.values():
                self._cancel_timer(handle)
            timers.clear()
        for state in self.states.values():
            state.reset()

    @staticmethod
    def _cancel_timer(handle: Optional[TimerHandle]) -> None:
        if handle is not None:
            handle.cancel()
