"""Auto-save policy for StateStore.

AutoSaver decides when unsaved changes should be written:
- A significant update source (e.g. ``realm:breakthrough``)
- The number of unsaved updates reaching a threshold
- The save interval having elapsed since the last save
- The host going to the background
- A periodic background tick while the state is dirty

Triggers that arrive while a save is already scheduled within the debounce
window are coalesced into that save.

Usage:
    saver = AutoSaver(lambda reason: store.save(reason=reason), config,
                      is_dirty=lambda: store.is_dirty)
    await saver.start()
    ...
    await saver.stop()
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import time
from typing import Any

from statevault.config.models import AutoSaveConfig
from statevault.core.clock import now_ms
from statevault.core.errors import StateVaultError
from statevault.core.types import Result
from statevault.observability.logging import get_logger

log = get_logger(__name__)

SaveCallback = Callable[[str], Awaitable[Result[Any, StateVaultError]]]


@dataclass
class AutoSaveStats:
    """Counters describing auto-save activity."""

    triggered: int = 0
    coalesced: int = 0
    completed: int = 0
    failed: int = 0
    last_reason: str | None = None
    last_auto_save_time: int = 0


class AutoSaver:
    """Schedules debounced saves according to an AutoSaveConfig."""

    def __init__(
        self,
        save_callback: SaveCallback,
        config: AutoSaveConfig | None = None,
        *,
        is_dirty: Callable[[], bool] = lambda: True,
    ) -> None:
        """Initialize the auto-saver.

        Args:
            save_callback: Async function performing the save for a reason.
            config: Policy configuration.
            is_dirty: Reports whether there is anything to save.
        """
        self._save = save_callback
        self._config = config or AutoSaveConfig()
        self._is_dirty = is_dirty
        self._stats = AutoSaveStats()
        self._last_saved = time.monotonic()
        self._pending: asyncio.Task[None] | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def config(self) -> AutoSaveConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def has_pending_save(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def mark_saved(self) -> None:
        """Record that a save (manual or automatic) just completed."""
        self._last_saved = time.monotonic()

    def seconds_since_save(self) -> float:
        return time.monotonic() - self._last_saved

    def notify_change(self, source: str, unsaved_changes: int) -> str | None:
        """Evaluate the triggers after a committed update.

        Args:
            source: Update source label.
            unsaved_changes: Updates committed since the last save.

        Returns:
            The trigger reason if a save was requested, else None.
        """
        if not self._config.enabled:
            return None

        reason = None
        if source in self._config.significant_sources:
            reason = f"significant:{source}"
        elif unsaved_changes >= self._config.max_unsaved_changes:
            reason = "max_changes"
        elif self.seconds_since_save() >= self._config.interval:
            reason = "interval"

        if reason is not None:
            self.request(reason)
        return reason

    def notify_backgrounded(self) -> bool:
        """Request a save because the host moved to the background."""
        if not (self._config.enabled and self._config.save_on_background):
            return False
        if not self._is_dirty():
            return False
        return self.request("background")

    def request(self, reason: str) -> bool:
        """Schedule a save after the debounce delay.

        A request made while another save is pending is folded into it.

        Returns:
            True if a new save was scheduled, False if it was coalesced or no
            event loop is running.
        """
        if self.has_pending_save:
            self._stats.coalesced += 1
            log.debug("state.autosave.coalesced", reason=reason)
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("state.autosave.no_loop", reason=reason)
            return False

        self._stats.triggered += 1
        self._stats.last_reason = reason
        self._pending = loop.create_task(self._debounced_save(reason))
        return True

    async def flush(self) -> None:
        """Wait for a scheduled save to finish."""
        if self._pending is not None and not self._pending.done():
            await asyncio.shield(self._pending)

    async def _debounced_save(self, reason: str) -> None:
        if self._config.debounce > 0:
            await asyncio.sleep(self._config.debounce)
        await self._run_save(reason)

    async def _run_save(self, reason: str) -> None:
        try:
            result = await self._save(reason)
        except Exception:
            self._stats.failed += 1
            log.exception("state.autosave.failed", reason=reason)
            return

        if result.is_err:
            self._stats.failed += 1
            log.warning("state.autosave.failed", reason=reason, error=str(result.error))
            return

        self._stats.completed += 1
        self._stats.last_auto_save_time = now_ms()
        self.mark_saved()
        log.debug("state.autosave.completed", reason=reason)

    async def start(self) -> None:
        """Start the periodic background task.

        This method is idempotent - calling it multiple times is safe.
        """
        if not self._config.enabled:
            return
        if self._task is None or self._task.done():
            self._stop_event.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the periodic task and wait for any scheduled save."""
        if self._task is not None and not self._task.done():
            self._stop_event.set()
            await self._task
        self._task = None
        await self.flush()

    async def reconfigure(self, config: AutoSaveConfig) -> None:
        """Apply a new policy, restarting the periodic task if it was running."""
        was_running = self.is_running
        if was_running:
            self._stop_event.set()
            await self._task  # type: ignore[misc]
            self._task = None
        self._config = config
        log.info(
            "state.autosave.configured",
            enabled=config.enabled,
            interval=config.interval,
            max_unsaved_changes=config.max_unsaved_changes,
        )
        if was_running:
            await self.start()

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._config.interval)
                break
            except TimeoutError:
                if self._is_dirty() and not self.has_pending_save:
                    self._stats.triggered += 1
                    self._stats.last_reason = "scheduled"
                    await self._run_save("scheduled")

    def get_stats(self) -> dict[str, Any]:
        since = self.seconds_since_save()
        return {
            "enabled": self._config.enabled,
            "interval": self._config.interval,
            "running": self.is_running,
            "pending": self.has_pending_save,
            "triggered": self._stats.triggered,
            "coalesced": self._stats.coalesced,
            "completed": self._stats.completed,
            "failed": self._stats.failed,
            "last_reason": self._stats.last_reason,
            "last_auto_save_time": self._stats.last_auto_save_time,
            "seconds_since_save": since,
            "next_auto_save_in": max(0.0, self._config.interval - since),
        }
