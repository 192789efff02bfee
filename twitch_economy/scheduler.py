"""Scheduler module — periodic background loops.

Reminder due-check, periodic state flush, and the follower/viewer poll.
The bonus window arms its own one-shot timers (see ``bonus_window``).
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from .config import EconomyConfig
    from .helix_client import HelixClient
    from .reminders import ReminderScheduler
    from .state import StateStore
    from .stats import StatsAggregator


class Scheduler:
    """Central module for all periodic tasks."""

    def __init__(
        self,
        config: EconomyConfig,
        store: StateStore,
        reminders: ReminderScheduler,
        stats: StatsAggregator,
        broadcast: Callable[[str], Awaitable[None]],
        helix: HelixClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._reminders = reminders
        self._stats = stats
        self._broadcast = broadcast
        self._helix = helix
        self._logger = logger or logging.getLogger("economy.scheduler")
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start all periodic tasks."""
        self._tasks.append(asyncio.create_task(self._reminder_loop()))
        self._logger.info(
            "Reminder check task started (interval: %.0fs)",
            self._config.reminders.check_interval_seconds,
        )

        self._tasks.append(asyncio.create_task(self._autosave_loop()))
        self._logger.info(
            "Autosave task started (interval: %ds)", self._config.state.save_interval_seconds,
        )

        if self._helix is not None and self._helix.configured:
            self._tasks.append(asyncio.create_task(self._follow_poll_loop()))
            self._logger.info(
                "Follower poll task started (interval: %ds)", self._config.stats.follow_poll_seconds,
            )

    async def stop(self) -> None:
        """Cancel all tasks."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # ══════════════════════════════════════════════════════════
    #  Reminders
    # ══════════════════════════════════════════════════════════

    async def _reminder_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.reminders.check_interval_seconds)
            try:
                delivered = await self._reminders.check_due()
                if delivered:
                    await self._store.save_async()
            except Exception:
                self._logger.exception("Reminder check failed")

    # ══════════════════════════════════════════════════════════
    #  Autosave
    # ══════════════════════════════════════════════════════════

    async def _autosave_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.state.save_interval_seconds)
            await self._store.save_async()

    # ══════════════════════════════════════════════════════════
    #  Follower / viewer poll
    # ══════════════════════════════════════════════════════════

    async def _follow_poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.stats.follow_poll_seconds)
            try:
                await self.poll_followers()
            except Exception:
                self._logger.exception("Follower poll failed")

    async def poll_followers(self) -> None:
        """One poll round: announce a new follower and sample viewers."""
        latest = await self._helix.latest_follower()
        if latest is not None:
            follower_id, follower_name = latest
            if self._stats.record_follower(follower_id):
                self._logger.info("New follower: %s", follower_name)
                await self._broadcast(f"Thank you for following @{follower_name}")
                await self._store.save_async()

        viewers = await self._helix.viewer_count()
        if viewers is not None:
            self._stats.record_viewer_sample(viewers)
