"""Bonus window — a randomized, single-winner claim event.

State machine::

    closed --(random delay)--> open --(first claim)--> claimed --> closed
                                    \\--(window elapsed)--> expired --> closed

Re-entering ``closed`` immediately re-arms the random-delay timer. Timers are
one-shot asyncio tasks; at most one open task and one expiry task exist at a
time. The expiry handler re-checks the window before acting, so a claim that
lands between the timer firing and the handler running wins.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

from .utils import fmt_int, normalize_user, now_utc

if TYPE_CHECKING:
    from .config import EconomyConfig
    from .state import StateStore


Broadcast = Callable[[str], Awaitable[None]]


class BonusClaimStatus(Enum):
    CLAIMED = "claimed"
    NOT_ACTIVE = "not_active"
    ALREADY_CLAIMED = "already_claimed"


@dataclass
class BonusClaimResult:
    status: BonusClaimStatus
    amount: int = 0
    balance: int = 0
    winner: str | None = None


class BonusWindow:
    """Owns the bonus timers; the window itself lives in the snapshot."""

    def __init__(
        self,
        config: EconomyConfig,
        store: StateStore,
        broadcast: Broadcast,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._broadcast = broadcast
        self._logger = logger or logging.getLogger("economy.bonus")
        self._open_task: asyncio.Task | None = None
        self._expiry_task: asyncio.Task | None = None

        self.windows_opened = 0
        self.windows_claimed = 0
        self.windows_expired = 0

    @property
    def window_duration(self) -> timedelta:
        return timedelta(minutes=self._config.bonus.window_minutes)

    @property
    def is_open(self) -> bool:
        return self._store.state.bonus.active

    # ── Lifecycle ────────────────────────────────────────────

    def start(self, now: datetime | None = None) -> None:
        """Resume a persisted open window or arm the first random delay."""
        now = now or now_utc()
        bonus = self._store.state.bonus
        if bonus.active:
            if bonus.expires_at is not None and bonus.expires_at > now:
                remaining = (bonus.expires_at - now).total_seconds()
                self._logger.info("Resuming open bonus window (%.0fs left)", remaining)
                self._arm_expiry(remaining)
                return
            self._logger.info("Persisted bonus window already expired, closing")
            bonus.active = False
            bonus.expires_at = None
        self.schedule_next()

    async def stop(self) -> None:
        tasks = [t for t in (self._open_task, self._expiry_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._open_task = None
        self._expiry_task = None

    # ── Timers ───────────────────────────────────────────────

    def next_delay(self) -> float:
        cfg = self._config.bonus
        low = cfg.min_interval_minutes * 60
        high = max(cfg.max_interval_minutes * 60, low)
        return random.uniform(low, high)

    def schedule_next(self) -> None:
        """Arm the random-delay timer, replacing any pending one."""
        if self._open_task is not None and not self._open_task.done():
            self._open_task.cancel()
        delay = self.next_delay()
        self._open_task = asyncio.create_task(self._open_after(delay))
        self._logger.debug("Next bonus window in %.0fs", delay)

    def _arm_expiry(self, delay: float) -> None:
        self._cancel_expiry()
        self._expiry_task = asyncio.create_task(self._expire_after(delay))

    def _cancel_expiry(self) -> None:
        if self._expiry_task is not None and not self._expiry_task.done():
            if self._expiry_task is not asyncio.current_task():
                self._expiry_task.cancel()
        self._expiry_task = None

    async def _open_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._open_task = None
        try:
            await self.open()
        except Exception:
            self._logger.exception("Bonus open failed")

    async def _expire_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.expire()
        except Exception:
            self._logger.exception("Bonus expiry failed")

    # ── Transitions ──────────────────────────────────────────

    async def open(self, now: datetime | None = None) -> None:
        """closed → open."""
        now = now or now_utc()
        bonus = self._store.state.bonus
        bonus.active = True
        bonus.expires_at = now + self.window_duration
        bonus.winner = None
        self.windows_opened += 1
        self._arm_expiry(self.window_duration.total_seconds())
        self._logger.info("Bonus window opened until %s", bonus.expires_at.isoformat())

        minutes = int(self._config.bonus.window_minutes)
        await self._broadcast(
            f"🎉 Bonus! First person to type {self._config.prefix}bonus in chat within "
            f"{minutes} minutes wins {fmt_int(self._config.bonus.amount)} "
            f"{self._config.currency.name}!"
        )

    async def expire(self) -> bool:
        """open → expired → closed, only if nobody claimed in the meantime."""
        bonus = self._store.state.bonus
        self._expiry_task = None
        if not bonus.active or bonus.winner is not None:
            return False
        bonus.active = False
        bonus.expires_at = None
        self.windows_expired += 1
        self._logger.info("Bonus window expired unclaimed")
        self.schedule_next()
        await self._broadcast("Bonus expired — no one claimed it in time.")
        return True

    def claim(self, username: str, now: datetime | None = None) -> BonusClaimResult:
        """open → claimed → closed for the first caller."""
        now = now or now_utc()
        user = normalize_user(username)
        bonus = self._store.state.bonus

        if bonus.winner is not None and not bonus.active:
            return BonusClaimResult(BonusClaimStatus.ALREADY_CLAIMED, winner=bonus.winner)
        if not bonus.active or (bonus.expires_at is not None and now >= bonus.expires_at):
            return BonusClaimResult(BonusClaimStatus.NOT_ACTIVE)

        amount = self._config.bonus.amount
        acct = self._store.account(user)
        acct.balance += amount
        bonus.winner = user
        bonus.active = False
        bonus.expires_at = None
        self.windows_claimed += 1
        self._cancel_expiry()
        self.schedule_next()
        self._logger.info("Bonus claimed by %s (+%d)", user, amount)
        return BonusClaimResult(
            BonusClaimStatus.CLAIMED, amount=amount, balance=acct.balance, winner=user,
        )
