"""Reminder scheduler — timed and on-next-chat reminders.

Both delivery paths remove the reminders they deliver from the snapshot
before the first outbound await, so a reminder is delivered exactly once
even if another check runs while messages are still being sent.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Awaitable, Callable

from .state import Reminder
from .utils import normalize_user, now_utc

if TYPE_CHECKING:
    from .state import StateStore


Send = Callable[[str, str], Awaitable[None]]


def format_reminder(reminder: Reminder) -> str:
    return f"@{reminder.recipient} you have a reminder from @{reminder.sender}: {reminder.message}"


class ReminderScheduler:
    """Creates, collects and delivers reminders."""

    def __init__(
        self,
        store: StateStore,
        send: Send,
        channels: Callable[[], list[str]],
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._send = send
        self._channels = channels
        self._logger = logger or logging.getLogger("economy.reminders")
        self.delivered_total = 0

    @property
    def pending(self) -> list[Reminder]:
        return self._store.state.reminders

    # ── Creation ─────────────────────────────────────────────

    def add_timed(
        self,
        sender: str,
        recipient: str,
        message: str,
        delay: timedelta,
        now: datetime | None = None,
    ) -> Reminder:
        now = now or now_utc()
        reminder = Reminder(
            id=uuid.uuid4().hex,
            kind="timed",
            sender=normalize_user(sender),
            recipient=normalize_user(recipient),
            message=message,
            due_at=now + delay,
        )
        self._store.state.reminders.append(reminder)
        self._logger.info(
            "Timed reminder %s: %s -> %s due %s",
            reminder.id, reminder.sender, reminder.recipient, reminder.due_at.isoformat(),
        )
        return reminder

    def add_on_next_chat(self, sender: str, recipient: str, message: str) -> Reminder:
        reminder = Reminder(
            id=uuid.uuid4().hex,
            kind="on_next_chat",
            sender=normalize_user(sender),
            recipient=normalize_user(recipient),
            message=message,
        )
        self._store.state.reminders.append(reminder)
        self._logger.info(
            "On-next-chat reminder %s: %s -> %s",
            reminder.id, reminder.sender, reminder.recipient,
        )
        return reminder

    # ── Collection (synchronous, removes what it returns) ────

    def pop_due(self, now: datetime | None = None) -> list[Reminder]:
        now = now or now_utc()
        due: list[Reminder] = []
        keep: list[Reminder] = []
        for r in self._store.state.reminders:
            if r.kind == "timed" and r.due_at is not None and r.due_at <= now:
                due.append(r)
            else:
                keep.append(r)
        if due:
            self._store.state.reminders = keep
        return due

    def pop_for_chatter(self, username: str) -> list[Reminder]:
        user = normalize_user(username)
        matched: list[Reminder] = []
        keep: list[Reminder] = []
        for r in self._store.state.reminders:
            if r.kind == "on_next_chat" and r.recipient == user:
                matched.append(r)
            else:
                keep.append(r)
        if matched:
            self._store.state.reminders = keep
        return matched

    # ── Delivery ─────────────────────────────────────────────

    async def check_due(self, now: datetime | None = None) -> list[Reminder]:
        """Deliver every due timed reminder to all joined channels.

        With no channel joined yet, due reminders stay pending for a later check.
        """
        channels = list(self._channels())
        if not channels:
            return []
        due = self.pop_due(now)
        if not due:
            return due
        for reminder in due:
            text = format_reminder(reminder)
            for channel in channels:
                await self._safe_send(channel, text)
        self.delivered_total += len(due)
        self._logger.info("Delivered %d timed reminder(s)", len(due))
        return due

    async def deliver_on_chat(self, username: str, channel: str) -> list[Reminder]:
        """Deliver pending on-next-chat reminders on the channel the user spoke in."""
        matched = self.pop_for_chatter(username)
        for reminder in matched:
            await self._safe_send(channel, format_reminder(reminder))
        self.delivered_total += len(matched)
        return matched

    async def _safe_send(self, channel: str, text: str) -> None:
        try:
            await self._send(channel, text)
        except Exception:
            self._logger.exception("Failed to deliver reminder to %s", channel)
