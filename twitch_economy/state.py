"""State store — the single in-memory snapshot and its JSON persistence.

Every component reads and writes the same ``EconomyState`` instance through
``StateStore``. Persistence is whole-snapshot: ``save()`` serializes the full
document on the calling thread, writes it to a temp file next to the target
and atomically replaces the target, so a failed write never damages the
previous copy.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

from .utils import normalize_channel, normalize_user


# ═══════════════════════════════════════════════════════════════
#  Snapshot models
# ═══════════════════════════════════════════════════════════════


class Account(BaseModel):
    balance: int = 0
    last_claim_at: datetime | None = None


class LastSeen(BaseModel):
    timestamp: datetime
    message: str = ""


class BonusWindowState(BaseModel):
    active: bool = False
    expires_at: datetime | None = None
    winner: str | None = None


class Reminder(BaseModel):
    id: str
    kind: Literal["timed", "on_next_chat"]
    sender: str
    recipient: str
    message: str
    due_at: datetime | None = None


class DailyStats(BaseModel):
    subscription_count: int = 0
    follow_count: int = 0
    bits_by_user: dict[str, int] = Field(default_factory=dict)
    peak_viewers: int = 0
    viewer_sample_sum: int = 0
    viewer_sample_count: int = 0


class ChannelEmotes(BaseModel):
    known: list[str] = Field(default_factory=list)
    counts: dict[str, int] = Field(default_factory=dict)
    user_counts: dict[str, dict[str, int]] = Field(default_factory=dict)


class MusicToken(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: datetime


class EconomyState(BaseModel):
    """The whole persisted document."""

    accounts: dict[str, Account] = Field(default_factory=dict)
    last_seen: dict[str, LastSeen] = Field(default_factory=dict)
    bonus: BonusWindowState = Field(default_factory=BonusWindowState)
    reminders: list[Reminder] = Field(default_factory=list)
    daily_stats: dict[str, DailyStats] = Field(default_factory=dict)
    message_counts: dict[str, dict[str, int]] = Field(default_factory=dict)
    channel_emotes: dict[str, ChannelEmotes] = Field(default_factory=dict)
    music_tokens: dict[str, MusicToken] = Field(default_factory=dict)
    music_verifiers: dict[str, str] = Field(default_factory=dict)
    current_word: str | None = None
    last_follower_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _drop_null_collections(cls, data: Any) -> Any:
        # Older documents may carry explicit nulls for collections.
        if isinstance(data, dict):
            return {
                k: v for k, v in data.items()
                if v is not None or k in ("current_word", "last_follower_id")
            }
        return data


# ═══════════════════════════════════════════════════════════════
#  Store
# ═══════════════════════════════════════════════════════════════


class StateStore:
    """Owns the snapshot and its backing file."""

    def __init__(self, path: str | Path, logger: logging.Logger | None = None) -> None:
        self._path = Path(path)
        self._logger = logger or logging.getLogger("economy.state")
        self.state = EconomyState()
        self.saves_ok = 0
        self.saves_failed = 0
        # _write_lock serializes file writes across threads; _save_lock keeps
        # async saves landing in the order their snapshots were taken.
        self._write_lock = threading.Lock()
        self._save_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ── Load / save ──────────────────────────────────────────

    def load(self) -> EconomyState:
        """Restore the snapshot from disk, falling back to defaults."""
        if not self._path.exists():
            self._logger.info("No state file at %s — starting fresh", self._path)
            self.state = EconomyState()
            return self.state
        try:
            raw = self._path.read_text(encoding="utf-8")
            self.state = EconomyState.model_validate_json(raw)
            self._logger.info(
                "State loaded from %s: %d account(s), %d reminder(s)",
                self._path, len(self.state.accounts), len(self.state.reminders),
            )
        except (OSError, ValueError, ValidationError):
            self._logger.exception("Failed to load state from %s — using defaults", self._path)
            self.state = EconomyState()
        return self.state

    def save(self) -> bool:
        """Serialize and atomically replace the backing file."""
        payload = self.state.model_dump_json(indent=2)
        return self._write(payload)

    async def save_async(self) -> bool:
        """Serialize on the loop thread, write in the default executor.

        Overlapping calls are queued so each snapshot is written whole and
        a newer snapshot is never overwritten by an older one.
        """
        async with self._save_lock:
            payload = self.state.model_dump_json(indent=2)
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._write, payload)

    def _write(self, payload: str) -> bool:
        with self._write_lock:
            return self._write_locked(payload)

    def _write_locked(self, payload: str) -> bool:
        tmp = self._path.with_name(f".{self._path.name}.tmp")
        try:
            if self._path.parent and not self._path.parent.exists():
                self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self._path)
        except OSError:
            self.saves_failed += 1
            self._logger.exception("Failed to save state to %s", self._path)
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                pass
            return False
        self.saves_ok += 1
        return True

    # ── Get-or-insert accessors ──────────────────────────────

    def account(self, username: str) -> Account:
        user = normalize_user(username)
        acct = self.state.accounts.get(user)
        if acct is None:
            acct = Account()
            self.state.accounts[user] = acct
        return acct

    def day_stats(self, day: str) -> DailyStats:
        stats = self.state.daily_stats.get(day)
        if stats is None:
            stats = DailyStats()
            self.state.daily_stats[day] = stats
        return stats

    def message_counts_for(self, day: str) -> dict[str, int]:
        return self.state.message_counts.setdefault(day, {})

    def channel_emotes(self, channel: str) -> ChannelEmotes:
        ch = normalize_channel(channel)
        emotes = self.state.channel_emotes.get(ch)
        if emotes is None:
            emotes = ChannelEmotes()
            self.state.channel_emotes[ch] = emotes
        return emotes

    def total_supply(self) -> int:
        return sum(a.balance for a in self.state.accounts.values())
