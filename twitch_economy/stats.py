"""Stats aggregator — per-day subscription, follow, bits, viewer and chat rollups."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from .utils import day_key, fmt_int, normalize_user

if TYPE_CHECKING:
    from .config import EconomyConfig
    from .state import DailyStats, StateStore


class StatsAggregator:
    """Accumulates daily counters in the snapshot and answers the stats queries."""

    def __init__(
        self,
        config: EconomyConfig,
        store: StateStore,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._logger = logger or logging.getLogger("economy.stats")

    def today(self, now: datetime | None = None) -> str:
        return day_key(now, utc=self._config.stats.utc_days)

    def _stats(self, now: datetime | None = None) -> DailyStats:
        return self._store.day_stats(self.today(now))

    # ══════════════════════════════════════════════════════════
    #  Recording
    # ══════════════════════════════════════════════════════════

    def record_message(self, username: str, now: datetime | None = None) -> int:
        counts = self._store.message_counts_for(self.today(now))
        user = normalize_user(username)
        counts[user] = counts.get(user, 0) + 1
        return counts[user]

    def record_subscription(self, count: int = 1, now: datetime | None = None) -> None:
        self._stats(now).subscription_count += max(count, 0)

    def record_resub(self, now: datetime | None = None) -> None:
        self.record_subscription(1, now)

    def record_gift(self, count: int | None = None, now: datetime | None = None) -> None:
        """A gift bundle adds its announced recipient count (default 1)."""
        self.record_subscription(count if count and count > 0 else 1, now)

    def record_bits(self, username: str, bits: int, now: datetime | None = None) -> None:
        if bits <= 0:
            return
        user = normalize_user(username)
        by_user = self._stats(now).bits_by_user
        by_user[user] = by_user.get(user, 0) + bits

    def record_follower(self, follower_id: str, now: datetime | None = None) -> bool:
        """Count a follow only when the newest follower changed since the last poll.

        The very first observation just seeds the marker.
        """
        state = self._store.state
        if not follower_id:
            return False
        if state.last_follower_id is None:
            state.last_follower_id = follower_id
            return False
        if follower_id == state.last_follower_id:
            return False
        state.last_follower_id = follower_id
        self._stats(now).follow_count += 1
        return True

    def record_viewer_sample(self, viewers: int, now: datetime | None = None) -> None:
        if viewers < 0:
            return
        stats = self._stats(now)
        stats.peak_viewers = max(stats.peak_viewers, viewers)
        stats.viewer_sample_sum += viewers
        stats.viewer_sample_count += 1

    # ══════════════════════════════════════════════════════════
    #  Queries
    # ══════════════════════════════════════════════════════════

    @staticmethod
    def _leader(mapping: dict[str, int]) -> tuple[str, int] | None:
        # Strictly-greater keeps the first encountered on ties.
        top: tuple[str, int] | None = None
        for user, count in mapping.items():
            if count > 0 and (top is None or count > top[1]):
                top = (user, count)
        return top

    def top_chatter(self, now: datetime | None = None) -> tuple[str, int] | None:
        return self._leader(self._store.state.message_counts.get(self.today(now), {}))

    def top_chatters(self, limit: int = 5, now: datetime | None = None) -> list[tuple[str, int]]:
        counts = self._store.state.message_counts.get(self.today(now), {})
        return sorted(counts.items(), key=lambda kv: kv[1], reverse=True)[:limit]

    def top_bits(self, now: datetime | None = None) -> tuple[str, int] | None:
        stats = self._store.state.daily_stats.get(self.today(now))
        if stats is None:
            return None
        return self._leader(stats.bits_by_user)

    def summary(self, now: datetime | None = None) -> str:
        stats = self._stats(now)
        chatter = self.top_chatter(now)
        bits = self.top_bits(now)

        parts = [
            f"Subs today: {stats.subscription_count}",
            f"Follows today: {stats.follow_count}",
            f"Top chatter: {chatter[0]} ({fmt_int(chatter[1])} messages)" if chatter else "Top chatter: none",
            f"Top bits: {bits[0]} ({fmt_int(bits[1])} bits)" if bits else "Top bits: none",
        ]
        if stats.viewer_sample_count > 0:
            avg = round(stats.viewer_sample_sum / stats.viewer_sample_count)
            parts.append(f"Peak viewers: {stats.peak_viewers}")
            parts.append(f"Avg viewers: {avg}")
        return " | ".join(parts)
