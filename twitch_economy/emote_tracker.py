"""Per-channel emote registry and usage counters.

A token becomes known only when the transport marks it as a rendered emote;
free text that happens to match is never counted.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .utils import normalize_user

if TYPE_CHECKING:
    from .state import StateStore


class EmoteTracker:
    def __init__(self, store: StateStore, logger: logging.Logger | None = None) -> None:
        self._store = store
        self._logger = logger or logging.getLogger("economy.emotes")

    @staticmethod
    def extract_tokens(text: str, positions: dict[str, list[tuple[int, int]]]) -> list[str]:
        """Slice emote tokens out of ``text`` using inclusive position ranges."""
        tokens: list[str] = []
        for ranges in positions.values():
            for start, end in ranges:
                if start < 0 or end < start:
                    continue
                token = text[start:end + 1].strip()
                if token:
                    tokens.append(token)
        return tokens

    def record(
        self,
        channel: str,
        username: str,
        text: str,
        positions: dict[str, list[tuple[int, int]]],
    ) -> list[str]:
        """Register and count every emote occurrence in one message."""
        emotes = self._store.channel_emotes(channel)
        if not text or not positions:
            return []
        tokens = self.extract_tokens(text, positions)
        if not tokens:
            return []

        user = normalize_user(username)
        user_counts = emotes.user_counts.setdefault(user, {})
        for token in tokens:
            if token not in emotes.known:
                emotes.known.append(token)
                self._logger.debug("New emote %r registered", token)
            emotes.counts[token] = emotes.counts.get(token, 0) + 1
            user_counts[token] = user_counts.get(token, 0) + 1
        return tokens

    def find(self, channel: str, query: str) -> str | None:
        """Exact match first, then case-insensitive, among known tokens."""
        if not query:
            return None
        known = self._store.channel_emotes(channel).known
        if query in known:
            return query
        lowered = query.lower()
        for token in known:
            if token.lower() == lowered:
                return token
        return None

    def count(self, channel: str, token: str) -> int:
        return self._store.channel_emotes(channel).counts.get(token, 0)

    def top_for_channel(self, channel: str, limit: int = 5) -> list[tuple[str, int]]:
        emotes = self._store.channel_emotes(channel)
        entries = [(t, c) for t, c in emotes.counts.items() if t in emotes.known]
        return sorted(entries, key=lambda kv: kv[1], reverse=True)[:limit]

    def top_for_user(self, channel: str, username: str, limit: int = 5) -> list[tuple[str, int]]:
        emotes = self._store.channel_emotes(channel)
        user_map = emotes.user_counts.get(normalize_user(username), {})
        entries = [(t, c) for t, c in user_map.items() if t in emotes.known]
        return sorted(entries, key=lambda kv: kv[1], reverse=True)[:limit]
