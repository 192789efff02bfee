"""Music link — per-user Spotify token cache on top of ``SpotifyClient``.

Decides when a cached token must be refreshed and records pending PKCE
verifiers between ``songconnect`` and the OAuth callback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from .spotify_client import MusicServiceError, Track
from .utils import normalize_user, now_utc

if TYPE_CHECKING:
    from .spotify_client import SpotifyClient
    from .state import StateStore


class NowPlayingStatus(Enum):
    NOT_CONNECTED = "not_connected"
    REFRESH_FAILED = "refresh_failed"
    LOOKUP_FAILED = "lookup_failed"
    NOTHING = "nothing"
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass
class NowPlaying:
    status: NowPlayingStatus
    track: Track | None = None
    error: str | None = None


class UnknownAuthorization(Exception):
    """Callback arrived for a user with no pending authorization request."""


class MusicLink:
    def __init__(
        self,
        store: StateStore,
        client: SpotifyClient,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._logger = logger or logging.getLogger("economy.music")

    def begin_connect(self, username: str) -> str:
        """Start an authorization request and return the provider URL."""
        user = normalize_user(username)
        url, verifier = self._client.get_authorization_url(user)
        self._store.state.music_verifiers[user] = verifier
        return url

    async def complete_connect(self, username: str, code: str) -> None:
        """Exchange the callback code and cache the token for ``username``."""
        user = normalize_user(username)
        verifier = self._store.state.music_verifiers.get(user)
        if not verifier:
            raise UnknownAuthorization(user)
        token = await self._client.exchange_code(code, verifier)
        self._store.state.music_tokens[user] = token
        self._store.state.music_verifiers.pop(user, None)
        self._logger.info("Spotify connected for %s", user)

    async def now_playing(self, username: str, now: datetime | None = None) -> NowPlaying:
        user = normalize_user(username)
        token = self._store.state.music_tokens.get(user)
        if token is None:
            return NowPlaying(NowPlayingStatus.NOT_CONNECTED)

        access = token.access_token
        if (now or now_utc()) >= token.expires_at:
            try:
                fresh = await self._client.refresh_token(token.refresh_token)
            except MusicServiceError as e:
                self._logger.warning("Spotify token refresh failed for %s: %s", user, e)
                return NowPlaying(NowPlayingStatus.REFRESH_FAILED, error=str(e))
            # Only overwrite the token we refreshed; a reconnect may have raced us.
            if self._store.state.music_tokens.get(user) is token:
                self._store.state.music_tokens[user] = fresh
            access = fresh.access_token

        try:
            track = await self._client.get_currently_playing(access)
        except MusicServiceError as e:
            return NowPlaying(NowPlayingStatus.LOOKUP_FAILED, error=str(e))

        if track is None:
            return NowPlaying(NowPlayingStatus.NOTHING)
        status = NowPlayingStatus.PLAYING if track.is_playing else NowPlayingStatus.PAUSED
        return NowPlaying(status, track=track)
