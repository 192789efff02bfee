"""Spotify Web API client — PKCE authorization, token exchange, now playing.

Owns only the wire protocol; token caching and expiry decisions live in
``music_link``. All tests mock the HTTP layer.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import aiohttp

from .state import MusicToken
from .utils import now_utc

if TYPE_CHECKING:
    from .config import SpotifyConfig

AUTH_URL = "https://accounts.spotify.com/authorize"
TOKEN_URL = "https://accounts.spotify.com/api/token"
API_URL = "https://api.spotify.com/v1"
SCOPE = "user-read-currently-playing"


class MusicServiceError(Exception):
    """Any failure talking to the music service."""


@dataclass
class Track:
    name: str
    artists: str
    album: str
    url: str
    is_playing: bool


def generate_code_verifier() -> str:
    return secrets.token_hex(32)


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class SpotifyClient:
    """Async client for the Spotify accounts and player endpoints."""

    def __init__(self, config: SpotifyConfig, logger: logging.Logger | None = None) -> None:
        self._config = config
        self._logger = logger or logging.getLogger("economy.spotify")
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        """Create the HTTP session."""
        self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10.0))

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    # ══════════════════════════════════════════════════════════
    #  Authorization
    # ══════════════════════════════════════════════════════════

    def get_authorization_url(self, username: str) -> tuple[str, str]:
        """Return ``(url, code_verifier)``; ``state`` carries the username."""
        verifier = generate_code_verifier()
        params = {
            "client_id": self._config.client_id,
            "response_type": "code",
            "redirect_uri": self._config.redirect_uri,
            "scope": SCOPE,
            "code_challenge_method": "S256",
            "code_challenge": generate_code_challenge(verifier),
            "state": username,
        }
        return f"{AUTH_URL}?{urlencode(params)}", verifier

    async def exchange_code(self, code: str, verifier: str) -> MusicToken:
        data = await self._token_request({
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
            "code": code,
            "redirect_uri": self._config.redirect_uri,
            "grant_type": "authorization_code",
            "code_verifier": verifier,
        })
        return self._parse_token(data, fallback_refresh="")

    async def refresh_token(self, refresh_token: str) -> MusicToken:
        data = await self._token_request({
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        })
        return self._parse_token(data, fallback_refresh=refresh_token)

    # ══════════════════════════════════════════════════════════
    #  Player
    # ══════════════════════════════════════════════════════════

    async def get_currently_playing(self, access_token: str) -> Track | None:
        """Return the current track, or None when nothing is playing."""
        session = self._require_session()
        try:
            async with session.get(
                f"{API_URL}/me/player/currently-playing",
                headers={"Authorization": f"Bearer {access_token}"},
            ) as resp:
                if resp.status == 204:
                    return None
                resp.raise_for_status()
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._logger.error("Spotify now-playing lookup failed: %s", e)
            raise MusicServiceError(str(e)) from e

        return self._parse_track(data)

    # ══════════════════════════════════════════════════════════
    #  Internal Helpers
    # ══════════════════════════════════════════════════════════

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise MusicServiceError("Spotify client is not started")
        return self._session

    async def _token_request(self, form: dict[str, str]) -> dict[str, Any]:
        session = self._require_session()
        try:
            async with session.post(
                TOKEN_URL,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            ) as resp:
                resp.raise_for_status()
                return await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._logger.error("Spotify token request (%s) failed: %s", form.get("grant_type"), e)
            raise MusicServiceError(str(e)) from e

    @staticmethod
    def _parse_token(data: dict[str, Any], fallback_refresh: str) -> MusicToken:
        try:
            access = data["access_token"]
            expires_in = int(data.get("expires_in", 3600))
        except (KeyError, TypeError, ValueError) as e:
            raise MusicServiceError(f"Malformed token response: {e}") from e
        return MusicToken(
            access_token=access,
            refresh_token=data.get("refresh_token") or fallback_refresh,
            expires_at=now_utc() + timedelta(seconds=expires_in),
        )

    @staticmethod
    def _parse_track(data: dict[str, Any] | None) -> Track | None:
        item = (data or {}).get("item")
        if not item:
            return None
        return Track(
            name=item.get("name", "Unknown"),
            artists=", ".join(a.get("name", "") for a in item.get("artists", [])),
            album=(item.get("album") or {}).get("name", ""),
            url=(item.get("external_urls") or {}).get("spotify", ""),
            is_playing=bool(data.get("is_playing")),
        )
