"""Twitch Helix API client — latest follower and live viewer count.

Used only by the background poll; every failure is logged and reported as
``None`` so the poll loop just skips that round.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import aiohttp

if TYPE_CHECKING:
    from .config import TwitchConfig

HELIX_URL = "https://api.twitch.tv"


class HelixClient:
    """Async client for the few Helix endpoints the bot polls."""

    def __init__(self, config: TwitchConfig, logger: logging.Logger | None = None) -> None:
        self._config = config
        self._logger = logger or logging.getLogger("economy.helix")
        self._session: aiohttp.ClientSession | None = None
        self._broadcaster_id: str | None = None

    @property
    def configured(self) -> bool:
        cfg = self._config
        return bool(cfg.client_id and cfg.helix_token and cfg.broadcaster_login)

    async def start(self) -> None:
        """Create the HTTP session."""
        self._session = aiohttp.ClientSession(
            base_url=HELIX_URL,
            headers={
                "Client-Id": self._config.client_id,
                "Authorization": f"Bearer {self._config.helix_token}",
            },
            timeout=aiohttp.ClientTimeout(total=10.0),
        )

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def _get(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]] | None:
        if not self._session:
            return None
        try:
            async with self._session.get(path, params=params) as resp:
                resp.raise_for_status()
                payload = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._logger.warning("Helix %s failed: %s", path, e)
            return None
        return payload.get("data") or []

    async def broadcaster_id(self) -> str | None:
        if self._broadcaster_id is None:
            data = await self._get("/helix/users", {"login": self._config.broadcaster_login})
            if data:
                self._broadcaster_id = data[0].get("id")
        return self._broadcaster_id

    async def latest_follower(self) -> tuple[str, str] | None:
        """Return ``(user_id, display_name)`` of the newest follower."""
        broadcaster = await self.broadcaster_id()
        if not broadcaster:
            return None
        data = await self._get(
            "/helix/channels/followers", {"broadcaster_id": broadcaster, "first": 1},
        )
        if not data:
            return None
        latest = data[0]
        return latest.get("user_id", ""), latest.get("user_name") or latest.get("user_login", "")

    async def viewer_count(self) -> int | None:
        """Current viewer count, or None when the stream is offline."""
        data = await self._get("/helix/streams", {"user_login": self._config.broadcaster_login})
        if not data:
            return None
        try:
            return int(data[0].get("viewer_count", 0))
        except (TypeError, ValueError):
            return None
