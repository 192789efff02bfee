"""Twitch chat transport on TwitchIO 3 EventSub websockets.

Subscribes to chat messages and chat notifications for every joined channel
as the bot user, reduces each payload to the core's transport types and
forwards it to the ``InboundHandler``. Cheers arrive as chat messages with
cheer metadata.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import twitchio
from twitchio import eventsub

from .transport import ChatMessage
from .utils import normalize_channel

if TYPE_CHECKING:
    from .config import EconomyConfig
    from .transport import InboundHandler


def emote_positions(fragments: list) -> dict[str, list[tuple[int, int]]]:
    """Rebuild inclusive character ranges for emote fragments."""
    positions: dict[str, list[tuple[int, int]]] = {}
    offset = 0
    for fragment in fragments:
        text = getattr(fragment, "text", "") or ""
        if getattr(fragment, "type", "") == "emote" and text:
            emote = getattr(fragment, "emote", None)
            emote_id = getattr(emote, "id", None) or text
            positions.setdefault(emote_id, []).append((offset, offset + len(text) - 1))
        offset += len(text)
    return positions


class TwitchTransport(twitchio.Client):
    """Bot-account client; the core talks to it through ``ChatTransport``."""

    def __init__(
        self,
        config: EconomyConfig,
        handler: InboundHandler | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        tw = config.twitch
        super().__init__(
            client_id=tw.client_id,
            client_secret=tw.client_secret,
            bot_id=tw.bot_id,
        )
        self._config = config
        self.handler = handler
        self._logger = logger or logging.getLogger("economy.twitch")
        self._joined: dict[str, twitchio.PartialUser] = {}
        self._subscription_ids: dict[str, list[str]] = {}

    @property
    def channels(self) -> list[str]:
        return list(self._joined)

    # ── Lifecycle ────────────────────────────────────────────

    async def setup_hook(self) -> None:
        tw = self._config.twitch
        if tw.bot_token:
            await self.add_token(tw.bot_token, tw.bot_refresh_token)
        for channel in self._config.channels:
            try:
                await self.join_channel(channel)
            except Exception:
                self._logger.exception("Could not join %s at startup", channel)

    async def event_ready(self) -> None:
        self._logger.info("Connected to Twitch as bot id %s", self.bot_id)

    # ── ChatTransport ────────────────────────────────────────

    async def join_channel(self, channel: str) -> None:
        name = normalize_channel(channel)
        if name in self._joined:
            return
        users = await self.fetch_users(logins=[name])
        if not users:
            raise ValueError(f"unknown channel '{name}'")
        broadcaster = users[0]
        subscription_ids: list[str] = []
        try:
            for payload in (
                eventsub.ChatMessageSubscription(broadcaster_user_id=broadcaster.id, user_id=self.bot_id),
                eventsub.ChatNotificationSubscription(broadcaster_user_id=broadcaster.id, user_id=self.bot_id),
            ):
                resp = await self.subscribe_websocket(payload=payload, as_bot=True)
                sub_id = getattr(resp, "id", None)
                if sub_id:
                    subscription_ids.append(sub_id)
        except Exception:
            await self._unsubscribe(name, subscription_ids)
            raise
        self._joined[name] = broadcaster
        self._subscription_ids[name] = subscription_ids
        self._logger.info("Joined channel %s (%s)", name, broadcaster.id)

    async def part_channel(self, channel: str) -> None:
        name = normalize_channel(channel)
        if self._joined.pop(name, None) is None:
            raise ValueError(f"not in channel '{name}'")
        await self._unsubscribe(name, self._subscription_ids.pop(name, []))
        self._logger.info("Parted channel %s", name)

    async def _unsubscribe(self, name: str, subscription_ids: list[str]) -> None:
        for sub_id in subscription_ids:
            try:
                await self.delete_eventsub_subscription(sub_id, token_for=self.bot_id)
            except Exception:
                self._logger.warning("Failed to delete subscription %s for %s", sub_id, name, exc_info=True)

    async def send_action(self, channel: str, text: str) -> None:
        broadcaster = self._joined.get(normalize_channel(channel))
        if broadcaster is None:
            self._logger.debug("Dropping message for unjoined channel %s", channel)
            return
        await broadcaster.send_message(message=text, sender=self.bot_id, token_for=self.bot_id)

    # ── Inbound events ───────────────────────────────────────

    async def event_message(self, payload: twitchio.ChatMessage) -> None:
        if self.handler is None or payload.broadcaster is None:
            return
        channel = normalize_channel(payload.broadcaster.name)
        if channel not in self._joined or payload.chatter.id == self.bot_id:
            return

        chatter = payload.chatter
        badges = {b.set_id: b.id for b in (getattr(chatter, "badges", None) or [])}
        message = ChatMessage(
            channel=channel,
            sender=chatter.name or "",
            text=payload.text or "",
            privileged=bool(getattr(chatter, "moderator", False) or getattr(chatter, "broadcaster", False)),
            emotes=emote_positions(getattr(payload, "fragments", None) or []),
            badges=badges,
        )
        try:
            await self.handler.on_message(message)
        except Exception:
            self._logger.exception("message handler error for %s", chatter.name)

        cheer = getattr(payload, "cheer", None)
        bits = int(getattr(cheer, "bits", 0) or 0)
        if bits > 0:
            try:
                await self.handler.on_cheer(channel, chatter.name or "", bits)
            except Exception:
                self._logger.exception("cheer handler error for %s", chatter.name)

    async def event_chat_notification(self, payload: twitchio.ChatNotification) -> None:
        if self.handler is None:
            return
        channel = normalize_channel(payload.broadcaster.name)
        if channel not in self._joined:
            return
        chatter = getattr(payload, "chatter", None)
        username = getattr(chatter, "name", "") or ""
        notice = payload.notice_type

        try:
            if notice == "sub":
                await self.handler.on_subscription(channel, username)
            elif notice == "resub":
                await self.handler.on_resub(channel, username)
            elif notice == "community_sub_gift":
                total = getattr(payload.community_sub_gift, "total", None) or 1
                await self.handler.on_subgift(channel, username, int(total))
            elif notice == "sub_gift":
                # Single gifts that belong to a community bundle were already counted.
                if getattr(payload.sub_gift, "community_gift_id", None) is None:
                    await self.handler.on_subgift(channel, username, 1)
        except Exception:
            self._logger.exception("chat notification handler error (%s)", notice)
