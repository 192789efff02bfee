"""Chat command dispatcher.

Every inbound chat message is observed (last seen, message counts, emotes,
on-next-chat reminders). Messages starting with the configured prefix are
parsed and routed through a static dispatch table; the reply, if any, is
sent back to the channel and the snapshot is flushed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

from .bonus_window import BonusClaimStatus
from .economy_engine import Outcome
from .music_link import NowPlayingStatus
from .state import LastSeen
from .utils import (
    fmt_int,
    format_duration,
    normalize_channel,
    normalize_user,
    now_utc,
    parse_amount,
    try_parse_duration,
)

if TYPE_CHECKING:
    from .bonus_window import BonusWindow
    from .config import EconomyConfig
    from .economy_engine import EconomyEngine
    from .emote_tracker import EmoteTracker
    from .music_link import MusicLink
    from .reminders import ReminderScheduler
    from .state import StateStore
    from .stats import StatsAggregator
    from .transport import ChatMessage, ChatTransport


BADGE_NAMES: dict[str, str] = {
    "broadcaster": "Broadcaster",
    "moderator": "Moderator",
    "mod": "Moderator",
    "vip": "VIP",
    "subscriber": "Subscriber",
    "founder": "Founder",
    "bits": "Bits",
    "bits-leader": "Bits Leader",
    "bitsleader": "Bits Leader",
    "premium": "Prime Gaming",
    "partner": "Partner",
    "staff": "Twitch Staff",
    "admin": "Twitch Admin",
    "global_mod": "Global Moderator",
    "artist-badge": "Artist",
    "artist": "Artist",
    "turbo": "Turbo",
    "sub-gifter": "Sub Gifter",
    "sub_gifter": "Sub Gifter",
    "predictions": "Predictions",
    "no_audio": "No Audio",
    "no_video": "No Video",
}


@dataclass
class CommandContext:
    message: ChatMessage
    user: str
    channel: str
    args: list[str]


Handler = Callable[["CommandDispatcher", CommandContext], Awaitable["str | None"]]


@dataclass(frozen=True)
class CommandSpec:
    name: str
    handler: Handler
    privileged: bool = False
    aliases: tuple[str, ...] = ()
    usage: str = ""


class CommandDispatcher:
    """Observes chat and answers prefixed commands."""

    def __init__(
        self,
        config: EconomyConfig,
        store: StateStore,
        transport: ChatTransport,
        economy: EconomyEngine,
        bonus: BonusWindow,
        reminders: ReminderScheduler,
        stats: StatsAggregator,
        emotes: EmoteTracker,
        music: MusicLink | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._transport = transport
        self._economy = economy
        self._bonus = bonus
        self._reminders = reminders
        self._stats = stats
        self._emotes = emotes
        self._music = music
        self._logger = logger or logging.getLogger("economy.dispatch")

        self._prefix = config.prefix
        self._currency = config.currency.name
        self._ignored_users: set[str] = {normalize_user(u) for u in config.ignored_users}

        self._commands = self._build_table(self._COMMAND_SPECS)

        self.messages_processed = 0
        self.commands_processed = 0

    @staticmethod
    def _build_table(specs: tuple[CommandSpec, ...]) -> dict[str, CommandSpec]:
        table: dict[str, CommandSpec] = {}
        for spec in specs:
            for key in (spec.name, *spec.aliases):
                if key in table:
                    raise ValueError(f"Duplicate command name: {key}")
                table[key] = spec
        return table

    @property
    def command_names(self) -> list[str]:
        return [spec.name for spec in self._COMMAND_SPECS]

    # ══════════════════════════════════════════════════════════
    #  Entry point
    # ══════════════════════════════════════════════════════════

    async def handle_message(self, message: ChatMessage) -> str | None:
        """Process one inbound chat message; return the reply sent, if any."""
        user = normalize_user(message.sender)
        channel = normalize_channel(message.channel)
        if not user or user in self._ignored_users:
            return None

        self.messages_processed += 1
        await self._observe(message, user, channel)

        text = message.text or ""
        if not text.startswith(self._prefix):
            return None
        raw = text[len(self._prefix):].strip()
        if not raw:
            return None

        tokens = raw.split()
        command = tokens[0].lower()
        ctx = CommandContext(message=message, user=user, channel=channel, args=tokens[1:])

        spec = self._commands.get(command)
        if spec is None or (spec.privileged and not message.privileged):
            reply: str | None = f"Unknown command: {self._prefix}{command}. Try {self._prefix}help"
        else:
            try:
                reply = await spec.handler(self, ctx)
                self.commands_processed += 1
            except Exception:
                self._logger.exception("Command handler error for %s/%s", user, command)
                reply = f"@{user} something went wrong processing that command."

        if reply:
            try:
                await self._transport.send_action(channel, reply)
            except Exception:
                self._logger.exception("Failed to send reply to %s", channel)

        await self._store.save_async()
        return reply

    async def _observe(self, message: ChatMessage, user: str, channel: str) -> None:
        self._store.state.last_seen[user] = LastSeen(timestamp=now_utc(), message=message.text)
        self._store.account(user)
        self._stats.record_message(user)
        self._emotes.record(channel, user, message.text, message.emotes)
        await self._reminders.deliver_on_chat(user, channel)

    # ══════════════════════════════════════════════════════════
    #  Helpers
    # ══════════════════════════════════════════════════════════

    def _usage(self, text: str) -> str:
        return f"Usage: {self._prefix}{text}"

    def _coins(self, amount: int) -> str:
        return f"{fmt_int(amount)} {self._currency}"

    # ══════════════════════════════════════════════════════════
    #  Basics
    # ══════════════════════════════════════════════════════════

    async def _cmd_ping(self, ctx: CommandContext) -> str:
        return f"@{ctx.user} pong"

    async def _cmd_help(self, ctx: CommandContext) -> str:
        p = self._prefix
        entries = [
            f"{p}{spec.usage or spec.name}" + (" (mod)" if spec.privileged else "")
            for spec in self._COMMAND_SPECS
            if spec.name not in ("give", "take", "join", "part")
        ]
        return "Commands: " + " | ".join(entries)

    async def _cmd_balance(self, ctx: CommandContext) -> str:
        target = (normalize_user(ctx.args[0]) if ctx.args else "") or ctx.user
        return f"{target} has {self._coins(self._economy.balance(target))}"

    async def _cmd_lastseen(self, ctx: CommandContext) -> str:
        target = (normalize_user(ctx.args[0]) if ctx.args else "") or ctx.user
        record = self._store.state.last_seen.get(target)
        if record is None:
            return f"No record for {target}"
        ago = format_duration(now_utc() - record.timestamp)
        return f'{target} was last seen {ago} ago saying: "{record.message}"'

    async def _cmd_badge(self, ctx: CommandContext) -> str:
        if ctx.args and normalize_user(ctx.args[0]) != ctx.user:
            return (
                f"@{ctx.user} I can only show your own badges right now. "
                f"Use {self._prefix}badge with no arguments."
            )
        badges = ctx.message.badges
        if not badges:
            return f"@{ctx.user} you are not showing any badges right now."
        parts = []
        for key, version in badges.items():
            nice = BADGE_NAMES.get(key, key)
            parts.append(f"{nice} (tier {version})" if version else nice)
        return f"@{ctx.user} your active badges: {', '.join(parts)}"

    # ══════════════════════════════════════════════════════════
    #  Economy
    # ══════════════════════════════════════════════════════════

    async def _cmd_claim(self, ctx: CommandContext) -> str:
        result = self._economy.claim(ctx.user)
        if result.outcome is Outcome.COOLDOWN:
            return f"@{ctx.user} you can claim again in {format_duration(result.remaining)}"
        return (
            f"@{ctx.user} claimed {self._coins(result.amount)}! "
            f"New balance: {fmt_int(result.balance)}"
        )

    async def _cmd_gamble(self, ctx: CommandContext) -> str:
        if not ctx.args:
            return self._usage("gamble <amount>")
        result = self._economy.gamble(ctx.user, parse_amount(ctx.args[0]))
        if result.outcome is Outcome.INVALID_AMOUNT:
            return f"@{ctx.user} enter a valid positive amount to gamble."
        if result.outcome is Outcome.INSUFFICIENT_FUNDS:
            return f"@{ctx.user} you don't have enough {self._currency}. Your balance: {fmt_int(result.balance)}"
        if result.outcome is Outcome.WIN:
            return f"@{ctx.user} won {self._coins(result.amount)}! New balance: {fmt_int(result.balance)}"
        return f"@{ctx.user} lost {self._coins(result.amount)}. New balance: {fmt_int(result.balance)}"

    async def _cmd_bonus(self, ctx: CommandContext) -> str:
        result = self._bonus.claim(ctx.user)
        if result.status is BonusClaimStatus.NOT_ACTIVE:
            return f"@{ctx.user} there is no active bonus right now."
        if result.status is BonusClaimStatus.ALREADY_CLAIMED:
            return f"@{ctx.user} bonus already claimed by {result.winner}"
        return (
            f"🎉 @{ctx.user} claimed the bonus and won {self._coins(result.amount)}! "
            f"New balance: {fmt_int(result.balance)}"
        )

    async def _cmd_steal(self, ctx: CommandContext) -> str:
        if len(ctx.args) < 2:
            return self._usage("steal @user <amount>")
        result = self._economy.steal(ctx.user, ctx.args[0], parse_amount(ctx.args[1]))
        if result.outcome is Outcome.INVALID_AMOUNT:
            return self._usage("steal @user <amount>")
        if result.outcome is Outcome.SELF_TARGET:
            return f"@{ctx.user} you cannot steal from yourself."
        if result.outcome is Outcome.TARGET_INSUFFICIENT:
            return f"@{ctx.user} target {result.target} does not have enough {self._currency} to steal that amount."
        if result.outcome is Outcome.INSUFFICIENT_FUNDS:
            return (
                f"@{ctx.user} you don't have enough {self._currency} to attempt that steal "
                f"(you need at least {fmt_int(result.amount)})."
            )
        if result.outcome is Outcome.WIN:
            return (
                f"@{ctx.user} successfully stole {self._coins(result.amount)} from {result.target}! "
                f"New balance: {fmt_int(result.balance)}"
            )
        return (
            f"@{ctx.user} failed the steal and paid {self._coins(result.amount)} to {result.target}. "
            f"New balance: {fmt_int(result.balance)}"
        )

    async def _cmd_give(self, ctx: CommandContext) -> str:
        if len(ctx.args) < 2:
            return self._usage("give @user <amount> (mod only)")
        result = self._economy.grant(ctx.args[0], parse_amount(ctx.args[1]))
        if not result.ok:
            return self._usage("give @user <amount> (mod only)")
        return f"{result.target} received {self._coins(result.amount)} (new balance: {fmt_int(result.balance)})"

    async def _cmd_take(self, ctx: CommandContext) -> str:
        if len(ctx.args) < 2:
            return self._usage("take @user <amount> (mod only)")
        result = self._economy.revoke(ctx.args[0], parse_amount(ctx.args[1]))
        if not result.ok:
            return self._usage("take @user <amount> (mod only)")
        return f"{result.target} lost {self._coins(result.amount)} (new balance: {fmt_int(result.balance)})"

    # ══════════════════════════════════════════════════════════
    #  Secret word
    # ══════════════════════════════════════════════════════════

    async def _cmd_w(self, ctx: CommandContext) -> str:
        if not ctx.args:
            return self._usage("w <word>")
        result = self._economy.guess_word(ctx.user, ctx.args[0])
        if result.outcome is Outcome.NO_WORD:
            return "No active word is set right now. Try again later."
        if result.outcome is Outcome.WRONG_GUESS:
            return f"@{ctx.user} incorrect guess. Try again!"
        return (
            f"🎉 @{ctx.user} guessed the word correctly and won {self._coins(result.amount)}! "
            f"New balance: {fmt_int(result.balance)}"
        )

    async def _cmd_setword(self, ctx: CommandContext) -> str:
        if not ctx.args or not self._economy.set_word(ctx.args[0]):
            return self._usage("setword <word> (mod/broadcaster only)")
        return "Secret word has been set (hidden)."

    # ══════════════════════════════════════════════════════════
    #  Emotes
    # ══════════════════════════════════════════════════════════

    async def _cmd_ecount(self, ctx: CommandContext) -> str:
        if not ctx.args:
            return self._usage("ecount <emote>")
        query = ctx.args[0].strip()
        token = self._emotes.find(ctx.channel, query)
        if token is None:
            return f'Emote "{query}" has been used 0 times in this channel (or is not tracked).'
        count = self._emotes.count(ctx.channel, token)
        return f'Emote "{token}" has been used {fmt_int(count)} times in this channel.'

    async def _cmd_mytopused(self, ctx: CommandContext) -> str:
        top = self._emotes.top_for_user(ctx.channel, ctx.user)
        if not top:
            return f"@{ctx.user} you have no tracked emote usage in this channel yet."
        listing = ", ".join(f"{token} ({count})" for token, count in top)
        return f"@{ctx.user} your top emotes in this channel: {listing}"

    async def _cmd_topemotes(self, ctx: CommandContext) -> str:
        top = self._emotes.top_for_channel(ctx.channel)
        if not top:
            return "No emote usage recorded for this channel yet."
        listing = ", ".join(f"{token} ({count})" for token, count in top)
        return f"Top emotes in this channel: {listing}"

    # ══════════════════════════════════════════════════════════
    #  Stats
    # ══════════════════════════════════════════════════════════

    async def _cmd_lotd(self, ctx: CommandContext) -> str:
        top = self._stats.top_chatter()
        if top is None:
            return "No messages recorded for today yet."
        return f"Loser of the day is {top[0]} with {fmt_int(top[1])} messages!"

    async def _cmd_topchatters(self, ctx: CommandContext) -> str:
        top = self._stats.top_chatters()
        if not top:
            return "No chat messages recorded for today yet."
        listing = ", ".join(
            f"{idx}) {user} ({fmt_int(count)})" for idx, (user, count) in enumerate(top, start=1)
        )
        return f"Top chatters today: {listing}"

    async def _cmd_stats(self, ctx: CommandContext) -> str:
        return self._stats.summary()

    # ══════════════════════════════════════════════════════════
    #  Reminders
    # ══════════════════════════════════════════════════════════

    async def _cmd_remindme(self, ctx: CommandContext) -> str:
        if len(ctx.args) < 2:
            return (
                f"{self._usage('remindme <msg> <time>')} "
                f"(e.g., {self._prefix}remindme take a break 10m)"
            )
        delay = try_parse_duration(ctx.args[-1])
        if delay is None:
            return "Invalid time format. Use s,m,h,d (e.g., 30s, 10m, 1h)"
        text = " ".join(ctx.args[:-1])
        self._reminders.add_timed(ctx.user, ctx.user, text, delay)
        return f'@{ctx.user} reminder set in {format_duration(delay)}: "{text}"'

    async def _cmd_remind(self, ctx: CommandContext) -> str:
        if len(ctx.args) < 2:
            return (
                f"{self._usage('remind <user> <msg> [<time>]')} "
                f"(e.g., {self._prefix}remind @bob check DMs 5m)"
            )
        target = normalize_user(ctx.args[0])
        if not target:
            return "Invalid target user."

        delay = try_parse_duration(ctx.args[-1]) if len(ctx.args) >= 3 else None
        words = ctx.args[1:-1] if delay is not None else ctx.args[1:]
        text = " ".join(words)
        if not text:
            return "Please provide a message for the reminder."

        if delay is not None:
            self._reminders.add_timed(ctx.user, target, text, delay)
            return f'Reminder set for @{target} in {format_duration(delay)}: "{text}"'
        self._reminders.add_on_next_chat(ctx.user, target, text)
        return f'@{ctx.user} I will remind @{target} the next time they chat: "{text}"'

    # ══════════════════════════════════════════════════════════
    #  Channel membership
    # ══════════════════════════════════════════════════════════

    async def _cmd_join(self, ctx: CommandContext) -> str:
        channel = normalize_channel(ctx.args[0]) if ctx.args else ""
        if not channel:
            return self._usage("join <channel> (mod/broadcaster only)")
        try:
            await self._transport.join_channel(channel)
        except Exception as e:
            self._logger.warning("Join %s failed: %s", channel, e)
            return f"Failed to join {channel}: {e}"
        self._logger.info("Joined %s at the request of %s", channel, ctx.user)
        return f"Joined channel {channel}"

    async def _cmd_part(self, ctx: CommandContext) -> str:
        channel = normalize_channel(ctx.args[0]) if ctx.args else ""
        if not channel:
            return self._usage("part <channel> (mod/broadcaster only)")
        try:
            await self._transport.part_channel(channel)
        except Exception as e:
            self._logger.warning("Part %s failed: %s", channel, e)
            return f"Failed to part {channel}: {e}"
        self._logger.info("Left %s at the request of %s", channel, ctx.user)
        return f"Left channel {channel}"

    # ══════════════════════════════════════════════════════════
    #  Music
    # ══════════════════════════════════════════════════════════

    async def _cmd_songconnect(self, ctx: CommandContext) -> str:
        if self._music is None:
            return f"@{ctx.user} Spotify is not configured on this bot."
        url = f"{self._config.web.base_url()}/spotify/connect?user={ctx.user}"
        return f"@{ctx.user} connect your Spotify here: {url}"

    async def _cmd_song(self, ctx: CommandContext) -> str:
        if self._music is None:
            return f"@{ctx.user} Spotify is not configured on this bot."
        result = await self._music.now_playing(ctx.user)
        status = result.status
        if status is NowPlayingStatus.NOT_CONNECTED:
            return f"@{ctx.user} you haven't connected your Spotify yet. Use {self._prefix}songconnect"
        if status is NowPlayingStatus.REFRESH_FAILED:
            return f"@{ctx.user} error refreshing Spotify token. Try {self._prefix}songconnect again"
        if status is NowPlayingStatus.LOOKUP_FAILED:
            return f"@{ctx.user} error getting current track: {result.error}"
        if status is NowPlayingStatus.NOTHING:
            return f"@{ctx.user} you're not currently playing anything on Spotify"
        track = result.track
        if status is NowPlayingStatus.PLAYING:
            return f'@{ctx.user} is listening to: "{track.name}" by {track.artists}'
        return f'@{ctx.user} paused: "{track.name}" by {track.artists}'

    # ══════════════════════════════════════════════════════════
    #  Dispatch table
    # ══════════════════════════════════════════════════════════

    _COMMAND_SPECS: tuple[CommandSpec, ...] = (
        CommandSpec("ping", _cmd_ping),
        CommandSpec("help", _cmd_help),
        CommandSpec("balance", _cmd_balance, aliases=("bal",)),
        CommandSpec("claim", _cmd_claim),
        CommandSpec("gamble", _cmd_gamble, usage="gamble <amount>"),
        CommandSpec("bonus", _cmd_bonus),
        CommandSpec("steal", _cmd_steal, usage="steal @user <amount>"),
        CommandSpec("lastseen", _cmd_lastseen),
        CommandSpec("badge", _cmd_badge, aliases=("badges",)),
        CommandSpec("ecount", _cmd_ecount, usage="ecount <emote>"),
        CommandSpec("mytopused", _cmd_mytopused),
        CommandSpec("topemotes", _cmd_topemotes),
        CommandSpec("w", _cmd_w, usage="w <word>"),
        CommandSpec("setword", _cmd_setword, privileged=True, usage="setword <word>"),
        CommandSpec("lotd", _cmd_lotd),
        CommandSpec("topchatters", _cmd_topchatters),
        CommandSpec("stats", _cmd_stats),
        CommandSpec("remindme", _cmd_remindme, usage="remindme <msg> <time>"),
        CommandSpec("remind", _cmd_remind, usage="remind <user> <msg> [<time>]"),
        CommandSpec("give", _cmd_give, privileged=True),
        CommandSpec("take", _cmd_take, privileged=True),
        CommandSpec("join", _cmd_join, privileged=True),
        CommandSpec("part", _cmd_part, privileged=True),
        CommandSpec("songconnect", _cmd_songconnect),
        CommandSpec("song", _cmd_song),
    )
