"""Tests for CommandDispatcher — observation, parsing and command replies."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from twitch_economy.bonus_window import BonusWindow
from twitch_economy.dispatcher import CommandDispatcher, CommandSpec
from twitch_economy.music_link import NowPlaying, NowPlayingStatus
from twitch_economy.spotify_client import Track
from twitch_economy.state import StateStore

from tests.conftest import CH, make_message


async def say(dispatcher: CommandDispatcher, text: str, sender: str = "alice", **kwargs) -> str | None:
    return await dispatcher.handle_message(make_message(sender=sender, text=text, **kwargs))


# ═══════════════════════════════════════════════════════════════
#  Observation & parsing
# ═══════════════════════════════════════════════════════════════


class TestObservation:
    @pytest.mark.asyncio
    async def test_plain_message_observed_no_reply(
        self, dispatcher: CommandDispatcher, store: StateStore, mock_transport: MagicMock,
    ):
        assert await say(dispatcher, "hello world", sender="Alice") is None
        assert store.state.last_seen["alice"].message == "hello world"
        assert "alice" in store.state.accounts
        assert sum(sum(day.values()) for day in store.state.message_counts.values()) == 1
        mock_transport.send_action.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ignored_user_skipped(self, dispatcher: CommandDispatcher, store: StateStore):
        assert await say(dispatcher, "-ping", sender="ignoredbot") is None
        assert "ignoredbot" not in store.state.last_seen
        assert dispatcher.messages_processed == 0

    @pytest.mark.asyncio
    async def test_prefix_only_is_not_a_command(self, dispatcher: CommandDispatcher, mock_transport: MagicMock):
        assert await say(dispatcher, "-") is None
        assert await say(dispatcher, "-   ") is None
        mock_transport.send_action.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_emotes_recorded(self, dispatcher: CommandDispatcher):
        await say(dispatcher, "Kappa hi", emotes={"25": [(0, 4)]})
        assert dispatcher._emotes.count(CH, "Kappa") == 1

    @pytest.mark.asyncio
    async def test_on_next_chat_reminder_delivered(
        self, dispatcher: CommandDispatcher, mock_transport: MagicMock, store: StateStore,
    ):
        dispatcher._reminders.add_on_next_chat("alice", "bob", "call me")
        await say(dispatcher, "hey", sender="Bob")
        mock_transport.send_action.assert_awaited_once_with(
            CH, "@bob you have a reminder from @alice: call me",
        )
        assert store.state.reminders == []


class TestParsing:
    @pytest.mark.asyncio
    async def test_reply_sent_and_state_saved(
        self, dispatcher: CommandDispatcher, mock_transport: MagicMock, store: StateStore,
    ):
        reply = await say(dispatcher, "-ping")
        assert reply == "@alice pong"
        mock_transport.send_action.assert_awaited_once_with(CH, "@alice pong")
        assert store.path.exists()
        assert dispatcher.commands_processed == 1

    @pytest.mark.asyncio
    async def test_command_name_case_insensitive(self, dispatcher: CommandDispatcher):
        assert await say(dispatcher, "-PING") == "@alice pong"

    @pytest.mark.asyncio
    async def test_unknown_command(self, dispatcher: CommandDispatcher):
        assert await say(dispatcher, "-dance") == "Unknown command: -dance. Try -help"

    @pytest.mark.asyncio
    async def test_privileged_command_hidden_from_regular_users(self, dispatcher: CommandDispatcher, store: StateStore):
        reply = await say(dispatcher, "-give bob 500")
        assert reply == "Unknown command: -give. Try -help"
        assert store.account("bob").balance == 0

    @pytest.mark.asyncio
    async def test_custom_prefix(self, dispatcher: CommandDispatcher):
        dispatcher._prefix = "!"
        assert await say(dispatcher, "-ping") is None
        assert await say(dispatcher, "!ping") == "@alice pong"

    @pytest.mark.asyncio
    async def test_handler_exception_reported(self, dispatcher: CommandDispatcher):
        async def boom(self, ctx):
            raise RuntimeError("kaboom")

        dispatcher._commands["ping"] = CommandSpec("ping", boom)
        reply = await say(dispatcher, "-ping")
        assert reply == "@alice something went wrong processing that command."

    @pytest.mark.asyncio
    async def test_send_failure_does_not_raise(self, dispatcher: CommandDispatcher, mock_transport: MagicMock):
        mock_transport.send_action.side_effect = RuntimeError("disconnected")
        assert await say(dispatcher, "-ping") == "@alice pong"

    def test_duplicate_command_names_rejected(self):
        async def noop(self, ctx):
            return None

        with pytest.raises(ValueError):
            CommandDispatcher._build_table((CommandSpec("a", noop), CommandSpec("b", noop, aliases=("a",))))

    def test_alias_table(self, dispatcher: CommandDispatcher):
        assert dispatcher._commands["bal"] is dispatcher._commands["balance"]
        assert "balance" in dispatcher.command_names


# ═══════════════════════════════════════════════════════════════
#  Economy commands
# ═══════════════════════════════════════════════════════════════


class TestEconomyCommands:
    @pytest.mark.asyncio
    async def test_claim_then_balance(self, dispatcher: CommandDispatcher):
        assert await say(dispatcher, "-claim") == "@alice claimed 1,000 coins! New balance: 1,000"
        assert await say(dispatcher, "-balance") == "alice has 1,000 coins"

        reply = await say(dispatcher, "-claim")
        assert reply.startswith("@alice you can claim again in 23h 59m")

    @pytest.mark.asyncio
    async def test_balance_of_other_user(self, dispatcher: CommandDispatcher, store: StateStore):
        store.account("bob").balance = 42
        assert await say(dispatcher, "-bal @Bob") == "bob has 42 coins"

    @pytest.mark.asyncio
    async def test_gamble_comma_amount(self, dispatcher: CommandDispatcher, store: StateStore):
        store.account("alice").balance = 2000
        with patch("twitch_economy.economy_engine.random.random", return_value=0.1):
            reply = await say(dispatcher, "-gamble 1,000")
        assert reply == "@alice won 1,000 coins! New balance: 3,000"

    @pytest.mark.asyncio
    async def test_gamble_usage_and_validation(self, dispatcher: CommandDispatcher, store: StateStore):
        store.account("alice").balance = 10
        assert await say(dispatcher, "-gamble") == "Usage: -gamble <amount>"
        assert await say(dispatcher, "-gamble lots") == "@alice enter a valid positive amount to gamble."
        assert await say(dispatcher, "-gamble 11") == "@alice you don't have enough coins. Your balance: 10"

    @pytest.mark.asyncio
    async def test_steal_replies(self, dispatcher: CommandDispatcher, store: StateStore):
        store.account("alice").balance = 500
        store.account("bob").balance = 500
        assert await say(dispatcher, "-steal alice 10") == "@alice you cannot steal from yourself."
        assert await say(dispatcher, "-steal bob") == "Usage: -steal @user <amount>"
        assert await say(dispatcher, "-steal bob 600") == (
            "@alice target bob does not have enough coins to steal that amount."
        )
        with patch("twitch_economy.economy_engine.random.random", return_value=0.9):
            reply = await say(dispatcher, "-steal @bob 100")
        assert reply == "@alice failed the steal and paid 100 coins to bob. New balance: 400"
        assert store.account("bob").balance == 600

    @pytest.mark.asyncio
    async def test_give_and_take_privileged(self, dispatcher: CommandDispatcher, store: StateStore):
        reply = await say(dispatcher, "-give @bob 1,500", privileged=True)
        assert reply == "bob received 1,500 coins (new balance: 1,500)"
        reply = await say(dispatcher, "-take bob 5000", privileged=True)
        assert reply == "bob lost 5,000 coins (new balance: 0)"
        assert await say(dispatcher, "-give bob", privileged=True) == "Usage: -give @user <amount> (mod only)"

    @pytest.mark.asyncio
    async def test_bonus_flow(self, dispatcher: CommandDispatcher, bonus: BonusWindow):
        assert await say(dispatcher, "-bonus") == "@alice there is no active bonus right now."
        await bonus.open()
        try:
            reply = await say(dispatcher, "-bonus")
            assert reply == "🎉 @alice claimed the bonus and won 20,000 coins! New balance: 20,000"
            assert await say(dispatcher, "-bonus", sender="bob") == "@bob bonus already claimed by alice"
        finally:
            await bonus.stop()

    @pytest.mark.asyncio
    async def test_secret_word(self, dispatcher: CommandDispatcher):
        assert await say(dispatcher, "-w apple") == "No active word is set right now. Try again later."
        assert await say(dispatcher, "-setword apple") == "Unknown command: -setword. Try -help"
        assert await say(dispatcher, "-setword Apple", sender="mod", privileged=True) == (
            "Secret word has been set (hidden)."
        )
        assert await say(dispatcher, "-w pear") == "@alice incorrect guess. Try again!"
        assert await say(dispatcher, "-w APPLE") == (
            "🎉 @alice guessed the word correctly and won 1,000 coins! New balance: 1,000"
        )


# ═══════════════════════════════════════════════════════════════
#  Info commands
# ═══════════════════════════════════════════════════════════════


class TestInfoCommands:
    @pytest.mark.asyncio
    async def test_lastseen(self, dispatcher: CommandDispatcher):
        assert await say(dispatcher, "-lastseen nobody") == "No record for nobody"
        await say(dispatcher, "brb", sender="bob")
        reply = await say(dispatcher, "-lastseen @Bob")
        assert reply.startswith("bob was last seen ")
        assert reply.endswith('ago saying: "brb"')

    @pytest.mark.asyncio
    async def test_badges(self, dispatcher: CommandDispatcher):
        reply = await say(dispatcher, "-badge", badges={"moderator": "1", "subscriber": "12"})
        assert reply == "@alice your active badges: Moderator (tier 1), Subscriber (tier 12)"
        assert await say(dispatcher, "-badges") == "@alice you are not showing any badges right now."
        assert (await say(dispatcher, "-badge bob")).startswith("@alice I can only show your own badges")

    @pytest.mark.asyncio
    async def test_emote_commands(self, dispatcher: CommandDispatcher):
        await say(dispatcher, "Kappa Kappa", emotes={"25": [(0, 4), (6, 10)]})
        assert await say(dispatcher, "-ecount kappa") == 'Emote "Kappa" has been used 2 times in this channel.'
        assert await say(dispatcher, "-ecount Nope") == (
            'Emote "Nope" has been used 0 times in this channel (or is not tracked).'
        )
        assert await say(dispatcher, "-mytopused") == "@alice your top emotes in this channel: Kappa (2)"
        assert await say(dispatcher, "-topemotes") == "Top emotes in this channel: Kappa (2)"

    @pytest.mark.asyncio
    async def test_lotd_and_topchatters(self, dispatcher: CommandDispatcher):
        await say(dispatcher, "one", sender="bob")
        await say(dispatcher, "two", sender="bob")
        reply = await say(dispatcher, "-lotd")
        # alice's command line counts too: bob 2, alice 1
        assert reply == "Loser of the day is bob with 2 messages!"
        assert await say(dispatcher, "-topchatters") == "Top chatters today: 1) bob (2), 2) alice (2)"

    @pytest.mark.asyncio
    async def test_stats(self, dispatcher: CommandDispatcher):
        reply = await say(dispatcher, "-stats")
        assert reply.startswith("Subs today: 0 | Follows today: 0 | Top chatter: alice (1 messages)")

    @pytest.mark.asyncio
    async def test_help_lists_public_commands(self, dispatcher: CommandDispatcher):
        reply = await say(dispatcher, "-help")
        assert reply.startswith("Commands: -ping | -help")
        assert "-gamble <amount>" in reply
        assert "-give" not in reply


# ═══════════════════════════════════════════════════════════════
#  Reminder commands
# ═══════════════════════════════════════════════════════════════


class TestReminderCommands:
    @pytest.mark.asyncio
    async def test_remindme(self, dispatcher: CommandDispatcher, store: StateStore):
        reply = await say(dispatcher, "-remindme take a break 10m")
        assert reply == '@alice reminder set in 10m 0s: "take a break"'
        r = store.state.reminders[0]
        assert r.kind == "timed"
        assert r.recipient == "alice"
        assert r.message == "take a break"

    @pytest.mark.asyncio
    async def test_remindme_bad_duration(self, dispatcher: CommandDispatcher, store: StateStore):
        assert await say(dispatcher, "-remindme stretch soon") == (
            "Invalid time format. Use s,m,h,d (e.g., 30s, 10m, 1h)"
        )
        assert store.state.reminders == []

    @pytest.mark.asyncio
    async def test_remind_timed(self, dispatcher: CommandDispatcher, store: StateStore):
        reply = await say(dispatcher, "-remind @Bob check DMs 5m")
        assert reply == 'Reminder set for @bob in 5m 0s: "check DMs"'
        r = store.state.reminders[0]
        assert (r.kind, r.sender, r.recipient) == ("timed", "alice", "bob")

    @pytest.mark.asyncio
    async def test_remind_on_next_chat(self, dispatcher: CommandDispatcher, store: StateStore):
        reply = await say(dispatcher, "-remind bob check DMs")
        assert reply == '@alice I will remind @bob the next time they chat: "check DMs"'
        assert store.state.reminders[0].kind == "on_next_chat"

    @pytest.mark.asyncio
    async def test_remind_two_args_duration_is_message(self, dispatcher: CommandDispatcher, store: StateStore):
        """With only a target and one word, the word is the message."""
        await say(dispatcher, "-remind bob 5m")
        r = store.state.reminders[0]
        assert r.kind == "on_next_chat"
        assert r.message == "5m"


# ═══════════════════════════════════════════════════════════════
#  Channel membership
# ═══════════════════════════════════════════════════════════════


class TestMembership:
    @pytest.mark.asyncio
    async def test_join(self, dispatcher: CommandDispatcher, mock_transport: MagicMock):
        assert await say(dispatcher, "-join #Other", privileged=True) == "Joined channel other"
        mock_transport.join_channel.assert_awaited_once_with("other")

    @pytest.mark.asyncio
    async def test_join_failure_reported(self, dispatcher: CommandDispatcher, mock_transport: MagicMock):
        mock_transport.join_channel.side_effect = ValueError("unknown channel 'ghost'")
        reply = await say(dispatcher, "-join ghost", privileged=True)
        assert reply == "Failed to join ghost: unknown channel 'ghost'"

    @pytest.mark.asyncio
    async def test_part(self, dispatcher: CommandDispatcher, mock_transport: MagicMock):
        assert await say(dispatcher, "-part other", privileged=True) == "Left channel other"
        mock_transport.part_channel.assert_awaited_once_with("other")

    @pytest.mark.asyncio
    async def test_join_requires_privilege(self, dispatcher: CommandDispatcher, mock_transport: MagicMock):
        await say(dispatcher, "-join other")
        mock_transport.join_channel.assert_not_awaited()


# ═══════════════════════════════════════════════════════════════
#  Music
# ═══════════════════════════════════════════════════════════════


class TestMusicCommands:
    @pytest.mark.asyncio
    async def test_not_configured(self, dispatcher: CommandDispatcher):
        assert await say(dispatcher, "-song") == "@alice Spotify is not configured on this bot."

    @pytest.mark.asyncio
    async def test_songconnect_link(self, dispatcher: CommandDispatcher):
        dispatcher._music = MagicMock()
        reply = await say(dispatcher, "-songconnect")
        assert reply == (
            "@alice connect your Spotify here: http://127.0.0.1:3000/spotify/connect?user=alice"
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("result,expected", [
        (NowPlaying(NowPlayingStatus.NOT_CONNECTED), "@alice you haven't connected your Spotify yet. Use -songconnect"),
        (NowPlaying(NowPlayingStatus.NOTHING), "@alice you're not currently playing anything on Spotify"),
        (
            NowPlaying(NowPlayingStatus.PLAYING, track=Track("Song", "Band", "LP", "", True)),
            '@alice is listening to: "Song" by Band',
        ),
        (
            NowPlaying(NowPlayingStatus.PAUSED, track=Track("Song", "Band", "LP", "", False)),
            '@alice paused: "Song" by Band',
        ),
        (
            NowPlaying(NowPlayingStatus.LOOKUP_FAILED, error="503"),
            "@alice error getting current track: 503",
        ),
    ])
    async def test_song_replies(self, dispatcher: CommandDispatcher, result: NowPlaying, expected: str):
        music = MagicMock()
        music.now_playing = AsyncMock(return_value=result)
        dispatcher._music = music
        assert await say(dispatcher, "-song") == expected
