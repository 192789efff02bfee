"""Tests for MusicLink — connect flow and token refresh decisions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from twitch_economy.music_link import MusicLink, NowPlayingStatus, UnknownAuthorization
from twitch_economy.spotify_client import MusicServiceError, Track
from twitch_economy.state import MusicToken, StateStore

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _token(access: str = "acc", refresh: str = "ref", expires_at: datetime = T0 + timedelta(hours=1)) -> MusicToken:
    return MusicToken(access_token=access, refresh_token=refresh, expires_at=expires_at)


@pytest.fixture
def client() -> MagicMock:
    c = MagicMock()
    c.get_authorization_url = MagicMock(return_value=("https://accounts.example/authorize?x=1", "verifier123"))
    c.exchange_code = AsyncMock(return_value=_token())
    c.refresh_token = AsyncMock(return_value=_token("fresh", "ref2", T0 + timedelta(hours=2)))
    c.get_currently_playing = AsyncMock(return_value=Track("Song", "Band", "LP", "", True))
    return c


@pytest.fixture
def link(store: StateStore, client: MagicMock) -> MusicLink:
    return MusicLink(store, client, logging.getLogger("test"))


class TestConnect:
    def test_begin_stores_verifier(self, link: MusicLink, store: StateStore):
        url = link.begin_connect("@Alice")
        assert url.startswith("https://accounts.example/authorize")
        assert store.state.music_verifiers["alice"] == "verifier123"

    @pytest.mark.asyncio
    async def test_complete_stores_token(self, link: MusicLink, store: StateStore, client: MagicMock):
        link.begin_connect("alice")
        await link.complete_connect("alice", "code42")
        client.exchange_code.assert_awaited_once_with("code42", "verifier123")
        assert store.state.music_tokens["alice"].access_token == "acc"
        assert "alice" not in store.state.music_verifiers

    @pytest.mark.asyncio
    async def test_complete_without_request(self, link: MusicLink):
        with pytest.raises(UnknownAuthorization):
            await link.complete_connect("mallory", "code")

    @pytest.mark.asyncio
    async def test_exchange_failure_keeps_verifier(self, link: MusicLink, store: StateStore, client: MagicMock):
        client.exchange_code.side_effect = MusicServiceError("400 invalid_grant")
        link.begin_connect("alice")
        with pytest.raises(MusicServiceError):
            await link.complete_connect("alice", "bad")
        assert "alice" not in store.state.music_tokens
        assert store.state.music_verifiers["alice"] == "verifier123"


class TestNowPlaying:
    @pytest.mark.asyncio
    async def test_not_connected(self, link: MusicLink):
        result = await link.now_playing("alice", now=T0)
        assert result.status is NowPlayingStatus.NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_valid_token_used_directly(self, link: MusicLink, store: StateStore, client: MagicMock):
        store.state.music_tokens["alice"] = _token()
        result = await link.now_playing("alice", now=T0)
        assert result.status is NowPlayingStatus.PLAYING
        assert result.track.name == "Song"
        client.refresh_token.assert_not_awaited()
        client.get_currently_playing.assert_awaited_once_with("acc")

    @pytest.mark.asyncio
    async def test_expired_token_refreshed(self, link: MusicLink, store: StateStore, client: MagicMock):
        store.state.music_tokens["alice"] = _token(expires_at=T0)
        await link.now_playing("alice", now=T0)
        client.refresh_token.assert_awaited_once_with("ref")
        client.get_currently_playing.assert_awaited_once_with("fresh")
        assert store.state.music_tokens["alice"].refresh_token == "ref2"

    @pytest.mark.asyncio
    async def test_refresh_failure(self, link: MusicLink, store: StateStore, client: MagicMock):
        store.state.music_tokens["alice"] = _token(expires_at=T0 - timedelta(minutes=1))
        client.refresh_token.side_effect = MusicServiceError("revoked")
        result = await link.now_playing("alice", now=T0)
        assert result.status is NowPlayingStatus.REFRESH_FAILED
        client.get_currently_playing.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refresh_does_not_clobber_reconnect(self, link: MusicLink, store: StateStore, client: MagicMock):
        store.state.music_tokens["alice"] = _token(expires_at=T0)
        reconnected = _token("new", "newref", T0 + timedelta(hours=1))

        async def refresh(_):
            store.state.music_tokens["alice"] = reconnected
            return _token("fresh", "ref2", T0 + timedelta(hours=2))

        client.refresh_token.side_effect = refresh
        await link.now_playing("alice", now=T0)
        assert store.state.music_tokens["alice"] is reconnected

    @pytest.mark.asyncio
    async def test_nothing_playing(self, link: MusicLink, store: StateStore, client: MagicMock):
        store.state.music_tokens["alice"] = _token()
        client.get_currently_playing.return_value = None
        assert (await link.now_playing("alice", now=T0)).status is NowPlayingStatus.NOTHING

    @pytest.mark.asyncio
    async def test_paused(self, link: MusicLink, store: StateStore, client: MagicMock):
        store.state.music_tokens["alice"] = _token()
        client.get_currently_playing.return_value = Track("Song", "Band", "LP", "", False)
        assert (await link.now_playing("alice", now=T0)).status is NowPlayingStatus.PAUSED

    @pytest.mark.asyncio
    async def test_lookup_failure(self, link: MusicLink, store: StateStore, client: MagicMock):
        store.state.music_tokens["alice"] = _token()
        client.get_currently_playing.side_effect = MusicServiceError("502")
        result = await link.now_playing("alice", now=T0)
        assert result.status is NowPlayingStatus.LOOKUP_FAILED
        assert result.error == "502"
