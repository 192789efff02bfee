"""Shared test fixtures for twitch-economy."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from twitch_economy.bonus_window import BonusWindow
from twitch_economy.config import EconomyConfig
from twitch_economy.dispatcher import CommandDispatcher
from twitch_economy.economy_engine import EconomyEngine
from twitch_economy.emote_tracker import EmoteTracker
from twitch_economy.reminders import ReminderScheduler
from twitch_economy.state import StateStore
from twitch_economy.stats import StatsAggregator
from twitch_economy.transport import ChatMessage

CH = "testchannel"


# ── Minimal config dict matching EconomyConfig schema ────────

def make_config_dict(**overrides) -> dict:
    """Build a valid config dict with sensible test defaults."""
    base = {
        "twitch": {"client_id": "cid", "client_secret": "secret", "bot_id": "999"},
        "channels": [CH],
        "prefix": "-",
        "ignored_users": ["IgnoredBot"],
        "currency": {"name": "coins"},
        "economy": {"claim_amount": 1000, "claim_cooldown_hours": 24, "word_reward": 1000},
        "bonus": {
            "enabled": True,
            "amount": 20000,
            "min_interval_minutes": 30,
            "max_interval_minutes": 120,
            "window_minutes": 10,
        },
        "stats": {"utc_days": True},
    }
    base.update(overrides)
    return base


def make_message(
    sender: str = "alice",
    text: str = "hello",
    channel: str = CH,
    privileged: bool = False,
    **kwargs,
) -> ChatMessage:
    return ChatMessage(channel=channel, sender=sender, text=text, privileged=privileged, **kwargs)


@pytest.fixture
def sample_config_dict() -> dict:
    return make_config_dict()


@pytest.fixture
def sample_config(sample_config_dict: dict) -> EconomyConfig:
    return EconomyConfig(**sample_config_dict)


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("test")


@pytest.fixture
def store(tmp_path: Path, logger: logging.Logger) -> StateStore:
    """Fresh store backed by a file in a temp directory."""
    return StateStore(tmp_path / "data.json", logger)


@pytest.fixture
def mock_transport() -> MagicMock:
    """Mock chat transport with async send/join/part."""
    transport = MagicMock()
    transport.channels = [CH]
    transport.send_action = AsyncMock()
    transport.join_channel = AsyncMock()
    transport.part_channel = AsyncMock()
    return transport


@pytest.fixture
def economy(sample_config: EconomyConfig, store: StateStore, logger: logging.Logger) -> EconomyEngine:
    return EconomyEngine(sample_config, store, logger)


@pytest.fixture
def stats(sample_config: EconomyConfig, store: StateStore, logger: logging.Logger) -> StatsAggregator:
    return StatsAggregator(sample_config, store, logger)


@pytest.fixture
def emotes(store: StateStore, logger: logging.Logger) -> EmoteTracker:
    return EmoteTracker(store, logger)


@pytest.fixture
def reminders(store: StateStore, mock_transport: MagicMock, logger: logging.Logger) -> ReminderScheduler:
    return ReminderScheduler(
        store=store,
        send=mock_transport.send_action,
        channels=lambda: mock_transport.channels,
        logger=logger,
    )


@pytest.fixture
def broadcast() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def bonus(
    sample_config: EconomyConfig, store: StateStore, broadcast: AsyncMock, logger: logging.Logger,
) -> BonusWindow:
    return BonusWindow(sample_config, store, broadcast, logger)


@pytest.fixture
def dispatcher(
    sample_config: EconomyConfig,
    store: StateStore,
    mock_transport: MagicMock,
    economy: EconomyEngine,
    bonus: BonusWindow,
    reminders: ReminderScheduler,
    stats: StatsAggregator,
    emotes: EmoteTracker,
    logger: logging.Logger,
) -> CommandDispatcher:
    return CommandDispatcher(
        config=sample_config,
        store=store,
        transport=mock_transport,
        economy=economy,
        bonus=bonus,
        reminders=reminders,
        stats=stats,
        emotes=emotes,
        music=None,
        logger=logger,
    )
