"""Service orchestrator — EconomyApp.

config → state load → engines → transport → background loops → HTTP → run.
Also the transport's inbound handler: chat goes to the dispatcher, channel
events go to the stats aggregator.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from . import __version__
from .bonus_window import BonusWindow
from .config import EconomyConfig, load_config
from .dispatcher import CommandDispatcher
from .economy_engine import EconomyEngine
from .emote_tracker import EmoteTracker
from .helix_client import HelixClient
from .music_link import MusicLink
from .reminders import ReminderScheduler
from .scheduler import Scheduler
from .spotify_client import SpotifyClient
from .state import StateStore
from .stats import StatsAggregator
from .transport import ChatMessage
from .twitch_transport import TwitchTransport
from .web_server import EconomyWebServer


class EconomyApp:
    """Top-level application orchestrator."""

    def __init__(self, config_path: str) -> None:
        self.config_path = Path(config_path)
        self.logger = logging.getLogger("economy")

        # Components (initialized in start())
        self.config: EconomyConfig | None = None
        self.store: StateStore | None = None
        self.transport: TwitchTransport | None = None
        self.economy: EconomyEngine | None = None
        self.stats: StatsAggregator | None = None
        self.emotes: EmoteTracker | None = None
        self.reminders: ReminderScheduler | None = None
        self.bonus: BonusWindow | None = None
        self.spotify_client: SpotifyClient | None = None
        self.music_link: MusicLink | None = None
        self.helix: HelixClient | None = None
        self.dispatcher: CommandDispatcher | None = None
        self.scheduler: Scheduler | None = None
        self.web_server: EconomyWebServer | None = None

        self._running = False
        self._start_time: float | None = None

    @property
    def uptime_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.time() - self._start_time

    @property
    def channels(self) -> list[str]:
        if self.transport is None:
            return []
        return self.transport.channels

    async def broadcast(self, text: str) -> None:
        """Send one line to every joined channel; per-channel failures are logged."""
        for channel in self.channels:
            try:
                await self.transport.send_action(channel, text)
            except Exception:
                self.logger.exception("Broadcast to %s failed", channel)

    # ══════════════════════════════════════════════════════════
    #  Lifecycle
    # ══════════════════════════════════════════════════════════

    def build(self) -> None:
        """Load config and state and wire every component (no I/O tasks yet)."""
        # 1. Load and validate config
        self.config = load_config(str(self.config_path))
        self.logger.info("Config loaded: %d channel(s)", len(self.config.channels))

        # 2. Load persisted state
        self.store = StateStore(self.config.state.path, self.logger)
        self.store.load()

        # 3. Domain components
        self.economy = EconomyEngine(self.config, self.store, self.logger)
        self.stats = StatsAggregator(self.config, self.store, self.logger)
        self.emotes = EmoteTracker(self.store, self.logger)
        self.transport = TwitchTransport(self.config, handler=self, logger=self.logger)
        self.reminders = ReminderScheduler(
            store=self.store,
            send=self.transport.send_action,
            channels=lambda: self.channels,
            logger=self.logger,
        )
        self.bonus = BonusWindow(self.config, self.store, self.broadcast, self.logger)

        if self.config.spotify.client_id:
            self.spotify_client = SpotifyClient(self.config.spotify, self.logger)
            self.music_link = MusicLink(self.store, self.spotify_client, self.logger)

        self.helix = HelixClient(self.config.twitch, self.logger)

        self.dispatcher = CommandDispatcher(
            config=self.config,
            store=self.store,
            transport=self.transport,
            economy=self.economy,
            bonus=self.bonus,
            reminders=self.reminders,
            stats=self.stats,
            emotes=self.emotes,
            music=self.music_link,
            logger=self.logger,
        )
        self.scheduler = Scheduler(
            config=self.config,
            store=self.store,
            reminders=self.reminders,
            stats=self.stats,
            broadcast=self.broadcast,
            helix=self.helix,
            logger=self.logger,
        )
        if self.config.web.enabled:
            self.web_server = EconomyWebServer(
                self, host=self.config.web.host, port=self.config.web.port, logger=self.logger,
            )

    async def start(self) -> None:
        """Start the bot and block on the Twitch client until it closes."""
        self.logger.info("Starting twitch-economy...")
        self._start_time = time.time()
        self.build()

        # 4. HTTP clients
        if self.spotify_client:
            await self.spotify_client.start()
            self.logger.info("Spotify client started")
        if self.helix.configured:
            await self.helix.start()
            self.logger.info("Helix client started for %s", self.config.twitch.broadcaster_login)

        # 5. Background loops
        if self.config.bonus.enabled:
            self.bonus.start()
        await self.scheduler.start()

        # 6. HTTP server
        if self.web_server:
            await self.web_server.start()

        self._running = True
        self.logger.info("twitch-economy started successfully (v%s)", __version__)

        # 7. Block on the Twitch client
        await self.transport.start(with_adapter=False)

    async def stop(self) -> None:
        """Gracefully shut down all components in reverse order."""
        if not self._running:
            return
        self.logger.info("Shutting down twitch-economy...")
        self._running = False

        if self.web_server:
            await self.web_server.stop()
        if self.scheduler:
            await self.scheduler.stop()
        if self.bonus:
            await self.bonus.stop()
        if self.helix:
            await self.helix.stop()
        if self.spotify_client:
            await self.spotify_client.stop()
        if self.transport:
            try:
                await self.transport.close()
            except Exception:
                self.logger.exception("Error closing Twitch client")

        if self.store:
            self.store.save()
        self.logger.info("twitch-economy stopped.")

    # ══════════════════════════════════════════════════════════
    #  Inbound handler
    # ══════════════════════════════════════════════════════════

    async def on_message(self, message: ChatMessage) -> None:
        try:
            await self.dispatcher.handle_message(message)
        except Exception:
            self.logger.exception("Error handling chat message from %s", message.sender)

    async def on_subscription(self, channel: str, username: str) -> None:
        try:
            self.stats.record_subscription()
            self.logger.info("Subscription in %s by %s", channel, username)
            await self.store.save_async()
        except Exception:
            self.logger.exception("Error recording subscription")

    async def on_resub(self, channel: str, username: str) -> None:
        try:
            self.stats.record_resub()
            self.logger.info("Resub in %s by %s", channel, username)
            await self.store.save_async()
        except Exception:
            self.logger.exception("Error recording resub")

    async def on_subgift(self, channel: str, username: str, count: int | None) -> None:
        try:
            self.stats.record_gift(count)
            self.logger.info("Gift subs in %s by %s (%s)", channel, username, count)
            await self.store.save_async()
        except Exception:
            self.logger.exception("Error recording gift subs")

    async def on_cheer(self, channel: str, username: str, bits: int) -> None:
        try:
            self.stats.record_bits(username, bits)
            self.logger.info("Cheer in %s by %s (%d bits)", channel, username, bits)
            await self.store.save_async()
        except Exception:
            self.logger.exception("Error recording cheer")

    # ══════════════════════════════════════════════════════════
    #  Metrics
    # ══════════════════════════════════════════════════════════

    def collect_metrics(self) -> list[str]:
        """Prometheus text lines for the /metrics endpoint."""
        lines: list[str] = []

        # ── Counters ─────────────────────────────────────────
        if self.dispatcher:
            lines.append(f"economy_messages_processed_total {self.dispatcher.messages_processed}")
            lines.append(f"economy_commands_processed_total {self.dispatcher.commands_processed}")
        if self.bonus:
            lines.append(f"economy_bonus_windows_opened_total {self.bonus.windows_opened}")
            lines.append(f"economy_bonus_windows_claimed_total {self.bonus.windows_claimed}")
            lines.append(f"economy_bonus_windows_expired_total {self.bonus.windows_expired}")
        if self.reminders:
            lines.append(f"economy_reminders_delivered_total {self.reminders.delivered_total}")
        if self.store:
            lines.append(f"economy_state_saves_total {self.store.saves_ok}")
            lines.append(f"economy_state_save_failures_total {self.store.saves_failed}")

        # ── Gauges ───────────────────────────────────────────
        lines.append(f"economy_uptime_seconds {int(self.uptime_seconds)}")
        lines.append(f"economy_channels_joined {len(self.channels)}")
        if self.store:
            lines.append(f"economy_accounts {len(self.store.state.accounts)}")
            lines.append(f"economy_reminders_pending {len(self.store.state.reminders)}")
            lines.append(f"economy_coin_supply {self.store.total_supply()}")
        return lines
