"""HTTP endpoints — Spotify OAuth bridge, health and Prometheus metrics.

Routes:
    GET /spotify/connect?user=...        → 302 to the Spotify consent page
    GET /spotify/callback?code&state     → stores the user's token
    GET /health                          → JSON liveness
    GET /metrics                         → Prometheus text exposition
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from aiohttp import web

from .music_link import UnknownAuthorization
from .spotify_client import MusicServiceError

if TYPE_CHECKING:
    from .main import EconomyApp


class EconomyWebServer:
    """aiohttp application bound to the running ``EconomyApp``."""

    def __init__(
        self,
        app: EconomyApp,
        host: str = "127.0.0.1",
        port: int = 3000,
        logger: logging.Logger | None = None,
    ) -> None:
        self._app = app
        self._host = host
        self._port = port
        self._logger = logger or logging.getLogger("economy.web")
        self.web_app = web.Application()
        self._runner: web.AppRunner | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.web_app.router.add_get("/spotify/connect", self.handle_connect)
        self.web_app.router.add_get("/spotify/callback", self.handle_callback)
        self.web_app.router.add_get("/health", self.handle_health)
        self.web_app.router.add_get("/metrics", self.handle_metrics)

    async def start(self) -> None:
        self._runner = web.AppRunner(self.web_app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        self._logger.info("HTTP server listening on http://%s:%d", self._host, self._port)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    # ── Spotify OAuth ────────────────────────────────────────

    async def handle_connect(self, request: web.Request) -> web.StreamResponse:
        username = request.query.get("user", "").strip()
        if not username:
            return web.Response(status=400, text="Missing user parameter")
        music = self._app.music_link
        if music is None:
            return web.Response(status=503, text="Spotify is not configured")

        url = music.begin_connect(username)
        await self._app.store.save_async()
        raise web.HTTPFound(url)

    async def handle_callback(self, request: web.Request) -> web.Response:
        code = request.query.get("code", "")
        username = request.query.get("state", "")
        if not code or not username:
            return web.Response(status=400, text="Missing code or state parameter")
        music = self._app.music_link
        if music is None:
            return web.Response(status=503, text="Spotify is not configured")

        try:
            await music.complete_connect(username, code)
        except UnknownAuthorization:
            return web.Response(status=400, text="No authorization request found for this user")
        except MusicServiceError as e:
            return web.Response(status=500, text=f"Error connecting Spotify: {e}")

        await self._app.store.save_async()
        prefix = self._app.config.prefix
        return web.Response(
            content_type="text/html",
            text=(
                "<h1>Success!</h1><p>Your Spotify account is now connected to the bot. "
                f"You can close this window and use <strong>{prefix}song</strong> in chat!</p>"
            ),
        )

    # ── Health & metrics ─────────────────────────────────────

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "healthy",
            "uptime_seconds": int(self._app.uptime_seconds),
            "channels": list(self._app.channels),
        })

    async def handle_metrics(self, request: web.Request) -> web.Response:
        body = "\n".join(self._app.collect_metrics()) + "\n"
        return web.Response(text=body, content_type="text/plain")
