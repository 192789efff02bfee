"""CLI entry point for twitch-economy."""
import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from .config import load_config
from .main import EconomyApp

DEFAULT_CONFIG_PATHS = (
    "/etc/twitch-economy/config.yaml",
    "./config.yaml",
)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Twitch Economy — chat currency and reminder bot")
    parser.add_argument("--config", type=str, help="Path to config.yaml")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument(
        "--validate-config",
        action="store_true",
        help="Load the config, print the channels and state file it resolves to, and exit",
    )
    return parser.parse_args(argv)


def resolve_config_path(explicit: str | None) -> str | None:
    if explicit:
        return explicit
    for candidate in DEFAULT_CONFIG_PATHS:
        if Path(candidate).exists():
            return candidate
    return None


def validate_config(config_path: str, logger: logging.Logger) -> int:
    """Return a process exit code for ``--validate-config``."""
    try:
        config = load_config(config_path)
    except (OSError, ValueError) as e:
        logger.error("Config validation failed: %s", e)
        return 1
    logger.info(
        "Config is valid: channels=%s prefix=%r state=%s spotify=%s web=%s",
        ",".join(config.channels) or "(none)",
        config.prefix,
        config.state.path,
        "on" if config.spotify.client_id else "off",
        f"{config.web.host}:{config.web.port}" if config.web.enabled else "off",
    )
    return 0


async def main_async(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger("economy")

    config_path = resolve_config_path(args.config)
    if not config_path:
        logger.error("No config file found. Use --config or place config.yaml in CWD.")
        return 1

    if args.validate_config:
        return validate_config(config_path, logger)

    app = EconomyApp(config_path)

    # Closing the app ends the Twitch client, which returns from start().
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: asyncio.ensure_future(app.stop()))

    try:
        await app.start()
    finally:
        await app.stop()
    return 0


def main() -> None:
    """Sync entry point for pyproject.toml [project.scripts]."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
