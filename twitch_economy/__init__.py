"""twitch-economy — Twitch chat currency, bonus and reminder bot."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("twitch-economy")
except PackageNotFoundError:
    __version__ = "0.0.0"
