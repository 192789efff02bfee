"""Configuration system for twitch-economy.

All Pydantic models are defined here with sensible defaults; the YAML file
only needs to override what differs from them.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator


# ═══════════════════════════════════════════════════════════════
#  Transport & External Services
# ═══════════════════════════════════════════════════════════════

class TwitchConfig(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    bot_id: str = ""
    bot_token: str = ""
    bot_refresh_token: str = ""
    broadcaster_login: str = Field(default="", description="Channel polled for followers/viewers")
    helix_token: str = ""


class SpotifyConfig(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "http://127.0.0.1:3000/spotify/callback"


class WebConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 3000
    public_url: str = ""

    def base_url(self) -> str:
        if self.public_url:
            return self.public_url.rstrip("/")
        return f"http://{self.host}:{self.port}"


# ═══════════════════════════════════════════════════════════════
#  Core Economy
# ═══════════════════════════════════════════════════════════════

class StateConfig(BaseModel):
    path: str = "data.json"
    save_interval_seconds: int = 60


class CurrencyConfig(BaseModel):
    name: str = "coins"


class EconomySettings(BaseModel):
    claim_amount: int = 1000
    claim_cooldown_hours: float = 24
    word_reward: int = 1000


class BonusConfig(BaseModel):
    enabled: bool = True
    amount: int = 20_000
    min_interval_minutes: float = 30
    max_interval_minutes: float = 120
    window_minutes: float = 10


class RemindersConfig(BaseModel):
    check_interval_seconds: float = 5


class StatsConfig(BaseModel):
    utc_days: bool = Field(default=False, description="Bucket daily stats by UTC instead of local date")
    follow_poll_seconds: int = 60


# ═══════════════════════════════════════════════════════════════
#  Top-Level Config
# ═══════════════════════════════════════════════════════════════

class EconomyConfig(BaseModel):
    """Full bot config."""

    twitch: TwitchConfig = Field(default_factory=TwitchConfig)
    channels: list[str] = Field(default_factory=list)
    prefix: str = "-"
    ignored_users: list[str] = Field(default_factory=list)

    state: StateConfig = Field(default_factory=StateConfig)
    currency: CurrencyConfig = Field(default_factory=CurrencyConfig)
    economy: EconomySettings = Field(default_factory=EconomySettings)
    bonus: BonusConfig = Field(default_factory=BonusConfig)
    reminders: RemindersConfig = Field(default_factory=RemindersConfig)
    stats: StatsConfig = Field(default_factory=StatsConfig)

    spotify: SpotifyConfig = Field(default_factory=SpotifyConfig)
    web: WebConfig = Field(default_factory=WebConfig)

    @field_validator("channels")
    @classmethod
    def _normalize_channels(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for ch in value:
            name = ch.strip().lstrip("#").lower()
            if name and name not in seen:
                seen.append(name)
        return seen

    @field_validator("prefix")
    @classmethod
    def _prefix_not_blank(cls, value: str) -> str:
        if not value or value.isspace():
            raise ValueError("prefix must be a non-blank string")
        return value


# ═══════════════════════════════════════════════════════════════
#  Config Loading
# ═══════════════════════════════════════════════════════════════

def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{([^}:]+)(?::-(.*?))?\}",
            lambda m: os.environ.get(m.group(1), m.group(2) or ""),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def load_config(config_path: str) -> EconomyConfig:
    """Load and validate YAML config file into EconomyConfig."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a YAML mapping at the top level.")

    raw = _expand_env_vars(raw)
    return EconomyConfig(**raw)
