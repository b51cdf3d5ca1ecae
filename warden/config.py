"""
warden.config — YAML Configuration Loader
==========================================

Reads ``config.yaml`` for **infrastructure-only** settings (Discord
identity, game-server console address, job intervals).  Voting and
reputation tuning lives in the ``settings`` database table and is read
per evaluation through :class:`~warden.engine.policy.MembershipPolicy`.

Secrets never live here: ``DATABASE_URL``, ``DISCORD_TOKEN``,
``RCON_PASSWORD`` and ``JWT_SECRET`` come from the environment (``.env``).

Usage::

    from warden.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.rcon_host)         # "127.0.0.1"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class WardenConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    bot_prefix: str
    guild_id: int
    admin_role_id: int

    # Game server console
    rcon_host: str
    rcon_port: int

    # Optional
    api_port: int = 8000
    rcon_timeout_seconds: float = 5.0
    sweep_interval_minutes: int = 5
    amnesty_interval_days: int = 90


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> WardenConfig:
    """Read *path* and return a :class:`WardenConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return WardenConfig(
        community_name=raw["community_name"],
        bot_prefix=raw.get("bot_prefix", "!"),
        guild_id=int(raw["guild_id"]),
        admin_role_id=int(raw["admin_role_id"]),
        rcon_host=raw["rcon_host"],
        rcon_port=int(raw["rcon_port"]),
        api_port=int(raw.get("api_port", 8000)),
        rcon_timeout_seconds=float(raw.get("rcon_timeout_seconds", 5.0)),
        sweep_interval_minutes=int(raw.get("sweep_interval_minutes", 5)),
        amnesty_interval_days=int(raw.get("amnesty_interval_days", 90)),
    )
