"""
warden.bot.__main__ — Entry point for ``python -m warden.bot``
==============================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine, ensure tables exist and seed defaults.
4. Build the RCON whitelist collaborator.
5. Create the WardenBot (it builds the ledgers and the notifier).
6. Start the bot (blocking — runs the asyncio event loop).

Run with::

    python -m warden.bot
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from warden.bot.core import WardenBot
from warden.config import load_config
from warden.database.engine import create_db_engine, init_db
from warden.services.whitelist_service import RconWhitelistSynchronizer

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("warden")


def main() -> None:
    """Bootstrap and run the Warden bot."""

    # 1. Environment variables (secrets).
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    rcon_password = os.getenv("RCON_PASSWORD")
    if not rcon_password:
        logger.critical("RCON_PASSWORD is not set; the whitelist cannot be managed without it.")
        sys.exit(1)

    # 2. Soft configuration.
    cfg = load_config()
    logger.info("Config loaded — Community: %s", cfg.community_name)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Whitelist collaborator.
    whitelist = RconWhitelistSynchronizer(
        cfg.rcon_host, cfg.rcon_port, rcon_password, timeout=cfg.rcon_timeout_seconds,
    )

    # 5. Bot.
    bot = WardenBot(cfg=cfg, engine=engine, whitelist=whitelist)

    # 6. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting Warden bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
