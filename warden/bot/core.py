"""
warden.bot.core — Bot Instance & Cog Loader
============================================

Defines :class:`WardenBot`, the ``commands.Bot`` subclass that carries the
project-wide state every Cog reads through ``self.bot``:

* ``cfg`` / ``engine`` — parsed config and the SQLAlchemy engine.
* ``ledger`` — the :class:`~warden.services.vote_ledger.VoteLedger`.
* ``decisions`` — the :class:`~warden.services.decision_service.DecisionEngine`.
* ``applications`` — the :class:`~warden.services.application_service.ApplicationService`.
* ``reputation`` — the :class:`~warden.services.reputation_ledger.ReputationLedger`.
* ``sessions`` — per-user conversation state for multi-step DM flows.

The notifier needs the bot's event loop, so the services are built here
rather than in ``__main__``; the whitelist collaborator is injected.

Slash commands are synced on startup: guild-scoped when ``DEV_GUILD_ID``
is set, global otherwise.
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from warden.config import WardenConfig
from warden.engine.cache import VoteCache
from warden.engine.session_state import IDLE, Idle, SessionState
from warden.services.application_service import ApplicationService
from warden.services.collaborators import WhitelistSynchronizer
from warden.services.decision_service import DecisionEngine
from warden.services.notification_service import DiscordNotifier
from warden.services.reputation_ledger import ReputationLedger
from warden.services.vote_ledger import VoteLedger

logger = logging.getLogger(__name__)

EXTENSIONS: list[str] = [
    "warden.bot.cogs.membership",
    "warden.bot.cogs.admin",
    "warden.bot.cogs.tasks",
]


async def send_reply(interaction: discord.Interaction, content: str | None = None, **kwargs) -> None:
    """Reply ephemerally, through the followup webhook once the response was deferred.

    Commands whose service call can outlast Discord's three-second
    response window defer first and answer here.
    """
    if content is not None:
        kwargs["content"] = content
    if interaction.response.is_done():
        await interaction.followup.send(ephemeral=True, **kwargs)
    else:
        await interaction.response.send_message(ephemeral=True, **kwargs)


class WardenBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`WardenConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    whitelist:
        Game-server allow-list collaborator (required).
    """

    def __init__(self, cfg: WardenConfig, engine: Engine, whitelist: WhitelistSynchronizer) -> None:
        intents = discord.Intents.default()
        intents.message_content = True    # Privileged: DM replies in multi-step flows
        intents.members = True            # Privileged: resolve members for /rate
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} membership warden",
        )

        self.cfg = cfg
        self.engine = engine
        self.whitelist = whitelist
        self.notifier = DiscordNotifier(self, engine)

        self.ledger = VoteLedger(engine, VoteCache())
        self.decisions = DecisionEngine(engine, self.ledger, whitelist, self.notifier)
        self.applications = ApplicationService(engine, self.ledger, self.notifier)
        self.reputation = ReputationLedger(engine, whitelist, self.notifier)

        self.sessions: dict[int, SessionState] = {}

    # -----------------------------------------------------------------------
    # Conversation state
    # -----------------------------------------------------------------------
    def get_state(self, platform_id: int) -> SessionState:
        return self.sessions.get(platform_id, IDLE)

    def set_state(self, platform_id: int, state: SessionState) -> None:
        if isinstance(state, Idle):
            self.sessions.pop(platform_id, None)
        else:
            self.sessions[platform_id] = state

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load every Cog extension; one broken Cog does not stop the rest."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        assert self.user is not None
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def close(self) -> None:
        logger.info("Bot shutting down…")
        self.ledger.cache.clear()
        await super().close()
