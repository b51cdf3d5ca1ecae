"""
warden.bot.cogs.tasks — Periodic Background Tasks
==================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Expiry sweep** — every ``sweep_interval_minutes`` (default 5), closes
  applications whose voting window has passed.
- **Amnesty** — checked daily; runs when the last pass is older than
  ``amnesty_interval_days`` (default 90).
- **Tally reconciliation** — daily, validates the application counters
  against the vote ledger and corrects drift.
- **Outbox** — every 30 seconds, delivers notifications raised by the
  admin API.
- **Whitelist reconciliation** — daily, re-issues whitelist commands that
  failed while the game server was unreachable.

These tasks run via ``run_db()`` to avoid blocking the event loop.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from warden.constants import utcnow
from warden.database.engine import run_db
from warden.services.notification_service import claim_pending
from warden.services.reconciliation_service import reconcile_tallies
from warden.services.reputation_ledger import last_amnesty_at
from warden.services.whitelist_service import reconcile_whitelist

if TYPE_CHECKING:
    from warden.bot.core import WardenBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Cog for scheduled background maintenance tasks."""

    def __init__(self, bot: WardenBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.sweep_loop.change_interval(minutes=self.bot.cfg.sweep_interval_minutes)
        self.sweep_loop.start()
        self.amnesty_loop.start()
        self.reconciliation_loop.start()
        self.outbox_loop.start()

    async def cog_unload(self) -> None:
        self.sweep_loop.cancel()
        self.amnesty_loop.cancel()
        self.reconciliation_loop.cancel()
        self.outbox_loop.cancel()

    # -------------------------------------------------------------------
    # Expiry sweep
    # -------------------------------------------------------------------
    @tasks.loop(minutes=5)
    async def sweep_loop(self):
        """Evaluate every application whose voting window has closed."""
        try:
            result = await run_db(self.bot.decisions.sweep_expired)
            if result["checked"]:
                logger.info(
                    "Sweep task complete: checked=%d decided=%d failed=%d",
                    result["checked"], result["decided"], result["failed"],
                )
        except Exception:
            logger.exception("Sweep task failed", extra={"task": "sweep"})

    @sweep_loop.before_loop
    async def _wait_sweep(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Amnesty — checked every 24 hours
    # -------------------------------------------------------------------
    @tasks.loop(hours=24)
    async def amnesty_loop(self):
        """Run the amnesty pass once the configured interval has elapsed."""
        interval = timedelta(days=self.bot.cfg.amnesty_interval_days)
        try:
            last = await run_db(last_amnesty_at, self.bot.engine)
            if last is not None and utcnow() - last < interval:
                return
            count = await run_db(self.bot.reputation.run_amnesty)
            logger.info("Amnesty task complete: %d users", count)
        except Exception:
            logger.exception("Amnesty task failed", extra={"task": "amnesty"})

    @amnesty_loop.before_loop
    async def _wait_amnesty(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Reconciliation — runs every 24 hours
    # -------------------------------------------------------------------
    @tasks.loop(hours=24)
    async def reconciliation_loop(self):
        """Fix counter drift, then repair the server whitelist."""
        try:
            result = await run_db(reconcile_tallies, self.bot.engine)
            logger.info(
                "Tally reconciliation task complete: checked=%d corrected=%d",
                result["checked"], result["corrected"],
            )
        except Exception:
            logger.exception("Tally reconciliation failed", extra={"task": "reconciliation"})

        try:
            await run_db(reconcile_whitelist, self.bot.engine, self.bot.whitelist)
        except Exception:
            logger.exception("Whitelist reconciliation failed", extra={"task": "whitelist"})

    @reconciliation_loop.before_loop
    async def _wait_reconciliation(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Outbox — every 30 seconds
    # -------------------------------------------------------------------
    @tasks.loop(seconds=30)
    async def outbox_loop(self):
        """Deliver notifications queued by processes without a gateway."""
        try:
            await run_db(self._deliver_outbox)
        except Exception:
            logger.exception("Outbox delivery failed", extra={"task": "outbox"})

    @outbox_loop.before_loop
    async def _wait_outbox(self):
        await self.bot.wait_until_ready()

    def _deliver_outbox(self) -> int:
        pending = claim_pending(self.bot.engine)
        for user_id, event in pending:
            self.bot.notifier.notify(user_id, event)
        return len(pending)


async def setup(bot: WardenBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
