"""
warden.bot.cogs.admin — Admin Slash Commands
=============================================

Discord slash commands for community administrators:
- /override — force a final status onto an application
- /delete-application — remove an application with its votes and questions
- /vote-right — grant or revoke a member's right to vote
- /amnesty — forgive part of everyone's negative reputation now
- /sweep — close every application whose voting window has passed

All commands require the configured admin_role_id.  Every change lands
in ``admin_log`` with the admin's Discord id as actor.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from warden.bot.core import send_reply
from warden.constants import TERMINAL_STATUSES
from warden.database.engine import run_db
from warden.engine.outcomes import OverrideStatus
from warden.services.admin_service import set_vote_right
from warden.services.user_service import ensure_user

if TYPE_CHECKING:
    from warden.bot.core import WardenBot

logger = logging.getLogger(__name__)

OVERRIDE_REPLIES: dict[OverrideStatus, str] = {
    OverrideStatus.UNCHANGED: "ℹ️ The application already has that status.",
    OverrideStatus.NOT_FOUND: "❌ That application does not exist.",
    OverrideStatus.INVALID_STATUS: "❌ Only final statuses can be forced.",
    OverrideStatus.ALREADY_FINAL: "❌ That application is already final.",
}


def is_admin():
    """Decorator that checks if the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: WardenBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        admin_role_id = bot.cfg.admin_role_id
        return any(role.id == admin_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


class Admin(commands.Cog, name="Admin"):
    """Administrative commands for the membership process."""

    def __init__(self, bot: WardenBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /override
    # -------------------------------------------------------------------
    @app_commands.command(name="override", description="Force a final status onto an application.")
    @app_commands.describe(
        application="Application number",
        status="The status to set",
        reason="Why (recorded in the audit log)",
    )
    @app_commands.choices(
        status=[
            app_commands.Choice(name=s.value.title(), value=s.value)
            for s in sorted(TERMINAL_STATUSES, key=lambda s: s.value)
        ],
    )
    @is_admin()
    async def override(
        self,
        interaction: discord.Interaction,
        application: int,
        status: app_commands.Choice[str],
        reason: str | None = None,
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        result = await run_db(
            self.bot.decisions.admin_override,
            application, status.value, interaction.user.id, reason,
        )
        if result.status is OverrideStatus.APPLIED:
            await send_reply(
                interaction,
                f"✅ Application #{application}: {result.previous.value} → {result.current.value}",
            )
            return
        await send_reply(interaction, OVERRIDE_REPLIES[result.status])

    # -------------------------------------------------------------------
    # /delete-application
    # -------------------------------------------------------------------
    @app_commands.command(
        name="delete-application",
        description="Delete an application with its votes and questions.",
    )
    @app_commands.describe(application="Application number", reason="Why (recorded in the audit log)")
    @is_admin()
    async def delete_application(
        self,
        interaction: discord.Interaction,
        application: int,
        reason: str | None = None,
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        deleted = await run_db(
            self.bot.applications.delete_application,
            application, actor_id=interaction.user.id, reason=reason,
        )
        if deleted:
            await send_reply(interaction, f"🗑️ Application #{application} deleted.")
        else:
            await send_reply(interaction, "❌ That application does not exist.")

    # -------------------------------------------------------------------
    # /vote-right
    # -------------------------------------------------------------------
    @app_commands.command(name="vote-right", description="Grant or revoke a member's right to vote.")
    @app_commands.describe(member="The member", allowed="True to grant, False to revoke")
    @is_admin()
    async def vote_right(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        allowed: bool,
    ) -> None:
        user_id = await run_db(ensure_user, self.bot.engine, member.id, member.display_name)
        await run_db(set_vote_right, self.bot.engine, user_id, allowed, actor_id=interaction.user.id)
        verb = "granted to" if allowed else "revoked from"
        await send_reply(interaction, f"✅ Voting right {verb} **{member.display_name}**.")

    # -------------------------------------------------------------------
    # /amnesty, /sweep
    # -------------------------------------------------------------------
    @app_commands.command(name="amnesty", description="Reduce everyone's negative reputation now.")
    @is_admin()
    async def amnesty(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True)
        count = await run_db(self.bot.reputation.run_amnesty)
        logger.info("Manual amnesty by %s: %d users", interaction.user.id, count)
        await send_reply(interaction, f"🕊️ Amnesty applied to {count} members.")

    @app_commands.command(name="sweep", description="Close applications whose voting window has passed.")
    @is_admin()
    async def sweep(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True)
        result = await run_db(self.bot.decisions.sweep_expired)
        await send_reply(
            interaction,
            f"🧹 Checked {result['checked']}, decided {result['decided']}, failed {result['failed']}.",
        )

    async def cog_app_command_error(
        self,
        interaction: discord.Interaction,
        error: app_commands.AppCommandError,
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            await send_reply(interaction, "❌ Administrators only.")
            return
        logger.exception("Admin command failed", exc_info=error)
        await send_reply(interaction, "❌ Something went wrong.")


async def setup(bot: WardenBot) -> None:
    await bot.add_cog(Admin(bot))
