"""
warden.services.notification_service — Discord Direct-Message Notifier
========================================================================

:class:`DiscordNotifier` implements the
:class:`~warden.services.collaborators.Notifier` contract.  The engine
calls ``notify`` from worker threads (inside ``run_db``), so delivery is
scheduled onto the bot's event loop with
:func:`asyncio.run_coroutine_threadsafe` and never awaited: fire and
forget, failures are logged in a done-callback.

:class:`OutboxNotifier` is the same contract for the admin API, which
has no gateway connection: events go to ``pending_notifications`` and the
bot delivers them from :func:`claim_pending`.

:func:`render_event` turns a :class:`NotificationEvent` into message text.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future
from typing import TYPE_CHECKING

import discord
from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from warden.constants import utcnow
from warden.database.models import PendingNotification, User
from warden.services.collaborators import NotificationEvent, NotificationKind

if TYPE_CHECKING:
    from discord.ext import commands

logger = logging.getLogger(__name__)

STATUS_LABELS: dict[str, str] = {
    "approved": "✅ approved",
    "rejected": "❌ rejected",
    "expired": "⌛ expired",
    "banned": "🚫 banned",
}

REASON_LABELS: dict[str, str] = {
    "approval_threshold_met": "the community voted to approve it",
    "rejection_threshold_met": "the community voted to reject it",
    "insufficient_participation": "not enough members voted",
    "no_clear_majority": "the vote had no clear majority",
    "admin_override": "an administrator changed it",
}


def render_event(event: NotificationEvent) -> str:
    """Human-readable text for *event*."""
    p = event.payload
    match event.kind:
        case NotificationKind.APPLICATION_SUBMITTED:
            return (
                f"📝 New application #{p['application_id']} from **{p['display_name']}** "
                f"(`{p['game_name']}`)\n> {p['reason']}\n"
                f"Voting closes {p['voting_ends_at']}."
            )
        case NotificationKind.APPLICATION_DECIDED:
            status = STATUS_LABELS.get(p["status"], p["status"])
            why = REASON_LABELS.get(p["reason"], p["reason"])
            return (
                f"Your application #{p['application_id']} was {status}: {why}.\n"
                f"Votes: 👍 {p['positive']} ({p['positive_percent']}%) · "
                f"👎 {p['negative']} ({p['negative_percent']}%) "
                f"of {p['eligible_voters']} eligible voters "
                f"({p['required_votes']} needed)."
            )
        case NotificationKind.APPLICATION_STATUS_CHANGED:
            status = STATUS_LABELS.get(p["status"], p["status"])
            text = f"An administrator marked your application #{p['application_id']} as {status}."
            if "positive" in p:
                text += f"\nVotes: 👍 {p['positive']} · 👎 {p['negative']}"
            if p.get("reason"):
                text += f"\nReason: {p['reason']}"
            return text
        case NotificationKind.QUESTION_ASKED:
            return f"❓ A member asked about your application #{p['application_id']}:\n> {p['text']}"
        case NotificationKind.QUESTION_ANSWERED:
            return (
                f"💬 The applicant answered your question on #{p['application_id']}:\n"
                f"> {p['text']}\n{p['answer']}"
            )
        case NotificationKind.MEMBER_EXCLUDED:
            return (
                "⚠️ You have been removed from the server whitelist because of negative "
                f"ratings from other members.\nNegative reputation: {p['negative_percent']}% "
                f"(threshold {p['threshold_percent']}%).\n"
                "You may apply again later; contact an administrator if you think this is a mistake."
            )
        case NotificationKind.MEMBER_EXCLUDED_ADMIN:
            return (
                f"⚠️ **{p['display_name']}** (`{p['game_name'] or '?'}`) was excluded automatically.\n"
                f"Negative weight {p['negative_weight']} = {p['negative_percent']}% of "
                f"{p['eligible_voters']} eligible voters (threshold {p['threshold_percent']}%)."
            )
    return f"{event.kind}: {p}"


class DiscordNotifier:
    """Deliver notifications as Discord DMs through *bot*."""

    def __init__(self, bot: commands.Bot, engine: Engine) -> None:
        self.bot = bot
        self.engine = engine

    def notify(self, user_id: int, event: NotificationEvent) -> None:
        with Session(self.engine) as session:
            platform_id = session.scalar(select(User.platform_id).where(User.id == user_id))
        if platform_id is None:
            logger.warning("Cannot notify unknown user %d (%s)", user_id, event.kind)
            return

        future = asyncio.run_coroutine_threadsafe(
            self._send(platform_id, render_event(event)), self.bot.loop,
        )
        future.add_done_callback(lambda f: self._log_failure(f, user_id, event))

    async def _send(self, platform_id: int, text: str) -> None:
        user = self.bot.get_user(platform_id) or await self.bot.fetch_user(platform_id)
        await user.send(text)

    @staticmethod
    def _log_failure(future: Future, user_id: int, event: NotificationEvent) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is None:
            return
        if isinstance(exc, discord.Forbidden):
            logger.info("User %d has DMs closed; dropped %s", user_id, event.kind)
        else:
            logger.error("Failed to deliver %s to user %d: %s", event.kind, user_id, exc)


# ---------------------------------------------------------------------------
# Outbox — notifications raised outside the bot process
# ---------------------------------------------------------------------------
class OutboxNotifier:
    """Persist notifications in ``pending_notifications``.

    Used by processes without a gateway connection (the admin API); the
    bot's outbox loop delivers them through :meth:`DiscordNotifier.notify`.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def notify(self, user_id: int, event: NotificationEvent) -> None:
        with Session(self.engine) as session:
            session.add(PendingNotification(user_id=user_id, kind=event.kind.value, payload=event.payload))
            session.commit()


def claim_pending(engine: Engine, limit: int = 50) -> list[tuple[int, NotificationEvent]]:
    """Mark up to *limit* undelivered rows as delivered and return them.

    Rows are claimed before sending, so a crash mid-delivery drops a
    message rather than repeating it.
    """
    claimed: list[tuple[int, NotificationEvent]] = []
    with Session(engine) as session:
        rows = session.scalars(
            select(PendingNotification)
            .where(PendingNotification.delivered_at.is_(None))
            .order_by(PendingNotification.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        ).all()
        now = utcnow()
        for row in rows:
            row.delivered_at = now
            claimed.append((row.user_id, NotificationEvent(NotificationKind(row.kind), dict(row.payload))))
        session.commit()
    return claimed
