"""
warden.bot.cogs.membership — Application, Voting & Reputation Commands
=======================================================================

Slash commands for the community:

- /apply — submit a membership application (asks for missing fields by DM)
- /applications — list applications currently open for voting
- /application — details, tally and questions for one application
- /vote, /retract — cast or withdraw a ballot
- /ask, /answer — question the applicant / answer a question
- /rate — rate another member; a second identical rating withdraws it
- /reputation — show a member's reputation standing

Multi-step flows keep a :data:`~warden.engine.session_state.SessionState`
per user on the bot; the DM listener advances it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from warden.bot.core import send_reply
from warden.database.engine import run_db
from warden.database.models import Ballot
from warden.engine.outcomes import (
    BallotOutcome,
    EvaluationStatus,
    QuestionStatus,
    RatingResult,
    RatingStatus,
    SubmissionResult,
    SubmissionStatus,
    VoteStatus,
)
from warden.engine.session_state import (
    IDLE,
    AwaitingAnswerText,
    AwaitingApplicationName,
    AwaitingApplicationReason,
    AwaitingQuestionText,
    AwaitingRatingReason,
    start_answer,
    start_application,
    start_question,
    start_rating,
)
from warden.services.user_service import ensure_user

if TYPE_CHECKING:
    from warden.bot.core import WardenBot

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Reply text
# ---------------------------------------------------------------------------
SUBMISSION_REPLIES: dict[SubmissionStatus, str] = {
    SubmissionStatus.ALREADY_MEMBER: "You are already a member.",
    SubmissionStatus.ALREADY_OPEN: "You already have an application open for voting.",
    SubmissionStatus.BANNED: "You have been banned from applying. Contact an administrator.",
    SubmissionStatus.INVALID_GAME_NAME: "Game names are 3-16 characters: letters, digits and underscores.",
    SubmissionStatus.REASON_REQUIRED: "Please tell us why you want to join.",
}

VOTE_REPLIES: dict[VoteStatus, str] = {
    VoteStatus.APPLICATION_NOT_FOUND: "That application does not exist.",
    VoteStatus.APPLICATION_NOT_OPEN: "Voting on that application has closed.",
    VoteStatus.DUPLICATE_VOTE: "You have already voted on that application.",
    VoteStatus.VOTER_INELIGIBLE: "You are not allowed to vote on that application.",
}

QUESTION_REPLIES: dict[QuestionStatus, str] = {
    QuestionStatus.ASKED: "✅ Question sent to the applicant.",
    QuestionStatus.ANSWERED: "✅ Answer delivered.",
    QuestionStatus.APPLICATION_NOT_FOUND: "That application does not exist.",
    QuestionStatus.APPLICATION_NOT_OPEN: "That application is no longer open.",
    QuestionStatus.ASKER_INELIGIBLE: "Only members with voting rights can ask questions.",
    QuestionStatus.QUESTION_NOT_FOUND: "That question does not exist.",
    QuestionStatus.NOT_APPLICANT: "Only the applicant can answer that question.",
    QuestionStatus.ALREADY_ANSWERED: "That question has already been answered.",
    QuestionStatus.EMPTY_TEXT: "The text cannot be empty.",
}

RATING_REPLIES: dict[RatingStatus, str] = {
    RatingStatus.SELF_RATING: "You cannot rate yourself.",
    RatingStatus.USER_NOT_FOUND: "That member is not known yet.",
    RatingStatus.RATER_INELIGIBLE: "Only members can rate other members.",
    RatingStatus.TARGET_INELIGIBLE: "Only members can be rated.",
    RatingStatus.DAILY_LIMIT_EXCEEDED: "You have used all of today's ratings.",
    RatingStatus.REASON_REQUIRED: "A reason is required for a negative rating.",
    RatingStatus.UNKNOWN_REASON: "That reason is not in the catalogue.",
}


def describe_submission(result: SubmissionResult) -> str:
    if result.status is SubmissionStatus.SUBMITTED:
        return (
            f"✅ Application #{result.application_id} submitted. "
            f"Voting closes {discord.utils.format_dt(result.voting_ends_at, 'R')}."
        )
    return "❌ " + SUBMISSION_REPLIES[result.status]


def describe_ballot(outcome: BallotOutcome) -> str:
    vote = outcome.vote
    if not vote.accepted:
        return "❌ " + VOTE_REPLIES[vote.status]
    text = f"✅ Vote recorded on #{vote.application_id} (👍 {vote.tally.positive} · 👎 {vote.tally.negative})."
    evaluation = outcome.evaluation
    if evaluation is not None and evaluation.status is EvaluationStatus.DECIDED:
        text += f"\nEveryone has voted: the application was **{evaluation.outcome.value}**."
    return text


def describe_rating(result: RatingResult) -> str:
    if result.status is RatingStatus.COOLDOWN:
        return f"⏳ You rated this member recently. Try again {discord.utils.format_dt(result.retry_after, 'R')}."
    if not result.accepted:
        return "❌ " + RATING_REPLIES[result.status]
    if result.status is RatingStatus.WITHDRAWN:
        text = "↩️ Rating withdrawn."
    else:
        text = f"✅ Rating saved (weight {result.weight:.2f})."
    if result.excluded:
        text += "\nThe member crossed the exclusion threshold and was removed from the whitelist."
    return text


class Membership(commands.Cog, name="Membership"):
    """Application, voting and reputation commands."""

    def __init__(self, bot: WardenBot) -> None:
        self.bot = bot

    async def _user_id(self, user: discord.abc.User) -> int:
        return await run_db(ensure_user, self.bot.engine, user.id, user.display_name)

    async def _prompt_dm(self, interaction: discord.Interaction, prompt: str) -> None:
        """Send *prompt* by DM and point the user at it."""
        try:
            await interaction.user.send(prompt)
        except discord.Forbidden:
            self.bot.set_state(interaction.user.id, IDLE)
            await send_reply(interaction, "❌ I cannot DM you. Enable direct messages and try again.")
            return
        await send_reply(interaction, "📬 Check your direct messages.")

    # -------------------------------------------------------------------
    # /apply
    # -------------------------------------------------------------------
    @app_commands.command(name="apply", description="Apply for membership and a whitelist spot.")
    @app_commands.describe(
        game_name="Your in-game name",
        reason="Why you want to join",
    )
    async def apply(
        self,
        interaction: discord.Interaction,
        game_name: str | None = None,
        reason: str | None = None,
    ) -> None:
        if game_name and reason:
            await interaction.response.defer(ephemeral=True)
            result = await run_db(
                self.bot.applications.submit_application,
                interaction.user.id, interaction.user.display_name, game_name, reason,
            )
            await send_reply(interaction, describe_submission(result))
            return

        if game_name:
            self.bot.set_state(interaction.user.id, start_application().with_name(game_name))
            await self._prompt_dm(interaction, f"Applying as `{game_name.strip()}`. Why do you want to join?")
        else:
            self.bot.set_state(interaction.user.id, start_application())
            await self._prompt_dm(interaction, "What is your in-game name?")

    # -------------------------------------------------------------------
    # /applications, /application
    # -------------------------------------------------------------------
    @app_commands.command(name="applications", description="List applications open for voting.")
    async def applications(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True)
        rows = await run_db(self.bot.applications.list_open_applications)
        if not rows:
            await send_reply(interaction, "No applications are open.")
            return
        viewer_id = await self._user_id(interaction.user)
        lines = []
        for row in rows:
            voted = await run_db(self.bot.ledger.has_voted, row["id"], viewer_id)
            lines.append(
                f"{'✅ ' if voted else ''}#{row['id']} **{row['display_name']}** (`{row['game_name']}`) "
                f"👍 {row['votes_positive']} · 👎 {row['votes_negative']} · closes {row['voting_ends_at']}"
            )
        await send_reply(interaction, "\n".join(lines))

    @app_commands.command(name="application", description="Show one application with its questions.")
    @app_commands.describe(application="Application number")
    async def application(self, interaction: discord.Interaction, application: int) -> None:
        data = await run_db(self.bot.applications.get_application, application)
        if data is None:
            await send_reply(interaction, "That application does not exist.")
            return
        questions = await run_db(self.bot.applications.list_questions, application)
        viewer_id = await self._user_id(interaction.user)
        ballot = await run_db(self.bot.ledger.get_ballot, application, viewer_id)

        embed = discord.Embed(
            title=f"Application #{data['id']} · {data['game_name']}",
            description=data["reason"],
        )
        embed.add_field(name="Status", value=data["status"])
        embed.add_field(name="Votes", value=f"👍 {data['tally']['positive']} · 👎 {data['tally']['negative']}")
        embed.add_field(name="Closes", value=data["voting_ends_at"] or "—", inline=False)
        for q in questions[:10]:
            embed.add_field(
                name=f"Q{q['id']}: {q['text'][:200]}",
                value=(q["answer"] or "*unanswered*")[:1000],
                inline=False,
            )
        if ballot is not None:
            embed.set_footer(text=f"Your vote: {'👍' if ballot == Ballot.POSITIVE else '👎'}")
        await send_reply(interaction, embed=embed)

    # -------------------------------------------------------------------
    # /vote, /retract
    # -------------------------------------------------------------------
    @app_commands.command(name="vote", description="Vote on an open application.")
    @app_commands.describe(application="Application number", approve="True to approve, False to reject")
    async def vote(self, interaction: discord.Interaction, application: int, approve: bool) -> None:
        await interaction.response.defer(ephemeral=True)
        voter_id = await self._user_id(interaction.user)
        outcome = await run_db(
            self.bot.decisions.vote, application, voter_id, "positive" if approve else "negative",
        )
        await send_reply(interaction, describe_ballot(outcome))

    @app_commands.command(name="retract", description="Withdraw your vote from an open application.")
    @app_commands.describe(application="Application number")
    async def retract(self, interaction: discord.Interaction, application: int) -> None:
        voter_id = await self._user_id(interaction.user)
        result = await run_db(self.bot.ledger.retract_vote, application, voter_id)
        if result.removed:
            await send_reply(interaction, "↩️ Vote withdrawn.")
        else:
            await send_reply(interaction, "❌ No withdrawable vote on that application.")

    # -------------------------------------------------------------------
    # /ask, /answer
    # -------------------------------------------------------------------
    @app_commands.command(name="ask", description="Ask the applicant a question.")
    @app_commands.describe(application="Application number", text="Your question")
    async def ask(self, interaction: discord.Interaction, application: int, text: str | None = None) -> None:
        if not text:
            self.bot.set_state(interaction.user.id, start_question(application))
            await self._prompt_dm(interaction, f"What would you like to ask applicant #{application}?")
            return
        asker_id = await self._user_id(interaction.user)
        result = await run_db(self.bot.applications.ask_question, application, asker_id, text)
        await send_reply(interaction, QUESTION_REPLIES[result.status])

    @app_commands.command(name="answer", description="Answer a question about your application.")
    @app_commands.describe(question="Question number", text="Your answer")
    async def answer(self, interaction: discord.Interaction, question: int, text: str | None = None) -> None:
        if not text:
            self.bot.set_state(interaction.user.id, start_answer(question))
            await self._prompt_dm(interaction, f"Type your answer to question {question}.")
            return
        applicant_id = await self._user_id(interaction.user)
        result = await run_db(self.bot.applications.answer_question, question, applicant_id, text)
        await send_reply(interaction, QUESTION_REPLIES[result.status])

    # -------------------------------------------------------------------
    # /rate, /reputation
    # -------------------------------------------------------------------
    @app_commands.command(name="rate", description="Rate another member (repeat to withdraw).")
    @app_commands.describe(
        member="The member to rate",
        positive="True for a positive rating, False for a negative one",
        reason="Why (required for negative ratings)",
    )
    async def rate(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        positive: bool,
        reason: str | None = None,
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        rater_id = await self._user_id(interaction.user)
        target_id = await self._user_id(member)
        result = await run_db(self.bot.reputation.rate, rater_id, target_id, positive, reason)

        if result.status is RatingStatus.REASON_REQUIRED:
            self.bot.set_state(interaction.user.id, start_rating(target_id, positive))
            await self._prompt_dm(interaction, f"Why are you rating **{member.display_name}** negatively?")
            return
        await send_reply(interaction, describe_rating(result))

    @app_commands.command(name="reputation", description="Show a member's reputation.")
    @app_commands.describe(member="Member to inspect (defaults to you)")
    async def reputation(self, interaction: discord.Interaction, member: discord.Member | None = None) -> None:
        target = member or interaction.user
        target_id = await self._user_id(target)
        stats = await run_db(self.bot.reputation.reputation_stats, target_id)
        embed = discord.Embed(title=f"Reputation · {target.display_name}")
        embed.add_field(name="Positive", value=f"{stats['positive']:.2f}")
        embed.add_field(name="Negative", value=f"{stats['negative']:.2f}")
        embed.add_field(
            name="Standing",
            value=f"{stats['negative_percent']}% of {stats['eligible_voters']} voters "
                  f"(limit {stats['threshold_percent']}%)",
            inline=False,
        )
        if stats["negative_reasons"]:
            embed.add_field(
                name="Negative reasons",
                value="\n".join(f"{r['reason']}: {r['count']}" for r in stats["negative_reasons"]),
                inline=False,
            )
        await send_reply(interaction, embed=embed)

    # -------------------------------------------------------------------
    # DM listener — advances multi-step flows
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is not None:
            return
        state = self.bot.get_state(message.author.id)
        text = message.content.strip()
        if not text:
            return

        try:
            match state:
                case AwaitingApplicationName():
                    next_state = state.with_name(text)
                    self.bot.set_state(message.author.id, next_state)
                    await message.channel.send(f"Applying as `{next_state.game_name}`. Why do you want to join?")
                case AwaitingApplicationReason(game_name=game_name):
                    self.bot.set_state(message.author.id, IDLE)
                    result = await run_db(
                        self.bot.applications.submit_application,
                        message.author.id, message.author.display_name, game_name, text,
                    )
                    await message.channel.send(describe_submission(result))
                case AwaitingRatingReason(target_id=target_id):
                    self.bot.set_state(message.author.id, IDLE)
                    rater_id = await self._user_id(message.author)
                    result = await run_db(self.bot.reputation.rate, rater_id, target_id, state.positive, text)
                    await message.channel.send(describe_rating(result))
                case AwaitingQuestionText(application_id=application_id):
                    self.bot.set_state(message.author.id, IDLE)
                    asker_id = await self._user_id(message.author)
                    result = await run_db(self.bot.applications.ask_question, application_id, asker_id, text)
                    await message.channel.send(QUESTION_REPLIES[result.status])
                case AwaitingAnswerText(question_id=question_id):
                    self.bot.set_state(message.author.id, IDLE)
                    applicant_id = await self._user_id(message.author)
                    result = await run_db(self.bot.applications.answer_question, question_id, applicant_id, text)
                    await message.channel.send(QUESTION_REPLIES[result.status])
        except Exception:
            logger.exception(
                "Error advancing DM flow for %s", message.author.id,
                extra={"state": type(state).__name__, "user_id": message.author.id},
            )
            await message.channel.send("Something went wrong; please try again later.")


async def setup(bot: WardenBot) -> None:
    await bot.add_cog(Membership(bot))
