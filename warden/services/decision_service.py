"""
warden.services.decision_service — Application Decision Engine
===============================================================

Owns the application state machine::

    PENDING / VOTING ──► APPROVED | REJECTED | EXPIRED   (decision function)
            │
            └──────────► any terminal status              (admin override)
    APPROVED ──────────► BANNED                           (admin override)

Evaluation happens eagerly after each accepted vote (so a vote that
completes full participation closes the application at once) and lazily
from the periodic sweep.  Both paths lock the application row, return
early if it is already terminal, and run the same pure
:func:`~warden.engine.decision.decide`.

Whitelist sync and notifications run only after the transition has
committed.  Their failures are logged and swallowed; the recorded
decision is authoritative.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from warden.constants import OPEN_STATUSES, TERMINAL_STATUSES, as_utc, offline_uuid, utcnow
from warden.database.models import (
    AdminActionType,
    Application,
    ApplicationStatus,
    Ballot,
    User,
    UserRole,
    WhitelistStatus,
)
from warden.engine.decision import decide, is_voting_closed
from warden.engine.outcomes import (
    BallotOutcome,
    Decision,
    DecisionReason,
    EvaluationResult,
    EvaluationStatus,
    OverrideResult,
    OverrideStatus,
)
from warden.engine.policy import MembershipPolicy
from warden.services.admin_service import log_admin_action, row_to_dict
from warden.services.collaborators import (
    NotificationEvent,
    NotificationKind,
    Notifier,
    WhitelistSynchronizer,
)
from warden.services.retry import run_in_transaction
from warden.services.user_service import count_eligible_voters
from warden.services.vote_ledger import VoteLedger, ledger_tally, lock_application

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _SideEffects:
    """Collaborator calls collected inside a transaction, run after commit."""
    user_id: int | None = None
    whitelist_add: tuple[str, str | None] | None = None
    whitelist_remove: str | None = None
    notifications: list[tuple[int, NotificationEvent]] = field(default_factory=list)


class DecisionEngine:
    """Evaluates, overrides and sweeps applications.

    Parameters
    ----------
    engine:
        SQLAlchemy engine for the ledger store.
    ledger:
        The :class:`VoteLedger` used by :meth:`vote`.
    whitelist:
        Game-server allow-list collaborator.
    notifier:
        Outcome-message collaborator.
    """

    def __init__(
        self,
        engine: Engine,
        ledger: VoteLedger,
        whitelist: WhitelistSynchronizer,
        notifier: Notifier,
    ) -> None:
        if whitelist is None or notifier is None:
            raise ValueError("DecisionEngine requires a whitelist synchronizer and a notifier")
        self.engine = engine
        self.ledger = ledger
        self.whitelist = whitelist
        self.notifier = notifier

    # -------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------
    def evaluate(self, application_id: int, now: datetime | None = None) -> EvaluationResult:
        """Close the application if its vote has closed; no-op if terminal."""
        now = now or utcnow()

        def _evaluate(session: Session) -> tuple[EvaluationResult, _SideEffects | None]:
            app = lock_application(session, application_id)
            if app is None:
                return EvaluationResult(EvaluationStatus.NOT_FOUND, application_id), None
            if app.status in TERMINAL_STATUSES:
                return EvaluationResult(
                    EvaluationStatus.ALREADY_DECIDED, application_id, outcome=app.status,
                ), None

            tally = ledger_tally(session, application_id)
            eligible = count_eligible_voters(session)
            if not is_voting_closed(now, as_utc(app.voting_ends_at), tally.total, eligible):
                return EvaluationResult(EvaluationStatus.STILL_OPEN, application_id), None

            policy = MembershipPolicy.from_session(session)
            decision = decide(tally.positive, tally.negative, eligible, policy)

            # Re-sync the cached counters with the tally the decision used.
            app.votes_positive = tally.positive
            app.votes_negative = tally.negative

            effects = self._transition(session, app, decision.outcome, now, decision.reason.value)
            effects.notifications.append((
                app.user_id,
                NotificationEvent(NotificationKind.APPLICATION_DECIDED, _decision_payload(app, decision)),
            ))
            return EvaluationResult(
                EvaluationStatus.DECIDED, application_id, outcome=decision.outcome, decision=decision,
            ), effects

        result, effects = run_in_transaction(self.engine, _evaluate, operation="evaluate")
        if result.status is EvaluationStatus.DECIDED:
            logger.info(
                "Application %d decided: %s (%s)",
                application_id, result.outcome, result.decision.reason,
            )
            self._dispatch(effects)
        return result

    def vote(
        self,
        application_id: int,
        voter_id: int,
        ballot: Ballot | str,
        now: datetime | None = None,
    ) -> BallotOutcome:
        """Cast a vote, then evaluate eagerly to catch full participation."""
        now = now or utcnow()
        result = self.ledger.cast_vote(application_id, voter_id, ballot, now=now)
        if not result.accepted:
            return BallotOutcome(vote=result)
        return BallotOutcome(vote=result, evaluation=self.evaluate(application_id, now=now))

    def sweep_expired(self, now: datetime | None = None) -> dict:
        """Evaluate every open application whose voting window has passed.

        Each application is evaluated in its own transaction.  Returns
        ``{"checked": N, "decided": M, "failed": F, "outcomes": {status: count}}``.
        """
        now = now or utcnow()
        with Session(self.engine) as session:
            due_ids = list(session.scalars(
                select(Application.id)
                .where(
                    Application.status.in_(OPEN_STATUSES),
                    Application.voting_ends_at <= now,
                )
                .order_by(Application.voting_ends_at)
            ).all())

        decided = 0
        failed = 0
        outcomes: dict[str, int] = {}
        for application_id in due_ids:
            try:
                result = self.evaluate(application_id, now=now)
            except Exception:
                logger.exception("Sweep could not evaluate application %d", application_id)
                failed += 1
                continue
            if result.status is EvaluationStatus.DECIDED:
                decided += 1
                outcomes[result.outcome.value] = outcomes.get(result.outcome.value, 0) + 1

        if due_ids:
            logger.info("Sweep: checked=%d decided=%d failed=%d", len(due_ids), decided, failed)
        return {"checked": len(due_ids), "decided": decided, "failed": failed, "outcomes": outcomes}

    # -------------------------------------------------------------------
    # Administrative override
    # -------------------------------------------------------------------
    def admin_override(
        self,
        application_id: int,
        status: ApplicationStatus | str,
        actor_id: int,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> OverrideResult:
        """Force *status* onto an application, bypassing the decision function.

        Any terminal status may be set on an open application.  BANNED may
        also be set on an approved one.  Side effects match the automatic
        outcome for the requested status.
        """
        now = now or utcnow()
        try:
            status = ApplicationStatus(status)
        except ValueError:
            return OverrideResult(OverrideStatus.INVALID_STATUS, application_id)
        if status not in TERMINAL_STATUSES:
            return OverrideResult(OverrideStatus.INVALID_STATUS, application_id)

        def _override(session: Session) -> tuple[OverrideResult, _SideEffects | None]:
            app = lock_application(session, application_id)
            if app is None:
                return OverrideResult(OverrideStatus.NOT_FOUND, application_id), None

            previous = app.status
            if previous == status:
                return OverrideResult(OverrideStatus.UNCHANGED, application_id, previous, previous), None
            reopening_final = previous in TERMINAL_STATUSES and not (
                previous == ApplicationStatus.APPROVED and status == ApplicationStatus.BANNED
            )
            if reopening_final:
                return OverrideResult(OverrideStatus.ALREADY_FINAL, application_id, previous, previous), None

            before = row_to_dict(app)
            tally = ledger_tally(session, application_id)
            app.votes_positive = tally.positive
            app.votes_negative = tally.negative
            effects = self._transition(
                session, app, status, now, reason or DecisionReason.ADMIN_OVERRIDE.value,
            )
            log_admin_action(
                session,
                actor_id=actor_id,
                action_type=AdminActionType.STATUS_OVERRIDE,
                target_table="applications",
                target_id=application_id,
                before=before,
                after=row_to_dict(app),
                reason=reason,
            )
            effects.notifications.append((
                app.user_id,
                NotificationEvent(NotificationKind.APPLICATION_STATUS_CHANGED, {
                    "application_id": application_id,
                    "status": status.value,
                    "previous": previous.value,
                    "actor_id": actor_id,
                    "reason": reason,
                    "positive": tally.positive,
                    "negative": tally.negative,
                }),
            ))
            return OverrideResult(OverrideStatus.APPLIED, application_id, previous, status), effects

        result, effects = run_in_transaction(self.engine, _override, operation="admin_override")
        if result.status is OverrideStatus.APPLIED:
            logger.info(
                "Application %d overridden %s → %s by %d",
                application_id, result.previous, result.current, actor_id,
            )
            self._dispatch(effects)
        return result

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _transition(
        self,
        session: Session,
        app: Application,
        status: ApplicationStatus,
        now: datetime,
        reason: str,
    ) -> _SideEffects:
        """Move *app* to *status* and apply the membership consequences."""
        app.status = status
        app.decided_at = now
        app.decision_reason = reason

        user = session.get(User, app.user_id, with_for_update=True)
        effects = _SideEffects(user_id=user.id)

        if status == ApplicationStatus.APPROVED:
            if user.role != UserRole.ADMIN:
                user.role = UserRole.MEMBER
            user.can_vote = True
            user.game_name = app.game_name
            game_uuid = app.game_uuid or user.game_uuid or offline_uuid(app.game_name)
            app.game_uuid = game_uuid
            user.game_uuid = game_uuid
            effects.whitelist_add = (app.game_name, game_uuid)

        elif status == ApplicationStatus.BANNED:
            if user.role != UserRole.ADMIN:
                was_member = user.role == UserRole.MEMBER
                user.role = UserRole.APPLICANT
                user.can_vote = False
                if was_member and user.game_name:
                    effects.whitelist_remove = user.game_name

        elif user.role == UserRole.APPLICANT:
            # Rejected / expired applicants go back to plain users.
            user.role = UserRole.NEW

        return effects

    def _dispatch(self, effects: _SideEffects | None) -> None:
        if effects is None:
            return
        if effects.whitelist_add is not None:
            name, game_uuid = effects.whitelist_add
            self._sync_whitelist(effects.user_id, "add", name, game_uuid)
        if effects.whitelist_remove is not None:
            self._sync_whitelist(effects.user_id, "remove", effects.whitelist_remove, None)
        for user_id, event in effects.notifications:
            safe_notify(self.notifier, user_id, event)

    def _sync_whitelist(self, user_id: int, action: str, name: str, game_uuid: str | None) -> None:
        sync_whitelist(self.engine, self.whitelist, user_id, action, name, game_uuid)


# ---------------------------------------------------------------------------
# Shared collaborator helpers (also used by the reputation ledger)
# ---------------------------------------------------------------------------
def safe_notify(notifier: Notifier, user_id: int, event: NotificationEvent) -> None:
    """Deliver *event*, logging instead of raising on failure."""
    try:
        notifier.notify(user_id, event)
    except Exception:
        logger.exception("Notification %s to user %d failed", event.kind, user_id)


def sync_whitelist(
    engine: Engine,
    whitelist: WhitelistSynchronizer,
    user_id: int,
    action: str,
    name: str,
    game_uuid: str | None = None,
) -> bool:
    """Mirror a membership change onto the server and record the outcome.

    The user's ``whitelist_status`` ends up ADDED/REMOVED on success or
    SYNC_FAILED otherwise, so the whitelist reconciler can retry later.
    """
    try:
        if action == "add":
            ok = whitelist.add_member(name, game_uuid)
        else:
            ok = whitelist.remove_member(name)
    except Exception:
        logger.exception("Whitelist %s for %s raised", action, name)
        ok = False

    if not ok:
        logger.warning("Whitelist %s for %s failed; left for reconciliation", action, name)
    new_status = (
        WhitelistStatus.SYNC_FAILED if not ok
        else WhitelistStatus.ADDED if action == "add"
        else WhitelistStatus.REMOVED
    )
    try:
        with Session(engine) as session:
            user = session.get(User, user_id)
            if user is not None:
                user.whitelist_status = new_status
                session.commit()
    except Exception:
        logger.exception("Could not record whitelist status for user %d", user_id)
    return ok


def _decision_payload(app: Application, decision: Decision) -> dict:
    return {
        "application_id": app.id,
        "game_name": app.game_name,
        "status": decision.outcome.value,
        "reason": decision.reason.value,
        "positive": decision.positive,
        "negative": decision.negative,
        "positive_percent": round(decision.positive_percent, 1),
        "negative_percent": round(decision.negative_percent, 1),
        "eligible_voters": decision.eligible_voters,
        "required_votes": decision.required_votes,
    }
