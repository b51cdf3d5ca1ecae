"""
warden.services.reputation_ledger — Weighted Peer Reputation
=============================================================

Each rater holds at most one standing opinion about each target.
:meth:`ReputationLedger.rate` is a toggle:

- no opinion yet        → create it (weight frozen from the rater's standing)
- same polarity again   → withdraw it
- opposite polarity     → replace polarity, reason and re-derived weight

Both users' rows and the (rater, target) record are locked for the
duration of the transaction.  The target's ``reputation_positive`` /
``reputation_negative`` sums are adjusted in the same transaction by the
exact weight that entered or left the ledger, so amnesty reductions on
those sums survive later ratings.

After every negative-direction change (new negative, or positive turned
negative) the automatic-exclusion policy runs on the updated sums.  An
excluded member is demoted, loses the vote, is removed from the
whitelist, and both they and every admin are notified.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import Engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from warden.constants import MEMBER_ROLES, as_utc, start_of_utc_day, utcnow
from warden.database.models import (
    AdminActionType,
    ReputationReason,
    ReputationRecord,
    User,
    UserRole,
)
from warden.engine.outcomes import (
    ExclusionCheck,
    RatingResult,
    RatingStatus,
    ReputationTotals,
)
from warden.engine.policy import MembershipPolicy
from warden.engine.reputation import apply_amnesty, compute_vote_weight, evaluate_exclusion
from warden.services.admin_service import log_admin_action, row_to_dict
from warden.services.collaborators import (
    NotificationEvent,
    NotificationKind,
    Notifier,
    WhitelistSynchronizer,
)
from warden.services.decision_service import safe_notify, sync_whitelist
from warden.services.retry import run_in_transaction
from warden.services.user_service import count_eligible_voters, list_admin_ids

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _ExclusionEffects:
    user_id: int | None = None
    whitelist_remove: str | None = None
    notifications: list[tuple[int, NotificationEvent]] = field(default_factory=list)


def _adjust(user: User, is_positive: bool, delta: float) -> None:
    """Shift one of *user*'s reputation sums by *delta*, flooring at zero."""
    if is_positive:
        user.reputation_positive = max(0.0, (user.reputation_positive or 0.0) + delta)
    else:
        user.reputation_negative = max(0.0, (user.reputation_negative or 0.0) + delta)


def _totals(user: User) -> ReputationTotals:
    return ReputationTotals(
        positive=user.reputation_positive or 0.0,
        negative=user.reputation_negative or 0.0,
    )


class ReputationLedger:
    """rate / aggregate / check_exclusion / run_amnesty."""

    def __init__(
        self,
        engine: Engine,
        whitelist: WhitelistSynchronizer,
        notifier: Notifier,
    ) -> None:
        if whitelist is None or notifier is None:
            raise ValueError("ReputationLedger requires a whitelist synchronizer and a notifier")
        self.engine = engine
        self.whitelist = whitelist
        self.notifier = notifier

    # -------------------------------------------------------------------
    # rate
    # -------------------------------------------------------------------
    def rate(
        self,
        rater_id: int,
        target_id: int,
        positive: bool,
        reason: str | None = None,
        reason_id: int | None = None,
        now: datetime | None = None,
    ) -> RatingResult:
        if rater_id == target_id:
            return RatingResult(RatingStatus.SELF_RATING)

        now = now or utcnow()
        reason = (reason or "").strip() or None

        def _rate(session: Session) -> tuple[RatingResult, _ExclusionEffects | None]:
            policy = MembershipPolicy.from_session(session)

            # Lock both users in id order so opposite-direction ratings can't deadlock.
            users = {
                u.id: u
                for u in session.scalars(
                    select(User)
                    .where(User.id.in_([rater_id, target_id]))
                    .order_by(User.id)
                    .with_for_update()
                ).all()
            }
            rater, target = users.get(rater_id), users.get(target_id)
            if rater is None or target is None:
                return RatingResult(RatingStatus.USER_NOT_FOUND), None
            if not rater.can_vote:
                return RatingResult(RatingStatus.RATER_INELIGIBLE), None
            if target.role not in MEMBER_ROLES:
                return RatingResult(RatingStatus.TARGET_INELIGIBLE), None

            record = session.scalar(
                select(ReputationRecord)
                .where(ReputationRecord.rater_id == rater_id, ReputationRecord.target_id == target_id)
                .with_for_update()
            )
            if record is not None:
                last_change = as_utc(record.updated_at)
                if now - last_change < policy.rating_cooldown:
                    return RatingResult(
                        RatingStatus.COOLDOWN, retry_after=last_change + policy.rating_cooldown,
                    ), None

            given_today = session.scalar(
                select(func.count())
                .select_from(ReputationRecord)
                .where(
                    ReputationRecord.rater_id == rater_id,
                    ReputationRecord.created_at >= start_of_utc_day(now),
                )
            ) or 0
            if given_today >= policy.max_daily_ratings:
                return RatingResult(RatingStatus.DAILY_LIMIT_EXCEEDED), None

            # Withdrawal: same polarity as the standing opinion.
            if record is not None and record.is_positive == positive:
                _adjust(target, record.is_positive, -record.weight)
                session.delete(record)
                logger.info("Rating withdrawn: %d → %d (%s)", rater_id, target_id, positive)
                return RatingResult(RatingStatus.WITHDRAWN, totals=_totals(target)), None

            if reason_id is not None:
                catalogued = session.get(ReputationReason, reason_id)
                if catalogued is None or not catalogued.active or catalogued.is_positive != positive:
                    return RatingResult(RatingStatus.UNKNOWN_REASON), None
            if not positive and policy.require_negative_reason and reason is None and reason_id is None:
                return RatingResult(RatingStatus.REASON_REQUIRED), None

            weight = compute_vote_weight(
                rater.role, rater.reputation_positive or 0.0, rater.reputation_negative or 0.0,
            )

            if record is not None:
                _adjust(target, record.is_positive, -record.weight)
                record.is_positive = positive
                record.reason = reason
                record.reason_id = reason_id
                record.weight = weight
                record.updated_at = now
                status = RatingStatus.REPLACED
            else:
                session.add(ReputationRecord(
                    rater_id=rater_id,
                    target_id=target_id,
                    is_positive=positive,
                    reason=reason,
                    reason_id=reason_id,
                    weight=weight,
                    created_at=now,
                    updated_at=now,
                ))
                rater.total_ratings_given = (rater.total_ratings_given or 0) + 1
                rater.last_rating_given_at = now
                status = RatingStatus.CREATED
            _adjust(target, positive, weight)
            session.flush()
            logger.info(
                "Rating %s: %d → %d positive=%s weight=%.2f",
                status, rater_id, target_id, positive, weight,
            )

            exclusion: ExclusionCheck | None = None
            effects: _ExclusionEffects | None = None
            if not positive:
                exclusion, effects = self._check_and_exclude(session, target, policy, now)
            return RatingResult(
                status, weight=weight, totals=_totals(target), exclusion=exclusion,
            ), effects

        try:
            result, effects = run_in_transaction(self.engine, _rate, operation="rate")
        except IntegrityError:
            # A concurrent first rating for the same pair won the insert;
            # re-run against the record it created.
            result, effects = run_in_transaction(self.engine, _rate, operation="rate")

        self._dispatch(effects)
        return result

    # -------------------------------------------------------------------
    # aggregate / check_exclusion
    # -------------------------------------------------------------------
    def aggregate(self, target_id: int) -> ReputationTotals:
        """Weighted sums of the active opinions about *target_id*."""
        with Session(self.engine) as session:
            return _ledger_totals(session, target_id)

    def check_exclusion(self, target_id: int, now: datetime | None = None) -> ExclusionCheck:
        """Evaluate the exclusion policy against the stored sums and apply it."""
        now = now or utcnow()

        def _check(session: Session) -> tuple[ExclusionCheck, _ExclusionEffects | None]:
            target = session.get(User, target_id, with_for_update=True)
            if target is None:
                return ExclusionCheck(target_id, False, 0.0, 0.0, 0, skipped="not_found"), None
            policy = MembershipPolicy.from_session(session)
            return self._check_and_exclude(session, target, policy, now)

        check, effects = run_in_transaction(self.engine, _check, operation="check_exclusion")
        self._dispatch(effects)
        return check

    # -------------------------------------------------------------------
    # Amnesty
    # -------------------------------------------------------------------
    def run_amnesty(self, now: datetime | None = None) -> int:
        """Forgive part of everyone's negative reputation.

        Returns the number of users whose negative sum was reduced.
        ``reputation_positive`` is never touched.
        """
        now = now or utcnow()

        def _amnesty(session: Session) -> int:
            reduction = MembershipPolicy.from_session(session).amnesty_reduction_percent
            users = session.scalars(
                select(User).where(User.reputation_negative > 0).with_for_update()
            ).all()
            for user in users:
                before = user.reputation_negative
                user.reputation_negative = apply_amnesty(before, reduction)
                user.reputation_last_decay = now
                logger.debug(
                    "Amnesty for user %d: %.2f → %.2f", user.id, before, user.reputation_negative,
                )
            return len(users)

        count = run_in_transaction(self.engine, _amnesty, operation="run_amnesty")
        logger.info("Amnesty complete: %d users", count)
        return count

    # -------------------------------------------------------------------
    # Stats
    # -------------------------------------------------------------------
    def reputation_stats(self, target_id: int) -> dict | None:
        """Totals, exclusion standing and a per-reason breakdown for *target_id*."""
        with Session(self.engine) as session:
            user = session.get(User, target_id)
            if user is None:
                return None
            policy = MembershipPolicy.from_session(session)
            eligible = count_eligible_voters(session)
            check = evaluate_exclusion(
                user.id, user.role, user.reputation_negative or 0.0,
                eligible, policy.negative_threshold_percent,
            )
            ledger = _ledger_totals(session, target_id)

            breakdown_rows = session.execute(
                select(
                    func.coalesce(ReputationReason.name, ReputationRecord.reason),
                    func.count(),
                    func.sum(ReputationRecord.weight),
                )
                .select_from(ReputationRecord)
                .outerjoin(ReputationReason, ReputationReason.id == ReputationRecord.reason_id)
                .where(
                    ReputationRecord.target_id == target_id,
                    ReputationRecord.is_positive.is_(False),
                )
                .group_by(func.coalesce(ReputationReason.name, ReputationRecord.reason))
            ).all()

            last_decay = as_utc(user.reputation_last_decay)
            return {
                "user_id": user.id,
                "positive": round(user.reputation_positive or 0.0, 2),
                "negative": round(user.reputation_negative or 0.0, 2),
                "ledger_positive": round(ledger.positive, 2),
                "ledger_negative": round(ledger.negative, 2),
                "negative_percent": round(check.negative_percent, 1),
                "threshold_percent": policy.negative_threshold_percent,
                "eligible_voters": eligible,
                "last_decay": last_decay.isoformat() if last_decay else None,
                "negative_reasons": [
                    {"reason": name or "unspecified", "count": count, "weight": round(weight or 0.0, 2)}
                    for name, count, weight in breakdown_rows
                ],
            }

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _check_and_exclude(
        self,
        session: Session,
        target: User,
        policy: MembershipPolicy,
        now: datetime,
    ) -> tuple[ExclusionCheck, _ExclusionEffects | None]:
        eligible = count_eligible_voters(session)
        check = evaluate_exclusion(
            target.id,
            target.role,
            target.reputation_negative or 0.0,
            eligible,
            policy.negative_threshold_percent,
        )
        if not check.should_exclude:
            return check, None

        target.role = UserRole.APPLICANT
        target.can_vote = False
        logger.warning(
            "User %d excluded: negative %.1f%% ≥ %.1f%% of %d eligible voters",
            target.id, check.negative_percent, check.threshold_percent, eligible,
        )

        payload = {
            "user_id": target.id,
            "display_name": target.display_name,
            "game_name": target.game_name,
            "negative_weight": round(target.reputation_negative or 0.0, 2),
            "negative_percent": round(check.negative_percent, 1),
            "threshold_percent": check.threshold_percent,
            "eligible_voters": eligible,
            "excluded_at": now.isoformat(),
        }
        effects = _ExclusionEffects(user_id=target.id, whitelist_remove=target.game_name)
        effects.notifications.append(
            (target.id, NotificationEvent(NotificationKind.MEMBER_EXCLUDED, payload))
        )
        for admin_id in list_admin_ids(session):
            effects.notifications.append(
                (admin_id, NotificationEvent(NotificationKind.MEMBER_EXCLUDED_ADMIN, payload))
            )
        return check, effects

    def _dispatch(self, effects: _ExclusionEffects | None) -> None:
        if effects is None:
            return
        if effects.whitelist_remove:
            sync_whitelist(self.engine, self.whitelist, effects.user_id, "remove", effects.whitelist_remove)
        for user_id, event in effects.notifications:
            safe_notify(self.notifier, user_id, event)


def _ledger_totals(session: Session, target_id: int) -> ReputationTotals:
    rows = session.execute(
        select(ReputationRecord.is_positive, func.coalesce(func.sum(ReputationRecord.weight), 0.0))
        .where(ReputationRecord.target_id == target_id)
        .group_by(ReputationRecord.is_positive)
    ).all()
    sums = {bool(is_positive): float(total) for is_positive, total in rows}
    return ReputationTotals(positive=sums.get(True, 0.0), negative=sums.get(False, 0.0))


# ---------------------------------------------------------------------------
# Reason catalogue
# ---------------------------------------------------------------------------
def list_reasons(engine: Engine, positive: bool | None = None) -> list[dict]:
    with Session(engine) as session:
        stmt = select(ReputationReason).where(ReputationReason.active.is_(True))
        if positive is not None:
            stmt = stmt.where(ReputationReason.is_positive.is_(positive))
        return [
            {"id": r.id, "name": r.name, "is_positive": r.is_positive, "description": r.description}
            for r in session.scalars(stmt.order_by(ReputationReason.name)).all()
        ]


def create_reason(
    engine: Engine,
    *,
    name: str,
    is_positive: bool,
    description: str | None = None,
    actor_id: int,
) -> dict | None:
    """Add a catalogue reason.  Returns None if the name is taken."""
    with Session(engine) as session:
        if session.scalar(select(ReputationReason.id).where(ReputationReason.name == name)):
            return None
        reason = ReputationReason(name=name, is_positive=is_positive, description=description)
        session.add(reason)
        session.flush()
        log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.CREATE,
            target_table="reputation_reasons",
            target_id=reason.id,
            before=None,
            after=row_to_dict(reason),
        )
        session.commit()
        return {"id": reason.id, "name": reason.name, "is_positive": reason.is_positive}


def last_amnesty_at(engine: Engine) -> datetime | None:
    """Most recent amnesty pass, taken from the users it touched."""
    with Session(engine) as session:
        return as_utc(session.scalar(select(func.max(User.reputation_last_decay))))
