"""
warden.engine.reputation — Weight, Exclusion & Amnesty Math
============================================================

Pure calculations behind the reputation ledger.  The service layer
handles locking and persistence; everything here is a function of its
arguments.
"""

from __future__ import annotations

from warden.constants import MEMBER_ROLES, MIN_ELIGIBLE_FOR_EXCLUSION
from warden.database.models import UserRole
from warden.engine.outcomes import ExclusionCheck

BASE_WEIGHT = 1.0
ADMIN_WEIGHT = 1.5
PROBATION_WEIGHT = 0.7
STANDING_RATIO_THRESHOLD = 0.5
STANDING_BONUS_FACTOR = 0.5


def compute_vote_weight(
    role: UserRole,
    reputation_positive: float,
    reputation_negative: float,
) -> float:
    """Weight a rater's opinion carries, frozen into the record at cast time.

    Admins weigh 1.5.  Otherwise a rater whose positive share of
    reputation exceeds one half weighs ``1 + ratio * 0.5``.  Otherwise a
    rater below full membership weighs 0.7, and everyone else 1.0.
    """
    if role == UserRole.ADMIN:
        return ADMIN_WEIGHT

    total = reputation_positive + reputation_negative
    if total > 0:
        ratio = reputation_positive / total
        if ratio > STANDING_RATIO_THRESHOLD:
            return BASE_WEIGHT + ratio * STANDING_BONUS_FACTOR

    if role != UserRole.MEMBER:
        return PROBATION_WEIGHT
    return BASE_WEIGHT


def evaluate_exclusion(
    target_id: int,
    role: UserRole,
    negative_weight: float,
    eligible_voters: int,
    threshold_percent: float,
) -> ExclusionCheck:
    """Decide whether *target_id* has lost the community's confidence."""
    def _check(should: bool, pct: float, skipped: str | None = None) -> ExclusionCheck:
        return ExclusionCheck(
            target_id=target_id,
            should_exclude=should,
            negative_percent=pct,
            threshold_percent=threshold_percent,
            eligible_voters=eligible_voters,
            skipped=skipped,
        )

    if role == UserRole.ADMIN:
        return _check(False, 0.0, "admin")
    if role not in MEMBER_ROLES:
        return _check(False, 0.0, "not_member")

    negative_percent = negative_weight / eligible_voters * 100 if eligible_voters > 0 else 0.0
    if eligible_voters < MIN_ELIGIBLE_FOR_EXCLUSION:
        return _check(False, negative_percent, "too_few_voters")

    return _check(negative_percent >= threshold_percent, negative_percent)


def apply_amnesty(negative: float, reduction_percent: float) -> float:
    """Forgive *reduction_percent* of *negative*, never going below zero."""
    return max(0.0, negative * (1 - reduction_percent / 100))
