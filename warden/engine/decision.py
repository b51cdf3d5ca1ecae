"""
warden.engine.decision — Application Decision Function
=======================================================

Pure functions only: no database, no clock.  Both the eager path (after
each vote) and the periodic sweep call :func:`decide` with the same
inputs, so the outcome never depends on which path closed the vote.

Decision steps, given the closed tally and the eligible-voter count:

1. A community is *small* when ``eligible <= small_community_threshold``.
2. Small communities require ``min(60, participation * 1.5)`` percent
   participation; others require ``participation`` percent.
3. ``required = max(ceil(eligible * pct / 100), 1 if small else min_votes)``.
4. Neither enough votes nor everyone voted → EXPIRED (insufficient
   participation).
5. Positive share ≥ approval threshold → APPROVED.
6. Negative share ≥ rejection threshold → REJECTED.
7. Otherwise → EXPIRED (no clear majority).

Zero votes give 0 % on both sides and can never approve.
"""

from __future__ import annotations

import math
from datetime import datetime

from warden.database.models import ApplicationStatus
from warden.engine.outcomes import Decision, DecisionReason
from warden.engine.policy import MembershipPolicy

__all__ = ["decide", "required_votes", "is_small_community", "is_voting_closed"]

# Participation ceiling applied to the small-community boost.
SMALL_COMMUNITY_MAX_PARTICIPATION = 60.0
SMALL_COMMUNITY_PARTICIPATION_FACTOR = 1.5


def is_small_community(eligible_voters: int, policy: MembershipPolicy) -> bool:
    return eligible_voters <= policy.small_community_threshold


def required_participation_percent(eligible_voters: int, policy: MembershipPolicy) -> float:
    if is_small_community(eligible_voters, policy):
        return min(
            SMALL_COMMUNITY_MAX_PARTICIPATION,
            policy.participation_percent * SMALL_COMMUNITY_PARTICIPATION_FACTOR,
        )
    return float(policy.participation_percent)


def required_votes(eligible_voters: int, policy: MembershipPolicy) -> int:
    """Votes needed for a valid (non-expired) decision."""
    small = is_small_community(eligible_voters, policy)
    pct = required_participation_percent(eligible_voters, policy)
    floor = 1 if small else policy.min_votes
    return max(math.ceil(eligible_voters * pct / 100), floor)


def decide(
    positive: int,
    negative: int,
    eligible_voters: int,
    policy: MembershipPolicy,
) -> Decision:
    """Return the terminal outcome for a closed vote."""
    total = positive + negative
    small = is_small_community(eligible_voters, policy)
    needed = required_votes(eligible_voters, policy)

    sufficient = total >= needed
    all_voted = total >= eligible_voters

    positive_percent = positive / total * 100 if total else 0.0
    negative_percent = negative / total * 100 if total else 0.0

    def _decision(outcome: ApplicationStatus, reason: DecisionReason) -> Decision:
        return Decision(
            outcome=outcome,
            reason=reason,
            positive=positive,
            negative=negative,
            eligible_voters=eligible_voters,
            required_votes=needed,
            positive_percent=positive_percent,
            negative_percent=negative_percent,
            small_community=small,
        )

    if not sufficient and not all_voted:
        return _decision(ApplicationStatus.EXPIRED, DecisionReason.INSUFFICIENT_PARTICIPATION)

    # Compare in integers so 29/100 is not read as 28.999…%.
    if total and positive * 100 >= policy.approval_threshold_percent * total:
        return _decision(ApplicationStatus.APPROVED, DecisionReason.APPROVAL_THRESHOLD_MET)
    if total and negative * 100 >= policy.rejection_threshold_percent * total:
        return _decision(ApplicationStatus.REJECTED, DecisionReason.REJECTION_THRESHOLD_MET)
    return _decision(ApplicationStatus.EXPIRED, DecisionReason.NO_CLEAR_MAJORITY)


def is_voting_closed(
    now: datetime,
    voting_ends_at: datetime,
    total_votes: int,
    eligible_voters: int,
) -> bool:
    """Voting closes when the window has elapsed or every eligible voter voted."""
    if now >= voting_ends_at:
        return True
    return eligible_voters > 0 and total_votes >= eligible_voters
