"""
warden.engine.outcomes — Typed Results for Every Entry Point
=============================================================

Expected business conditions (ineligible voter, duplicate vote, cooldown,
…) are returned as a status on a small frozen result object so callers
can render "you already voted" rather than a generic error.  Only
:class:`LedgerUnavailableError` is raised, after the transaction runner
has exhausted its retries.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime

from warden.database.models import ApplicationStatus

__all__ = [
    "LedgerUnavailableError",
    "Tally",
    "VoteStatus",
    "VoteResult",
    "RetractResult",
    "DecisionReason",
    "Decision",
    "EvaluationStatus",
    "EvaluationResult",
    "BallotOutcome",
    "OverrideStatus",
    "OverrideResult",
    "RatingStatus",
    "RatingResult",
    "ReputationTotals",
    "ExclusionCheck",
    "SubmissionStatus",
    "SubmissionResult",
    "QuestionStatus",
    "QuestionResult",
]


class LedgerUnavailableError(RuntimeError):
    """The store stayed unreachable (or locked) after every retry."""

    def __init__(self, operation: str, attempts: int) -> None:
        super().__init__(f"{operation} failed after {attempts} attempts")
        self.operation = operation
        self.attempts = attempts


# ---------------------------------------------------------------------------
# Vote ledger
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Tally:
    positive: int = 0
    negative: int = 0

    @property
    def total(self) -> int:
        return self.positive + self.negative


class VoteStatus(enum.StrEnum):
    ACCEPTED = "accepted"
    APPLICATION_NOT_FOUND = "application_not_found"
    APPLICATION_NOT_OPEN = "application_not_open"
    DUPLICATE_VOTE = "duplicate_vote"
    VOTER_INELIGIBLE = "voter_ineligible"


@dataclass(frozen=True, slots=True)
class VoteResult:
    status: VoteStatus
    application_id: int
    tally: Tally | None = None

    @property
    def accepted(self) -> bool:
        return self.status is VoteStatus.ACCEPTED


@dataclass(frozen=True, slots=True)
class RetractResult:
    removed: bool
    tally: Tally | None = None


# ---------------------------------------------------------------------------
# Decision engine
# ---------------------------------------------------------------------------
class DecisionReason(enum.StrEnum):
    APPROVAL_THRESHOLD_MET = "approval_threshold_met"
    REJECTION_THRESHOLD_MET = "rejection_threshold_met"
    INSUFFICIENT_PARTICIPATION = "insufficient_participation"
    NO_CLEAR_MAJORITY = "no_clear_majority"
    ADMIN_OVERRIDE = "admin_override"


@dataclass(frozen=True, slots=True)
class Decision:
    """Output of the pure decision function, with the figures behind it."""
    outcome: ApplicationStatus
    reason: DecisionReason
    positive: int
    negative: int
    eligible_voters: int
    required_votes: int
    positive_percent: float
    negative_percent: float
    small_community: bool

    @property
    def total_votes(self) -> int:
        return self.positive + self.negative


class EvaluationStatus(enum.StrEnum):
    DECIDED = "decided"
    ALREADY_DECIDED = "already_decided"
    STILL_OPEN = "still_open"
    NOT_FOUND = "not_found"


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    status: EvaluationStatus
    application_id: int
    outcome: ApplicationStatus | None = None
    decision: Decision | None = None


@dataclass(frozen=True, slots=True)
class BallotOutcome:
    """A cast vote plus the eager evaluation it triggered, if accepted."""
    vote: VoteResult
    evaluation: EvaluationResult | None = None


class OverrideStatus(enum.StrEnum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    NOT_FOUND = "not_found"
    INVALID_STATUS = "invalid_status"
    ALREADY_FINAL = "already_final"


@dataclass(frozen=True, slots=True)
class OverrideResult:
    status: OverrideStatus
    application_id: int
    previous: ApplicationStatus | None = None
    current: ApplicationStatus | None = None


# ---------------------------------------------------------------------------
# Reputation ledger
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ReputationTotals:
    positive: float = 0.0
    negative: float = 0.0


@dataclass(frozen=True, slots=True)
class ExclusionCheck:
    """Result of the automatic-exclusion policy for one target."""
    target_id: int
    should_exclude: bool
    negative_percent: float
    threshold_percent: float
    eligible_voters: int
    skipped: str | None = None


class RatingStatus(enum.StrEnum):
    CREATED = "created"
    REPLACED = "replaced"
    WITHDRAWN = "withdrawn"
    SELF_RATING = "self_rating"
    USER_NOT_FOUND = "user_not_found"
    RATER_INELIGIBLE = "rater_ineligible"
    TARGET_INELIGIBLE = "target_ineligible"
    COOLDOWN = "cooldown"
    DAILY_LIMIT_EXCEEDED = "daily_limit_exceeded"
    REASON_REQUIRED = "reason_required"
    UNKNOWN_REASON = "unknown_reason"


ACCEPTED_RATING_STATUSES = frozenset({
    RatingStatus.CREATED,
    RatingStatus.REPLACED,
    RatingStatus.WITHDRAWN,
})


@dataclass(frozen=True, slots=True)
class RatingResult:
    status: RatingStatus
    weight: float | None = None
    totals: ReputationTotals | None = None
    exclusion: ExclusionCheck | None = None
    retry_after: datetime | None = None

    @property
    def accepted(self) -> bool:
        return self.status in ACCEPTED_RATING_STATUSES

    @property
    def excluded(self) -> bool:
        return self.exclusion is not None and self.exclusion.should_exclude


# ---------------------------------------------------------------------------
# Applications & questions
# ---------------------------------------------------------------------------
class SubmissionStatus(enum.StrEnum):
    SUBMITTED = "submitted"
    ALREADY_MEMBER = "already_member"
    ALREADY_OPEN = "already_open"
    BANNED = "banned"
    INVALID_GAME_NAME = "invalid_game_name"
    REASON_REQUIRED = "reason_required"


@dataclass(frozen=True, slots=True)
class SubmissionResult:
    status: SubmissionStatus
    application_id: int | None = None
    voting_ends_at: datetime | None = None


class QuestionStatus(enum.StrEnum):
    ASKED = "asked"
    ANSWERED = "answered"
    APPLICATION_NOT_FOUND = "application_not_found"
    APPLICATION_NOT_OPEN = "application_not_open"
    ASKER_INELIGIBLE = "asker_ineligible"
    QUESTION_NOT_FOUND = "question_not_found"
    NOT_APPLICANT = "not_applicant"
    ALREADY_ANSWERED = "already_answered"
    EMPTY_TEXT = "empty_text"


@dataclass(frozen=True, slots=True)
class QuestionResult:
    status: QuestionStatus
    question_id: int | None = None
