"""
warden.engine.policy — MembershipPolicy
========================================

Typed, immutable view over the ``settings`` table.  A fresh policy is
read inside every transaction that evaluates a decision, a rating or an
amnesty, so admin edits take effect on the next evaluation without a
cache to invalidate.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from warden.database.models import Setting

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MembershipPolicy:
    """Every tunable that voting and reputation decisions depend on."""

    voting_duration_days: int = 1
    voting_duration_hours: int = 0
    voting_duration_minutes: int = 0
    min_votes: int = 3
    participation_percent: float = 30.0
    approval_threshold_percent: float = 60.0
    rejection_threshold_percent: float = 60.0
    small_community_threshold: int = 10
    negative_threshold_percent: float = 30.0
    rating_cooldown_minutes: int = 60
    max_daily_ratings: int = 10
    require_negative_reason: bool = True
    amnesty_reduction_percent: float = 30.0

    @property
    def voting_duration(self) -> timedelta:
        return timedelta(
            days=self.voting_duration_days,
            hours=self.voting_duration_hours,
            minutes=self.voting_duration_minutes,
        )

    @property
    def rating_cooldown(self) -> timedelta:
        return timedelta(minutes=self.rating_cooldown_minutes)

    # -------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------
    @classmethod
    def from_session(cls, session: Session) -> MembershipPolicy:
        """Build a policy from the settings rows visible to *session*.

        Missing or unparseable keys fall back to the dataclass defaults.
        """
        rows = session.scalars(select(Setting).where(Setting.key.in_(SETTING_KEYS))).all()
        by_field = {SETTING_KEYS[row.key]: row.value_json for row in rows}

        values: dict[str, object] = {}
        for f in fields(cls):
            raw = by_field.get(f.name)
            if raw is None:
                continue
            try:
                values[f.name] = _coerce(f.type, json.loads(raw))
            except (json.JSONDecodeError, TypeError, ValueError):
                logger.warning("Ignoring malformed setting for %s: %r", f.name, raw)
        return cls(**values)


# Setting key → MembershipPolicy field.  The closed set of keys the
# engine reads; the admin API refuses to write anything else.
SETTING_KEYS: dict[str, str] = {
    "voting.duration_days": "voting_duration_days",
    "voting.duration_hours": "voting_duration_hours",
    "voting.duration_minutes": "voting_duration_minutes",
    "voting.min_votes": "min_votes",
    "voting.participation_percent": "participation_percent",
    "voting.approval_threshold_percent": "approval_threshold_percent",
    "voting.rejection_threshold_percent": "rejection_threshold_percent",
    "voting.small_community_threshold": "small_community_threshold",
    "reputation.negative_threshold_percent": "negative_threshold_percent",
    "reputation.rating_cooldown_minutes": "rating_cooldown_minutes",
    "reputation.max_daily_ratings": "max_daily_ratings",
    "reputation.require_negative_reason": "require_negative_reason",
    "reputation.amnesty_reduction_percent": "amnesty_reduction_percent",
}


def _coerce(type_name: str, value: object) -> object:
    # Annotations are strings under ``from __future__ import annotations``.
    if type_name == "bool":
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if type_name == "int":
        return int(value)  # type: ignore[arg-type]
    if type_name == "float":
        return float(value)  # type: ignore[arg-type]
    return value

