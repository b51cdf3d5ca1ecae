"""
warden.database.seed — Default Settings & Reasons Seeder
=========================================================

Baseline voting/reputation settings and a starter reason catalogue,
seeded on first startup so the engine has a complete policy to read.

Idempotent — only inserts keys/names that don't already exist.  Admin
edits are never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from warden.database.models import ReputationReason, Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    "voting.duration_days": (1, "voting", "Voting window length: days"),
    "voting.duration_hours": (0, "voting", "Voting window length: extra hours"),
    "voting.duration_minutes": (0, "voting", "Voting window length: extra minutes"),
    "voting.min_votes": (3, "voting", "Minimum votes required outside small communities"),
    "voting.participation_percent": (
        30, "voting", "Share of eligible voters that must take part",
    ),
    "voting.approval_threshold_percent": (
        60, "voting", "Positive share of cast votes needed to approve",
    ),
    "voting.rejection_threshold_percent": (
        60, "voting", "Negative share of cast votes needed to reject",
    ),
    "voting.small_community_threshold": (
        10, "voting", "Eligible-voter count at or below which quorum rules relax",
    ),
    "reputation.negative_threshold_percent": (
        30, "reputation", "Negative weight, as % of eligible voters, that excludes a member",
    ),
    "reputation.rating_cooldown_minutes": (
        60, "reputation", "Minutes before a rater may change an opinion about the same user",
    ),
    "reputation.max_daily_ratings": (10, "reputation", "Ratings a user may give per UTC day"),
    "reputation.require_negative_reason": (
        True, "reputation", "Negative ratings must cite a reason",
    ),
    "reputation.amnesty_reduction_percent": (
        30, "reputation", "Share of negative reputation forgiven by each amnesty",
    ),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


DEFAULT_REASONS: list[tuple[str, bool, str]] = [
    ("Helpful", True, "Helps other players"),
    ("Builder", True, "Contributes to shared builds"),
    ("Friendly", True, "Pleasant to play with"),
    ("Griefing", False, "Destroys or steals other players' work"),
    ("Toxic behaviour", False, "Insults or harasses other players"),
    ("Cheating", False, "Uses hacked clients or exploits"),
]
"""Each entry is ``(name, is_positive, description)``."""


# ---------------------------------------------------------------------------
# Seeders
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine) -> None:
    """Insert default settings that don't yet exist."""
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            if session.get(Setting, key) is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category,
                    description=desc,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default settings.", inserted)


def seed_reputation_reasons(engine: Engine) -> None:
    """Insert the starter reason catalogue, skipping names already present."""
    with Session(engine) as session:
        existing = set(session.scalars(select(ReputationReason.name)).all())
        missing = [r for r in DEFAULT_REASONS if r[0] not in existing]
        for name, is_positive, desc in missing:
            session.add(ReputationReason(name=name, is_positive=is_positive, description=desc))
        session.commit()

    if missing:
        logger.info("Seeded %d reputation reasons.", len(missing))
