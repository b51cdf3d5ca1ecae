"""
warden.services.reconciliation_service — Vote Tally Reconciliation
===================================================================

Periodic job that validates the cached ``votes_positive`` /
``votes_negative`` counters on ``applications`` against the ``votes``
ledger and corrects drift if found.

How it works:
    1. ``COUNT(*)`` ballots per (application, ballot) from ``votes``.
    2. Compare against the counters stored on each application.
    3. On mismatch, lock the application row and overwrite the counters
       with the ledger count.
    4. Log every correction.

Every ledger write already updates the counters in the same transaction,
so a non-empty correction list points at a manual edit or a bug.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, func, select

from warden.database.engine import get_session
from warden.database.models import Application, Ballot, Vote

logger = logging.getLogger(__name__)


def reconcile_tallies(engine: Engine) -> dict:
    """Validate application counters against the vote ledger and fix drift.

    Returns ``{"checked": N, "corrected": M, "corrections": [...]}``.
    """
    corrections: list[dict] = []

    with get_session(engine) as session:
        truth_rows = session.execute(
            select(Vote.application_id, Vote.ballot, func.count().label("actual"))
            .group_by(Vote.application_id, Vote.ballot)
        ).all()
        truth: dict[int, dict[Ballot, int]] = {}
        for row in truth_rows:
            truth.setdefault(row.application_id, {})[Ballot(row.ballot)] = row.actual

        apps = session.scalars(select(Application).with_for_update()).all()
        for app in apps:
            counts = truth.get(app.id, {})
            actual_pos = counts.get(Ballot.POSITIVE, 0)
            actual_neg = counts.get(Ballot.NEGATIVE, 0)
            if (app.votes_positive, app.votes_negative) == (actual_pos, actual_neg):
                continue

            corrections.append({
                "application_id": app.id,
                "stored": {"positive": app.votes_positive, "negative": app.votes_negative},
                "actual": {"positive": actual_pos, "negative": actual_neg},
            })
            logger.warning(
                "Tally drift on application %d: stored +%d/-%d, ledger +%d/-%d",
                app.id, app.votes_positive, app.votes_negative, actual_pos, actual_neg,
            )
            app.votes_positive = actual_pos
            app.votes_negative = actual_neg

    logger.info(
        "Tally reconciliation complete: checked=%d corrected=%d",
        len(apps), len(corrections),
    )
    return {"checked": len(apps), "corrected": len(corrections), "corrections": corrections}
