"""
tests/test_notifications.py — Message Rendering & Cross-Process Outbox
=======================================================================
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import make_user
from warden.database.models import PendingNotification
from warden.services.collaborators import NotificationEvent, NotificationKind, Notifier
from warden.services.notification_service import OutboxNotifier, claim_pending, render_event

DECIDED = {
    "application_id": 12,
    "status": "approved",
    "reason": "approval_threshold_met",
    "positive": 4,
    "negative": 1,
    "positive_percent": 80.0,
    "negative_percent": 20.0,
    "eligible_voters": 9,
    "required_votes": 3,
}


class TestRenderEvent:
    def test_decision_shows_figures(self):
        text = render_event(NotificationEvent(NotificationKind.APPLICATION_DECIDED, DECIDED))
        assert "#12" in text
        assert "approved" in text
        assert "the community voted to approve it" in text
        assert "9 eligible voters" in text

    def test_override_includes_reason_and_tallies(self):
        text = render_event(NotificationEvent(
            NotificationKind.APPLICATION_STATUS_CHANGED,
            {"application_id": 3, "status": "banned", "reason": "alt account", "positive": 2, "negative": 5},
        ))
        assert "banned" in text
        assert "👍 2 · 👎 5" in text
        assert "Reason: alt account" in text

    def test_exclusion_notice_for_admins(self):
        text = render_event(NotificationEvent(NotificationKind.MEMBER_EXCLUDED_ADMIN, {
            "display_name": "griefer", "game_name": None, "negative_weight": 3.0,
            "negative_percent": 37.5, "eligible_voters": 8, "threshold_percent": 30.0,
        }))
        assert "**griefer** (`?`)" in text
        assert "37.5%" in text

    def test_question_asked(self):
        text = render_event(NotificationEvent(
            NotificationKind.QUESTION_ASKED, {"application_id": 5, "text": "Why here?"},
        ))
        assert "> Why here?" in text


class TestOutbox:
    def test_outbox_satisfies_notifier_contract(self, db_engine):
        assert isinstance(OutboxNotifier(db_engine), Notifier)

    def test_claim_returns_each_event_once(self, db_engine):
        user = make_user(db_engine)
        outbox = OutboxNotifier(db_engine)
        outbox.notify(user, NotificationEvent(NotificationKind.APPLICATION_DECIDED, DECIDED))
        outbox.notify(user, NotificationEvent(NotificationKind.QUESTION_ASKED, {"application_id": 1, "text": "?"}))

        claimed = claim_pending(db_engine)
        assert [(uid, e.kind) for uid, e in claimed] == [
            (user, NotificationKind.APPLICATION_DECIDED),
            (user, NotificationKind.QUESTION_ASKED),
        ]
        assert claimed[0][1].payload == DECIDED
        assert claim_pending(db_engine) == []

        with Session(db_engine) as session:
            rows = session.scalars(select(PendingNotification)).all()
            assert all(row.delivered_at is not None for row in rows)

    def test_claim_respects_limit(self, db_engine):
        user = make_user(db_engine)
        outbox = OutboxNotifier(db_engine)
        for i in range(3):
            outbox.notify(user, NotificationEvent(NotificationKind.QUESTION_ASKED, {"application_id": i, "text": "?"}))
        assert len(claim_pending(db_engine, limit=2)) == 2
        assert len(claim_pending(db_engine, limit=2)) == 1
