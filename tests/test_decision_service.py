"""
tests/test_decision_service.py — Decision Engine Integration
=============================================================
Eager closure, sweep idempotency, admin override and collaborator
failure handling, against in-memory SQLite.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import NOW, FakeNotifier, FakeWhitelist, make_application, make_user, make_voters
from warden.constants import offline_uuid
from warden.database.models import (
    AdminLog,
    Application,
    ApplicationStatus,
    User,
    UserRole,
    WhitelistStatus,
)
from warden.engine.cache import VoteCache
from warden.engine.outcomes import EvaluationStatus, OverrideStatus, VoteStatus
from warden.services.collaborators import NotificationKind
from warden.services.decision_service import DecisionEngine
from warden.services.vote_ledger import VoteLedger


def _engine(db_engine, whitelist, notifier) -> DecisionEngine:
    return DecisionEngine(db_engine, VoteLedger(db_engine, VoteCache()), whitelist, notifier)


@pytest.fixture
def decisions(db_engine, whitelist, notifier):
    return _engine(db_engine, whitelist, notifier)


@pytest.fixture
def applicant(db_engine):
    return make_user(db_engine, role=UserRole.NEW, name="steve")


def _user(engine, user_id) -> User:
    with Session(engine) as session:
        user = session.get(User, user_id)
        session.expunge(user)
        return user


def _status(engine, application_id) -> ApplicationStatus:
    with Session(engine) as session:
        return session.get(Application, application_id).status


class TestConstruction:
    def test_requires_whitelist(self, db_engine, notifier):
        with pytest.raises(ValueError):
            DecisionEngine(db_engine, VoteLedger(db_engine), None, notifier)

    def test_requires_notifier(self, db_engine, whitelist):
        with pytest.raises(ValueError):
            DecisionEngine(db_engine, VoteLedger(db_engine), whitelist, None)


class TestEagerClosure:
    def test_last_eligible_vote_decides_immediately(self, db_engine, decisions, whitelist, notifier, applicant):
        app_id = make_application(db_engine, applicant)
        voters = make_voters(db_engine, 3)

        first = decisions.vote(app_id, voters[0], "positive", now=NOW)
        assert first.evaluation.status is EvaluationStatus.STILL_OPEN
        decisions.vote(app_id, voters[1], "positive", now=NOW)
        last = decisions.vote(app_id, voters[2], "positive", now=NOW)

        assert last.evaluation.status is EvaluationStatus.DECIDED
        assert last.evaluation.outcome == ApplicationStatus.APPROVED
        assert _status(db_engine, app_id) == ApplicationStatus.APPROVED

        user = _user(db_engine, applicant)
        assert user.role == UserRole.MEMBER
        assert user.can_vote
        assert user.game_name == "Steve_01"
        assert user.whitelist_status == WhitelistStatus.ADDED
        assert whitelist.added == [("Steve_01", offline_uuid("Steve_01"))]
        assert NotificationKind.APPLICATION_DECIDED in notifier.kinds_for(applicant)

    def test_refused_vote_skips_evaluation(self, db_engine, decisions, applicant):
        app_id = make_application(db_engine, applicant)
        outsider = make_user(db_engine, role=UserRole.NEW)
        outcome = decisions.vote(app_id, outsider, "positive", now=NOW)
        assert outcome.vote.status is VoteStatus.VOTER_INELIGIBLE
        assert outcome.evaluation is None

    def test_application_does_not_expire_early(self, db_engine, decisions, applicant):
        app_id = make_application(db_engine, applicant)
        make_voters(db_engine, 5)
        result = decisions.evaluate(app_id, now=NOW)
        assert result.status is EvaluationStatus.STILL_OPEN
        assert _status(db_engine, app_id) == ApplicationStatus.VOTING


class TestSweep:
    def test_sweep_closes_expired_and_is_idempotent(self, db_engine, decisions, notifier, applicant):
        app_id = make_application(db_engine, applicant, ends_at=NOW - timedelta(hours=1))
        voters = make_voters(db_engine, 5)
        decisions.ledger.cast_vote(app_id, voters[0], "positive", now=NOW - timedelta(hours=2))

        first = decisions.sweep_expired(now=NOW)
        assert first["checked"] == 1
        assert first["decided"] == 1
        assert first["outcomes"] == {"expired": 1}
        assert _status(db_engine, app_id) == ApplicationStatus.EXPIRED
        assert _user(db_engine, applicant).role == UserRole.NEW

        second = decisions.sweep_expired(now=NOW)
        assert second["checked"] == 0
        assert notifier.kinds_for(applicant).count(NotificationKind.APPLICATION_DECIDED) == 1

    def test_one_failing_application_does_not_stop_the_sweep(self, db_engine, decisions, applicant, monkeypatch):
        broken = make_application(db_engine, applicant, ends_at=NOW - timedelta(hours=2))
        other = make_user(db_engine, role=UserRole.NEW, name="alex")
        healthy = make_application(db_engine, other, ends_at=NOW - timedelta(hours=1))
        real_evaluate = decisions.evaluate

        def _evaluate(application_id, now=None):
            if application_id == broken:
                raise RuntimeError("corrupt row")
            return real_evaluate(application_id, now=now)

        monkeypatch.setattr(decisions, "evaluate", _evaluate)
        result = decisions.sweep_expired(now=NOW)

        assert result["checked"] == 2
        assert result["failed"] == 1
        assert result["decided"] == 1
        assert _status(db_engine, broken) == ApplicationStatus.VOTING
        assert _status(db_engine, healthy) == ApplicationStatus.EXPIRED

    def test_sweep_leaves_open_windows_alone(self, db_engine, decisions, applicant):
        make_application(db_engine, applicant, ends_at=NOW + timedelta(hours=1))
        assert decisions.sweep_expired(now=NOW)["checked"] == 0

    def test_reevaluating_a_decided_application_is_a_noop(self, db_engine, decisions, applicant):
        app_id = make_application(db_engine, applicant, ends_at=NOW - timedelta(hours=1))
        decisions.evaluate(app_id, now=NOW)
        again = decisions.evaluate(app_id, now=NOW)
        assert again.status is EvaluationStatus.ALREADY_DECIDED
        assert again.outcome == ApplicationStatus.EXPIRED

    def test_unknown_application(self, decisions):
        assert decisions.evaluate(404, now=NOW).status is EvaluationStatus.NOT_FOUND


class TestCollaboratorFailures:
    def test_notifier_failure_does_not_undo_decision(self, db_engine, whitelist, applicant):
        decisions = _engine(db_engine, whitelist, FakeNotifier(fail=True))
        app_id = make_application(db_engine, applicant, ends_at=NOW - timedelta(hours=1))
        result = decisions.evaluate(app_id, now=NOW)
        assert result.status is EvaluationStatus.DECIDED
        assert _status(db_engine, app_id) == ApplicationStatus.EXPIRED

    def test_whitelist_failure_is_recorded_for_reconciliation(self, db_engine, notifier, applicant):
        decisions = _engine(db_engine, FakeWhitelist(fail=True), notifier)
        app_id = make_application(db_engine, applicant)
        result = decisions.admin_override(app_id, "approved", actor_id=1, now=NOW)
        assert result.status is OverrideStatus.APPLIED
        user = _user(db_engine, applicant)
        assert user.role == UserRole.MEMBER
        assert user.whitelist_status == WhitelistStatus.SYNC_FAILED


class TestAdminOverride:
    def test_ban_open_application(self, db_engine, decisions, whitelist, notifier, applicant):
        app_id = make_application(db_engine, applicant)
        result = decisions.admin_override(app_id, "banned", actor_id=42, reason="alt account", now=NOW)

        assert result.status is OverrideStatus.APPLIED
        assert result.previous == ApplicationStatus.VOTING
        assert result.current == ApplicationStatus.BANNED
        user = _user(db_engine, applicant)
        assert user.role == UserRole.APPLICANT
        assert not user.can_vote
        assert whitelist.removed == []
        assert NotificationKind.APPLICATION_STATUS_CHANGED in notifier.kinds_for(applicant)

        with Session(db_engine) as session:
            log = session.scalars(select(AdminLog).where(AdminLog.action_type == "STATUS_OVERRIDE")).one()
            assert log.actor_id == 42
            assert log.reason == "alt account"
            assert log.target_id == str(app_id)

    def test_ban_after_approval_removes_from_whitelist(self, db_engine, decisions, whitelist, applicant):
        app_id = make_application(db_engine, applicant)
        decisions.admin_override(app_id, "approved", actor_id=1, now=NOW)
        result = decisions.admin_override(app_id, "banned", actor_id=1, now=NOW)

        assert result.status is OverrideStatus.APPLIED
        assert result.previous == ApplicationStatus.APPROVED
        assert whitelist.removed == ["Steve_01"]
        assert _user(db_engine, applicant).whitelist_status == WhitelistStatus.REMOVED

    def test_final_application_cannot_be_reopened(self, db_engine, decisions, applicant):
        app_id = make_application(db_engine, applicant, status=ApplicationStatus.REJECTED)
        result = decisions.admin_override(app_id, "approved", actor_id=1, now=NOW)
        assert result.status is OverrideStatus.ALREADY_FINAL
        assert _status(db_engine, app_id) == ApplicationStatus.REJECTED

    @pytest.mark.parametrize("status", ["voting", "pending", "nonsense"])
    def test_only_terminal_statuses_can_be_forced(self, db_engine, decisions, applicant, status):
        app_id = make_application(db_engine, applicant)
        assert decisions.admin_override(app_id, status, actor_id=1).status is OverrideStatus.INVALID_STATUS

    def test_same_status_is_unchanged(self, db_engine, decisions, applicant):
        app_id = make_application(db_engine, applicant)
        decisions.admin_override(app_id, "banned", actor_id=1, now=NOW)
        assert decisions.admin_override(app_id, "banned", actor_id=1).status is OverrideStatus.UNCHANGED

    def test_unknown_application(self, decisions):
        assert decisions.admin_override(404, "banned", actor_id=1).status is OverrideStatus.NOT_FOUND
