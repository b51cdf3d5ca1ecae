"""
tests/test_reputation_ledger.py — Rating Toggle, Limits, Exclusion & Amnesty
=============================================================================
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import NOW, make_user
from warden.database.models import ReputationReason, ReputationRecord, User, UserRole, WhitelistStatus
from warden.engine.outcomes import RatingStatus, ReputationTotals
from warden.services.collaborators import NotificationKind
from warden.services.reputation_ledger import (
    ReputationLedger,
    create_reason,
    last_amnesty_at,
    list_reasons,
)
from warden.services.settings_service import bulk_upsert

LATER = NOW + timedelta(hours=2)


@pytest.fixture
def ledger(db_engine, whitelist, notifier):
    return ReputationLedger(db_engine, whitelist, notifier)


def _user(engine, user_id) -> User:
    with Session(engine) as session:
        user = session.get(User, user_id)
        session.expunge(user)
        return user


def _records(engine, target_id) -> list[ReputationRecord]:
    with Session(engine) as session:
        rows = session.scalars(
            select(ReputationRecord).where(ReputationRecord.target_id == target_id)
        ).all()
        for row in rows:
            session.expunge(row)
        return list(rows)


class TestConstruction:
    def test_collaborators_are_required(self, db_engine, notifier):
        with pytest.raises(ValueError):
            ReputationLedger(db_engine, None, notifier)


class TestRateToggle:
    def test_first_rating_creates_record(self, db_engine, ledger):
        rater, target = make_user(db_engine), make_user(db_engine)
        result = ledger.rate(rater, target, True, now=NOW)
        assert result.status is RatingStatus.CREATED
        assert result.weight == 1.0
        assert result.totals == ReputationTotals(positive=1.0, negative=0.0)
        assert len(_records(db_engine, target)) == 1
        assert _user(db_engine, rater).total_ratings_given == 1

    def test_same_polarity_again_withdraws(self, db_engine, ledger):
        rater, target = make_user(db_engine), make_user(db_engine)
        ledger.rate(rater, target, True, now=NOW)
        result = ledger.rate(rater, target, True, now=LATER)
        assert result.status is RatingStatus.WITHDRAWN
        assert result.totals == ReputationTotals()
        assert _records(db_engine, target) == []

    def test_opposite_polarity_replaces_with_fresh_weight(self, db_engine, ledger):
        rater, target = make_user(db_engine), make_user(db_engine)
        ledger.rate(rater, target, True, now=NOW)
        with Session(db_engine) as session:
            standing = session.get(User, rater)
            standing.reputation_positive, standing.reputation_negative = 8.0, 2.0
            session.commit()

        result = ledger.rate(rater, target, False, reason="griefed my farm", now=LATER)
        assert result.status is RatingStatus.REPLACED
        assert result.weight == pytest.approx(1.4)
        assert result.totals.positive == 0.0
        assert result.totals.negative == pytest.approx(1.4)
        [record] = _records(db_engine, target)
        assert not record.is_positive
        assert record.reason == "griefed my farm"

    def test_weight_is_frozen_at_rating_time(self, db_engine, ledger):
        rater = make_user(db_engine, positive=8.0, negative=2.0)
        target = make_user(db_engine)
        ledger.rate(rater, target, True, now=NOW)
        with Session(db_engine) as session:
            session.get(User, rater).reputation_negative = 50.0
            session.commit()
        [record] = _records(db_engine, target)
        assert record.weight == pytest.approx(1.4)
        assert ledger.aggregate(target).positive == pytest.approx(1.4)

    def test_admin_rating_weighs_more(self, db_engine, ledger):
        admin, target = make_user(db_engine, role=UserRole.ADMIN), make_user(db_engine)
        assert ledger.rate(admin, target, True, now=NOW).weight == 1.5


class TestRateRefusals:
    def test_self_rating(self, db_engine, ledger):
        user = make_user(db_engine)
        assert ledger.rate(user, user, True, now=NOW).status is RatingStatus.SELF_RATING

    def test_unknown_user(self, db_engine, ledger):
        rater = make_user(db_engine)
        assert ledger.rate(rater, 9999, True, now=NOW).status is RatingStatus.USER_NOT_FOUND

    def test_rater_without_vote(self, db_engine, ledger):
        rater = make_user(db_engine, role=UserRole.NEW)
        target = make_user(db_engine)
        assert ledger.rate(rater, target, True, now=NOW).status is RatingStatus.RATER_INELIGIBLE

    def test_target_must_be_member(self, db_engine, ledger):
        rater = make_user(db_engine)
        target = make_user(db_engine, role=UserRole.APPLICANT)
        assert ledger.rate(rater, target, True, now=NOW).status is RatingStatus.TARGET_INELIGIBLE

    def test_cooldown_blocks_quick_changes(self, db_engine, ledger):
        rater, target = make_user(db_engine), make_user(db_engine)
        ledger.rate(rater, target, True, now=NOW)
        result = ledger.rate(rater, target, False, reason="x", now=NOW + timedelta(minutes=10))
        assert result.status is RatingStatus.COOLDOWN
        assert result.retry_after == NOW + timedelta(minutes=60)

    def test_daily_limit(self, db_engine, ledger):
        bulk_upsert(db_engine, [{"key": "reputation.max_daily_ratings", "value": 2}])
        rater = make_user(db_engine)
        targets = [make_user(db_engine) for _ in range(3)]
        assert ledger.rate(rater, targets[0], True, now=NOW).accepted
        assert ledger.rate(rater, targets[1], True, now=NOW).accepted
        assert ledger.rate(rater, targets[2], True, now=NOW).status is RatingStatus.DAILY_LIMIT_EXCEEDED
        tomorrow = NOW + timedelta(days=1)
        assert ledger.rate(rater, targets[2], True, now=tomorrow).accepted

    def test_negative_needs_a_reason(self, db_engine, ledger):
        rater, target = make_user(db_engine), make_user(db_engine)
        assert ledger.rate(rater, target, False, now=NOW).status is RatingStatus.REASON_REQUIRED
        assert ledger.rate(rater, target, False, reason="  ", now=NOW).status is RatingStatus.REASON_REQUIRED

    def test_reason_requirement_can_be_disabled(self, db_engine, ledger):
        bulk_upsert(db_engine, [{"key": "reputation.require_negative_reason", "value": False}])
        rater, target = make_user(db_engine), make_user(db_engine)
        assert ledger.rate(rater, target, False, now=NOW).status is RatingStatus.CREATED

    def test_catalogue_reason_must_match_polarity(self, db_engine, ledger):
        created = create_reason(db_engine, name="Helpful", is_positive=True, actor_id=1)
        rater, target = make_user(db_engine), make_user(db_engine)
        result = ledger.rate(rater, target, False, reason_id=created["id"], now=NOW)
        assert result.status is RatingStatus.UNKNOWN_REASON
        assert ledger.rate(rater, target, True, reason_id=created["id"], now=NOW).accepted


class TestExclusion:
    def _community(self, engine, size: int = 4, **target_kwargs):
        target = make_user(engine, game_name="Griefer42", **target_kwargs)
        raters = [make_user(engine) for _ in range(size - 1)]
        return target, raters

    def test_crossing_threshold_excludes_member(self, db_engine, ledger, whitelist, notifier):
        admin = make_user(db_engine, role=UserRole.ADMIN)
        target, raters = self._community(db_engine)
        # 5 eligible voters; 2.0 negative is 40 % ≥ 30 %.
        first = ledger.rate(raters[0], target, False, reason="griefing", now=NOW)
        assert not first.excluded
        second = ledger.rate(raters[1], target, False, reason="griefing", now=NOW)
        assert second.excluded
        assert second.exclusion.negative_percent == pytest.approx(40.0)

        user = _user(db_engine, target)
        assert user.role == UserRole.APPLICANT
        assert not user.can_vote
        assert user.whitelist_status == WhitelistStatus.REMOVED
        assert whitelist.removed == ["Griefer42"]
        assert NotificationKind.MEMBER_EXCLUDED in notifier.kinds_for(target)
        assert NotificationKind.MEMBER_EXCLUDED_ADMIN in notifier.kinds_for(admin)

    def test_admins_are_never_excluded(self, db_engine, ledger, whitelist):
        target, raters = self._community(db_engine, role=UserRole.ADMIN)
        for rater in raters:
            ledger.rate(rater, target, False, reason="bossy", now=NOW)
        assert _user(db_engine, target).role == UserRole.ADMIN
        assert whitelist.removed == []

    def test_tiny_community_is_exempt(self, db_engine, ledger):
        target, [rater] = self._community(db_engine, size=2)
        result = ledger.rate(rater, target, False, reason="x", now=NOW)
        assert not result.excluded
        assert result.exclusion.skipped == "too_few_voters"

    def test_positive_ratings_do_not_run_exclusion(self, db_engine, ledger):
        target, raters = self._community(db_engine)
        assert ledger.rate(raters[0], target, True, now=NOW).exclusion is None


class TestAmnesty:
    def test_reduces_negative_only(self, db_engine, ledger):
        forgiven = make_user(db_engine, positive=5.0, negative=10.0)
        clean = make_user(db_engine, positive=3.0)

        assert ledger.run_amnesty(now=NOW) == 1
        user = _user(db_engine, forgiven)
        assert user.reputation_negative == pytest.approx(7.0)
        assert user.reputation_positive == 5.0
        assert _user(db_engine, clean).reputation_positive == 3.0
        assert last_amnesty_at(db_engine) == NOW

    def test_reduction_survives_later_ratings(self, db_engine, ledger):
        bulk_upsert(db_engine, [{"key": "reputation.amnesty_reduction_percent", "value": 50}])
        target = make_user(db_engine)
        raters = [make_user(db_engine) for _ in range(9)]
        ledger.rate(raters[0], target, False, reason="x", now=NOW)
        ledger.rate(raters[1], target, False, reason="x", now=NOW)
        ledger.run_amnesty(now=NOW)
        result = ledger.rate(raters[2], target, False, reason="x", now=LATER)
        assert result.totals.negative == pytest.approx(2.0)
        assert ledger.aggregate(target).negative == pytest.approx(3.0)

    def test_no_amnesty_yet(self, db_engine):
        assert last_amnesty_at(db_engine) is None


class TestReasonCatalogue:
    def test_create_and_list(self, db_engine):
        create_reason(db_engine, name="Griefing", is_positive=False, actor_id=7)
        create_reason(db_engine, name="Builder", is_positive=True, actor_id=7)
        assert [r["name"] for r in list_reasons(db_engine)] == ["Builder", "Griefing"]
        assert [r["name"] for r in list_reasons(db_engine, positive=False)] == ["Griefing"]

    def test_duplicate_name_is_refused(self, db_engine):
        assert create_reason(db_engine, name="Griefing", is_positive=False, actor_id=7)
        assert create_reason(db_engine, name="Griefing", is_positive=False, actor_id=7) is None

    def test_inactive_reasons_are_hidden(self, db_engine):
        with Session(db_engine) as session:
            session.add(ReputationReason(name="Old", is_positive=True, active=False))
            session.commit()
        assert list_reasons(db_engine) == []


class TestStats:
    def test_breakdown_groups_negative_reasons(self, db_engine, ledger):
        target = make_user(db_engine)
        raters = [make_user(db_engine) for _ in range(9)]
        ledger.rate(raters[0], target, False, reason="lag machine", now=NOW)
        ledger.rate(raters[1], target, False, reason="lag machine", now=NOW)

        stats = ledger.reputation_stats(target)
        assert stats["negative"] == 2.0
        assert stats["eligible_voters"] == 10
        assert stats["negative_percent"] == 20.0
        assert stats["negative_reasons"] == [{"reason": "lag machine", "count": 2, "weight": 2.0}]

    def test_unknown_user(self, ledger):
        assert ledger.reputation_stats(404) is None
