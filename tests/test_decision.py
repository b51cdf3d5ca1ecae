"""
tests/test_decision.py — Pure Decision Function
================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from warden.database.models import ApplicationStatus
from warden.engine.decision import decide, is_small_community, is_voting_closed, required_votes
from warden.engine.outcomes import DecisionReason
from warden.engine.policy import MembershipPolicy

DEFAULT = MembershipPolicy(small_community_threshold=0)


class TestRequiredVotes:
    def test_large_community_uses_min_votes_floor(self):
        policy = MembershipPolicy(min_votes=3, participation_percent=30, small_community_threshold=4)
        assert required_votes(5, policy) == 3

    def test_large_community_percentage_wins_when_higher(self):
        policy = MembershipPolicy(min_votes=3, participation_percent=30, small_community_threshold=10)
        assert required_votes(40, policy) == 12

    def test_small_community_boosts_participation_and_drops_floor(self):
        policy = MembershipPolicy(participation_percent=40, small_community_threshold=5)
        assert is_small_community(4, policy)
        assert required_votes(4, policy) == 3

    def test_small_community_boost_is_capped_at_sixty_percent(self):
        policy = MembershipPolicy(participation_percent=50, small_community_threshold=10)
        assert required_votes(10, policy) == 6

    def test_small_community_floor_is_one(self):
        policy = MembershipPolicy(participation_percent=10, small_community_threshold=10)
        assert required_votes(1, policy) == 1


class TestDecide:
    def test_sufficient_positive_votes_approve(self):
        policy = MembershipPolicy(min_votes=3, approval_threshold_percent=60, small_community_threshold=4)
        d = decide(3, 1, 5, policy)
        assert d.outcome == ApplicationStatus.APPROVED
        assert d.reason == DecisionReason.APPROVAL_THRESHOLD_MET
        assert d.positive_percent == 75.0
        assert d.required_votes == 3

    def test_too_few_votes_expire(self):
        policy = MembershipPolicy(min_votes=3, approval_threshold_percent=60, small_community_threshold=4)
        d = decide(1, 0, 5, policy)
        assert d.outcome == ApplicationStatus.EXPIRED
        assert d.reason == DecisionReason.INSUFFICIENT_PARTICIPATION

    def test_everyone_voting_bypasses_participation_floor(self):
        policy = MembershipPolicy(min_votes=5, small_community_threshold=0)
        d = decide(2, 0, 2, policy)
        assert d.required_votes == 5
        assert d.outcome == ApplicationStatus.APPROVED

    def test_negative_majority_rejects(self):
        d = decide(1, 3, 5, MembershipPolicy(min_votes=3, small_community_threshold=0))
        assert d.outcome == ApplicationStatus.REJECTED
        assert d.reason == DecisionReason.REJECTION_THRESHOLD_MET

    def test_split_vote_has_no_clear_majority(self):
        d = decide(2, 2, 5, MembershipPolicy(min_votes=3, small_community_threshold=0))
        assert d.outcome == ApplicationStatus.EXPIRED
        assert d.reason == DecisionReason.NO_CLEAR_MAJORITY

    def test_exact_threshold_counts_as_met(self):
        d = decide(3, 2, 5, MembershipPolicy(min_votes=3, approval_threshold_percent=60,
                                               small_community_threshold=0))
        assert d.outcome == ApplicationStatus.APPROVED

    @pytest.mark.parametrize("eligible", [0, 1, 5, 50])
    def test_zero_votes_never_approve(self, eligible):
        d = decide(0, 0, eligible, DEFAULT)
        assert d.outcome == ApplicationStatus.EXPIRED
        assert d.positive_percent == 0.0
        assert d.negative_percent == 0.0

    def test_is_deterministic(self):
        policy = MembershipPolicy(min_votes=2, small_community_threshold=3)
        assert decide(4, 3, 9, policy) == decide(4, 3, 9, policy)


class TestVotingClosed:
    ENDS = datetime(2026, 1, 1, tzinfo=UTC)

    def test_open_before_deadline(self):
        assert not is_voting_closed(self.ENDS - timedelta(seconds=1), self.ENDS, 2, 5)

    def test_closed_at_deadline(self):
        assert is_voting_closed(self.ENDS, self.ENDS, 0, 5)

    def test_closed_early_when_everyone_voted(self):
        assert is_voting_closed(self.ENDS - timedelta(hours=3), self.ENDS, 5, 5)

    def test_empty_community_never_closes_early(self):
        assert not is_voting_closed(self.ENDS - timedelta(hours=3), self.ENDS, 0, 0)
