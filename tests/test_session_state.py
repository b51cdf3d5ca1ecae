"""
tests/test_session_state.py — Conversational Flow States
=========================================================
"""

from __future__ import annotations

import dataclasses

import pytest

from warden.database.models import Ballot
from warden.engine.session_state import (
    IDLE,
    AwaitingAnswerText,
    AwaitingApplicationName,
    AwaitingApplicationReason,
    AwaitingQuestionText,
    AwaitingRatingReason,
    Idle,
    start_answer,
    start_application,
    start_question,
    start_rating,
)


class TestApplicationFlow:
    def test_name_then_reason(self):
        state = start_application()
        assert isinstance(state, AwaitingApplicationName)
        state = state.with_name("  Steve_01 ")
        assert state == AwaitingApplicationReason(game_name="Steve_01")

    def test_states_are_immutable(self):
        state = AwaitingApplicationReason(game_name="Steve_01")
        with pytest.raises(dataclasses.FrozenInstanceError):
            state.game_name = "Other"


class TestOtherFlows:
    def test_rating_carries_polarity(self):
        negative = start_rating(7, False)
        assert negative == AwaitingRatingReason(target_id=7, polarity=Ballot.NEGATIVE)
        assert not negative.positive
        assert start_rating(7, True).positive

    def test_question_and_answer(self):
        assert start_question(3) == AwaitingQuestionText(application_id=3)
        assert start_answer(9) == AwaitingAnswerText(question_id=9)

    def test_idle_singleton_compares_equal(self):
        assert IDLE == Idle()
