"""
warden.engine.session_state — Conversational Session State
===========================================================

Multi-step chat flows (apply → name → reason, rate → reason, ask →
text) are modelled as an explicit tagged union of frozen dataclasses.
The chat layer keeps one :data:`SessionState` per user and passes it in;
transitions return a *new* state, nothing is mutated in place.

Example::

    state = start_application()                       # AwaitingApplicationName
    state = state.with_name("Steve_01")               # AwaitingApplicationReason
    name, reason = state.game_name, "I like building"
    # …call ApplicationService.submit_application(…) then reset to IDLE
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias

from warden.database.models import Ballot


@dataclass(frozen=True, slots=True)
class Idle:
    """No flow in progress."""


@dataclass(frozen=True, slots=True)
class AwaitingApplicationName:
    def with_name(self, game_name: str) -> AwaitingApplicationReason:
        return AwaitingApplicationReason(game_name=game_name.strip())


@dataclass(frozen=True, slots=True)
class AwaitingApplicationReason:
    game_name: str


@dataclass(frozen=True, slots=True)
class AwaitingRatingReason:
    target_id: int
    polarity: Ballot

    @property
    def positive(self) -> bool:
        return self.polarity == Ballot.POSITIVE


@dataclass(frozen=True, slots=True)
class AwaitingQuestionText:
    application_id: int


@dataclass(frozen=True, slots=True)
class AwaitingAnswerText:
    question_id: int


SessionState: TypeAlias = (
    Idle
    | AwaitingApplicationName
    | AwaitingApplicationReason
    | AwaitingRatingReason
    | AwaitingQuestionText
    | AwaitingAnswerText
)

IDLE = Idle()


def start_application() -> AwaitingApplicationName:
    return AwaitingApplicationName()


def start_rating(target_id: int, positive: bool) -> AwaitingRatingReason:
    polarity = Ballot.POSITIVE if positive else Ballot.NEGATIVE
    return AwaitingRatingReason(target_id=target_id, polarity=polarity)


def start_question(application_id: int) -> AwaitingQuestionText:
    return AwaitingQuestionText(application_id=application_id)


def start_answer(question_id: int) -> AwaitingAnswerText:
    return AwaitingAnswerText(question_id=question_id)
