"""
warden.services.vote_ledger — Exactly-Once Application Votes
=============================================================

:class:`VoteLedger` records one ballot per (application, voter) and keeps
the application's cached counters equal to the ledger.

``cast_vote`` runs as one transaction:

1. Lock the application row (``SELECT … FOR UPDATE``) and check it is open.
2. Check the voter may vote on it.
3. Locking read for an existing ballot by this voter.
4. Insert the ballot and bump the counter with a SQL-side increment.

The row lock serializes concurrent casts on the same application, and the
``uq_votes_application_voter`` constraint backs it up: if two inserts
still collide, the loser is reported as ``DUPLICATE_VOTE``.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import Engine, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from warden.constants import OPEN_STATUSES, as_utc, utcnow
from warden.database.models import Application, Ballot, User, Vote
from warden.engine.cache import VoteCache
from warden.engine.outcomes import RetractResult, Tally, VoteResult, VoteStatus
from warden.services.retry import run_in_transaction

logger = logging.getLogger(__name__)


def _counter_column(ballot: Ballot):
    return Application.votes_positive if ballot == Ballot.POSITIVE else Application.votes_negative


def lock_application(session: Session, application_id: int) -> Application | None:
    return session.scalar(
        select(Application).where(Application.id == application_id).with_for_update()
    )


def ledger_tally(session: Session, application_id: int) -> Tally:
    """Count ballots straight from the ledger rows."""
    rows = session.execute(
        select(Vote.ballot, func.count())
        .where(Vote.application_id == application_id)
        .group_by(Vote.ballot)
    ).all()
    counts = {Ballot(ballot): n for ballot, n in rows}
    return Tally(
        positive=counts.get(Ballot.POSITIVE, 0),
        negative=counts.get(Ballot.NEGATIVE, 0),
    )


class VoteLedger:
    """Cast, retract and count application votes."""

    def __init__(self, engine: Engine, cache: VoteCache | None = None) -> None:
        self.engine = engine
        self.cache = cache if cache is not None else VoteCache()

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def cast_vote(
        self,
        application_id: int,
        voter_id: int,
        ballot: Ballot | str,
        now: datetime | None = None,
    ) -> VoteResult:
        ballot = Ballot(ballot)
        now = now or utcnow()

        def _cast(session: Session) -> VoteResult:
            app = lock_application(session, application_id)
            if app is None:
                return VoteResult(VoteStatus.APPLICATION_NOT_FOUND, application_id)
            if app.status not in OPEN_STATUSES or now >= as_utc(app.voting_ends_at):
                return VoteResult(VoteStatus.APPLICATION_NOT_OPEN, application_id)

            voter = session.get(User, voter_id)
            if voter is None or not voter.can_vote or voter.id == app.user_id:
                return VoteResult(VoteStatus.VOTER_INELIGIBLE, application_id)

            existing = session.scalar(
                select(Vote.id)
                .where(Vote.application_id == application_id, Vote.voter_id == voter_id)
                .with_for_update()
            )
            if existing is not None:
                return VoteResult(VoteStatus.DUPLICATE_VOTE, application_id)

            session.add(Vote(
                application_id=application_id,
                voter_id=voter_id,
                ballot=ballot,
                created_at=now,
            ))
            session.flush()
            column = _counter_column(ballot)
            session.execute(
                update(Application)
                .where(Application.id == application_id)
                .values({column: column + 1})
            )
            return VoteResult(VoteStatus.ACCEPTED, application_id, ledger_tally(session, application_id))

        self.cache.invalidate(application_id, voter_id)
        try:
            result = run_in_transaction(self.engine, _cast, operation="cast_vote")
        except IntegrityError:
            if not self._vote_exists(application_id, voter_id):
                raise
            result = VoteResult(VoteStatus.DUPLICATE_VOTE, application_id)

        self.cache.invalidate(application_id, voter_id)
        if result.accepted:
            logger.info(
                "Vote accepted: application=%d voter=%d ballot=%s",
                application_id, voter_id, ballot,
            )
        else:
            logger.debug(
                "Vote refused: application=%d voter=%d status=%s",
                application_id, voter_id, result.status,
            )
        return result

    def retract_vote(self, application_id: int, voter_id: int) -> RetractResult:
        """Withdraw a ballot from an open application."""

        def _retract(session: Session) -> RetractResult:
            app = lock_application(session, application_id)
            if app is None or app.status not in OPEN_STATUSES:
                return RetractResult(removed=False)

            vote = session.scalar(
                select(Vote)
                .where(Vote.application_id == application_id, Vote.voter_id == voter_id)
                .with_for_update()
            )
            if vote is None:
                return RetractResult(removed=False)

            column = _counter_column(Ballot(vote.ballot))
            session.delete(vote)
            session.flush()
            session.execute(
                update(Application)
                .where(Application.id == application_id)
                .values({column: column - 1})
            )
            return RetractResult(removed=True, tally=ledger_tally(session, application_id))

        self.cache.invalidate(application_id, voter_id)
        result = run_in_transaction(self.engine, _retract, operation="retract_vote")
        self.cache.invalidate(application_id, voter_id)
        if result.removed:
            logger.info("Vote retracted: application=%d voter=%d", application_id, voter_id)
        return result

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def tally(self, application_id: int) -> Tally:
        """Authoritative count, always read from the ledger rows."""
        return run_in_transaction(
            self.engine,
            lambda session: ledger_tally(session, application_id),
            operation="tally",
        )

    def get_ballot(self, application_id: int, voter_id: int) -> Ballot | None:
        """The voter's ballot, served from the cache when known."""
        cached = self.cache.get(application_id, voter_id)
        if cached is not None:
            return cached

        generation = self.cache.generation()
        with Session(self.engine) as session:
            ballot = session.scalar(
                select(Vote.ballot)
                .where(Vote.application_id == application_id, Vote.voter_id == voter_id)
            )
        if ballot is not None:
            ballot = Ballot(ballot)
            self.cache.put(application_id, voter_id, ballot, generation)
        return ballot

    def has_voted(self, application_id: int, voter_id: int) -> bool:
        return self.get_ballot(application_id, voter_id) is not None

    def _vote_exists(self, application_id: int, voter_id: int) -> bool:
        with Session(self.engine) as session:
            return session.scalar(
                select(Vote.id)
                .where(Vote.application_id == application_id, Vote.voter_id == voter_id)
            ) is not None
