"""
warden.services.application_service — Submission, Q&A & Deletion
==================================================================

Everything about an application except deciding it:

- ``submit_application`` creates the requester on first contact and opens
  a vote.  The requester's row is locked while checking for an existing
  open application, so two concurrent submissions cannot both succeed.
- ``ask_question`` / ``answer_question`` let voters quiz an applicant
  while the vote is open.
- ``delete_application`` is the admin-only cascade that removes an
  application together with its votes and questions.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import Session

from warden.constants import MEMBER_ROLES, OPEN_STATUSES, as_utc, is_valid_game_name, offline_uuid, utcnow
from warden.database.models import (
    AdminActionType,
    Application,
    ApplicationStatus,
    Question,
    User,
    UserRole,
    Vote,
)
from warden.engine.outcomes import (
    QuestionResult,
    QuestionStatus,
    SubmissionResult,
    SubmissionStatus,
)
from warden.engine.policy import MembershipPolicy
from warden.services.admin_service import log_admin_action, row_to_dict
from warden.services.collaborators import NotificationEvent, NotificationKind, Notifier
from warden.services.decision_service import safe_notify
from warden.services.retry import run_in_transaction
from warden.services.user_service import get_or_create_user, list_voter_ids
from warden.services.vote_ledger import VoteLedger, ledger_tally, lock_application

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 1000
MAX_QUESTION_LENGTH = 500


def application_to_dict(app: Application, user: User | None = None) -> dict:
    ends = as_utc(app.voting_ends_at)
    decided = as_utc(app.decided_at)
    data = {
        "id": app.id,
        "user_id": app.user_id,
        "game_name": app.game_name,
        "reason": app.reason,
        "status": ApplicationStatus(app.status).value,
        "voting_ends_at": ends.isoformat() if ends else None,
        "votes_positive": app.votes_positive,
        "votes_negative": app.votes_negative,
        "decided_at": decided.isoformat() if decided else None,
        "decision_reason": app.decision_reason,
    }
    if user is not None:
        data["display_name"] = user.display_name
    return data


class ApplicationService:
    """Application lifecycle outside the decision itself."""

    def __init__(self, engine: Engine, ledger: VoteLedger, notifier: Notifier) -> None:
        if notifier is None:
            raise ValueError("ApplicationService requires a notifier")
        self.engine = engine
        self.ledger = ledger
        self.notifier = notifier

    # -------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------
    def submit_application(
        self,
        platform_id: int,
        display_name: str,
        game_name: str,
        reason: str,
        now: datetime | None = None,
    ) -> SubmissionResult:
        game_name = (game_name or "").strip()
        reason = (reason or "").strip()
        if not is_valid_game_name(game_name):
            return SubmissionResult(SubmissionStatus.INVALID_GAME_NAME)
        if not reason:
            return SubmissionResult(SubmissionStatus.REASON_REQUIRED)
        reason = reason[:MAX_REASON_LENGTH]
        now = now or utcnow()

        def _submit(session: Session) -> tuple[SubmissionResult, list[int], dict]:
            user = get_or_create_user(session, platform_id, display_name)
            user = session.get(User, user.id, with_for_update=True, populate_existing=True)
            if user.role in MEMBER_ROLES:
                return SubmissionResult(SubmissionStatus.ALREADY_MEMBER), [], {}

            banned_id = session.scalar(
                select(Application.id).where(
                    Application.user_id == user.id,
                    Application.status == ApplicationStatus.BANNED,
                )
            )
            if banned_id is not None:
                return SubmissionResult(SubmissionStatus.BANNED, application_id=banned_id), [], {}

            open_id = session.scalar(
                select(Application.id).where(
                    Application.user_id == user.id,
                    Application.status.in_(OPEN_STATUSES),
                )
            )
            if open_id is not None:
                return SubmissionResult(SubmissionStatus.ALREADY_OPEN, application_id=open_id), [], {}

            policy = MembershipPolicy.from_session(session)
            ends_at = now + policy.voting_duration
            app = Application(
                user_id=user.id,
                game_name=game_name,
                game_uuid=offline_uuid(game_name),
                reason=reason,
                status=ApplicationStatus.VOTING,
                voting_ends_at=ends_at,
                created_at=now,
            )
            session.add(app)
            user.role = UserRole.APPLICANT
            user.game_name = game_name
            session.flush()

            payload = {
                "application_id": app.id,
                "display_name": user.display_name,
                "game_name": game_name,
                "reason": reason,
                "voting_ends_at": ends_at.isoformat(),
            }
            return (
                SubmissionResult(SubmissionStatus.SUBMITTED, application_id=app.id, voting_ends_at=ends_at),
                list_voter_ids(session, exclude=user.id),
                payload,
            )

        result, voter_ids, payload = run_in_transaction(
            self.engine, _submit, operation="submit_application",
        )
        if result.status is SubmissionStatus.SUBMITTED:
            logger.info(
                "Application %d submitted by %s as %s", result.application_id, display_name, game_name,
            )
            event = NotificationEvent(NotificationKind.APPLICATION_SUBMITTED, payload)
            for voter_id in voter_ids:
                safe_notify(self.notifier, voter_id, event)
        return result

    # -------------------------------------------------------------------
    # Questions
    # -------------------------------------------------------------------
    def ask_question(self, application_id: int, asker_id: int, text: str) -> QuestionResult:
        text = (text or "").strip()[:MAX_QUESTION_LENGTH]
        if not text:
            return QuestionResult(QuestionStatus.EMPTY_TEXT)

        def _ask(session: Session) -> tuple[QuestionResult, int | None]:
            app = session.get(Application, application_id)
            if app is None:
                return QuestionResult(QuestionStatus.APPLICATION_NOT_FOUND), None
            if app.status not in OPEN_STATUSES:
                return QuestionResult(QuestionStatus.APPLICATION_NOT_OPEN), None
            asker = session.get(User, asker_id)
            if asker is None or not asker.can_vote or asker.id == app.user_id:
                return QuestionResult(QuestionStatus.ASKER_INELIGIBLE), None
            question = Question(application_id=application_id, asker_id=asker_id, text=text)
            session.add(question)
            session.flush()
            return QuestionResult(QuestionStatus.ASKED, question_id=question.id), app.user_id

        result, applicant_id = run_in_transaction(self.engine, _ask, operation="ask_question")
        if applicant_id is not None:
            safe_notify(self.notifier, applicant_id, NotificationEvent(
                NotificationKind.QUESTION_ASKED,
                {"application_id": application_id, "question_id": result.question_id, "text": text},
            ))
        return result

    def answer_question(self, question_id: int, applicant_id: int, answer: str) -> QuestionResult:
        answer = (answer or "").strip()[:MAX_REASON_LENGTH]
        if not answer:
            return QuestionResult(QuestionStatus.EMPTY_TEXT, question_id=question_id)

        def _answer(session: Session) -> tuple[QuestionResult, dict | None]:
            question = session.get(Question, question_id, with_for_update=True)
            if question is None:
                return QuestionResult(QuestionStatus.QUESTION_NOT_FOUND), None
            app = session.get(Application, question.application_id)
            if app.user_id != applicant_id:
                return QuestionResult(QuestionStatus.NOT_APPLICANT, question_id), None
            if question.answer is not None:
                return QuestionResult(QuestionStatus.ALREADY_ANSWERED, question_id), None
            question.answer = answer
            question.answered_at = utcnow()
            notice = {
                "asker_id": question.asker_id,
                "application_id": app.id,
                "question_id": question_id,
                "text": question.text,
                "answer": answer,
            }
            return QuestionResult(QuestionStatus.ANSWERED, question_id), notice

        result, notice = run_in_transaction(self.engine, _answer, operation="answer_question")
        if notice is not None:
            safe_notify(self.notifier, notice.pop("asker_id"), NotificationEvent(
                NotificationKind.QUESTION_ANSWERED, notice,
            ))
        return result

    def list_questions(self, application_id: int) -> list[dict]:
        with Session(self.engine) as session:
            rows = session.scalars(
                select(Question)
                .where(Question.application_id == application_id)
                .order_by(Question.id)
            ).all()
            return [
                {
                    "id": q.id,
                    "asker_id": q.asker_id,
                    "text": q.text,
                    "answer": q.answer,
                }
                for q in rows
            ]

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_application(self, application_id: int) -> dict | None:
        with Session(self.engine) as session:
            app = session.get(Application, application_id)
            if app is None:
                return None
            data = application_to_dict(app, app.user)
            tally = ledger_tally(session, application_id)
            data["tally"] = {"positive": tally.positive, "negative": tally.negative}
            return data

    def list_open_applications(self) -> list[dict]:
        with Session(self.engine) as session:
            rows = session.scalars(
                select(Application)
                .where(Application.status.in_(OPEN_STATUSES))
                .order_by(Application.voting_ends_at)
            ).all()
            return [application_to_dict(app, app.user) for app in rows]

    # -------------------------------------------------------------------
    # Admin deletion cascade
    # -------------------------------------------------------------------
    def delete_application(
        self,
        application_id: int,
        *,
        actor_id: int,
        reason: str | None = None,
    ) -> bool:
        """Delete an application with its votes and questions.  Audited."""

        def _delete(session: Session) -> bool:
            app = lock_application(session, application_id)
            if app is None:
                return False
            before = row_to_dict(app)
            votes = session.execute(delete(Vote).where(Vote.application_id == application_id))
            questions = session.execute(
                delete(Question).where(Question.application_id == application_id)
            )
            if app.status in OPEN_STATUSES:
                user = session.get(User, app.user_id)
                if user is not None and user.role == UserRole.APPLICANT:
                    user.role = UserRole.NEW
            session.delete(app)
            log_admin_action(
                session,
                actor_id=actor_id,
                action_type=AdminActionType.DELETE,
                target_table="applications",
                target_id=application_id,
                before=before,
                after=None,
                reason=reason,
            )
            logger.info(
                "Application %d deleted by %d (%d votes, %d questions)",
                application_id, actor_id, votes.rowcount, questions.rowcount,
            )
            return True

        deleted = run_in_transaction(self.engine, _delete, operation="delete_application")
        self.ledger.cache.invalidate_application(application_id)
        return deleted
