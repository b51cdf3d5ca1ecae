"""
warden.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- users               — Community identities (platform id, role, reputation sums)
- applications        — Membership requests and their voting window
- votes               — One ballot per (application, voter)
- questions           — Voter questions on open applications, with answers
- reputation_reasons  — Catalogue of named rating reasons
- reputation_records  — One standing opinion per (rater, target), frozen weight
- settings            — Key/value policy tuning, edited by admins
- admin_log           — Append-only audit trail
- pending_notifications — Outbox for notifications raised outside the bot
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Warden ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class UserRole(enum.StrEnum):
    NEW = "new"
    APPLICANT = "applicant"
    MEMBER = "member"
    ADMIN = "admin"


class ApplicationStatus(enum.StrEnum):
    """Application lifecycle.  PENDING/VOTING accept votes; the rest are final."""
    PENDING = "pending"
    VOTING = "voting"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    BANNED = "banned"


class Ballot(enum.StrEnum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


class WhitelistStatus(enum.StrEnum):
    """Last known state of the user on the game server's allow-list."""
    NOT_ADDED = "not_added"
    ADDED = "added"
    REMOVED = "removed"
    SYNC_FAILED = "sync_failed"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    STATUS_OVERRIDE = "STATUS_OVERRIDE"
    GRANT_VOTE = "GRANT_VOTE"
    REVOKE_VOTE = "REVOKE_VOTE"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


# ---------------------------------------------------------------------------
# Users — one row per community identity
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    platform_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    game_name: Mapped[str | None] = mapped_column(String(16), default=None)
    game_uuid: Mapped[str | None] = mapped_column(String(36), default=None)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role_enum", values_callable=_enum_values),
        default=UserRole.NEW,
        nullable=False,
    )
    can_vote: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reputation_positive: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    reputation_negative: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    reputation_last_decay: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    whitelist_status: Mapped[WhitelistStatus] = mapped_column(
        Enum(WhitelistStatus, name="whitelist_status_enum", values_callable=_enum_values),
        default=WhitelistStatus.NOT_ADDED,
        nullable=False,
    )
    total_ratings_given: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_rating_given_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    applications: Mapped[list[Application]] = relationship(back_populates="user")

    __table_args__ = (
        Index("ix_users_can_vote", "can_vote"),
        Index("ix_users_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.display_name!r} role={self.role}>"


# Columns an admin (or the engine) may change through partial updates.
USER_UPDATABLE_FIELDS: frozenset[str] = frozenset({
    "display_name",
    "game_name",
    "game_uuid",
    "role",
    "can_vote",
})


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------
class Application(Base):
    __tablename__ = "applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    game_name: Mapped[str] = mapped_column(String(16), nullable=False)
    game_uuid: Mapped[str | None] = mapped_column(String(36), default=None)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus, name="application_status_enum", values_callable=_enum_values),
        default=ApplicationStatus.VOTING,
        nullable=False,
    )
    voting_ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    votes_positive: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    votes_negative: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    decision_reason: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped[User] = relationship(back_populates="applications")
    votes: Mapped[list[Vote]] = relationship(
        back_populates="application", cascade="all, delete-orphan", passive_deletes=True
    )
    questions: Mapped[list[Question]] = relationship(
        back_populates="application", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint("votes_positive >= 0", name="ck_applications_votes_positive"),
        CheckConstraint("votes_negative >= 0", name="ck_applications_votes_negative"),
        Index("ix_applications_status_ends", "status", "voting_ends_at"),
        Index("ix_applications_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Application id={self.id} user={self.user_id} status={self.status}>"


# ---------------------------------------------------------------------------
# Votes — immutable ballots
# ---------------------------------------------------------------------------
class Vote(Base):
    __tablename__ = "votes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    application_id: Mapped[int] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"), nullable=False
    )
    voter_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    ballot: Mapped[Ballot] = mapped_column(
        Enum(Ballot, name="ballot_enum", values_callable=_enum_values), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    application: Mapped[Application] = relationship(back_populates="votes")

    __table_args__ = (
        UniqueConstraint("application_id", "voter_id", name="uq_votes_application_voter"),
        Index("ix_votes_voter", "voter_id"),
    )

    def __repr__(self) -> str:
        return f"<Vote app={self.application_id} voter={self.voter_id} {self.ballot}>"


# ---------------------------------------------------------------------------
# Questions — Q&A on open applications
# ---------------------------------------------------------------------------
class Question(Base):
    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    application_id: Mapped[int] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"), nullable=False
    )
    asker_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str | None] = mapped_column(Text, default=None)
    answered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    application: Mapped[Application] = relationship(back_populates="questions")

    __table_args__ = (
        Index("ix_questions_application", "application_id"),
    )


# ---------------------------------------------------------------------------
# Reputation
# ---------------------------------------------------------------------------
class ReputationReason(Base):
    """Named reason a rater can cite instead of free text."""
    __tablename__ = "reputation_reasons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    is_positive: Mapped[bool] = mapped_column(Boolean, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ReputationRecord(Base):
    """A rater's single standing opinion about a target.

    ``weight`` is computed from the rater's standing when the opinion is
    cast (or replaced) and never recomputed afterwards.
    """
    __tablename__ = "reputation_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rater_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    target_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    is_positive: Mapped[bool] = mapped_column(Boolean, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, default=None)
    reason_id: Mapped[int | None] = mapped_column(
        ForeignKey("reputation_reasons.id", ondelete="SET NULL"), default=None
    )
    weight: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("rater_id", "target_id", name="uq_reputation_rater_target"),
        CheckConstraint("rater_id <> target_id", name="ck_reputation_not_self"),
        CheckConstraint("weight > 0", name="ck_reputation_weight_positive"),
        Index("ix_reputation_target", "target_id", "is_positive"),
        Index("ix_reputation_rater_created", "rater_id", "created_at"),
    )

    def __repr__(self) -> str:
        sign = "+" if self.is_positive else "-"
        return f"<ReputationRecord {self.rater_id}→{self.target_id} {sign}{self.weight}>"


# ---------------------------------------------------------------------------
# Settings — key/value policy store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Every voting and reputation knob lives here so admins can adjust values
    without redeploying.  Values are stored as JSON strings; the typed view
    is :class:`~warden.engine.policy.MembershipPolicy`.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"


# ---------------------------------------------------------------------------
# PendingNotification — cross-process outbox
# ---------------------------------------------------------------------------
class PendingNotification(Base):
    """Notification raised outside the bot process (e.g. by the admin API).

    The bot drains undelivered rows and sends them as direct messages.
    """
    __tablename__ = "pending_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_pending_notifications_undelivered", "delivered_at", "id"),
    )
