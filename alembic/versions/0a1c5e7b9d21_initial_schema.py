"""Initial schema: users, applications, votes, questions, reputation, settings, audit, outbox

Revision ID: 0a1c5e7b9d21
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0a1c5e7b9d21"
down_revision = None
branch_labels = None
depends_on = None

user_role_enum = sa.Enum("new", "applicant", "member", "admin", name="user_role_enum")
whitelist_status_enum = sa.Enum(
    "not_added", "added", "removed", "sync_failed", name="whitelist_status_enum",
)
application_status_enum = sa.Enum(
    "pending", "voting", "approved", "rejected", "expired", "banned",
    name="application_status_enum",
)
ballot_enum = sa.Enum("positive", "negative", name="ballot_enum")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("platform_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("game_name", sa.String(16), nullable=True),
        sa.Column("game_uuid", sa.String(36), nullable=True),
        sa.Column("role", user_role_enum, nullable=False),
        sa.Column("can_vote", sa.Boolean(), nullable=False),
        sa.Column("reputation_positive", sa.Float(), nullable=False),
        sa.Column("reputation_negative", sa.Float(), nullable=False),
        sa.Column("reputation_last_decay", sa.DateTime(timezone=True), nullable=True),
        sa.Column("whitelist_status", whitelist_status_enum, nullable=False),
        sa.Column("total_ratings_given", sa.Integer(), nullable=False),
        sa.Column("last_rating_given_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_can_vote", "users", ["can_vote"])
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "applications",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("game_name", sa.String(16), nullable=False),
        sa.Column("game_uuid", sa.String(36), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", application_status_enum, nullable=False),
        sa.Column("voting_ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("votes_positive", sa.Integer(), nullable=False),
        sa.Column("votes_negative", sa.Integer(), nullable=False),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decision_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("votes_positive >= 0", name="ck_applications_votes_positive"),
        sa.CheckConstraint("votes_negative >= 0", name="ck_applications_votes_negative"),
    )
    op.create_index("ix_applications_status_ends", "applications", ["status", "voting_ends_at"])
    op.create_index("ix_applications_user_status", "applications", ["user_id", "status"])

    op.create_table(
        "votes",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "application_id", sa.Integer(),
            sa.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("voter_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ballot", ballot_enum, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("application_id", "voter_id", name="uq_votes_application_voter"),
    )
    op.create_index("ix_votes_voter", "votes", ["voter_id"])

    op.create_table(
        "questions",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "application_id", sa.Integer(),
            sa.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("asker_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("answer", sa.Text(), nullable=True),
        sa.Column("answered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_questions_application", "questions", ["application_id"])

    op.create_table(
        "reputation_reasons",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_positive", sa.Boolean(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
    )

    op.create_table(
        "reputation_records",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("rater_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("target_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_positive", sa.Boolean(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "reason_id", sa.Integer(),
            sa.ForeignKey("reputation_reasons.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("weight", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("rater_id", "target_id", name="uq_reputation_rater_target"),
        sa.CheckConstraint("rater_id <> target_id", name="ck_reputation_not_self"),
        sa.CheckConstraint("weight > 0", name="ck_reputation_weight_positive"),
    )
    op.create_index("ix_reputation_target", "reputation_records", ["target_id", "is_positive"])
    op.create_index("ix_reputation_rater_created", "reputation_records", ["rater_id", "created_at"])

    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_settings_category", "settings", ["category"])

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("actor_id", sa.BigInteger(), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index("ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"])

    op.create_table(
        "pending_notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_pending_notifications_undelivered", "pending_notifications", ["delivered_at", "id"],
    )


def downgrade() -> None:
    op.drop_table("pending_notifications")
    op.drop_table("admin_log")
    op.drop_table("settings")
    op.drop_table("reputation_records")
    op.drop_table("reputation_reasons")
    op.drop_table("questions")
    op.drop_table("votes")
    op.drop_table("applications")
    op.drop_table("users")
    for enum_type in (ballot_enum, application_status_enum, whitelist_status_enum, user_role_enum):
        enum_type.drop(op.get_bind(), checkfirst=True)
