"""
warden.services.admin_service — Audited Admin Mutations
========================================================

Every admin write follows the same pattern inside one transaction:

  1. Read a "before" snapshot
  2. Apply the change
  3. Write an ``admin_log`` row with before/after snapshots
  4. Commit

Status overrides and application deletion live with the engine that owns
them (:mod:`~warden.services.decision_service`,
:mod:`~warden.services.application_service`) and call
:func:`log_admin_action` from there.
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from warden.database.models import AdminActionType, AdminLog, User
from warden.services.user_service import update_user

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------
def row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        elif isinstance(val, enum.Enum):
            val = val.value
        result[col.name] = val
    return result


def log_admin_action(
    session: Session,
    *,
    actor_id: int,
    action_type: str,
    target_table: str,
    target_id: str | int | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=str(target_id) if target_id is not None else None,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
def set_vote_right(
    engine: Engine,
    user_id: int,
    can_vote: bool,
    *,
    actor_id: int,
    reason: str | None = None,
) -> bool:
    """Explicitly grant or revoke a user's right to vote.  Returns False if
    the user does not exist."""
    with Session(engine) as session:
        user = session.get(User, user_id, with_for_update=True)
        if user is None:
            return False
        before = row_to_dict(user)
        diff = update_user(session, user, {"can_vote": can_vote})
        if diff:
            log_admin_action(
                session,
                actor_id=actor_id,
                action_type=AdminActionType.GRANT_VOTE if can_vote else AdminActionType.REVOKE_VOTE,
                target_table="users",
                target_id=user_id,
                before=before,
                after=row_to_dict(user),
                reason=reason,
            )
        session.commit()
    logger.info("Vote right for user %d set to %s by %d", user_id, can_vote, actor_id)
    return True


# ---------------------------------------------------------------------------
# Audit log reads
# ---------------------------------------------------------------------------
def list_audit_log(
    engine: Engine,
    *,
    target_table: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict]:
    with Session(engine) as session:
        stmt = select(AdminLog).order_by(AdminLog.timestamp.desc(), AdminLog.id.desc())
        if target_table:
            stmt = stmt.where(AdminLog.target_table == target_table)
        rows = session.scalars(stmt.offset(offset).limit(limit)).all()
        return [
            {
                "id": r.id,
                "actor_id": r.actor_id,
                "action_type": r.action_type,
                "target_table": r.target_table,
                "target_id": r.target_id,
                "before": r.before_snapshot,
                "after": r.after_snapshot,
                "reason": r.reason,
                "timestamp": r.timestamp.isoformat() if r.timestamp else None,
            }
            for r in rows
        ]
