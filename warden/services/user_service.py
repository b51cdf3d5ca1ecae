"""
warden.services.user_service — User Lookup & Partial Updates
=============================================================

Users are created on first contact (``get_or_create_user``).  Field
updates go through :func:`update_user`, which only accepts the closed set
in :data:`~warden.database.models.USER_UPDATABLE_FIELDS`.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from warden.database.models import USER_UPDATABLE_FIELDS, User, UserRole

logger = logging.getLogger(__name__)


def get_or_create_user(session: Session, platform_id: int, display_name: str) -> User:
    """Fetch or insert the User for *platform_id*, refreshing its display name."""
    user = session.scalar(select(User).where(User.platform_id == platform_id))
    if user is None:
        user = User(platform_id=platform_id, display_name=display_name, role=UserRole.NEW)
        session.add(user)
        session.flush()
        logger.info("New user %s (%s) created", display_name, platform_id)
    elif display_name and user.display_name != display_name:
        user.display_name = display_name
    return user


def ensure_user(engine: Engine, platform_id: int, display_name: str) -> int:
    """Create-or-refresh the user in its own transaction and return its id."""
    with Session(engine) as session:
        user = get_or_create_user(session, platform_id, display_name)
        session.commit()
        return user.id


def count_eligible_voters(session: Session) -> int:
    """Number of users currently holding the right to vote."""
    return session.scalar(select(func.count()).select_from(User).where(User.can_vote.is_(True))) or 0


def list_admin_ids(session: Session) -> list[int]:
    return list(session.scalars(select(User.id).where(User.role == UserRole.ADMIN)).all())


def list_voter_ids(session: Session, *, exclude: int | None = None) -> list[int]:
    stmt = select(User.id).where(User.can_vote.is_(True))
    if exclude is not None:
        stmt = stmt.where(User.id != exclude)
    return list(session.scalars(stmt).all())


def update_user(session: Session, user: User, changes: dict) -> dict:
    """Apply *changes* to *user* and return the ``{field: (old, new)}`` diff.

    Raises
    ------
    ValueError
        If *changes* names a field outside ``USER_UPDATABLE_FIELDS``.
    """
    unknown = set(changes) - USER_UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")

    diff: dict[str, tuple] = {}
    for name, value in changes.items():
        if name == "role":
            value = UserRole(value)
        old = getattr(user, name)
        if old != value:
            setattr(user, name, value)
            diff[name] = (old, value)
    return diff
