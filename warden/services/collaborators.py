"""
warden.services.collaborators — External Collaborator Contracts
================================================================

The decision engine and reputation ledger depend on two capabilities
they do not own: reflecting membership onto the game server's whitelist,
and telling people what happened.  Both are required constructor
arguments; the bot refuses to start without them.

Collaborators are called only *after* the transaction that produced the
decision has committed.  Their failures are logged by the caller and
never undo the decision.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class WhitelistSynchronizer(Protocol):
    """Game-server allow-list.  Implementations retry internally."""

    def add_member(self, name: str, uuid: str | None) -> bool: ...

    def remove_member(self, name: str) -> bool: ...

    def list_members(self) -> list[str]: ...


class NotificationKind(enum.StrEnum):
    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_DECIDED = "application_decided"
    APPLICATION_STATUS_CHANGED = "application_status_changed"
    QUESTION_ASKED = "question_asked"
    QUESTION_ANSWERED = "question_answered"
    MEMBER_EXCLUDED = "member_excluded"
    MEMBER_EXCLUDED_ADMIN = "member_excluded_admin"


@dataclass(frozen=True, slots=True)
class NotificationEvent:
    """What happened, with the figures a message renderer needs."""
    kind: NotificationKind
    payload: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Notifier(Protocol):
    """Best-effort delivery of a :class:`NotificationEvent` to a user."""

    def notify(self, user_id: int, event: NotificationEvent) -> None: ...
