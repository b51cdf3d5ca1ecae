"""
warden.constants — Shared Constants & Helpers
==============================================

Single source of truth for the role/status groupings, the in-game name
rules and the offline-mode UUID derivation.  Import from here instead of
duplicating in cogs, services, and the API.
"""

from __future__ import annotations

import hashlib
import re
import uuid
from datetime import UTC, datetime

from warden.database.models import ApplicationStatus, UserRole

# ---------------------------------------------------------------------------
# Role / status groupings
# ---------------------------------------------------------------------------
OPEN_STATUSES: frozenset[ApplicationStatus] = frozenset({
    ApplicationStatus.PENDING,
    ApplicationStatus.VOTING,
})

TERMINAL_STATUSES: frozenset[ApplicationStatus] = frozenset({
    ApplicationStatus.APPROVED,
    ApplicationStatus.REJECTED,
    ApplicationStatus.EXPIRED,
    ApplicationStatus.BANNED,
})

MEMBER_ROLES: frozenset[UserRole] = frozenset({UserRole.MEMBER, UserRole.ADMIN})

# Minimum eligible voters before reputation can exclude anyone.
MIN_ELIGIBLE_FOR_EXCLUSION = 3


# ---------------------------------------------------------------------------
# In-game names
# ---------------------------------------------------------------------------
GAME_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{3,16}$")


def is_valid_game_name(name: str) -> bool:
    """Return True when *name* is a legal in-game player name."""
    return bool(GAME_NAME_PATTERN.fullmatch(name or ""))


def offline_uuid(name: str) -> str:
    """Derive the offline-mode player UUID for *name*.

    The server computes ``md5("OfflinePlayer:" + name)`` and stamps the
    version-3 and RFC 4122 variant bits onto it.
    """
    digest = bytearray(hashlib.md5(f"OfflinePlayer:{name}".encode("utf-8")).digest())
    digest[6] = (digest[6] & 0x0F) | 0x30
    digest[8] = (digest[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(digest)))


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from stores without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def start_of_utc_day(moment: datetime) -> datetime:
    moment = as_utc(moment)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)
