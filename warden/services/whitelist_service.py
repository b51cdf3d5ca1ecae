"""
warden.services.whitelist_service — Game-Server Whitelist over RCON
====================================================================

:class:`RconWhitelistSynchronizer` implements the
:class:`~warden.services.collaborators.WhitelistSynchronizer` contract by
sending ``whitelist add|remove|list`` commands over the Source RCON
protocol (via the ``rcon`` library).

Connection failures and timeouts are retried (3 attempts, waiting
2 s, 4 s between them).  A wrong password is not retried.  Every public
method returns a plain ``bool`` / ``list``; nothing raises to the engine.

:func:`reconcile_whitelist` is the sweep that repairs drift between the
``users`` table and the server list, e.g. after the server was offline
when a decision was made.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable

from rcon.exceptions import EmptyResponse, WrongPassword
from rcon.source import Client
from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from warden.constants import MEMBER_ROLES
from warden.database.models import User, WhitelistStatus
from warden.services.decision_service import sync_whitelist

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
RETRY_STEP_SECONDS = 2.0

_ADD_OK_MARKERS = ("to the whitelist", "already whitelisted")
_REMOVE_OK_MARKERS = ("from the whitelist", "not whitelisted")
_LIST_PATTERN = re.compile(
    r"(?:There are \d+ whitelisted players?(?:\(s\))?:|White-listed players \(\d+\):)\s*(.+)",
    re.IGNORECASE | re.DOTALL,
)

_RETRYABLE = (OSError, TimeoutError, EmptyResponse)


class WhitelistCommandError(RuntimeError):
    """The console could not be reached after every attempt."""


class RconWhitelistSynchronizer:
    """Whitelist collaborator backed by the server's remote console."""

    def __init__(
        self,
        host: str,
        port: int,
        password: str,
        *,
        timeout: float = 5.0,
        attempts: int = DEFAULT_ATTEMPTS,
        client_factory: Callable[..., Client] = Client,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not password:
            raise ValueError("RCON password is required")
        self.host = host
        self.port = port
        self._password = password
        self._timeout = timeout
        self._attempts = attempts
        self._client_factory = client_factory
        self._sleep = sleep

    # -------------------------------------------------------------------
    # Contract
    # -------------------------------------------------------------------
    def add_member(self, name: str, uuid: str | None = None) -> bool:
        response = self._safe_run("whitelist", "add", name)
        ok = response is not None and _contains_any(response, _ADD_OK_MARKERS)
        if ok:
            logger.info("Whitelisted %s (%s)", name, uuid or "no uuid")
        else:
            logger.warning("Whitelist add for %s not confirmed: %r", name, response)
        return ok

    def remove_member(self, name: str) -> bool:
        response = self._safe_run("whitelist", "remove", name)
        ok = response is not None and _contains_any(response, _REMOVE_OK_MARKERS)
        if ok:
            logger.info("Removed %s from whitelist", name)
        else:
            logger.warning("Whitelist remove for %s not confirmed: %r", name, response)
        return ok

    def list_members(self) -> list[str]:
        response = self._safe_run("whitelist", "list")
        return parse_whitelist(response or "")

    # -------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------
    def _safe_run(self, *command: str) -> str | None:
        try:
            return self.run(*command)
        except (WhitelistCommandError, WrongPassword):
            logger.exception("RCON command %r failed", " ".join(command))
            return None

    def run(self, *command: str) -> str:
        """Send one console command, retrying connection failures."""
        last_error: BaseException | None = None
        for attempt in range(1, self._attempts + 1):
            try:
                with self._client_factory(
                    self.host, self.port, passwd=self._password, timeout=self._timeout,
                ) as client:
                    return client.run(*command)
            except WrongPassword:
                logger.error("RCON rejected the password for %s:%d", self.host, self.port)
                raise
            except _RETRYABLE as exc:
                last_error = exc
                if attempt == self._attempts:
                    break
                wait = RETRY_STEP_SECONDS * attempt
                logger.warning(
                    "RCON %s:%d attempt %d/%d failed (%s); retrying in %.0fs",
                    self.host, self.port, attempt, self._attempts, exc, wait,
                )
                self._sleep(wait)
        raise WhitelistCommandError(
            f"RCON {self.host}:{self.port} unreachable after {self._attempts} attempts"
        ) from last_error


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(m in lowered for m in markers)


def parse_whitelist(response: str) -> list[str]:
    """Extract player names from a ``whitelist list`` reply."""
    match = _LIST_PATTERN.search(response)
    if not match:
        return []
    return [name.strip() for name in match.group(1).replace(" and ", ", ").split(",") if name.strip()]


# ---------------------------------------------------------------------------
# Drift repair
# ---------------------------------------------------------------------------
def reconcile_whitelist(engine: Engine, whitelist) -> dict:
    """Re-issue adds for members missing from the server and removes for
    known non-members still on it.

    Names the ``users`` table has never seen are left alone, so manual
    server-side entries survive.  Returns
    ``{"added": [...], "removed": [...], "failed": [...]}``.
    """
    on_server = {name.lower() for name in whitelist.list_members()}

    with Session(engine) as session:
        users = session.scalars(select(User).where(User.game_name.is_not(None))).all()
        plan = [
            (u.id, u.game_name, u.game_uuid, u.role in MEMBER_ROLES, u.whitelist_status)
            for u in users
        ]

    added: list[str] = []
    removed: list[str] = []
    failed: list[str] = []
    for user_id, name, game_uuid, is_member, status in plan:
        present = name.lower() in on_server
        if is_member and not present:
            ok = sync_whitelist(engine, whitelist, user_id, "add", name, game_uuid)
            (added if ok else failed).append(name)
        elif not is_member and present and status != WhitelistStatus.NOT_ADDED:
            ok = sync_whitelist(engine, whitelist, user_id, "remove", name)
            (removed if ok else failed).append(name)

    logger.info(
        "Whitelist reconciliation: %d added, %d removed, %d failed",
        len(added), len(removed), len(failed),
    )
    return {"added": added, "removed": removed, "failed": failed}
