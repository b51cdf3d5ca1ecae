"""
tests/test_whitelist_service.py — RCON Whitelist Collaborator & Reconciler
===========================================================================
The RCON client is replaced through ``client_factory``; no sockets are opened.
"""

from __future__ import annotations

import pytest
from rcon.exceptions import WrongPassword
from sqlalchemy.orm import Session

from conftest import FakeWhitelist, make_user
from warden.database.models import User, UserRole, WhitelistStatus
from warden.services.whitelist_service import (
    RconWhitelistSynchronizer,
    WhitelistCommandError,
    parse_whitelist,
    reconcile_whitelist,
)


class ScriptedClient:
    """Context-manager stand-in for ``rcon.source.Client``.

    Each connection pops the next scripted reply; exceptions are raised.
    """

    def __init__(self, script: list) -> None:
        self.script = script
        self.commands: list[tuple[str, ...]] = []

    def __call__(self, host, port, *, passwd, timeout):
        return self

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def run(self, *command: str) -> str:
        self.commands.append(command)
        reply = self.script.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


def _sync(script: list, sleeps: list[float] | None = None) -> tuple[RconWhitelistSynchronizer, ScriptedClient]:
    client = ScriptedClient(script)
    sync = RconWhitelistSynchronizer(
        "mc.local", 25575, "hunter2",
        client_factory=client,
        sleep=(sleeps.append if sleeps is not None else lambda _s: None),
    )
    return sync, client


class TestRconWhitelist:
    def test_password_required(self):
        with pytest.raises(ValueError):
            RconWhitelistSynchronizer("mc.local", 25575, "")

    def test_add_confirmed(self):
        sync, client = _sync(["Added Steve_01 to the whitelist"])
        assert sync.add_member("Steve_01", "uuid")
        assert client.commands == [("whitelist", "add", "Steve_01")]

    def test_add_already_present_counts_as_success(self):
        sync, _ = _sync(["Player is already whitelisted"])
        assert sync.add_member("Steve_01")

    def test_remove_confirmed(self):
        sync, _ = _sync(["Removed Steve_01 from the whitelist"])
        assert sync.remove_member("Steve_01")

    def test_unexpected_reply_is_failure(self):
        sync, _ = _sync(["That player does not exist"])
        assert not sync.add_member("Steve_01")

    def test_connection_errors_are_retried(self):
        sleeps: list[float] = []
        sync, client = _sync([ConnectionRefusedError(), TimeoutError(), "Added Steve_01 to the whitelist"], sleeps)
        assert sync.add_member("Steve_01")
        assert len(client.commands) == 3
        assert sleeps == [2.0, 4.0]

    def test_unreachable_server_reports_failure(self):
        sync, _ = _sync([OSError(), OSError(), OSError()])
        assert not sync.add_member("Steve_01")
        with pytest.raises(WhitelistCommandError):
            _sync([OSError(), OSError(), OSError()])[0].run("whitelist", "list")

    def test_wrong_password_is_not_retried(self):
        sync, client = _sync([WrongPassword()])
        assert not sync.remove_member("Steve_01")
        assert len(client.commands) == 1

    def test_list_members(self):
        sync, _ = _sync(["There are 3 whitelisted player(s): Alice, Bob, Steve_01"])
        assert sync.list_members() == ["Alice", "Bob", "Steve_01"]


class TestParseWhitelist:
    def test_legacy_format(self):
        assert parse_whitelist("White-listed players (2):\nAlice and Bob") == ["Alice", "Bob"]

    def test_empty(self):
        assert parse_whitelist("There are no whitelisted players") == []


class TestReconcileWhitelist:
    def test_repairs_drift_but_keeps_manual_entries(self, db_engine):
        missing = make_user(db_engine, game_name="Alice")
        leftover = make_user(db_engine, role=UserRole.APPLICANT, game_name="Bob")
        never_added = make_user(db_engine, role=UserRole.NEW, game_name="Carl")
        with Session(db_engine) as session:
            session.get(User, leftover).whitelist_status = WhitelistStatus.ADDED
            session.commit()

        whitelist = FakeWhitelist(members=["Bob", "Carl", "ServerOwner"])
        result = reconcile_whitelist(db_engine, whitelist)

        assert result == {"added": ["Alice"], "removed": ["Bob"], "failed": []}
        assert whitelist.members == ["Carl", "ServerOwner", "Alice"]
        with Session(db_engine) as session:
            assert session.get(User, missing).whitelist_status == WhitelistStatus.ADDED
            assert session.get(User, leftover).whitelist_status == WhitelistStatus.REMOVED
            assert session.get(User, never_added).whitelist_status == WhitelistStatus.NOT_ADDED

    def test_failures_are_reported(self, db_engine):
        make_user(db_engine, game_name="Alice")
        result = reconcile_whitelist(db_engine, FakeWhitelist(fail=True))
        assert result["failed"] == ["Alice"]

    def test_names_compare_case_insensitively(self, db_engine):
        make_user(db_engine, game_name="Alice")
        whitelist = FakeWhitelist(members=["alice"])
        assert reconcile_whitelist(db_engine, whitelist) == {"added": [], "removed": [], "failed": []}
