"""
warden.api.deps — FastAPI dependency injection
===============================================

The API runs in its own process, without a gateway connection, so its
notifier is the :class:`~warden.services.notification_service.OutboxNotifier`
and the bot delivers what it queues.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from warden.config import WardenConfig, load_config
from warden.database.engine import create_db_engine
from warden.services.application_service import ApplicationService
from warden.services.collaborators import Notifier, WhitelistSynchronizer
from warden.services.decision_service import DecisionEngine
from warden.services.notification_service import OutboxNotifier
from warden.services.reputation_ledger import ReputationLedger
from warden.services.vote_ledger import VoteLedger
from warden.services.whitelist_service import RconWhitelistSynchronizer

_WEAK_SECRETS = frozenset({
    "warden-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> WardenConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_whitelist() -> WhitelistSynchronizer:
    """RCON collaborator built from config.yaml and ``RCON_PASSWORD``."""
    cfg = get_config()
    password = os.getenv("RCON_PASSWORD", "")
    if not password:
        raise RuntimeError("RCON_PASSWORD is not set; the whitelist cannot be managed without it.")
    return RconWhitelistSynchronizer(
        cfg.rcon_host, cfg.rcon_port, password, timeout=cfg.rcon_timeout_seconds,
    )


def get_notifier(engine: Annotated[Engine, Depends(get_engine)]) -> Notifier:
    return OutboxNotifier(engine)


def get_vote_ledger(engine: Annotated[Engine, Depends(get_engine)]) -> VoteLedger:
    return VoteLedger(engine)


def get_decision_engine(
    engine: Annotated[Engine, Depends(get_engine)],
    ledger: Annotated[VoteLedger, Depends(get_vote_ledger)],
    whitelist: Annotated[WhitelistSynchronizer, Depends(get_whitelist)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
) -> DecisionEngine:
    return DecisionEngine(engine, ledger, whitelist, notifier)


def get_application_service(
    engine: Annotated[Engine, Depends(get_engine)],
    ledger: Annotated[VoteLedger, Depends(get_vote_ledger)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
) -> ApplicationService:
    return ApplicationService(engine, ledger, notifier)


def get_reputation_ledger(
    engine: Annotated[Engine, Depends(get_engine)],
    whitelist: Annotated[WhitelistSynchronizer, Depends(get_whitelist)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
) -> ReputationLedger:
    return ReputationLedger(engine, whitelist, notifier)


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload
