"""
warden.database.engine — Database Connection & Async Helper
============================================================

Discord bots run on an ``asyncio`` event loop while SQLAlchemy + psycopg2
is **synchronous**.  Every service in :mod:`warden.services` is a plain
synchronous function that takes an ``engine``; cogs call them through
:func:`run_db`, which ships the call to a worker thread so the event loop
stays free.

Usage::

    from warden.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    # Inside an async Cog method:
    result = await run_db(ledger.cast_vote, application_id, voter_id, ballot)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from warden.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def database_url(override: str | None = None) -> str:
    """Resolve the database URL shared by the bot and Alembic.

    An explicit ``DATABASE_URL`` wins over *override* (the ``alembic.ini``
    fallback).  ``postgres://`` URLs from hosting dashboards are rewritten to
    the ``postgresql+psycopg2://`` driver name SQLAlchemy expects.
    """
    url = os.getenv("DATABASE_URL") or override
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )
    if url.startswith("postgres://"):
        url = "postgresql+psycopg2://" + url[len("postgres://"):]
    return url


def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    Pool sizing follows a small community bot:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    Statement and lock waits are capped server-side so a stuck lock
    surfaces as an ``OperationalError`` that the transaction runner can
    retry instead of blocking forever.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = database_url()

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
        connect_args={"options": "-c lock_timeout=5000 -c statement_timeout=15000"},
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables and seed default settings.

    Safe to call on every startup.  In production the schema is managed by
    Alembic (``alembic upgrade head``); ``create_all`` is a safety net for
    dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from warden.database.seed import seed_default_settings, seed_reputation_reasons

    seed_default_settings(engine)
    seed_reputation_reasons(engine)


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(User(platform_id=123, display_name="steve"))
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every DB call in a Cog should go through this wrapper::

        result = await run_db(engine_fn, arg1, arg2)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
