"""
warden.services.retry — Transaction Runner with Bounded Backoff
================================================================

Every mutating entry point runs its body through
:func:`run_in_transaction`: one session, one commit.  Transient store
failures (deadlock, lock-wait timeout, serialization failure, dropped
connection) roll back and retry with exponential backoff plus jitter.
Constraint violations are terminal and propagate unchanged so the caller
can map them to a business outcome.  When retries run out the caller
gets :class:`~warden.engine.outcomes.LedgerUnavailableError`.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from warden.engine.outcomes import LedgerUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
BASE_BACKOFF_SECONDS = 0.1
MAX_BACKOFF_SECONDS = 2.0

# PostgreSQL SQLSTATEs worth another attempt.
RETRYABLE_SQLSTATES: frozenset[str] = frozenset({
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available (lock_timeout)
    "57014",  # query_canceled (statement_timeout)
    "08000",  # connection_exception
    "08003",  # connection_does_not_exist
    "08006",  # connection_failure
})


def is_transient(exc: DBAPIError) -> bool:
    """Return True when *exc* is worth retrying in a fresh transaction."""
    if isinstance(exc, IntegrityError):
        return False
    if exc.connection_invalidated:
        return True
    sqlstate = getattr(exc.orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate in RETRYABLE_SQLSTATES or sqlstate.startswith("08")
    # Drivers without SQLSTATEs (SQLite "database is locked") report
    # contention and lost connections as OperationalError.
    return isinstance(exc, OperationalError)


def backoff_delay(attempt: int) -> float:
    """Exponential backoff with up to 50 % jitter for the given 1-based attempt."""
    backoff = min(BASE_BACKOFF_SECONDS * (2 ** (attempt - 1)), MAX_BACKOFF_SECONDS)
    return backoff + random.uniform(0, backoff * 0.5)


def run_in_transaction(
    engine: Engine,
    body: Callable[[Session], T],
    *,
    operation: str,
    attempts: int = DEFAULT_ATTEMPTS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``body(session)`` and commit, retrying transient failures.

    *body* must be safe to re-run from scratch: it is called once per
    attempt with a brand new session.  Return plain values (dataclasses,
    ints), not ORM instances, since the session is closed afterwards.
    """
    for attempt in range(1, attempts + 1):
        session = Session(engine)
        try:
            result = body(session)
            session.commit()
            return result
        except DBAPIError as exc:
            session.rollback()
            if not is_transient(exc):
                raise
            if attempt == attempts:
                logger.error(
                    "%s: store unavailable after %d attempts (%s)",
                    operation, attempts, exc.__class__.__name__,
                )
                raise LedgerUnavailableError(operation, attempts) from exc
            wait = backoff_delay(attempt)
            logger.warning(
                "%s: transient store error on attempt %d/%d, retrying in %.2fs: %s",
                operation, attempt, attempts, wait, exc.orig,
            )
            sleep(wait)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # attempts < 1
    raise LedgerUnavailableError(operation, attempts)
