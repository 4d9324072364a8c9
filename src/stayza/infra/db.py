"""PostgreSQL access (psycopg2, raw SQL).

Every unit of work opens its own short transaction:
- txn() for a plain commit-or-rollback block
- run_in_txn() when the block must be re-run after a serialization
  failure or deadlock (the atomic reservation/payment operations)
"""

import logging
import os
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Sequence, TypeVar

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor, parse_dsn

from stayza.errors import StorageConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that mean "another transaction won; try the whole unit again"
RETRYABLE_ERRORS = (pg_errors.SerializationFailure, pg_errors.DeadlockDetected)

DEFAULT_ATTEMPTS = 3
_RETRY_BACKOFF_SECONDS = 0.05


def _dsn_has_password(dsn: str) -> bool:
    return bool(parse_dsn(dsn).get("password"))


def get_conn() -> PgConnection:
    """Open a connection to DATABASE_URL (libpq DSN or URL).

    DB_PASSWORD is passed separately when the DSN has no password, so
    the secret can be mounted apart from the connection string.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")

    db_password = os.environ.get("DB_PASSWORD")
    if db_password and not _dsn_has_password(dsn):
        return psycopg2.connect(dsn, password=db_password)
    return psycopg2.connect(dsn)


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Yield a cursor inside one transaction.

    Commits when the block exits normally and rolls back on any exception.
    A connection opened here is closed on exit; a borrowed ``conn`` is
    left open for its owner.
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()


def run_in_txn(
    fn: Callable[[PgCursor], T],
    *,
    attempts: int = DEFAULT_ATTEMPTS,
) -> T:
    """Run ``fn(cur)`` as one atomic unit, retrying the whole unit on conflict.

    Serialization failures and deadlocks roll the transaction back and
    re-run ``fn`` from scratch on a fresh transaction. Any other exception
    propagates after rollback.

    Args:
        fn: Unit of work. Must not have side effects outside the cursor.
        attempts: Maximum number of tries.

    Returns:
        Whatever ``fn`` returns.

    Raises:
        StorageConflict: If every attempt hit a retryable conflict.
    """
    for attempt in range(1, attempts + 1):
        try:
            with txn() as cur:
                return fn(cur)
        except RETRYABLE_ERRORS as e:
            logger.warning(
                "transaction conflict, retrying",
                extra={"attempt": attempt, "error": type(e).__name__},
            )
            if attempt < attempts:
                time.sleep(_RETRY_BACKOFF_SECONDS * attempt)

    raise StorageConflict(f"Transaction conflict after {attempts} attempts")


def fetchone(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> tuple[Any, ...] | None:
    """Run a query and return its first row (None when empty)."""
    cur.execute(query, params)
    return cur.fetchone()

