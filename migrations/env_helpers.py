"""Database URL resolution for Alembic.

Kept out of env.py so it can be tested without an alembic context.
"""

from __future__ import annotations

import os

from psycopg2.extensions import parse_dsn
from sqlalchemy.engine import URL, make_url

_DRIVER = "postgresql+psycopg2"


def _libpq_dsn_to_url(dsn: str) -> URL:
    """Convert a libpq ``key=value`` DSN into a SQLAlchemy URL.

    A socket directory host (``host=/cloudsql/...``) is passed through as
    the ``host`` query parameter.
    """
    params = parse_dsn(dsn)
    host = params.get("host", "localhost")
    query = {}
    if host.startswith("/"):
        query["host"] = host
        host = None

    return URL.create(
        _DRIVER,
        username=params.get("user"),
        password=params.get("password"),
        host=host,
        port=int(params["port"]) if host and params.get("port") else None,
        database=params.get("dbname"),
        query=query,
    )


def get_database_url() -> str:
    """SQLAlchemy URL for DATABASE_URL, with DB_PASSWORD filled in if absent."""
    raw = os.environ.get("DATABASE_URL")
    if not raw:
        raise RuntimeError("DATABASE_URL is required to run migrations")

    if "://" in raw:
        url = make_url(raw)
        if url.drivername in ("postgres", "postgresql"):
            url = url.set(drivername=_DRIVER)
    else:
        url = _libpq_dsn_to_url(raw)

    db_password = os.environ.get("DB_PASSWORD", "")
    if db_password and not url.password:
        url = url.set(password=db_password)

    return url.render_as_string(hide_password=False)
