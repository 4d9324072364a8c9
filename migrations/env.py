"""Alembic environment for the SQL-only Stayza migrations.

There is no SQLAlchemy metadata (the app uses raw psycopg2), so
autogenerate is unavailable; every revision executes plain SQL.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from migrations.env_helpers import get_database_url

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)


def _run(**configure_kwargs) -> None:
    context.configure(target_metadata=None, **configure_kwargs)
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    # Emit SQL to stdout instead of executing it
    _run(url=get_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
else:
    engine = create_engine(get_database_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        _run(connection=connection)
