"""Alembic environment for the dispatch schema.

The database URL comes from ``DATABASE_URI`` (or ``DATABASE_URL``), then from
``sqlalchemy.url`` in alembic.ini, and finally from the application defaults
in :class:`dispatch.config.Config`, so ``alembic upgrade head`` targets the
same database the app would open.
"""

from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from sqlalchemy import create_engine, pool

from alembic import context

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

config = context.config

if config.config_file_name is not None and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def _database_url() -> str:
    url = os.environ.get("DATABASE_URI") or os.environ.get("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    if url:
        return url
    from dispatch.config import Config

    return Config.SQLALCHEMY_DATABASE_URI


def _metadata():
    from dispatch import models  # noqa: F401
    from dispatch.extensions import db

    return db.metadata


def run_migrations_offline() -> None:
    url = _database_url()
    context.configure(
        url=url,
        target_metadata=_metadata(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = config.attributes.get("connection")
    if connectable is None:
        connectable = create_engine(_database_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=_metadata(),
            compare_type=True,
            # SQLite cannot ALTER most constraints in place.
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
