"""Flask extension objects.

Extensions live in their own module so that models, services and blueprints
can import them without pulling in the application factory (no circular
imports, easier testing).
"""

from __future__ import annotations

from flask import Flask
from flask_sock import Sock
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

# Bound to an application in create_app() (see dispatch/__init__.py).
db = SQLAlchemy()
sock = Sock()


def _serialize_sqlite_writes(engine: Engine, busy_timeout_sec: float) -> None:
    """Make every SQLite transaction take the write lock up front.

    SQLite ignores ``SELECT ... FOR UPDATE``. Starting each transaction with
    ``BEGIN IMMEDIATE`` gives the same read-guard-write serialization that
    row locks give on PostgreSQL; concurrent writers wait on the busy timeout.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record):
        # pysqlite must not emit its own BEGIN, SQLAlchemy does it below.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout_sec * 1000)}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_extensions(app: Flask) -> None:
    """Init all Flask extensions in one place."""
    db.init_app(app)
    sock.init_app(app)

    with app.app_context():
        engine = db.engine
        if engine.url.get_backend_name() == "sqlite":
            _serialize_sqlite_writes(engine, float(app.config.get("SQLITE_BUSY_TIMEOUT_SEC", 30)))
