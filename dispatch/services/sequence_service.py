"""Year-scoped folio sequences.

``next_value`` is a single atomic increment-and-read on the ``id_counters``
row: an ``INSERT ... ON CONFLICT DO UPDATE ... RETURNING`` upsert where the
dialect supports it, an ``UPDATE value = value + 1`` (row lock) with a
savepoint-guarded first insert elsewhere. It runs in the caller's transaction,
so the folio and the incident that uses it commit or roll back together.
No in-process cache: several engine processes share the same counter rows.
"""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import IdCounter

FOLIO_PREFIX = "INC"

_counters = IdCounter.__table__


def format_folio(year: int, seq: int) -> str:
    """``format_folio(2025, 1) == "INC-2025-000001"``; longer numbers are kept whole."""
    return f"{FOLIO_PREFIX}-{int(year)}-{int(seq):06d}"


def _dialect_insert():
    name = db.session.get_bind().dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


def _where(counter_name: str, year: int):
    return (_counters.c.name == counter_name) & (_counters.c.year == year)


def next_value(counter_name: str, year: int) -> int:
    """Increment the ``(counter_name, year)`` counter and return the new value."""
    insert = _dialect_insert()
    if insert is not None:
        stmt = (
            insert(_counters)
            .values(name=counter_name, year=year, value=1)
            .on_conflict_do_update(
                index_elements=[_counters.c.name, _counters.c.year],
                set_={"value": _counters.c.value + 1},
            )
            .returning(_counters.c.value)
        )
        return int(db.session.execute(stmt).scalar_one())

    bump = update(_counters).where(_where(counter_name, year)).values(value=_counters.c.value + 1)
    if db.session.execute(bump).rowcount == 0:
        try:
            with db.session.begin_nested():
                db.session.execute(_counters.insert().values(name=counter_name, year=year, value=1))
            return 1
        except IntegrityError:
            # Someone created the row first; their row is now locked-incrementable.
            db.session.execute(bump)
    return int(db.session.execute(select(_counters.c.value).where(_where(counter_name, year))).scalar_one())


def next_folio(counter_name: str, year: int) -> str:
    return format_folio(year, next_value(counter_name, year))
