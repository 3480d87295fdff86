"""Unit of work for dispatch commands.

A command reads, guards and mutates rows and appends its events inside one
transaction. Side effects that must only happen once the data is durable
(real-time fan-out, audit rows, push notifications) are registered with
:meth:`UnitOfWork.after_commit` and run after a successful commit; a failing
callback is logged and never reaches the caller.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Tuple

from sqlalchemy.exc import InterfaceError, OperationalError

from ..errors import UnavailableError
from ..extensions import db

logger = logging.getLogger(__name__)


class UnitOfWork:
    def __init__(self) -> None:
        self._callbacks: List[Tuple[Callable[..., Any], tuple, dict]] = []

    def after_commit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self._callbacks.append((fn, args, kwargs))

    def run_callbacks(self) -> None:
        callbacks, self._callbacks = self._callbacks, []
        for fn, args, kwargs in callbacks:
            try:
                fn(*args, **kwargs)
            except Exception:
                logger.warning("after-commit callback %r failed", getattr(fn, "__qualname__", fn), exc_info=True)


@contextmanager
def unit_of_work() -> Iterator[UnitOfWork]:
    """Run a block atomically: commit on success, roll back on any error.

    Storage-level failures (lost connection, lock timeout) surface as
    UnavailableError; the whole command is safe to retry.
    """
    uow = UnitOfWork()
    try:
        yield uow
        db.session.commit()
    except (OperationalError, InterfaceError) as exc:
        db.session.rollback()
        logger.warning("storage unavailable, command rolled back: %s", exc)
        raise UnavailableError("storage temporarily unavailable") from exc
    except BaseException:
        db.session.rollback()
        raise
    uow.run_callbacks()
