"""Background tasks for fire-and-forget side effects.

A process-wide ThreadPoolExecutor runs work that must not hold up the
command that triggered it (push notifications to citizen devices). Tasks
run outside any Flask context; use :func:`submit_with_app` when the task
needs the app context.

    from .tasks import submit_task
    submit_task(heavy_job, 42)
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from flask import Flask

logger = logging.getLogger(__name__)

_max_workers = int(os.getenv('TASKS_MAX_WORKERS', '4'))
_executor = ThreadPoolExecutor(max_workers=_max_workers, thread_name_prefix='dispatch-task')


def submit_task(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
    """Run ``fn(*args, **kwargs)`` on the pool and return its Future."""
    return _executor.submit(fn, *args, **kwargs)


def submit_with_app(app: Flask, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
    """Like :func:`submit_task`, inside ``app.app_context()``; failures are logged."""

    def _run() -> Any:
        with app.app_context():
            try:
                return fn(*args, **kwargs)
            except Exception:
                logger.warning('background task %s failed', getattr(fn, '__name__', fn), exc_info=True)
                return None

    return submit_task(_run)
