"""Example gunicorn configuration for the dispatch engine.

Run:
    gunicorn -c deploy/gunicorn.conf.py wsgi:app

Every worker process owns its own realtime hub. Set REDIS_URL when running
more than one worker so that events reach WebSocket clients on all of them.
"""

import multiprocessing
import os

bind = os.environ.get("BIND", "0.0.0.0:8000")

workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))

# WebSocket connections hold a thread each (flask-sock), so use gthread.
worker_class = "gthread"
threads = int(os.environ.get("GUNICORN_THREADS", 16))

# Long-lived WebSocket connections must not be killed by the worker timeout.
timeout = 0
graceful_timeout = 30

# Logs go to stdout/stderr (docker/journalctl)
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
