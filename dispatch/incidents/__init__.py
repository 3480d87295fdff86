"""Blueprint for the citizen incidents API.

A citizen opens an incident, keeps pushing location pings while it is open,
may cancel it, and can re-read its full state after a reconnect. Every route
checks that the caller owns the incident.

Registered in ``dispatch/__init__.py`` under ``/api/incidents``.
"""

from flask import Blueprint

bp = Blueprint('incidents', __name__, url_prefix='/api/incidents')

from . import routes  # noqa: E402,F401
