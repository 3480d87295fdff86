"""Blueprint realtime.

Routes:

- ``GET /api/realtime/token``: short-lived token for the WebSocket handshake.
- ``GET /api/realtime/stats``: hub diagnostics (staff only).
- ``/ws?token=...``: the WebSocket endpoint (registered on ``sock``).
"""

from flask import Blueprint


bp = Blueprint("realtime", __name__, url_prefix="/api/realtime")


from . import routes  # noqa: E402,F401
