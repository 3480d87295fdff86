"""Blueprint for the operations (dispatcher) API.

Staff only (operator, supervisor, admin): incident commands, the unit
roster, simulations and the audit trail. Registered under ``/api/ops``.
"""

from flask import Blueprint

bp = Blueprint('ops', __name__, url_prefix='/api/ops')

from . import routes  # noqa: E402,F401
