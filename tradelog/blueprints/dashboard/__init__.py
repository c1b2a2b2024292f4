from flask import Blueprint

from ...security.access_guard import guard_dashboard

bp = Blueprint("dashboard", __name__)

# Every dashboard page passes through the coarse subscription gate
bp.before_request(guard_dashboard)

from . import routes  # noqa: E402,F401 (import after bp to avoid circulars)
