"""Dashboard blueprint setup."""
from __future__ import annotations

from flask import Blueprint


dashboard_bp = Blueprint("dashboard", __name__)


from . import routes  # noqa: E402  # pylint: disable=wrong-import-position

__all__ = ["dashboard_bp"]
