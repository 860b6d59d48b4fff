"""Production recording blueprint setup."""
from __future__ import annotations

from flask import Blueprint


production_bp = Blueprint("production", __name__)


from . import routes  # noqa: E402  # pylint: disable=wrong-import-position

__all__ = ["production_bp"]
