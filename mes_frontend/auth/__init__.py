"""Authentication blueprint setup."""
from __future__ import annotations

from flask import Blueprint


auth_bp = Blueprint("auth", __name__)


from . import routes  # noqa: E402  # pylint: disable=wrong-import-position
from .tokens import roles_required  # noqa: E402

__all__ = ["auth_bp", "roles_required"]
