"""Bearer token inspection and role gating."""
from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Callable, Iterable
from functools import wraps
from typing import Any, TypeVar

from flask import jsonify

from ..extensions import get_api
from ..models import Role

F = TypeVar("F", bound=Callable[..., Any])


def decode_token_claims(token: str | None) -> dict[str, Any] | None:
    """Return the JWT payload of ``token`` without verifying its signature.

    The backend verifies tokens on every call; the claims are only read to
    decide which endpoints the workstation offers.
    """

    if not token:
        return None
    parts = token.split(".")
    if len(parts) != 3:
        return None
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError):
        return None
    return claims if isinstance(claims, dict) else None


def current_claims() -> dict[str, Any] | None:
    """Return the claims of the token in the local store, if any."""

    return decode_token_claims(get_api().token)


def role_allowed(user_role: str | None, allowed_roles: Iterable[Role]) -> bool:
    """Return whether the provided role string matches the allowed list."""

    try:
        role_enum = Role(user_role)
    except ValueError:
        return False
    return role_enum in set(allowed_roles)


def roles_required(*roles: Role) -> Callable[[F], F]:
    """Reject the request with 401 without a token, 403 for other roles."""

    def decorator(view: F) -> F:
        @wraps(view)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            claims = current_claims()
            if claims is None:
                return jsonify({"error": "Please log in to continue."}), 401
            if not role_allowed(claims.get("role") or Role.OPERATOR.value, roles):
                return jsonify({"error": "Your role does not have access to this page."}), 403
            return view(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
