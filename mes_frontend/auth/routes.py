"""Authentication endpoints backed by the MES REST API."""
from __future__ import annotations

from typing import Any

from flask import current_app, jsonify, request

from ..extensions import get_api
from ..models import Role
from ..services.api_client import ApiRequestError
from . import auth_bp
from .tokens import current_claims, decode_token_claims


def _json_payload() -> dict[str, Any] | None:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else None


def _load_profile(token: str) -> dict[str, Any] | None:
    """Fetch the user record named by ``token``; drop the token if unusable."""

    api = get_api()
    claims = decode_token_claims(token) or {}
    user_id = claims.get("userId")
    if user_id is None:
        current_app.logger.warning("Token carries no userId claim; discarding it")
        api.logout()
        return None

    try:
        profile = api.users.get(user_id)
    except ApiRequestError as exc:
        current_app.logger.error("Failed to load profile for user %s: %s", user_id, exc)
        api.logout()
        return None

    if not isinstance(profile, dict):
        api.logout()
        return None
    return profile


def _signed_in_response(token: str, status: int = 200) -> Any:
    """Return the profile for ``token``, refusing locked accounts."""

    profile = _load_profile(token)
    if profile is None:
        return jsonify({"error": "Unable to load your user profile."}), 401
    if profile.get("is_active") is False:
        get_api().logout()
        return jsonify({"error": "Account is locked. Please contact an administrator."}), 403
    return jsonify({"user": profile}), status


@auth_bp.post("/login")
def login() -> Any:
    """Sign in against the backend and return the user profile."""

    payload = _json_payload()
    if payload is None:
        return jsonify({"error": "Invalid payload"}), 400

    username = str(payload.get("username") or "").strip()
    password = str(payload.get("password") or "")
    if not username or not password:
        return jsonify({"error": "Username and password are required."}), 422

    token = get_api().login(username, password)
    current_app.logger.info("User %s signed in", username)
    return _signed_in_response(token)


@auth_bp.post("/register")
def register() -> Any:
    """Create an account on the backend and sign it in."""

    payload = _json_payload()
    if payload is None:
        return jsonify({"error": "Invalid payload"}), 400

    username = str(payload.get("username") or "").strip()
    password = str(payload.get("password") or "")
    full_name = str(payload.get("full_name") or "").strip()
    role = str(payload.get("role") or Role.OPERATOR.value)

    errors: dict[str, str] = {}
    if not username:
        errors["username"] = "Username is required"
    if not password:
        errors["password"] = "Password is required"
    if not full_name:
        errors["full_name"] = "Full name is required"
    if role not in {member.value for member in Role}:
        errors["role"] = "Unknown role"
    if errors:
        return jsonify({"error": errors}), 422

    token = get_api().register(username, password, full_name, role)
    current_app.logger.info("Registered user %s with role %s", username, role)
    return _signed_in_response(token, status=201)


@auth_bp.post("/logout")
def logout() -> Any:
    """Forget the stored token."""

    get_api().logout()
    return jsonify({"message": "Signed out"})


@auth_bp.post("/change-password")
def change_password() -> Any:
    """Change the signed-in user's password."""

    payload = _json_payload()
    if payload is None:
        return jsonify({"error": "Invalid payload"}), 400
    if current_claims() is None:
        return jsonify({"error": "Please log in to continue."}), 401

    current_password = str(payload.get("current_password") or "")
    new_password = str(payload.get("new_password") or "")
    if not current_password or not new_password:
        return jsonify({"error": "Current and new password are required."}), 422

    get_api().change_password(current_password, new_password)
    return jsonify({"message": "Password updated"})


@auth_bp.get("/me")
def me() -> Any:
    """Return the claims and role of the stored token."""

    claims = current_claims()
    if claims is None:
        return jsonify({"error": "Please log in to continue."}), 401
    try:
        role = Role(claims.get("role") or Role.OPERATOR.value)
    except ValueError:
        return jsonify({"error": "Your role is not recognised."}), 403
    return jsonify({"claims": claims, "role": role.value, "role_label": role.label})
