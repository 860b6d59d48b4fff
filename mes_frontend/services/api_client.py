"""Client for the MES REST backend."""
from __future__ import annotations

import json
import logging
from typing import Any

import requests

from ..storage import TOKEN_KEY, LocalStore

__all__ = [
    "ApiError",
    "ApiConfigurationError",
    "ApiRequestError",
    "ApiClient",
    "ResourceEndpoint",
    "ACTIVE_REPORT_EXISTS",
]

logger = logging.getLogger(__name__)

ACTIVE_REPORT_EXISTS = "An active production report already exists for this task."


class ApiError(Exception):
    """Base exception for MES backend related errors."""


class ApiConfigurationError(ApiError):
    """Raised when required backend configuration is missing."""


class ApiRequestError(ApiError):
    """Raised when a backend API call fails.

    ``message`` is the human-readable text shown to the operator: the
    backend's own message when the response carried one, otherwise the
    fallback supplied by the caller.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        payload: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


def _message_from_payload(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    for key in ("message", "error"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _decode(response: requests.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class ResourceEndpoint:
    """CRUD helpers for a collection such as ``/operations``."""

    def __init__(self, client: "ApiClient", path: str, list_path: str | None = None):
        self.client = client
        self.path = path.rstrip("/")
        self.list_path = list_path or self.path

    def list(self, **params: Any) -> list[dict[str, Any]]:
        """Return every record of the collection."""

        return self.client.get(self.list_path, params=params or None) or []

    def get(self, item_id: int | str) -> dict[str, Any]:
        """Return one record by id."""

        return self.client.get(f"{self.path}/{item_id}")

    def create(self, data: dict[str, Any]) -> dict[str, Any]:
        return self.client.post(self.path, json=data)

    def update(self, item_id: int | str, data: dict[str, Any]) -> dict[str, Any]:
        return self.client.put(f"{self.path}/{item_id}", json=data)

    def delete(self, item_id: int | str) -> None:
        self.client.delete(f"{self.path}/{item_id}")


class ApiClient:
    """Thin wrapper over :class:`requests.Session` for the MES backend.

    The bearer token is read from ``store`` on every request, so logging in
    or out through any client sharing the store takes effect immediately.
    """

    def __init__(
        self,
        base_url: str | None,
        store: LocalStore,
        *,
        timeout: float = 10,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url
        self.store = store
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/json",
                "User-Agent": "mes-frontend/1.0",
            }
        )

        self.products = ResourceEndpoint(self, "/products", list_path="/products/with-routing")
        self.operations = ResourceEndpoint(self, "/operations")
        self.defect_codes = ResourceEndpoint(self, "/defect-codes")
        self.shifts = ResourceEndpoint(self, "/shifts")
        self.orders = ResourceEndpoint(self, "/orders")
        self.users = ResourceEndpoint(self, "/users")

    # -- plumbing ---------------------------------------------------------

    def _url(self, path: str) -> str:
        """Join ``path`` onto the configured base URL."""

        if not self.base_url:
            raise ApiConfigurationError(
                "MES backend configuration is incomplete; set MES_API_BASE_URL"
            )
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _headers(self) -> dict[str, str]:
        """Return the bearer header for the stored token, if there is one."""

        token = self.store.get(TOKEN_KEY)
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}

    def request(
        self,
        method: str,
        path: str,
        *,
        fallback_message: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """Execute a request and return the decoded JSON payload.

        Raises :class:`ApiRequestError` for transport failures and non-2xx
        responses.
        """

        url = self._url(path)
        fallback = fallback_message or f"Request to {path} failed"

        try:
            response = self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            logger.error("%s %s failed: %s", method, url, exc)
            raise ApiRequestError(fallback) from exc

        payload = _decode(response)
        if not response.ok:
            message = _message_from_payload(payload) or fallback
            logger.warning("%s %s returned HTTP %s: %s", method, url, response.status_code, message)
            raise ApiRequestError(message, status_code=response.status_code, payload=payload)

        return payload

    def get(self, path: str, **kwargs: Any) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Any:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> Any:
        return self.request("PUT", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Any:
        return self.request("DELETE", path, **kwargs)

    # -- authentication ---------------------------------------------------

    def _store_token(self, payload: Any) -> str:
        token = payload.get("token") if isinstance(payload, dict) else None
        if not token:
            raise ApiRequestError("Backend response did not include a token", payload=payload)
        self.store.set(TOKEN_KEY, token)
        return token

    def login(self, username: str, password: str) -> str:
        """Exchange credentials for a token and store it."""

        payload = self.post(
            "/auth/login",
            json={"username": username, "password": password},
            fallback_message="Incorrect username or password.",
        )
        return self._store_token(payload)

    def register(self, username: str, password: str, full_name: str, role: str) -> str:
        """Create a user and store the token the backend returns."""

        payload = self.post(
            "/auth/register",
            json={"username": username, "password": password, "name": full_name, "role": role},
            fallback_message="Registration failed.",
        )
        return self._store_token(payload)

    def change_password(self, current_password: str, new_password: str) -> Any:
        """Change the signed-in user's password."""

        return self.post(
            "/auth/change-password",
            json={"currentPassword": current_password, "newPassword": new_password},
            fallback_message="Unable to change password.",
        )

    def logout(self) -> None:
        """Forget the stored token."""

        self.store.remove(TOKEN_KEY)

    @property
    def token(self) -> str | None:
        return self.store.get(TOKEN_KEY)

    def set_user_password(self, user_id: int | str, password: str) -> Any:
        """Set another user's password (admin only on the backend)."""

        return self.put(f"/users/{user_id}/password", json={"password": password})

    # -- production reports -----------------------------------------------

    def start_report(self, po_id: int, operation_id: int, shift_id: int, line: str) -> Any:
        """Open a production report for a PO, operation, shift and line."""

        return self.post(
            "/reports/start",
            json={
                "po_id": po_id,
                "operation_id": operation_id,
                "shift_id": shift_id,
                "line": line,
            },
            fallback_message="Unable to start the production session",
        )

    def stop_report(
        self,
        prod_report_id: int,
        qty_ok: int,
        qty_ng: int,
        note: str = "",
        defects: list[dict[str, int]] | None = None,
        *,
        is_final: bool = False,
    ) -> Any:
        """Submit quantities for a report as ``multipart/form-data``.

        ``defects`` is only sent when non-empty, and ``is_final`` only when
        true, matching what the backend expects for intermediate records.
        """

        fields: dict[str, tuple[None, str]] = {
            "prod_report_id": (None, str(prod_report_id)),
            "qty_ok": (None, str(qty_ok)),
            "qty_ng": (None, str(qty_ng)),
            "note": (None, note or ""),
        }
        if defects:
            fields["defects"] = (None, json.dumps(defects))
        if is_final:
            fields["is_final"] = (None, "true")

        return self.post(
            "/reports/stop",
            files=fields,
            fallback_message=(
                "Unable to finish the production session." if is_final
                else "Unable to record production quantities"
            ),
        )

    def list_reports(self) -> list[dict[str, Any]]:
        """Return every production report visible to the user."""

        return self.get("/reports", fallback_message="Unable to load production reports.") or []

    def get_report(self, report_id: int) -> dict[str, Any] | None:
        """Return one production report with its defect breakdown."""

        return self.get(
            f"/reports/{report_id}",
            fallback_message=f"Unable to load report #{report_id}.",
        )

    def get_pareto(self) -> list[dict[str, Any]] | None:
        """Return defect counts ordered for a pareto chart."""

        return self.get("/reports/pareto")

    def get_dashboard(self) -> dict[str, Any] | None:
        """Return the aggregate KPI figures."""

        return self.get("/dashboard")

    def list_active_orders(self) -> list[dict[str, Any]] | None:
        """Return production orders whose status is In Progress."""

        return self.get("/orders", params={"status": "In Progress"})
