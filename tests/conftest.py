"""Pytest fixtures for the MES front-end tests.

Nothing here talks to a real backend: the REST client runs on top of
``FakeSession`` and the tracker/store tests use ``FakeApi``.
"""

from __future__ import annotations

import base64
import json
from datetime import datetime, timezone
from typing import Any, Callable

import pytest

from mes_frontend import create_app
from mes_frontend.config import TestingConfig
from mes_frontend.extensions import EXTENSION_KEY
from mes_frontend.production.session import SessionRecordStore
from mes_frontend.production.tracker import ProductionSessionTracker
from mes_frontend.services.api_client import ApiClient, ApiRequestError
from mes_frontend.storage import TOKEN_KEY, LocalStore

BASE_URL = TestingConfig.MES_API_BASE_URL
FIXED_NOW = datetime(2025, 3, 4, 8, 30, tzinfo=timezone.utc)


def make_token(claims: dict[str, Any]) -> str:
    """Build an unsigned JWT carrying ``claims``."""

    def encode(part: dict[str, Any]) -> str:
        raw = json.dumps(part).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    return f"{encode({'alg': 'HS256', 'typ': 'JWT'})}.{encode(claims)}.signature"


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None):
        self.status_code = status_code
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode("utf-8")

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if not self.content:
            raise ValueError("No JSON body")
        return json.loads(self.content)


class FakeSession:
    """Stand-in for :class:`requests.Session` answering from a route table."""

    def __init__(self) -> None:
        self.headers: dict[str, str] = {}
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[dict[str, Any]] = []

    def add(self, method: str, path: str, payload: Any = None, status: int = 200) -> None:
        self.routes[(method, path)] = FakeResponse(status, payload)

    def add_callable(self, method: str, path: str, handler: Callable[..., Any]) -> None:
        self.routes[(method, path)] = handler

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        path = url[len(BASE_URL):]
        self.calls.append({"method": method, "path": path, **kwargs})
        route = self.routes.get((method, path))
        if route is None:
            return FakeResponse(404, {"message": f"No route for {method} {path}"})
        if callable(route):
            return route(**kwargs)
        return route

    def paths(self) -> list[str]:
        return [f"{call['method']} {call['path']}" for call in self.calls]


class FakeApi:
    """Records calls made by the tracker and dashboard store."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.start_result: Any = {"report": {"id": 42}}
        self.start_error: ApiRequestError | None = None
        self.report: Any = {"id": 42, "started_at": FIXED_NOW.isoformat(), "ended_at": None}
        self.report_error: Exception | None = None
        self.dashboard: Any = {"total_production": 10}
        self.pareto: Any = []
        self.orders: Any = []

    def start_report(self, *args: Any, **kwargs: Any) -> Any:
        self.calls.append(("start_report", args, kwargs))
        if self.start_error is not None:
            raise self.start_error
        return self.start_result

    def stop_report(self, *args: Any, **kwargs: Any) -> Any:
        self.calls.append(("stop_report", args, kwargs))
        return {"ok": True}

    def get_report(self, report_id: int) -> Any:
        self.calls.append(("get_report", (report_id,), {}))
        if self.report_error is not None:
            raise self.report_error
        return self.report

    def get_dashboard(self) -> Any:
        self.calls.append(("get_dashboard", (), {}))
        return self.dashboard

    def get_pareto(self) -> Any:
        self.calls.append(("get_pareto", (), {}))
        return self.pareto

    def list_active_orders(self) -> Any:
        self.calls.append(("list_active_orders", (), {}))
        return self.orders

    def names(self) -> list[str]:
        return [name for name, _, _ in self.calls]


@pytest.fixture
def local_store(tmp_path) -> LocalStore:
    return LocalStore(tmp_path / "local_storage.json")


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def tracker(fake_api, local_store) -> ProductionSessionTracker:
    tracker = ProductionSessionTracker(
        fake_api,  # type: ignore[arg-type]
        SessionRecordStore(local_store),
        clock=lambda: FIXED_NOW,
    )
    yield tracker
    tracker.reset()


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def api_client(local_store, fake_session) -> ApiClient:
    return ApiClient(BASE_URL, local_store, session=fake_session)  # type: ignore[arg-type]


@pytest.fixture
def app(tmp_path, fake_session):
    class Config(TestingConfig):
        MES_STORAGE_PATH = str(tmp_path / "instance" / "local_storage.json")

    app = create_app(Config)
    state = app.extensions[EXTENSION_KEY]
    state.api.session = fake_session
    yield app
    state.tracker.reset()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login_as(app):
    """Store a token for ``role`` the way a successful login would."""

    def _login(role: str, user_id: int = 7) -> str:
        token = make_token({"userId": user_id, "role": role})
        app.extensions[EXTENSION_KEY].storage.set(TOKEN_KEY, token)
        return token

    return _login
