"""Tests for the JSON endpoints of the Flask application."""

import pytest

from conftest import make_token
from mes_frontend.extensions import EXTENSION_KEY
from mes_frontend.services.api_client import ACTIVE_REPORT_EXISTS
from mes_frontend.storage import TOKEN_KEY


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.data == b"OK"


def test_extensions_cannot_be_initialised_twice(app):
    from mes_frontend.extensions import init_app

    with pytest.raises(RuntimeError):
        init_app(app)


class TestRoleGating:
    def test_missing_token_is_unauthorised(self, client):
        assert client.get("/production/session").status_code == 401
        assert client.get("/dashboard/").status_code == 401

    def test_planner_cannot_record_production(self, client, login_as):
        login_as("planner")
        response = client.get("/production/session")
        assert response.status_code == 403

    def test_planner_can_read_dashboard(self, client, login_as):
        login_as("planner")
        response = client.get("/dashboard/")
        assert response.status_code == 200
        assert response.get_json()["kpi_data"] is None

    def test_token_without_role_counts_as_operator(self, client, app):
        app.extensions[EXTENSION_KEY].storage.set(TOKEN_KEY, make_token({"userId": 1}))
        assert client.get("/production/session").status_code == 200


class TestAuth:
    def test_login_stores_token_and_returns_profile(self, client, app, fake_session):
        token = make_token({"userId": 7, "role": "operator"})
        fake_session.add("POST", "/auth/login", {"token": token})
        fake_session.add("GET", "/users/7", {"id": 7, "full_name": "Op Seven", "is_active": True})

        response = client.post("/auth/login", json={"username": "op7", "password": "secret1"})

        assert response.status_code == 200
        assert response.get_json()["user"]["full_name"] == "Op Seven"
        assert app.extensions[EXTENSION_KEY].storage.get(TOKEN_KEY) == token

    def test_locked_account_is_signed_out(self, client, app, fake_session):
        token = make_token({"userId": 7, "role": "operator"})
        fake_session.add("POST", "/auth/login", {"token": token})
        fake_session.add("GET", "/users/7", {"id": 7, "is_active": False})

        response = client.post("/auth/login", json={"username": "op7", "password": "secret1"})

        assert response.status_code == 403
        assert app.extensions[EXTENSION_KEY].storage.get(TOKEN_KEY) is None

    def test_backend_rejection_is_relayed(self, client, fake_session):
        fake_session.add("POST", "/auth/login", {"message": "User is disabled"}, status=401)

        response = client.post("/auth/login", json={"username": "op7", "password": "secret1"})

        assert response.status_code == 401
        assert response.get_json() == {"error": "User is disabled"}

    def test_register_validates_role(self, client):
        response = client.post(
            "/auth/register",
            json={"username": "new", "password": "secret1", "full_name": "New", "role": "boss"},
        )
        assert response.status_code == 422
        assert "role" in response.get_json()["error"]

    def test_me_and_logout(self, client, login_as):
        login_as("qc", user_id=3)
        body = client.get("/auth/me").get_json()
        assert body["claims"] == {"userId": 3, "role": "qc"}
        assert body["role_label"] == "Quality Control"

        client.post("/auth/logout")
        assert client.get("/auth/me").status_code == 401


class TestProduction:
    @pytest.fixture(autouse=True)
    def _operator(self, login_as, fake_session):
        login_as("operator")
        fake_session.add("GET", "/dashboard", {"total_production": 1})
        fake_session.add("GET", "/reports/pareto", [])
        fake_session.add("GET", "/orders", [])

    def test_start_with_missing_selector_makes_no_request(self, client, fake_session):
        response = client.post(
            "/production/session/start",
            json={"po_id": "12", "operation": "3", "shift": "", "line": "LINE-A"},
        )

        assert response.status_code == 400
        assert fake_session.calls == []

    def test_select_then_start(self, client, fake_session):
        fake_session.add("POST", "/reports/start", {"report": {"id": 31}})

        client.post(
            "/production/session/select",
            json={"po_id": "12", "operation": "3", "shift": "1", "line": "LINE-A"},
        )
        response = client.post("/production/session/start", json={})

        assert response.status_code == 201
        body = response.get_json()
        assert body["state"] == "active"
        assert body["session"]["prod_report_id"] == 31
        assert body["elapsed"] == "00:00:00"

    def test_start_adopts_existing_report(self, client, fake_session):
        fake_session.add(
            "POST",
            "/reports/start",
            {"message": ACTIVE_REPORT_EXISTS, "report": {"id": 55, "started_at": "2025-03-04T06:00:00Z"}},
            status=400,
        )

        response = client.post(
            "/production/session/start",
            json={"po_id": "12", "operation": "3", "shift": "1", "line": "LINE-A"},
        )

        assert response.status_code == 201
        assert response.get_json()["session"]["prod_report_id"] == 55

    def _start(self, client, fake_session):
        fake_session.add("POST", "/reports/start", {"report": {"id": 31}})
        fake_session.add("POST", "/reports/stop", {"ok": True})
        fake_session.add(
            "GET", "/defect-codes",
            [{"id": 1, "code": "SCR", "name": "Scratch"}, {"id": 2, "code": "DNT", "name": "Dent"}],
        )
        client.post(
            "/production/session/start",
            json={"po_id": "12", "operation": "3", "shift": "1", "line": "LINE-A"},
        )

    def test_record_with_defects(self, client, fake_session):
        self._start(client, fake_session)
        client.post("/production/defects", json={"defect_id": "1"})
        client.post("/production/defects", json={"defect_id": "2"})

        response = client.post(
            "/production/session/record", json={"qty_ok": "40", "qty_ng": "9", "notes": "ok"}
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["allocation"] == [
            {"defect_code_id": 1, "qty": 4},
            {"defect_code_id": 2, "qty": 4},
        ]
        assert body["defects"] == []
        assert body["state"] == "active"

    def test_unknown_defect_is_reported(self, client, fake_session):
        self._start(client, fake_session)
        response = client.post("/production/defects", json={"defect_id": "99"})
        assert response.status_code == 404

    def test_record_requires_some_quantity(self, client, fake_session):
        self._start(client, fake_session)

        response = client.post("/production/session/record", json={"qty_ok": "", "qty_ng": "0"})

        assert response.status_code == 422
        assert "qty_ok" in response.get_json()["error"]

    def test_record_rejects_negative_counts(self, client, fake_session):
        self._start(client, fake_session)

        response = client.post("/production/session/record", json={"qty_ok": "-1", "qty_ng": "x"})

        assert response.status_code == 422
        assert set(response.get_json()["error"]) == {"qty_ok", "qty_ng"}

    def test_stop_without_session_is_rejected(self, client, fake_session):
        response = client.post("/production/session/stop", json={"qty_ok": "1"})

        assert response.status_code == 400
        assert fake_session.calls == []

    def test_stop_returns_to_idle(self, client, fake_session):
        self._start(client, fake_session)

        response = client.post("/production/session/stop", json={"qty_ok": "12", "qty_ng": "0"})

        assert response.status_code == 200
        assert response.get_json()["state"] == "idle"

    def test_session_read_resets_when_report_ended(self, client, fake_session):
        self._start(client, fake_session)
        fake_session.add(
            "GET", "/reports/31",
            {"id": 31, "started_at": "2025-03-04T08:00:00Z", "ended_at": "2025-03-04T10:00:00Z"},
        )

        response = client.get("/production/session")

        assert response.get_json()["state"] == "idle"

    def test_shifts_are_listed(self, client, fake_session):
        fake_session.add(
            "GET", "/shifts",
            [{"id": 1, "name": "Morning", "start_time": "06:00", "end_time": "14:00"}],
        )

        response = client.get("/production/shifts")

        assert response.status_code == 200
        assert response.get_json()[0]["name"] == "Morning"

    def test_session_events_stream_ticks_while_open(self, client, app, fake_session):
        tracker = app.extensions[EXTENSION_KEY].tracker
        tracker.tick_interval = 0.01
        self._start(client, fake_session)
        assert tracker._ticker is None

        response = client.get("/production/session/events")
        assert response.status_code == 200
        assert response.mimetype == "text/event-stream"

        chunk = next(iter(response.response))
        text = chunk.decode("utf-8") if isinstance(chunk, bytes) else chunk
        assert text.startswith("event: tick\n")
        assert '"elapsed": "00:00:' in text
        assert tracker._ticker is not None

        response.close()
        assert tracker._ticker is None
