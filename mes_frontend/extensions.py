"""Shared objects created once per application.

Each application owns exactly one local store, REST client, dashboard store
and session tracker. They live in ``app.extensions`` and are reached through
the accessors below rather than through module globals.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from flask import Flask, current_app

from .services.api_client import ApiClient
from .storage import LocalStore

if TYPE_CHECKING:
    from .dashboard.store import DashboardStore
    from .production.tracker import ProductionSessionTracker

EXTENSION_KEY = "mes_frontend"


class MesState:
    """The per-application objects registered by :func:`init_app`."""

    def __init__(
        self,
        storage: LocalStore,
        api: ApiClient,
        dashboard: DashboardStore,
        tracker: ProductionSessionTracker,
    ):
        self.storage = storage
        self.api = api
        self.dashboard = dashboard
        self.tracker = tracker


def init_app(app: Flask) -> MesState:
    """Create the shared objects for ``app``; calling it twice is an error."""

    # Imported here: the blueprint packages import this module.
    from .dashboard.store import DashboardStore
    from .production.session import SessionRecordStore
    from .production.tracker import ProductionSessionTracker

    if EXTENSION_KEY in app.extensions:
        raise RuntimeError("mes_frontend extensions are already initialised for this app")

    config = app.config
    storage = LocalStore(config["MES_STORAGE_PATH"])
    api = ApiClient(
        config.get("MES_API_BASE_URL"),
        storage,
        timeout=config.get("MES_API_TIMEOUT", 10),
    )
    dashboard = DashboardStore(api, refresh_interval=config.get("DASHBOARD_REFRESH_SECONDS", 300))
    tracker = ProductionSessionTracker(
        api,
        SessionRecordStore(storage),
        tick_interval=config.get("SESSION_TICK_SECONDS", 1),
        reset_on_verify_error=config.get("SESSION_RESET_ON_VERIFY_ERROR", True),
    )
    tracker.add_recorded_hook(dashboard.refetch_in_background)
    tracker.restore()

    state = MesState(storage, api, dashboard, tracker)
    app.extensions[EXTENSION_KEY] = state
    return state


def get_state() -> MesState:
    """Return the shared objects of the current application."""

    return current_app.extensions[EXTENSION_KEY]


def get_api() -> ApiClient:
    """Return the REST client of the current application."""

    return get_state().api


def get_dashboard() -> DashboardStore:
    """Return the dashboard cache of the current application."""

    return get_state().dashboard


def get_tracker() -> ProductionSessionTracker:
    """Return the production session tracker of the current application."""

    return get_state().tracker
