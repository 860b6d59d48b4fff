"""Route handlers for the production dashboard."""
from __future__ import annotations

import json
from collections.abc import Iterator

from flask import Response, jsonify, stream_with_context

from ..auth.tokens import roles_required
from ..extensions import get_dashboard
from ..models import Role
from . import dashboard_bp
from .store import DashboardFeed

DASHBOARD_ROLES = (Role.ADMIN, Role.QC, Role.PLANNER, Role.OPERATOR)

# Idle feeds send a keep-alive comment this often (seconds).
KEEPALIVE_SECONDS = 30


@dashboard_bp.get("/")
@roles_required(*DASHBOARD_ROLES)
def snapshot() -> Response:
    """Return the cached KPIs, defect pareto and in-progress orders."""

    return jsonify(get_dashboard().snapshot())


@dashboard_bp.post("/refetch")
@roles_required(*DASHBOARD_ROLES)
def refetch() -> Response:
    """Reload the dashboard now and return the new snapshot."""

    store = get_dashboard()
    store.refetch()
    return jsonify(store.snapshot())


def sse_events(feed: DashboardFeed) -> Iterator[str]:
    """Render feed snapshots as server-sent events until the feed ends."""

    with feed:
        while True:
            for snapshot in feed:
                yield f"event: dashboard\ndata: {json.dumps(snapshot)}\n\n"
            if feed.timeout is None:
                return
            yield ": keep-alive\n\n"


@dashboard_bp.get("/events")
@roles_required(*DASHBOARD_ROLES)
def events() -> Response:
    """Stream one dashboard snapshot per completed refetch."""

    feed = DashboardFeed(get_dashboard(), timeout=KEEPALIVE_SECONDS)
    return Response(
        stream_with_context(sse_events(feed)),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
