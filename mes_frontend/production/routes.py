"""Route handlers for shop-floor production recording."""
from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

from flask import Response, current_app, jsonify, request, stream_with_context

from ..auth.tokens import roles_required
from ..extensions import get_api, get_tracker
from ..models import DefectCode, Role, Shift
from . import production_bp
from .defects import NO_DEFECT
from .service import ValidationError, format_elapsed, parse_quantities, serialize_session
from .tracker import SessionError, SessionTickFeed

RECORDING_ROLES = (Role.OPERATOR, Role.ADMIN)

# Idle tick streams send a keep-alive comment this often (seconds).
KEEPALIVE_SECONDS = 30


def _payload() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _session_response(status: int = 200, **extra: Any) -> tuple[Response, int]:
    tracker = get_tracker()
    body = serialize_session(tracker.session, tracker.defects, tracker.elapsed_seconds())
    body.update(extra)
    return jsonify(body), status


@production_bp.errorhandler(SessionError)
def _session_error(exc: SessionError) -> tuple[Response, int]:
    return jsonify({"error": str(exc)}), 400


@production_bp.errorhandler(ValidationError)
def _validation_error(exc: ValidationError) -> tuple[Response, int]:
    return jsonify({"error": exc.errors}), 422


@production_bp.get("/session")
@roles_required(*RECORDING_ROLES)
def session_state() -> tuple[Response, int]:
    """Return the tracker state after checking it against the backend."""

    get_tracker().reconcile()
    return _session_response()


@production_bp.post("/session/select")
@roles_required(*RECORDING_ROLES)
def select() -> tuple[Response, int]:
    """Change the idle session's PO, operation, shift or line."""

    payload = _payload()
    changes = {
        key: payload[key] for key in ("po_id", "operation", "shift", "line") if key in payload
    }
    get_tracker().select(**changes)
    return _session_response()


@production_bp.post("/session/start")
@roles_required(*RECORDING_ROLES)
def start() -> tuple[Response, int]:
    """Open a production report, falling back to the stored selections."""

    tracker = get_tracker()
    payload = _payload()
    current = tracker.session
    tracker.start(
        payload.get("po_id", current.po_id),
        payload.get("operation", current.operation),
        payload.get("shift", current.shift),
        payload.get("line", current.line),
    )
    return _session_response(201)


@production_bp.post("/session/record")
@roles_required(*RECORDING_ROLES)
def record() -> tuple[Response, int]:
    """Submit an intermediate OK/NG count for the active report."""

    quantities = parse_quantities(_payload())
    allocation = get_tracker().record_quantities(
        quantities.ok, quantities.ng, quantities.notes
    )
    return _session_response(
        message=f"Recorded {quantities.ok} OK, {quantities.ng} NG.",
        allocation=allocation,
    )


@production_bp.post("/session/stop")
@roles_required(*RECORDING_ROLES)
def stop() -> tuple[Response, int]:
    """Submit the final count and close the session."""

    quantities = parse_quantities(_payload(), require_total=False)
    allocation = get_tracker().stop(quantities.ok, quantities.ng, quantities.notes)
    return _session_response(
        message=f"Final record: {quantities.ok} OK, {quantities.ng} NG. Ready for a new session.",
        allocation=allocation,
    )


@production_bp.post("/session/reset")
@roles_required(*RECORDING_ROLES)
def reset() -> tuple[Response, int]:
    """Drop the local session without contacting the backend."""

    get_tracker().reset()
    return _session_response()


@production_bp.post("/defects")
@roles_required(*RECORDING_ROLES)
def add_defect() -> tuple[Response, int]:
    """Add a defect code to the selection, or clear it with ``no_defect``."""

    choice = str(_payload().get("defect_id") or "").strip()
    if not choice:
        return jsonify({"error": "defect_id is required"}), 422

    available = [DefectCode.model_validate(row) for row in get_api().defect_codes.list()]
    tracker = get_tracker()
    if tracker.defects.select(choice, available) is None and choice != NO_DEFECT:
        current_app.logger.info("Ignoring unknown defect code %s", choice)
        return jsonify({"error": f"Unknown defect code {choice}"}), 404
    return _session_response()


@production_bp.delete("/defects/<int:defect_id>")
@roles_required(*RECORDING_ROLES)
def remove_defect(defect_id: int) -> tuple[Response, int]:
    """Remove one defect code from the selection."""

    get_tracker().defects.remove(defect_id)
    return _session_response()


@production_bp.get("/shifts")
@roles_required(*RECORDING_ROLES)
def shifts() -> Response:
    """Return the shifts an operator can record against."""

    rows = [Shift.model_validate(row) for row in get_api().shifts.list()]
    return jsonify([row.model_dump() for row in rows])


def sse_ticks(feed: SessionTickFeed) -> Iterator[str]:
    """Render elapsed-time ticks as server-sent events until the feed ends."""

    with feed:
        while True:
            for elapsed in feed:
                data = {"elapsed_seconds": elapsed, "elapsed": format_elapsed(elapsed)}
                yield f"event: tick\ndata: {json.dumps(data)}\n\n"
            if feed.timeout is None:
                return
            yield ": keep-alive\n\n"


@production_bp.get("/session/events")
@roles_required(*RECORDING_ROLES)
def session_events() -> Response:
    """Stream the active session's elapsed time once per tick."""

    feed = SessionTickFeed(get_tracker(), timeout=KEEPALIVE_SECONDS)
    return Response(
        stream_with_context(sse_ticks(feed)),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
