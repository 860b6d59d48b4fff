"""State machine for the operator's production recording session.

The tracker moves between two states. ``Idle`` holds only the operator's
selections; ``Active`` additionally carries the backend report id and the
time the report started. Every change is written to the local store so the
session survives a restart, and :meth:`ProductionSessionTracker.reconcile`
lets the backend close it when the report was ended elsewhere.
"""
from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterable, Iterator
from datetime import datetime, timezone
from typing import Any

from ..models import DefectCode, ProductionReport
from ..services.api_client import ACTIVE_REPORT_EXISTS, ApiClient, ApiRequestError
from ..timers import RepeatingTimer
from .defects import DefectSelection
from .session import ProductionSession, SessionRecordError, SessionRecordStore

__all__ = ["SessionError", "ProductionSessionTracker", "SessionTickFeed", "parse_timestamp"]

logger = logging.getLogger(__name__)

TickListener = Callable[[int], None]


class SessionError(Exception):
    """Raised when a session action is rejected before reaching the backend."""


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp from the backend into an aware datetime."""

    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.warning("Ignoring unparseable timestamp %r", value)
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_int(value: str, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise SessionError(f"{field} must be a numeric id, got {value!r}") from exc


class ProductionSessionTracker:
    """Operator session for one workstation, persisted through ``records``."""

    def __init__(
        self,
        api: ApiClient,
        records: SessionRecordStore,
        *,
        tick_interval: float = 1.0,
        reset_on_verify_error: bool = True,
        clock: Callable[[], datetime] | None = None,
    ):
        self.api = api
        self.records = records
        self.tick_interval = tick_interval
        self.reset_on_verify_error = reset_on_verify_error
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.session = ProductionSession()
        self.defects = DefectSelection()
        self._tick_listeners: list[TickListener] = []
        self._recorded_hooks: list[Callable[[], None]] = []
        self._ticker: RepeatingTimer | None = None
        self._tick_lock = threading.RLock()

    @property
    def is_active(self) -> bool:
        """Return whether a backend report is open for this session."""

        return self.session.is_active

    def elapsed_seconds(self) -> int:
        """Return whole seconds since the session started, 0 when idle."""

        return self.session.elapsed_seconds(self.clock())

    # -- persistence -------------------------------------------------------

    def _set_session(self, session: ProductionSession) -> ProductionSession:
        self.session = session
        self.records.save(session)
        self._restart_ticker()
        return session

    def restore(self) -> ProductionSession:
        """Load the persisted session; an unusable record is discarded."""

        try:
            stored = self.records.load()
        except SessionRecordError as exc:
            logger.warning("Discarding stored production session: %s", exc)
            self.records.clear()
            stored = None

        self.session = stored or ProductionSession()
        self._restart_ticker()
        if self.session.is_active:
            logger.info("Restored active session for report %s", self.session.prod_report_id)
        return self.session

    def reconcile(self) -> ProductionSession:
        """Ask the backend whether the active report has been closed.

        An ``ended_at`` on the report resets the session. Any error while
        asking resets it too unless ``reset_on_verify_error`` is off.
        """

        session = self.session
        if not session.is_active or session.prod_report_id is None:
            return session

        try:
            payload = self.api.get_report(session.prod_report_id)
            report = None if payload is None else ProductionReport.model_validate(payload)
        except Exception as exc:  # noqa: BLE001
            if self.reset_on_verify_error:
                logger.warning(
                    "Could not verify report %s, resetting session: %s",
                    session.prod_report_id,
                    exc,
                )
                self.reset()
            else:
                logger.warning(
                    "Could not verify report %s, keeping session: %s",
                    session.prod_report_id,
                    exc,
                )
            return self.session

        if report is not None and report.ended_at:
            logger.info(
                "Report %s was ended at %s, resetting session",
                session.prod_report_id,
                report.ended_at,
            )
            self.reset()
        return self.session

    # -- actions -----------------------------------------------------------

    def select(self, **changes: str) -> ProductionSession:
        """Change the PO/operation/shift/line selection while idle."""

        if self.session.is_active:
            raise SessionError("Selections cannot change while a session is active")
        allowed = {"po_id", "operation", "shift", "line"}
        unknown = set(changes) - allowed
        if unknown:
            raise SessionError(f"Unknown selector(s): {', '.join(sorted(unknown))}")
        values = {key: str(value or "") for key, value in changes.items()}
        return self._set_session(self.session.model_copy(update=values))

    def start(
        self,
        po_id: str | int,
        operation_id: str | int,
        shift_id: str | int,
        line: str,
    ) -> ProductionSession:
        """Open a production report on the backend and become ``Active``."""

        if self.session.is_active:
            raise SessionError("A production session is already active")

        selection = ProductionSession(
            po_id=str(po_id or ""),
            operation=str(operation_id or ""),
            shift=str(shift_id or ""),
            line=str(line or ""),
        )
        if not selection.selectors_complete:
            raise SessionError(
                "Select the production order, operation, shift and line before starting"
            )

        try:
            payload = self.api.start_report(
                _as_int(selection.po_id, "po_id"),
                _as_int(selection.operation, "operation_id"),
                _as_int(selection.shift, "shift_id"),
                selection.line,
            )
        except ApiRequestError as exc:
            report = self._existing_report(exc)
            if report is None:
                raise
            started_at = parse_timestamp(report.get("started_at")) or self.clock()
            logger.info("Resuming already active report %s", report["id"])
            return self._activate(selection, int(report["id"]), started_at)

        report = payload.get("report") if isinstance(payload, dict) else None
        if not isinstance(report, dict) or report.get("id") is None:
            raise ApiRequestError("Backend response did not include a report", payload=payload)

        logger.info("Started report %s for PO %s", report["id"], selection.po_id)
        return self._activate(selection, int(report["id"]), self.clock())

    @staticmethod
    def _existing_report(exc: ApiRequestError) -> dict[str, Any] | None:
        if exc.status_code != 400 or exc.message != ACTIVE_REPORT_EXISTS:
            return None
        report = exc.payload.get("report") if isinstance(exc.payload, dict) else None
        if not isinstance(report, dict) or report.get("id") is None:
            return None
        return report

    def _activate(
        self, selection: ProductionSession, report_id: int, started_at: datetime
    ) -> ProductionSession:
        return self._set_session(
            selection.model_copy(
                update={"is_active": True, "prod_report_id": report_id, "start_time": started_at}
            )
        )

    def _defects_for(self, defects: Iterable[DefectCode] | None) -> DefectSelection:
        return self.defects if defects is None else DefectSelection(defects)

    def record_quantities(
        self,
        ok: int,
        ng: int,
        notes: str = "",
        defects: Iterable[DefectCode] | None = None,
    ) -> list[dict[str, int]]:
        """Submit an intermediate OK/NG count for the active report.

        Returns the per-defect allocation that was sent.
        """

        session = self.session
        if not session.is_active or session.start_time is None or session.prod_report_id is None:
            raise SessionError("No active session or report id to record against")

        allocation = self._defects_for(defects).allocate(ng)
        self.api.stop_report(session.prod_report_id, ok, ng, notes, allocation)
        logger.info(
            "Recorded %s OK / %s NG on report %s", ok, ng, session.prod_report_id
        )

        self.defects.clear()
        self._fire_recorded()
        return allocation

    def stop(
        self,
        ok: int = 0,
        ng: int = 0,
        notes: str = "",
        defects: Iterable[DefectCode] | None = None,
    ) -> list[dict[str, int]]:
        """Submit the final count, close the report and return to ``Idle``."""

        session = self.session
        if not session.is_active or session.prod_report_id is None:
            raise SessionError("No session has been started or the report id is invalid")

        allocation = self._defects_for(defects).allocate(ng)
        self.api.stop_report(
            session.prod_report_id, ok, ng, notes, allocation, is_final=True
        )
        logger.info(
            "Finished report %s with %s OK / %s NG", session.prod_report_id, ok, ng
        )

        self.reset()
        self._fire_recorded()
        return allocation

    def reset(self) -> ProductionSession:
        """Forget the session and its defect selection and return to ``Idle``."""

        self.records.clear()
        self.session = ProductionSession()
        self.defects.clear()
        self._cancel_ticker()
        return self.session

    # -- hooks -------------------------------------------------------------

    def add_recorded_hook(self, hook: Callable[[], None]) -> None:
        """Call ``hook`` after every successful record or stop."""

        self._recorded_hooks.append(hook)

    def _fire_recorded(self) -> None:
        for hook in list(self._recorded_hooks):
            try:
                hook()
            except Exception:  # noqa: BLE001
                logger.exception("Recorded hook %r failed", hook)

    def add_tick_listener(self, listener: TickListener) -> None:
        """Call ``listener`` with the elapsed seconds on every tick while active."""

        with self._tick_lock:
            self._tick_listeners.append(listener)
            self._restart_ticker()

    def remove_tick_listener(self, listener: TickListener) -> None:
        with self._tick_lock:
            if listener in self._tick_listeners:
                self._tick_listeners.remove(listener)
            if not self._tick_listeners:
                self._cancel_ticker()

    def _tick(self) -> None:
        elapsed = self.elapsed_seconds()
        with self._tick_lock:
            listeners = list(self._tick_listeners)
        for listener in listeners:
            listener(elapsed)

    def _cancel_ticker(self) -> None:
        with self._tick_lock:
            if self._ticker is not None:
                self._ticker.cancel()
                self._ticker = None

    def _restart_ticker(self) -> None:
        with self._tick_lock:
            self._cancel_ticker()
            if self.session.is_active and self.session.start_time and self._tick_listeners:
                self._ticker = RepeatingTimer(
                    self.tick_interval, self._tick, name="session-tick"
                )
                self._ticker.start()


class SessionTickFeed:
    """Iterate over elapsed-second ticks of the tracker's active session.

    Opening the feed registers a tick listener, so the tracker's timer runs
    for as long as the feed is open and a session is active. Iteration ends
    after ``timeout`` seconds without a tick.
    """

    def __init__(self, tracker: ProductionSessionTracker, *, timeout: float | None = None):
        self.tracker = tracker
        self.timeout = timeout
        self._ticks: queue.Queue[int] = queue.Queue()
        self._open = False

    def _on_tick(self, elapsed: int) -> None:
        self._ticks.put(elapsed)

    def open(self) -> "SessionTickFeed":
        if not self._open:
            self.tracker.add_tick_listener(self._on_tick)
            self._open = True
        return self

    def close(self) -> None:
        if self._open:
            self.tracker.remove_tick_listener(self._on_tick)
            self._open = False

    def __enter__(self) -> "SessionTickFeed":
        return self.open()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __iter__(self) -> Iterator[int]:
        while True:
            try:
                yield self._ticks.get(timeout=self.timeout)
            except queue.Empty:
                return
