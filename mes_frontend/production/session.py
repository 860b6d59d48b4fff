"""The operator's production session and its persisted record."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ValidationError, model_validator

from ..storage import SESSION_KEY, LocalStore

__all__ = [
    "RECORD_VERSION",
    "ProductionSession",
    "SessionRecordError",
    "SessionRecordStore",
    "migrate_record",
]

logger = logging.getLogger(__name__)

RECORD_VERSION = 2


class SessionRecordError(Exception):
    """Raised when a persisted session record cannot be used."""


class ProductionSession(BaseModel):
    """Selections and server identifiers of the operator's recording session.

    Selector values are kept as strings, as picked from the lists, and are
    converted to integers only when sent to the backend.
    """

    po_id: str = ""
    operation: str = ""
    shift: str = ""
    line: str = ""
    start_time: Optional[datetime] = None
    is_active: bool = False
    prod_report_id: Optional[int] = None

    @model_validator(mode="after")
    def _active_requires_report(self) -> "ProductionSession":
        if self.is_active and (self.prod_report_id is None or self.start_time is None):
            raise ValueError("An active session needs prod_report_id and start_time")
        return self

    @property
    def selectors_complete(self) -> bool:
        return all((self.po_id, self.operation, self.shift, self.line))

    def elapsed_seconds(self, now: datetime | None = None) -> int:
        """Whole seconds since ``start_time``; 0 when idle."""

        if not self.is_active or self.start_time is None:
            return 0
        now = now or datetime.now(timezone.utc)
        start = self.start_time
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        return max(int((now - start).total_seconds()), 0)


def _migrate_v1(blob: dict[str, Any]) -> dict[str, Any]:
    # v1 is the un-versioned camelCase shape written by the browser client.
    report_id = blob.get("prodReportId")
    try:
        report_id = int(report_id) if report_id not in (None, "") else None
    except (TypeError, ValueError) as exc:
        raise SessionRecordError(f"Invalid prodReportId in legacy record: {report_id!r}") from exc

    return {
        "version": 2,
        "session": {
            "po_id": str(blob.get("poId") or ""),
            "operation": str(blob.get("operation") or ""),
            "shift": str(blob.get("shift") or ""),
            "line": str(blob.get("line") or ""),
            "start_time": blob.get("startTime") or None,
            "is_active": bool(blob.get("isActive")),
            "prod_report_id": report_id or None,
        },
    }


_MIGRATIONS = {1: _migrate_v1}


def migrate_record(blob: Any) -> dict[str, Any]:
    """Bring a decoded record up to :data:`RECORD_VERSION`."""

    if not isinstance(blob, dict):
        raise SessionRecordError("Session record must be a JSON object")

    version = blob.get("version", 1)
    if not isinstance(version, int) or version < 1 or version > RECORD_VERSION:
        raise SessionRecordError(f"Unsupported session record version: {version!r}")

    while version < RECORD_VERSION:
        blob = _MIGRATIONS[version](blob)
        logger.info("Migrated session record from v%s to v%s", version, blob["version"])
        version = blob["version"]

    return blob


class SessionRecordStore:
    """Read and write the versioned session record in :class:`LocalStore`."""

    def __init__(self, store: LocalStore, key: str = SESSION_KEY):
        self.store = store
        self.key = key

    def load(self) -> ProductionSession | None:
        """Return the stored session, ``None`` when nothing is stored.

        Raises :class:`SessionRecordError` when the stored record is not
        valid JSON, has an unknown version, or breaks the session invariants.
        """

        raw = self.store.get(self.key)
        if raw is None:
            return None
        try:
            blob = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise SessionRecordError("Session record is not valid JSON") from exc

        record = migrate_record(blob)
        try:
            return ProductionSession.model_validate(record.get("session"))
        except ValidationError as exc:
            raise SessionRecordError(f"Session record failed validation: {exc}") from exc

    def save(self, session: ProductionSession) -> None:
        record = {"version": RECORD_VERSION, "session": session.model_dump(mode="json")}
        self.store.set(self.key, json.dumps(record))

    def clear(self) -> None:
        self.store.remove(self.key)
