"""Input parsing and serialisation helpers for production recording."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .defects import DefectSelection
from .session import ProductionSession


class ValidationError(Exception):
    """Raised when incoming payload fails validation."""

    def __init__(self, errors: dict[str, Any]):
        super().__init__("Production recording validation failed")
        self.errors = errors


@dataclass(frozen=True)
class Quantities:
    ok: int
    ng: int
    notes: str


def _parse_count(value: Any, field: str) -> int:
    if value in (None, ""):
        return 0
    if isinstance(value, bool):
        raise ValidationError({field: "Must be a whole number"})
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ValidationError({field: "Must be a whole number"}) from exc
    if parsed < 0:
        raise ValidationError({field: "Must not be negative"})
    return parsed


def parse_quantities(data: dict[str, Any], *, require_total: bool = True) -> Quantities:
    """Validate the OK/NG/notes fields of a recording.

    Blank counts read as 0. With ``require_total`` at least one of OK or NG
    must be positive.
    """

    errors: dict[str, Any] = {}
    counts: dict[str, int] = {}

    for field, key in (("ok", "qty_ok"), ("ng", "qty_ng")):
        try:
            counts[field] = _parse_count(data.get(key), key)
        except ValidationError as err:
            errors.update(err.errors)

    if not errors and require_total and counts["ok"] + counts["ng"] <= 0:
        errors["qty_ok"] = "Enter at least one OK or NG quantity"

    if errors:
        raise ValidationError(errors)

    notes = data.get("notes") or ""
    return Quantities(ok=counts["ok"], ng=counts["ng"], notes=str(notes))


def format_elapsed(seconds: int) -> str:
    hours, remainder = divmod(max(seconds, 0), 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def serialize_session(
    session: ProductionSession,
    defects: DefectSelection,
    elapsed: int,
) -> dict[str, Any]:
    """Return a JSON-serialisable view of the tracker state."""

    return {
        "state": "active" if session.is_active else "idle",
        "session": session.model_dump(mode="json"),
        "elapsed_seconds": elapsed,
        "elapsed": format_elapsed(elapsed),
        "defects": defects.to_list(),
    }
