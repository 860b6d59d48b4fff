"""Presentation-layer models of the records owned by the MES backend."""
from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """Enumeration of user roles within the platform."""

    ADMIN = "admin"
    PLANNER = "planner"
    QC = "qc"
    OPERATOR = "operator"

    @property
    def label(self) -> str:
        """Return a human-readable label for the role."""

        return {
            Role.ADMIN: "Administrator",
            Role.PLANNER: "Production Planner",
            Role.QC: "Quality Control",
            Role.OPERATOR: "Operator",
        }[self]


class _BackendRecord(BaseModel):
    # The backend adds columns freely; keep whatever arrives.
    model_config = ConfigDict(extra="allow")


class ProductRef(_BackendRecord):
    name: str


class ProductionOrder(_BackendRecord):
    id: int
    code: str
    qty_plan: int = 0
    start_plan: Optional[str] = None
    end_plan: Optional[str] = None
    status: str
    products: Optional[ProductRef] = None
    actual_qty: Optional[int] = None
    progress: Optional[float] = None


class DefectCode(_BackendRecord):
    id: int
    code: str
    name: str
    group: Optional[str] = None


class Shift(_BackendRecord):
    id: int
    name: str
    start_time: str
    end_time: str


class DefectCodeRef(_BackendRecord):
    code: str
    name: str


class DefectReport(_BackendRecord):
    qty: int
    defect_codes: Optional[DefectCodeRef] = None


class ProductionReport(_BackendRecord):
    id: int
    started_at: str
    ended_at: Optional[str] = None
    qty_ok: int = 0
    qty_ng: int = 0
    note: Optional[str] = None
    line: Optional[str] = None
    user_name: Optional[str] = None
    po_code: Optional[str] = None
    product_name: Optional[str] = None
    operation_name: Optional[str] = None
    shift_name: Optional[str] = None
    defect_reports: List[DefectReport] = Field(default_factory=list)


class DashboardKPI(BaseModel):
    total_production: float = 0
    plan_achievement_rate: float = 0
    defect_rate: float = 0
    oee_rate: float = 0

    @classmethod
    def from_backend(cls, payload: dict[str, Any]) -> "DashboardKPI":
        """Build the KPI snapshot from ``/dashboard``; missing or null values read as 0."""

        return cls(
            total_production=payload.get("total_production") or 0,
            plan_achievement_rate=payload.get("plan_achievement_rate") or 0,
            defect_rate=payload.get("defect_rate") or 0,
            oee_rate=payload.get("oee_rate") or 0,
        )


class DefectDistribution(_BackendRecord):
    defect_name: str
    count: int
