"""Serializable forms of the engine report."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from triage.analyzers.base import Severity
from triage.services.orchestrator_service import UnitState


class FindingSchema(BaseModel):
    id: str
    file: str
    line: int | None
    category: str
    severity: Severity
    pattern_id: str
    message: str
    suggested_fix: str = ""
    risk_weight: int
    scanner: str | None = None
    snippet: str = ""

    class Config:
        from_attributes = True


class RootCauseChainSchema(BaseModel):
    origin_file: str
    findings: list[FindingSchema]
    total_risk: int
    healing_priority: int
    critical_count: int
    cascade_summary: list[str]

    class Config:
        from_attributes = True


class ScannerStatusSchema(BaseModel):
    name: str
    priority: int
    state: UnitState
    error: str | None = None
    findings_emitted: int = 0
    duration_seconds: float = 0.0
    order: int | None = None

    class Config:
        from_attributes = True


class RemediationOutcomeSchema(BaseModel):
    finding_id: str
    file: str
    category: str
    applied: bool
    reason: str

    class Config:
        from_attributes = True


class ScanWarningSchema(BaseModel):
    path: str
    kind: str
    message: str

    class Config:
        from_attributes = True


class ReportSchema(BaseModel):
    """Full report as a nested, JSON-ready record."""

    timestamp: datetime
    scanners_run: int
    statuses: list[ScannerStatusSchema]
    findings_total: int
    critical_count: int
    findings: list[FindingSchema]
    chains: list[RootCauseChainSchema]
    overall_score: float = Field(ge=0, le=100)
    recommended_actions: list[str]
    remediation_outcomes: list[RemediationOutcomeSchema]
    warnings: list[ScanWarningSchema]
    files_scanned: int
    cancelled: bool = False
    fixes_applied: Optional[int] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_report(cls, report) -> "ReportSchema":
        return cls.model_validate(report, from_attributes=True)
