"""Schema for findings reported by external analyzer processes."""

from pydantic import BaseModel, Field, TypeAdapter

from triage.analyzers.base import Severity


class ExternalFindingRecord(BaseModel):
    """One finding printed by an external analyzer (JSON array element)."""

    file: str = Field(min_length=1)
    line: int | None = Field(default=None, ge=1)
    category: str = Field(min_length=1)
    severity: Severity
    message: str = ""
    suggested_fix: str = ""
    pattern_id: str | None = None


external_findings_adapter = TypeAdapter(list[ExternalFindingRecord])
