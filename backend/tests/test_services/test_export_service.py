"""Tests for report persistence and console summaries."""

import json
from datetime import datetime, timezone

import pytest

from triage.analyzers.base import Severity
from triage.services.chain_service import ChainBuilder
from triage.services.export_service import ReportPersistenceError, format_summary, write_report
from triage.services.orchestrator_service import ScannerStatus, UnitState
from triage.services.remediation_service import RemediationOutcome
from triage.services.report_service import ReportBuilder


@pytest.fixture
def report(finding_factory):
    findings = [
        finding_factory(file="a.js", line=1, category="xss", offset=1),
        finding_factory(file="a.js", line=2, category="data-leak", severity=Severity.HIGH, offset=2),
    ]
    statuses = [
        ScannerStatus(name="web", priority=5, state=UnitState.COMPLETED, findings_emitted=2, order=0),
        ScannerStatus(name="ext", priority=1, state=UnitState.FAILED, error="exit code 2: nope", order=1),
    ]
    outcomes = [RemediationOutcome(finding_id=findings[0].id, file="a.js", category="xss", applied=True, reason="applied")]
    return ReportBuilder().build(
        statuses,
        findings,
        chains=ChainBuilder().build(findings),
        outcomes=outcomes,
        files_scanned=3,
        timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


class TestWriteReport:
    """Test JSON persistence."""

    def test_writes_json(self, report, tmp_path):
        """Report is written as nested JSON."""
        target = tmp_path / "out" / "report.json"

        write_report(report, target)

        data = json.loads(target.read_text())
        assert data["findings_total"] == 2
        assert data["chains"][0]["origin_file"] == "a.js"
        assert data["chains"][0]["total_risk"] == 17
        assert data["statuses"][1]["state"] == "failed"
        assert data["findings"][0]["severity"] == "critical"
        assert data["remediation_outcomes"][0]["reason"] == "applied"

    def test_unwritable_path_raises(self, report, tmp_path):
        """Persistence failures surface as ReportPersistenceError."""
        blocker = tmp_path / "file"
        blocker.write_text("x")

        with pytest.raises(ReportPersistenceError):
            write_report(report, blocker / "report.json")


class TestFormatSummary:
    """Test console summary text."""

    def test_summary_contents(self, report):
        text = format_summary(report)
        assert "Findings: 2 (1 critical)" in text
        assert "ext: failed (exit code 2: nope)" in text
        assert "a.js: 2 findings, risk 17" in text
        assert "Fixes applied: 1/1" in text
        assert "1. " in text
