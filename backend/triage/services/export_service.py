"""Report persistence and console summary."""

import logging
import os
from typing import Union

from triage.schemas.report import ReportSchema
from triage.services.orchestrator_service import UnitState
from triage.services.report_service import Report

logger = logging.getLogger(__name__)


class ReportPersistenceError(OSError):
    """Report could not be written."""
    pass


def write_report(report: Report, path: Union[str, os.PathLike]) -> str:
    """Write the report as indented JSON; returns the path written."""
    payload = ReportSchema.from_report(report).model_dump_json(indent=2)
    target = os.fspath(path)
    try:
        directory = os.path.dirname(target)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(target, "w", encoding="utf-8") as handle:
            handle.write(payload)
    except OSError as exc:
        logger.warning("Failed to write report to %s: %s", target, exc)
        raise ReportPersistenceError(f"Could not write report to {target}: {exc}") from exc

    logger.info("Report written to %s", target)
    return target


def format_summary(report: Report) -> str:
    lines = [
        f"Security triage report ({report.timestamp.isoformat()})",
        f"Scanners run: {report.scanners_run}   Files scanned: {report.files_scanned}",
        f"Findings: {report.findings_total} ({report.critical_count} critical)",
        f"Overall score: {report.overall_score:.2f}/100",
    ]
    if report.cancelled:
        lines.append("Run was cancelled; results are partial.")

    failed = [s for s in report.statuses if s.state in (UnitState.FAILED, UnitState.TIMED_OUT)]
    if failed:
        lines.append("")
        lines.append("Scanner problems:")
        for status in failed:
            lines.append(f"  - {status.name}: {status.state.value} ({status.error or 'no detail'})")

    if report.chains:
        lines.append("")
        lines.append("Root cause chains:")
        for chain in report.chains:
            lines.append(
                f"  - {chain.origin_file}: {len(chain.findings)} findings, "
                f"risk {chain.total_risk}, priority {chain.healing_priority}"
            )

    if report.remediation_outcomes:
        lines.append("")
        lines.append(f"Fixes applied: {report.fixes_applied}/{len(report.remediation_outcomes)}")

    if report.recommended_actions:
        lines.append("")
        lines.append("Recommended actions:")
        for index, action in enumerate(report.recommended_actions, start=1):
            lines.append(f"  {index}. {action}")

    if report.warnings:
        lines.append("")
        lines.append(f"Warnings: {len(report.warnings)}")
    return "\n".join(lines)
