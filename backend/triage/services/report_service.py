"""Report assembly: score, recommended actions and run summary."""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional

from triage.analyzers.base import Finding, ScanWarning, Severity
from triage.services.chain_service import RootCauseChain
from triage.services.orchestrator_service import ScannerStatus
from triage.services.remediation_service import RemediationOutcome

logger = logging.getLogger(__name__)


SEVERITY_PENALTIES = {
    Severity.CRITICAL: 2.0,
    Severity.HIGH: 1.0,
    Severity.MEDIUM: 0.5,
    Severity.LOW: 0.1,
}

DEFAULT_ACTION_TABLE: dict[str, str] = {
    "xss": "Sanitize HTML before assigning to innerHTML/outerHTML (DOMPurify)",
    "data-leak": "Remove logging and client storage of sensitive values",
    "credential-exposure": "Move hardcoded credentials and API keys to environment configuration",
    "code-injection": "Replace eval/Function constructor usage with safe parsing",
    "sql-injection": "Use parameterized queries instead of string concatenation",
    "auth-bypass": "Enforce authentication middleware on every protected route",
    "csrf": "Add CSRF token validation to state-changing requests",
    "cryptographic-weakness": "Use a cryptographically secure random source for tokens",
    "type-safety": "Replace unsafe type assertions with runtime validation",
    "debug-artifact": "Remove leftover debugger statements",
}


@dataclass(frozen=True)
class Report:
    """Immutable result of one engine run."""

    timestamp: datetime
    scanners_run: int
    statuses: tuple[ScannerStatus, ...]
    findings_total: int
    critical_count: int
    findings: tuple[Finding, ...]
    chains: tuple[RootCauseChain, ...]
    overall_score: float
    recommended_actions: tuple[str, ...]
    remediation_outcomes: tuple[RemediationOutcome, ...]
    warnings: tuple[ScanWarning, ...]
    files_scanned: int
    cancelled: bool = False

    @property
    def fixes_applied(self) -> int:
        return sum(1 for outcome in self.remediation_outcomes if outcome.applied)


def overall_score(findings: Iterable[Finding]) -> float:
    penalty = sum(SEVERITY_PENALTIES[f.severity] for f in findings)
    return round(min(100.0, max(0.0, 100.0 - penalty)), 2)


class ReportBuilder:
    """Folds run artifacts into a Report."""

    def __init__(self, max_recommendations: int = 10, action_table: Optional[Mapping[str, str]] = None):
        self.max_recommendations = max_recommendations
        self.action_table = dict(DEFAULT_ACTION_TABLE if action_table is None else action_table)

    def action_for(self, category: str) -> str:
        return self.action_table.get(category, f"Review {category} findings")

    def recommended_actions(self, findings: Iterable[Finding]) -> list[str]:
        risk_by_category: dict[str, int] = defaultdict(int)
        for finding in findings:
            risk_by_category[finding.category] += finding.risk_weight

        ranked = sorted(risk_by_category.items(), key=lambda item: (-item[1], item[0]))
        actions: list[str] = []
        for category, _ in ranked:
            action = self.action_for(category)
            if action not in actions:
                actions.append(action)
            if len(actions) >= self.max_recommendations:
                break
        return actions

    def build(
        self,
        statuses: Iterable[ScannerStatus],
        findings: Iterable[Finding],
        chains: Iterable[RootCauseChain] = (),
        outcomes: Iterable[RemediationOutcome] = (),
        warnings: Iterable[ScanWarning] = (),
        files_scanned: int = 0,
        cancelled: bool = False,
        timestamp: Optional[datetime] = None,
    ) -> Report:
        status_list = tuple(statuses)
        finding_list = tuple(findings)

        report = Report(
            timestamp=timestamp or datetime.now(timezone.utc),
            scanners_run=sum(1 for s in status_list if s.order is not None),
            statuses=status_list,
            findings_total=len(finding_list),
            critical_count=sum(1 for f in finding_list if f.severity == Severity.CRITICAL),
            findings=finding_list,
            chains=tuple(chains),
            overall_score=overall_score(finding_list),
            recommended_actions=tuple(self.recommended_actions(finding_list)),
            remediation_outcomes=tuple(outcomes),
            warnings=tuple(dict.fromkeys(warnings)),
            files_scanned=files_scanned,
            cancelled=cancelled,
        )
        logger.info(
            "Report: %d findings (%d critical), score %.2f",
            report.findings_total,
            report.critical_count,
            report.overall_score,
        )
        return report
