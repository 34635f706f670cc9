"""Root-cause chain building.

Findings sharing an origin file are treated as one systemic issue. A file
with a single finding stays unchained.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Optional

from triage.analyzers.base import Finding, Severity
from triage.services.cascade_service import CascadeKnowledgeBase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RootCauseChain:
    """Findings from one origin file, with risk and priority."""

    origin_file: str
    findings: tuple[Finding, ...]
    total_risk: int
    healing_priority: int
    critical_count: int
    cascade_summary: tuple[str, ...]


class ChainBuilder:
    """Groups findings per file into ranked root-cause chains."""

    def __init__(self, cascade: Optional[CascadeKnowledgeBase] = None):
        self.cascade = cascade or CascadeKnowledgeBase()

    def group(self, findings: Iterable[Finding]) -> dict[str, list[Finding]]:
        groups: dict[str, list[Finding]] = defaultdict(list)
        for finding in findings:
            groups[finding.file].append(finding)
        return groups

    def build(self, findings: Iterable[Finding]) -> list[RootCauseChain]:
        chains = [
            self._build_chain(file_path, group)
            for file_path, group in self.group(findings).items()
            if len(group) > 1
        ]
        chains.sort(key=lambda c: (-c.healing_priority, c.origin_file))
        logger.info("Built %d root cause chains", len(chains))
        return chains

    def singletons(self, findings: Iterable[Finding]) -> list[Finding]:
        return [
            group[0]
            for group in self.group(findings).values()
            if len(group) == 1
        ]

    def _build_chain(self, file_path: str, group: list[Finding]) -> RootCauseChain:
        critical_count = sum(1 for f in group if f.severity == Severity.CRITICAL)
        max_breadth = max(self.cascade.breadth(f.category) for f in group)

        summary: dict[str, None] = {}
        for finding in group:
            for effect in self.cascade.effects(finding.category):
                summary.setdefault(effect)

        return RootCauseChain(
            origin_file=file_path,
            findings=tuple(group),
            total_risk=sum(f.risk_weight for f in group),
            healing_priority=critical_count * 10 + max_breadth,
            critical_count=critical_count,
            cascade_summary=tuple(summary),
        )
