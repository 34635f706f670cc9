"""Engine facade: walk, orchestrate, chain, remediate, report."""

import logging
from typing import Mapping, Optional

from triage.analyzers.catalog import PatternCatalog, default_catalog
from triage.config import Settings, get_settings
from triage.services.cascade_service import CascadeKnowledgeBase
from triage.services.chain_service import ChainBuilder
from triage.services.orchestrator_service import Orchestrator, ScannerRegistry, ScannerUnit
from triage.services.remediation_service import Fix, RemediationDispatcher
from triage.services.report_service import Report, ReportBuilder
from triage.services.scan_service import ScanEngine
from triage.services.walker_service import FileWalker

logger = logging.getLogger(__name__)


class TriageEngine:
    """Security triage over one source tree.

    Register scanner units once, then call ``run``. Every run walks the tree
    afresh and returns a new Report; nothing is carried between runs.
    """

    def __init__(
        self,
        root: str,
        catalog: Optional[PatternCatalog] = None,
        settings: Optional[Settings] = None,
        fix_table: Optional[Mapping[str, Fix]] = None,
        cascade: Optional[CascadeKnowledgeBase] = None,
    ):
        self.root = root
        self.settings = settings or get_settings()
        self.catalog = catalog if catalog is not None else default_catalog()
        self.registry = ScannerRegistry(self.catalog)
        self.orchestrator = Orchestrator(
            self.catalog,
            scan_engine=ScanEngine(scan_workers=self.settings.scan_workers),
            unit_workers=self.settings.unit_workers,
            default_timeout=self.settings.default_unit_timeout,
        )
        self.chain_builder = ChainBuilder(cascade)
        self.dispatcher = RemediationDispatcher(fix_table, self.catalog)
        self.report_builder = ReportBuilder(self.settings.max_recommendations)

    def register(self, unit: ScannerUnit) -> ScannerUnit:
        return self.registry.register(unit)

    def cancel(self) -> None:
        """Cancel the run in progress (or the next one, if called while idle)."""
        self.orchestrator.cancel()

    def walker(self) -> FileWalker:
        return FileWalker(
            self.root,
            exclude_dirs=self.settings.exclude_dirs,
            include_extensions=self.settings.include_extensions,
            max_file_size=self.settings.max_file_size,
        )

    def run(self, remediate: bool = True) -> Report:
        self.catalog.freeze()

        walker = self.walker()
        files = list(walker)
        logger.info("Walked %s: %d files", self.root, len(files))

        result = self.orchestrator.run(self.registry, files, self.root)
        chains = self.chain_builder.build(result.findings)

        outcomes = []
        if remediate and not result.cancelled:
            auto_fix_units = {unit.name for unit in self.registry if unit.auto_fix}
            outcomes = self.dispatcher.remediate(result.findings, self.root, auto_fix_units)

        return self.report_builder.build(
            statuses=result.statuses,
            findings=result.findings,
            chains=chains,
            outcomes=outcomes,
            warnings=[*walker.warnings, *result.warnings],
            files_scanned=len(files),
            cancelled=result.cancelled,
        )
