"""Scan engine: applies detectors to walked files."""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Union

from triage.analyzers.base import Detector, Finding, ScanWarning
from triage.analyzers.catalog import PatternCatalog, RankedDetector
from triage.analyzers.patterns import compile_pattern, match_detectors
from triage.services.evidence_service import EvidenceService

logger = logging.getLogger(__name__)

DetectorSource = Union[PatternCatalog, Iterable[Union[Detector, RankedDetector]]]


@dataclass
class ScanResult:
    """Findings and warnings from one scan pass."""

    findings: list[Finding] = field(default_factory=list)
    warnings: list[ScanWarning] = field(default_factory=list)
    files_scanned: int = 0
    cancelled: bool = False


@dataclass
class _FileResult:
    findings: list[Finding]
    warning: Optional[ScanWarning] = None


class ScanEngine:
    """Read-only pattern scanner over a list of files.

    Files are read in a bounded thread pool; results are reassembled in file
    order so detection order is (file, detector rank, match position).
    """

    def __init__(self, scan_workers: int = 4, evidence_service: Optional[EvidenceService] = None):
        self.scan_workers = max(1, scan_workers)
        self.evidence_service = evidence_service or EvidenceService()

    def scan(
        self,
        files: Iterable[str],
        detectors: DetectorSource,
        root: Optional[str] = None,
        scanner: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        emit: Optional[Callable[[Finding], None]] = None,
    ) -> ScanResult:
        ranked = self._prepare(detectors)
        file_list = list(files)
        result = ScanResult()
        if not ranked or not file_list:
            return result

        def scan_one(path: str) -> Optional[_FileResult]:
            if cancel_event is not None and cancel_event.is_set():
                return None
            return self._scan_file(path, ranked, root, scanner)

        with ThreadPoolExecutor(max_workers=self.scan_workers) as pool:
            for file_result in pool.map(scan_one, file_list):
                if file_result is None:
                    result.cancelled = True
                    continue
                if file_result.warning:
                    result.warnings.append(file_result.warning)
                    continue
                result.files_scanned += 1
                result.findings.extend(file_result.findings)
                if emit is not None:
                    for finding in file_result.findings:
                        emit(finding)

        logger.info(
            "Scanned %d files with %d detectors: %d findings",
            result.files_scanned,
            len(ranked),
            len(result.findings),
        )
        return result

    def _prepare(self, detectors: DetectorSource) -> list[RankedDetector]:
        if isinstance(detectors, PatternCatalog):
            return detectors.ranked()
        ranked: list[RankedDetector] = []
        for index, item in enumerate(detectors):
            if isinstance(item, Detector):
                ranked.append((index, item, compile_pattern(item)))
            else:
                ranked.append(item)
        return ranked

    def _scan_file(
        self,
        path: str,
        ranked: list[RankedDetector],
        root: Optional[str],
        scanner: Optional[str],
    ) -> _FileResult:
        applicable = [entry for entry in ranked if entry[1].applies_to(path)]
        if not applicable:
            return _FileResult(findings=[])

        full_path = os.path.join(root, path) if root else path
        try:
            with open(full_path, "r", encoding="utf-8", errors="replace") as handle:
                content = handle.read()
        except OSError as exc:
            logger.warning("Could not read %s: %s", path, exc)
            return _FileResult(
                findings=[],
                warning=ScanWarning(path=path, kind="unreadable_file", message=str(exc)),
            )

        return _FileResult(
            findings=match_detectors(
                path,
                content,
                applicable,
                scanner=scanner,
                redact=self.evidence_service.redact,
            )
        )
