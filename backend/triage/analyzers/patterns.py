"""Pattern-based matching helpers."""

import hashlib
import re
from typing import Callable, Iterable, Optional

from triage.analyzers.base import Detector, DetectorError, Finding


def compile_pattern(detector: Detector) -> re.Pattern:
    try:
        return re.compile(detector.pattern, re.MULTILINE)
    except re.error as exc:
        raise DetectorError(f"Detector {detector.name!r} has invalid pattern: {exc}") from exc


def _line_for_offset(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


def _line_text(content: str, offset: int) -> str:
    start = content.rfind("\n", 0, offset) + 1
    end = content.find("\n", offset)
    if end == -1:
        end = len(content)
    return content[start:end].rstrip("\r")


def finding_id(scanner: Optional[str], file_path: str, pattern_id: str, offset: int) -> str:
    raw = "|".join([scanner or "", file_path, pattern_id, str(offset)])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def match_detectors(
    file_path: str,
    content: str,
    detectors: Iterable[tuple[int, Detector, re.Pattern]],
    scanner: Optional[str] = None,
    redact: Optional[Callable[[str], str]] = None,
) -> list[Finding]:
    """Apply ranked detectors to one file's text.

    Findings come out in detector order, then match position.
    """
    matches: list[Finding] = []
    for rank, detector, compiled in detectors:
        if not detector.applies_to(file_path):
            continue
        for match in compiled.finditer(content):
            snippet = _line_text(content, match.start()).strip()
            if redact:
                snippet = redact(snippet)
            matches.append(
                Finding(
                    id=finding_id(scanner, file_path, detector.pattern_id, match.start()),
                    file=file_path,
                    line=_line_for_offset(content, match.start()),
                    category=detector.category,
                    severity=detector.severity,
                    pattern_id=detector.pattern_id,
                    message=detector.message or detector.name,
                    suggested_fix=detector.suggested_fix,
                    scanner=scanner,
                    snippet=snippet,
                    detector_rank=rank,
                    offset=match.start(),
                )
            )
    return matches
