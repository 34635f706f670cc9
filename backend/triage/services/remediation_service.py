"""Line-scoped automatic fixes for findings.

Fixes are looked up by finding category. Each fix edits only the target line
(plus at most one inserted import) and must recognize its own output so that
running it twice is a no-op.
"""

import logging
import os
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from triage.analyzers.base import Finding
from triage.analyzers.catalog import PatternCatalog

logger = logging.getLogger(__name__)

FIX_MARKER = "triage: auto-fixed"

HASH_COMMENT_EXTENSIONS = frozenset({".py", ".sh", ".rb", ".yml", ".yaml", ".toml"})
SCRIPT_FIX_EXTENSIONS = frozenset({".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs"})


@dataclass(frozen=True)
class RemediationOutcome:
    """Result of one fix attempt."""

    finding_id: str
    file: str
    category: str
    applied: bool
    reason: str


def split_lines(content: str) -> list[str]:
    """Split on ``\\n`` only, keeping each line's ending."""
    parts = content.split("\n")
    tail = parts.pop()
    lines = [part + "\n" for part in parts]
    if tail:
        lines.append(tail)
    return lines


def _split_ending(line: str) -> tuple[str, str]:
    body = line.rstrip("\r\n")
    return body, line[len(body):]


def expression_end(text: str, start: int) -> Optional[int]:
    """End (exclusive) of the script expression that begins at ``start``.

    The expression stops at a top-level ``;``, a comment, or a closing
    bracket it did not open. Returns None when a string or bracket is still
    open at the end of the line.
    """
    depth = 0
    quote = None
    index = start
    while index < len(text):
        char = text[index]
        if quote:
            if char == "\\":
                index += 2
                continue
            if char == quote:
                quote = None
        elif char in "'\"`":
            quote = char
        elif char in "([{":
            depth += 1
        elif char in ")]}":
            if depth == 0:
                return index
            depth -= 1
        elif depth == 0 and (char == ";" or text.startswith("//", index) or text.startswith("/*", index)):
            return index
        index += 1
    if quote or depth:
        return None
    return index


@dataclass(frozen=True)
class FixEdit:
    """Edited file lines; ``inserted_at`` is the index of an added line, if any."""

    lines: list[str]
    inserted_at: Optional[int] = None


class Fix:
    """Base class for category fixes."""

    extensions: frozenset[str] = frozenset()

    def supports(self, path: str) -> bool:
        if not self.extensions:
            return True
        lowered = path.lower()
        return any(lowered.endswith(ext) for ext in self.extensions)

    def is_applied(self, line: str, finding: Finding) -> bool:
        raise NotImplementedError

    def apply(self, lines: list[str], index: int, finding: Finding) -> Optional[FixEdit]:
        """Return the edit, or None when the target cannot be rewritten safely."""
        raise NotImplementedError


class CommentOutFix(Fix):
    """Disable the offending line by turning it into a comment."""

    def comment_token(self, path: str) -> str:
        lowered = path.lower()
        if any(lowered.endswith(ext) for ext in HASH_COMMENT_EXTENSIONS):
            return "#"
        return "//"

    def is_applied(self, line: str, finding: Finding) -> bool:
        token = self.comment_token(finding.file)
        return line.lstrip().startswith(token) and FIX_MARKER in line

    def apply(self, lines: list[str], index: int, finding: Finding) -> Optional[FixEdit]:
        token = self.comment_token(finding.file)
        body, ending = _split_ending(lines[index])
        stripped = body.lstrip()
        indent = body[: len(body) - len(stripped)]
        updated = list(lines)
        updated[index] = f"{indent}{token} {stripped} {token} {FIX_MARKER} ({finding.category}){ending}"
        return FixEdit(updated)


class SanitizeInnerHtmlFix(Fix):
    """Wrap innerHTML assignments with DOMPurify.sanitize and import it."""

    extensions = SCRIPT_FIX_EXTENSIONS

    IMPORT_LINE = 'import DOMPurify from "dompurify";'
    SANITIZE_CALL = "DOMPurify.sanitize("
    ASSIGNMENT = re.compile(r"\.innerHTML\s*=(?!=)\s*")
    EXISTING_IMPORT = re.compile(r"import\s+DOMPurify\b|require\(\s*['\"]dompurify['\"]\s*\)")
    IMPORT_STATEMENT = re.compile(r"^\s*import\s")

    def right_hand_side(self, body: str) -> Optional[tuple[int, int]]:
        """Span of the assigned expression, trailing whitespace excluded."""
        match = self.ASSIGNMENT.search(body)
        if not match:
            return None
        start = match.end()
        end = expression_end(body, start)
        if end is None or (end < len(body) and body[end] in ")]}"):
            return None
        end = start + len(body[start:end].rstrip())
        if end <= start:
            return None
        return start, end

    def is_applied(self, line: str, finding: Finding) -> bool:
        body, _ = _split_ending(line)
        span = self.right_hand_side(body)
        if span is None:
            return False
        expr = body[span[0]:span[1]]
        if not expr.startswith(self.SANITIZE_CALL):
            return False
        close = expression_end(expr, len(self.SANITIZE_CALL))
        return close == len(expr) - 1 and expr[close] == ")"

    def apply(self, lines: list[str], index: int, finding: Finding) -> Optional[FixEdit]:
        body, ending = _split_ending(lines[index])
        span = self.right_hand_side(body)
        if span is None:
            return None

        start, end = span
        updated = list(lines)
        updated[index] = f"{body[:start]}{self.SANITIZE_CALL}{body[start:end]}){body[end:]}{ending}"

        if any(self.EXISTING_IMPORT.search(line) for line in updated):
            return FixEdit(updated)

        last_import = -1
        for position, line in enumerate(updated):
            if self.IMPORT_STATEMENT.match(line):
                last_import = position
        newline = _split_ending(updated[0])[1] or "\n"
        if last_import >= 0 and not updated[last_import].endswith("\n"):
            updated[last_import] += newline
        updated.insert(last_import + 1, self.IMPORT_LINE + newline)
        return FixEdit(updated, inserted_at=last_import + 1)


def default_fix_table() -> dict[str, Fix]:
    comment_out = CommentOutFix()
    return {
        "data-leak": comment_out,
        "debug-artifact": comment_out,
        "xss": SanitizeInnerHtmlFix(),
    }


class RemediationDispatcher:
    """Applies registered fixes to findings, one file at a time."""

    def __init__(
        self,
        fix_table: Optional[Mapping[str, Fix]] = None,
        catalog: Optional[PatternCatalog] = None,
    ):
        self.fix_table: dict[str, Fix] = dict(default_fix_table() if fix_table is None else fix_table)
        self.catalog = catalog

    def register(self, category: str, fix: Fix) -> None:
        self.fix_table[category] = fix

    def eligible(self, finding: Finding, auto_fix_units: Optional[set[str]] = None) -> bool:
        if finding.category not in self.fix_table:
            return False
        if auto_fix_units is not None and finding.scanner not in auto_fix_units:
            return False
        return True

    def remediate(
        self,
        findings: Iterable[Finding],
        root: Optional[str] = None,
        auto_fix_units: Optional[Iterable[str]] = None,
    ) -> list[RemediationOutcome]:
        units = set(auto_fix_units) if auto_fix_units is not None else None
        by_file: dict[str, list[Finding]] = defaultdict(list)
        for finding in findings:
            if self.eligible(finding, units):
                by_file[finding.file].append(finding)

        outcomes: list[RemediationOutcome] = []
        for file_path in sorted(by_file):
            ordered = sorted(by_file[file_path], key=lambda f: (f.line or 0, f.detector_rank, f.offset))
            # Inserted line positions, each in the coordinates of the file when it was added.
            inserted: list[int] = []
            claimed: set[int] = set()
            for finding in ordered:
                outcome, index, inserted_at = self._remediate_one(finding, root, inserted, claimed)
                outcomes.append(outcome)
                if inserted_at is not None:
                    inserted.append(inserted_at)
                    claimed = {c + 1 if c >= inserted_at else c for c in claimed}
                    if index is not None and index >= inserted_at:
                        index += 1
                if index is not None:
                    claimed.add(index)

        applied = sum(1 for o in outcomes if o.applied)
        logger.info("Remediation applied %d of %d eligible fixes", applied, len(outcomes))
        return outcomes

    def _outcome(self, finding: Finding, applied: bool, reason: str) -> RemediationOutcome:
        return RemediationOutcome(
            finding_id=finding.id,
            file=finding.file,
            category=finding.category,
            applied=applied,
            reason=reason,
        )

    def _remediate_one(
        self,
        finding: Finding,
        root: Optional[str],
        inserted: list[int],
        claimed: set[int],
    ) -> tuple[RemediationOutcome, Optional[int], Optional[int]]:
        """Fix one finding; also returns the line it settled on and any inserted line."""
        fix = self.fix_table[finding.category]
        if finding.line is None:
            return self._outcome(finding, False, "no-line"), None, None
        if not fix.supports(finding.file):
            return self._outcome(finding, False, "unsupported-file-type"), None, None

        full_path = os.path.join(root, finding.file) if root else finding.file
        try:
            with open(full_path, "r", encoding="utf-8", newline="") as handle:
                lines = split_lines(handle.read())
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read %s for remediation: %s", finding.file, exc)
            return self._outcome(finding, False, str(exc)), None, None

        index = self._locate(lines, finding, fix, shifted_line(finding.line - 1, inserted), claimed)
        if index is None:
            return self._outcome(finding, False, "target-not-found"), None, None
        if fix.is_applied(lines[index], finding):
            return self._outcome(finding, False, "already-fixed"), index, None

        edit = fix.apply(lines, index, finding)
        if edit is None:
            return self._outcome(finding, False, "target-not-found"), None, None

        try:
            with open(full_path, "w", encoding="utf-8", newline="") as handle:
                handle.write("".join(edit.lines))
        except OSError as exc:
            logger.warning("Could not write fix to %s: %s", finding.file, exc)
            return self._outcome(finding, False, str(exc)), None, None

        logger.info("Applied %s fix to %s:%d", finding.category, finding.file, index + 1)
        return self._outcome(finding, True, "applied"), index, edit.inserted_at

    def _locate(
        self,
        lines: list[str],
        finding: Finding,
        fix: Fix,
        expected: int,
        claimed: set[int],
    ) -> Optional[int]:
        """Line the fix should target.

        The expected line wins when it still matches or already carries the fix.
        Otherwise the nearest matching line not claimed by an earlier finding is used.
        """
        pattern = self.catalog.pattern_for(finding.pattern_id) if self.catalog else None
        if pattern is None:
            return expected if 0 <= expected < len(lines) else None

        def matches(index: int) -> bool:
            return bool(pattern.search(lines[index])) or fix.is_applied(lines[index], finding)

        if 0 <= expected < len(lines) and matches(expected):
            return expected
        for distance in range(1, max(expected + 1, len(lines) - expected) + 1):
            for index in (expected - distance, expected + distance):
                if 0 <= index < len(lines) and index not in claimed and matches(index):
                    return index
        return None


def shifted_line(index: int, inserted: Iterable[int]) -> int:
    """Move a recorded line index past lines inserted at or above it."""
    for position in inserted:
        if position <= index:
            index += 1
    return index
