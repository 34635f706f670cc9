"""Core detector and finding types."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Severity(str, Enum):
    """Finding severity levels."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


RISK_WEIGHTS = {
    Severity.CRITICAL: 10,
    Severity.HIGH: 7,
    Severity.MEDIUM: 4,
    Severity.LOW: 1,
}


class DetectorError(ValueError):
    """Malformed or conflicting detector configuration."""
    pass


@dataclass(frozen=True)
class Detector:
    """A named text pattern tagged with category and severity.

    ``applicable_extensions`` lists the file suffixes the detector runs on;
    an empty set means every walked file.
    """

    name: str
    category: str
    severity: Severity
    pattern: str
    message: str = ""
    suggested_fix: str = ""
    applicable_extensions: frozenset[str] = field(default_factory=frozenset)
    pattern_id: str = ""

    def __post_init__(self):
        try:
            severity = Severity(self.severity)
        except ValueError:
            raise DetectorError(f"Detector {self.name!r} has unknown severity {self.severity!r}")
        object.__setattr__(self, "severity", severity)
        object.__setattr__(
            self,
            "applicable_extensions",
            frozenset(ext.lower() for ext in self.applicable_extensions),
        )
        if not self.pattern_id:
            object.__setattr__(self, "pattern_id", self.name)

    def applies_to(self, path: str) -> bool:
        if not self.applicable_extensions:
            return True
        lowered = path.lower()
        return any(lowered.endswith(ext) for ext in self.applicable_extensions)


@dataclass(frozen=True)
class Finding:
    """One detected pattern match."""

    id: str
    file: str
    line: Optional[int]
    category: str
    severity: Severity
    pattern_id: str
    message: str
    suggested_fix: str = ""
    scanner: Optional[str] = None
    snippet: str = ""
    detector_rank: int = 0
    offset: int = 0

    def __post_init__(self):
        if self.line is not None and self.line < 1:
            raise ValueError(f"Finding line must be >= 1, got {self.line}")
        object.__setattr__(self, "severity", Severity(self.severity))

    @property
    def risk_weight(self) -> int:
        return RISK_WEIGHTS[self.severity]

    def sort_key(self) -> tuple:
        """Canonical ordering: file path parts, line, detector rank, offset."""
        return (
            tuple(self.file.split("/")),
            self.line or 0,
            self.detector_rank,
            self.offset,
        )


@dataclass(frozen=True)
class ScanWarning:
    """Recoverable I/O problem recorded during a run."""

    path: str
    kind: str  # unreadable_file | unreadable_dir | too_large | missing_root
    message: str
