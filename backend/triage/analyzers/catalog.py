"""Detector catalog and the built-in detector set."""

import re
from collections import defaultdict
from typing import Iterable, Iterator, Optional

from triage.analyzers.base import Detector, DetectorError, Severity
from triage.analyzers.patterns import compile_pattern


RankedDetector = tuple[int, Detector, re.Pattern]

SCRIPT_EXTENSIONS = frozenset({".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs", ".html", ".vue", ".svelte"})
TYPESCRIPT_EXTENSIONS = frozenset({".ts", ".tsx"})
PYTHON_EXTENSIONS = frozenset({".py"})


class PatternCatalog:
    """Ordered registry of detectors.

    Registration order is the detector rank used for deterministic ordering.
    """

    def __init__(self, detectors: Iterable[Detector] = ()):
        self._entries: dict[str, tuple[Detector, re.Pattern]] = {}
        self._frozen = False
        for detector in detectors:
            self.register(detector)

    def register(self, detector: Detector) -> Detector:
        if self._frozen:
            raise DetectorError(f"Catalog is frozen; cannot register {detector.name!r}")
        if not detector.name or not detector.name.strip():
            raise DetectorError("Detector name must not be empty")
        if not detector.category:
            raise DetectorError(f"Detector {detector.name!r} has no category")
        if not detector.pattern:
            raise DetectorError(f"Detector {detector.name!r} has an empty pattern")
        if detector.name in self._entries:
            raise DetectorError(f"Detector {detector.name!r} is already registered")
        compiled = compile_pattern(detector)
        self._entries[detector.name] = (detector, compiled)
        return detector

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Detector:
        try:
            return self._entries[name][0]
        except KeyError:
            raise DetectorError(f"Unknown detector {name!r}") from None

    def rank(self, name: str) -> int:
        for index, key in enumerate(self._entries):
            if key == name:
                return index
        raise DetectorError(f"Unknown detector {name!r}")

    def ranked(self) -> list[RankedDetector]:
        return [
            (index, detector, compiled)
            for index, (detector, compiled) in enumerate(self._entries.values())
        ]

    def resolve(self, names: Iterable[str]) -> list[RankedDetector]:
        """Resolve detector names to ranked entries, in catalog order."""
        wanted = list(names)
        unknown = [name for name in wanted if name not in self._entries]
        if unknown:
            raise DetectorError(f"Unknown detector(s): {', '.join(unknown)}")
        selected = set(wanted)
        return [entry for entry in self.ranked() if entry[1].name in selected]

    def pattern_for(self, pattern_id: str) -> Optional[re.Pattern]:
        for detector, compiled in self._entries.values():
            if detector.pattern_id == pattern_id:
                return compiled
        return None

    def by_category(self) -> dict[str, list[Detector]]:
        categories: dict[str, list[Detector]] = defaultdict(list)
        for detector, _ in self._entries.values():
            categories[detector.category].append(detector)
        return dict(categories)

    def names(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[Detector]:
        return (detector for detector, _ in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


DEFAULT_DETECTORS = [
    # XSS
    Detector(
        name="direct-innerHTML",
        category="xss",
        severity=Severity.CRITICAL,
        pattern=r"\.innerHTML\s*=(?!=)",
        message="Direct innerHTML assignment without sanitization",
        suggested_fix="Use DOMPurify.sanitize() before setting innerHTML, or textContent for plain text",
        applicable_extensions=SCRIPT_EXTENSIONS,
    ),
    Detector(
        name="outer-html",
        category="xss",
        severity=Severity.HIGH,
        pattern=r"\.outerHTML\s*=(?!=)",
        message="Direct outerHTML assignment",
        suggested_fix="Build DOM nodes explicitly instead of assigning markup strings",
        applicable_extensions=SCRIPT_EXTENSIONS,
    ),
    Detector(
        name="document-write",
        category="xss",
        severity=Severity.HIGH,
        pattern=r"\bdocument\.write(?:ln)?\s*\(",
        message="document.write can inject unsanitized markup",
        suggested_fix="Replace document.write with DOM APIs",
        applicable_extensions=SCRIPT_EXTENSIONS,
    ),
    Detector(
        name="dangerously-set-inner-html",
        category="xss",
        severity=Severity.MEDIUM,
        pattern=r"dangerouslySetInnerHTML",
        message="dangerouslySetInnerHTML renders raw markup",
        suggested_fix="Sanitize the HTML with DOMPurify before rendering",
        applicable_extensions=SCRIPT_EXTENSIONS,
    ),
    # Data leaks
    Detector(
        name="password-console-leak",
        category="data-leak",
        severity=Severity.CRITICAL,
        pattern=r"(?i)console\.(?:log|info|debug|warn)\(.*password",
        message="Password data potentially logged to console",
        suggested_fix="Remove password logging or use secure logging methods",
        applicable_extensions=SCRIPT_EXTENSIONS,
    ),
    Detector(
        name="secret-console-leak",
        category="data-leak",
        severity=Severity.CRITICAL,
        pattern=r"(?i)console\.(?:log|info|debug|warn)\(.*secret",
        message="Secret data potentially logged to console",
        suggested_fix="Remove secret logging or use secure logging methods",
        applicable_extensions=SCRIPT_EXTENSIONS,
    ),
    Detector(
        name="token-console-leak",
        category="data-leak",
        severity=Severity.HIGH,
        pattern=r"(?i)console\.(?:log|info|debug|warn)\(.*token",
        message="Token data potentially logged to console",
        suggested_fix="Remove token logging or mask sensitive parts",
        applicable_extensions=SCRIPT_EXTENSIONS,
    ),
    Detector(
        name="localStorage-password",
        category="data-leak",
        severity=Severity.CRITICAL,
        pattern=r"(?i)localStorage\.setItem\(.*password",
        message="Password stored in localStorage (unencrypted)",
        suggested_fix="Use secure storage or encrypt sensitive data",
        applicable_extensions=SCRIPT_EXTENSIONS,
    ),
    Detector(
        name="sessionStorage-sensitive",
        category="data-leak",
        severity=Severity.HIGH,
        pattern=r"(?i)sessionStorage\.setItem\(.*(?:password|secret|token|key)",
        message="Sensitive data stored in sessionStorage",
        suggested_fix="Use secure storage methods for sensitive data",
        applicable_extensions=SCRIPT_EXTENSIONS,
    ),
    Detector(
        name="python-print-secret",
        category="data-leak",
        severity=Severity.HIGH,
        pattern=r"(?i)\bprint\(.*(?:password|secret|token)",
        message="Sensitive data printed to stdout",
        suggested_fix="Remove the print or log a masked value",
        applicable_extensions=PYTHON_EXTENSIONS,
    ),
    # Credentials
    Detector(
        name="hardcoded-credentials",
        category="credential-exposure",
        severity=Severity.CRITICAL,
        pattern=r"(?i)\b(?:password|secret)\s*[:=]\s*['\"][^'\"]{8,}",
        message="Hardcoded credentials found in source code",
        suggested_fix="Move credentials to environment variables",
    ),
    Detector(
        name="api-key-exposure",
        category="credential-exposure",
        severity=Severity.CRITICAL,
        pattern=r"(?i)\b(?:api[_-]?key|apikey)\s*[:=]\s*['\"][^'\"]+",
        message="API key hardcoded in source code",
        suggested_fix="Load API keys from the environment or a secret manager",
    ),
    # Code injection
    Detector(
        name="eval-usage",
        category="code-injection",
        severity=Severity.CRITICAL,
        pattern=r"\beval\s*\(",
        message="Use of eval() creates code injection risk",
        suggested_fix="Replace eval() with explicit parsing or dispatch tables",
        applicable_extensions=SCRIPT_EXTENSIONS | PYTHON_EXTENSIONS,
    ),
    Detector(
        name="function-constructor",
        category="code-injection",
        severity=Severity.HIGH,
        pattern=r"\bnew\s+Function\s*\(",
        message="Function constructor can execute arbitrary code",
        suggested_fix="Use safer alternatives to the Function constructor",
        applicable_extensions=SCRIPT_EXTENSIONS,
    ),
    # SQL
    Detector(
        name="sql-string-concat",
        category="sql-injection",
        severity=Severity.HIGH,
        pattern=r"(?i)['\"`]\s*(?:SELECT|INSERT\s+INTO|UPDATE|DELETE\s+FROM)\b[^'\"`\n]*['\"`]\s*\+",
        message="SQL query built by string concatenation",
        suggested_fix="Use parameterized queries",
        applicable_extensions=SCRIPT_EXTENSIONS | PYTHON_EXTENSIONS,
    ),
    # Type safety
    Detector(
        name="unsafe-type-assertion",
        category="type-safety",
        severity=Severity.HIGH,
        pattern=r"\bas\s+any\b",
        message="Type assertion bypasses TypeScript type checking",
        suggested_fix='Define a proper interface instead of "as any"',
        applicable_extensions=TYPESCRIPT_EXTENSIONS,
    ),
    # Crypto
    Detector(
        name="insecure-random",
        category="cryptographic-weakness",
        severity=Severity.MEDIUM,
        pattern=r"\bMath\.random\(\)",
        message="Math.random() is not cryptographically secure",
        suggested_fix="Use crypto.getRandomValues() for security-sensitive values",
        applicable_extensions=SCRIPT_EXTENSIONS,
    ),
    # Debug leftovers
    Detector(
        name="debugger-statement",
        category="debug-artifact",
        severity=Severity.LOW,
        pattern=r"^[ \t]*debugger[ \t]*;?[ \t\r]*$",
        message="debugger statement left in source",
        suggested_fix="Remove the debugger statement",
        applicable_extensions=SCRIPT_EXTENSIONS,
    ),
]


def default_catalog() -> PatternCatalog:
    """Catalog seeded with the built-in detectors."""
    return PatternCatalog(DEFAULT_DETECTORS)
