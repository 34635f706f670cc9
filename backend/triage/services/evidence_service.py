"""Snippet redaction for findings."""

import re


class EvidenceService:
    """Service for trimming and redacting matched source lines."""

    REDACTION_PATTERNS = [
        r"ghp_[a-zA-Z0-9]{36,}",
        r"github_pat_[a-zA-Z0-9_]{22,}",
        r"xox[bp]-[a-zA-Z0-9-]+",
        r"AKIA[0-9A-Z]{16}",
        r"sk-[a-zA-Z0-9]{48,}",
        r"sk_live_[a-zA-Z0-9]{24,}",
        r"glpat-[a-zA-Z0-9_-]{20,}",
    ]

    # Keeps the key name, hides the quoted value.
    ASSIGNMENT_PATTERN = re.compile(
        r"(?i)\b((?:api[_-]?key|apikey|secret|token|password)\s*[:=]\s*)([\"'])[^\"']*\2?"
    )

    MAX_SNIPPET_CHARS = 200

    def __init__(self):
        self._compiled = [re.compile(pattern) for pattern in self.REDACTION_PATTERNS]

    def redact(self, text: str) -> str:
        redacted = text
        for pattern in self._compiled:
            redacted = pattern.sub("[REDACTED]", redacted)
        redacted = self.ASSIGNMENT_PATTERN.sub(r"\1\2[REDACTED]\2", redacted)
        if len(redacted) > self.MAX_SNIPPET_CHARS:
            redacted = redacted[: self.MAX_SNIPPET_CHARS] + "..."
        return redacted
