"""Static category to downstream-impact lookup."""

from typing import Mapping, Optional


DEFAULT_CASCADE_TABLE: dict[str, tuple[str, ...]] = {
    "xss": (
        "Code injection",
        "Session hijacking",
        "Credential theft",
        "Session token theft",
        "CSRF token bypass",
    ),
    "auth-bypass": (
        "Unauthorized access",
        "Privilege escalation",
        "Data breach",
        "Enables all endpoint vulnerabilities",
        "Admin access cascade",
    ),
    "sql-injection": ("Database compromise", "Data extraction", "System takeover"),
    "csrf": ("Unauthorized actions", "Account takeover", "Data modification"),
    "data-leak": ("Information disclosure", "Privacy violation", "Credential exposure"),
    "credential-exposure": ("Credential exposure", "Unauthorized access", "Data breach"),
    "code-injection": ("Arbitrary code execution", "System takeover"),
    "cryptographic-weakness": ("Predictable tokens", "Session hijacking"),
    "type-safety": ("Unchecked runtime errors",),
}


class CascadeKnowledgeBase:
    """Curated table of the downstream impacts a finding category may cause.

    The table is static; it is not derived from any analysis of the code.
    """

    def __init__(self, table: Optional[Mapping[str, tuple[str, ...]]] = None):
        source = DEFAULT_CASCADE_TABLE if table is None else table
        self._table = {category: tuple(dict.fromkeys(effects)) for category, effects in source.items()}

    def effects(self, category: str) -> tuple[str, ...]:
        return self._table.get(category, ())

    def breadth(self, category: str) -> int:
        return len(self.effects(category))

    def categories(self) -> list[str]:
        return sorted(self._table)
