"""Pytest configuration and fixtures."""

import pytest

from triage.analyzers.base import Detector, Finding, Severity
from triage.analyzers.catalog import PatternCatalog
from triage.config import Settings

# Sample sources for scanning
SAMPLE_JS_LEAKY = """import React from "react";
import axios from "axios";

function login(user, password) {
  console.log("login attempt", password);
  const el = document.getElementById("out");
  el.innerHTML = user.bio;
  debugger;
  return axios.post("/login", { user, password });
}
"""

SAMPLE_JS_CLEAN = """export function add(a, b) {
  return a + b;
}
"""

SAMPLE_PY_LEAKY = '''def connect(password):
    print("connecting with", password)
    return True
'''


def write_tree(root, files: dict[str, str]):
    """Create ``files`` (relative path -> content) under ``root``."""
    for rel_path, content in files.items():
        target = root / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    return root


def make_finding(
    file: str = "a.js",
    line: int | None = 1,
    category: str = "xss",
    severity: Severity = Severity.CRITICAL,
    pattern_id: str = "direct-innerHTML",
    scanner: str | None = "unit",
    detector_rank: int = 0,
    offset: int = 0,
    id: str | None = None,
) -> Finding:
    return Finding(
        id=id or f"{file}:{line}:{pattern_id}:{offset}",
        file=file,
        line=line,
        category=category,
        severity=severity,
        pattern_id=pattern_id,
        message=f"{category} finding",
        scanner=scanner,
        detector_rank=detector_rank,
        offset=offset,
    )


@pytest.fixture
def settings():
    """Settings with small, deterministic defaults."""
    return Settings(scan_workers=2, unit_workers=1, default_unit_timeout=5.0)


@pytest.fixture
def sample_tree(tmp_path):
    """Small JS/Python project with a few known issues."""
    return write_tree(
        tmp_path,
        {
            "src/app.js": SAMPLE_JS_LEAKY,
            "src/util.js": SAMPLE_JS_CLEAN,
            "scripts/db.py": SAMPLE_PY_LEAKY,
            "node_modules/lib/index.js": "eval(code);\n",
            "README.md": "# not scanned\n",
        },
    )


@pytest.fixture
def text_catalog():
    """Catalog with two extension-agnostic detectors for plain text files."""
    return PatternCatalog(
        [
            Detector(name="inner-html", category="xss", severity=Severity.CRITICAL, pattern="innerHTML"),
            Detector(name="leak", category="data-leak", severity=Severity.HIGH, pattern=r"console\.log\(.*secret"),
        ]
    )


@pytest.fixture
def make_tree(tmp_path):
    """Factory writing a file tree under tmp_path."""

    def _make(files: dict[str, str]):
        return write_tree(tmp_path, files)

    return _make


@pytest.fixture
def finding_factory():
    """Factory for hand-built findings."""
    return make_finding
