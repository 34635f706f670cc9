"""Detector registry."""

from triage.analyzers.base import Detector, DetectorError, Finding, ScanWarning, Severity
from triage.analyzers.catalog import DEFAULT_DETECTORS, PatternCatalog, default_catalog

__all__ = [
    "Detector",
    "DetectorError",
    "Finding",
    "ScanWarning",
    "Severity",
    "DEFAULT_DETECTORS",
    "PatternCatalog",
    "default_catalog",
]
