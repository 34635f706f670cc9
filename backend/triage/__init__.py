"""Static security triage for source trees."""

from triage.services.orchestrator_service import ScannerUnit, UnitContext, UnitState
from triage.services.report_service import Report
from triage.services.triage_service import TriageEngine

__version__ = "0.1.0"

__all__ = ["Report", "ScannerUnit", "TriageEngine", "UnitContext", "UnitState"]
