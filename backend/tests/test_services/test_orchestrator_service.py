"""Tests for the scanner registry and orchestrator."""

import asyncio
import sys
import time

import pytest

from triage.analyzers.base import Severity
from triage.analyzers.catalog import default_catalog
from triage.services.orchestrator_service import (
    FindingCollector,
    Orchestrator,
    RegistrationError,
    ScannerRegistry,
    ScannerUnit,
    UnitState,
)
from triage.services.scan_service import ScanEngine


def noop(context):
    return None


class TestScannerRegistry:
    """Test unit registration rules."""

    def test_duplicate_name_rejected(self):
        """Unit names are unique."""
        registry = ScannerRegistry()
        registry.register(ScannerUnit(name="a", runner=noop))
        with pytest.raises(RegistrationError):
            registry.register(ScannerUnit(name="a", runner=noop))

    def test_requires_exactly_one_source(self):
        """A unit needs exactly one of detectors, command or runner."""
        registry = ScannerRegistry()
        with pytest.raises(RegistrationError):
            registry.register(ScannerUnit(name="none"))
        with pytest.raises(RegistrationError):
            registry.register(ScannerUnit(name="both", runner=noop, command=("true",)))

    def test_empty_detectors_allowed(self):
        """A unit with zero detectors is valid."""
        registry = ScannerRegistry()
        registry.register(ScannerUnit(name="empty", detectors=()))
        assert registry.names() == ["empty"]

    def test_empty_command_rejected(self):
        """A command unit needs an argv."""
        with pytest.raises(RegistrationError):
            ScannerRegistry().register(ScannerUnit(name="cmd", command=()))

    def test_non_positive_timeout_rejected(self):
        """Timeouts must be positive."""
        with pytest.raises(RegistrationError):
            ScannerRegistry().register(ScannerUnit(name="t", runner=noop, timeout=0))

    def test_unknown_detector_rejected(self):
        """Detector names are checked against the catalog."""
        registry = ScannerRegistry(default_catalog())
        with pytest.raises(RegistrationError):
            registry.register(ScannerUnit(name="web", detectors=("direct-innerHTML", "nope")))

    def test_frozen_registry_rejects(self):
        """No registration once frozen."""
        registry = ScannerRegistry()
        registry.freeze()
        with pytest.raises(RegistrationError):
            registry.register(ScannerUnit(name="late", runner=noop))

    def test_ordered_by_priority_then_registration(self):
        """Higher priority first; ties keep registration order."""
        registry = ScannerRegistry()
        for name, priority in [("low", 1), ("first-high", 5), ("mid", 3), ("second-high", 5)]:
            registry.register(ScannerUnit(name=name, priority=priority, runner=noop))
        assert [u.name for u in registry.ordered()] == ["first-high", "second-high", "mid", "low"]


class TestFindingCollector:
    """Test the synchronized finding sink."""

    def test_closed_unit_emits_discarded(self, finding_factory):
        """Emits after close are dropped."""
        collector = FindingCollector()
        collector.open("u")
        assert collector.emit("u", finding_factory())
        collector.close("u")
        assert not collector.emit("u", finding_factory(line=2))
        assert collector.count("u") == 1
        assert len(collector.findings) == 1


class TestOrchestrator:
    """Test unit execution, isolation and timeouts."""

    @pytest.fixture
    def catalog(self):
        return default_catalog()

    @pytest.fixture
    def orchestrator(self, catalog):
        return Orchestrator(catalog, ScanEngine(scan_workers=2), unit_workers=1, default_timeout=5.0)

    def test_priority_order_with_empty_unit(self, orchestrator, catalog):
        """A priority-10 unit with zero detectors completes before the priority-5 unit runs."""
        started = []
        registry = ScannerRegistry(catalog)
        registry.register(ScannerUnit(name="unit-5", priority=5, runner=lambda ctx: started.append("unit-5")))
        registry.register(ScannerUnit(name="unit-10", priority=10, detectors=()))

        result = orchestrator.run(registry, [])

        statuses = {s.name: s for s in result.statuses}
        assert [s.name for s in result.statuses] == ["unit-10", "unit-5"]
        assert statuses["unit-10"].state == UnitState.COMPLETED
        assert statuses["unit-10"].findings_emitted == 0
        assert statuses["unit-10"].order < statuses["unit-5"].order
        assert started == ["unit-5"]

    def test_start_order_follows_priority(self, orchestrator):
        """Units start strictly in priority order."""
        started = []
        registry = ScannerRegistry()
        for name, priority in [("c", 1), ("a", 3), ("b", 2)]:
            registry.register(
                ScannerUnit(name=name, priority=priority, runner=lambda ctx, n=name: started.append(n))
            )

        orchestrator.run(registry, [])

        assert started == ["a", "b", "c"]

    def test_detector_unit_findings(self, orchestrator, catalog, sample_tree):
        """Detector units scan the given files and stamp their name."""
        registry = ScannerRegistry(catalog)
        registry.register(ScannerUnit(name="web", detectors=("direct-innerHTML", "debugger-statement")))

        result = orchestrator.run(registry, ["src/app.js", "src/util.js"], str(sample_tree))

        assert [(f.pattern_id, f.line) for f in result.findings] == [
            ("direct-innerHTML", 7),
            ("debugger-statement", 8),
        ]
        assert {f.scanner for f in result.findings} == {"web"}
        assert result.statuses[0].findings_emitted == 2

    def test_failing_unit_isolated(self, orchestrator, catalog, sample_tree):
        """One failing unit does not affect the others."""
        def explode(context):
            raise RuntimeError("boom")

        registry = ScannerRegistry(catalog)
        registry.register(ScannerUnit(name="broken", priority=10, runner=explode))
        registry.register(ScannerUnit(name="web", priority=1, detectors=("direct-innerHTML",)))

        result = orchestrator.run(registry, ["src/app.js"], str(sample_tree))

        statuses = {s.name: s for s in result.statuses}
        assert statuses["broken"].state == UnitState.FAILED
        assert "boom" in statuses["broken"].error
        assert statuses["web"].state == UnitState.COMPLETED
        assert len(result.findings) == 1

    def test_timeout_marks_timed_out(self, orchestrator):
        """A 1ms timeout around a 100ms sleep is a timeout, not a crash."""
        registry = ScannerRegistry()
        registry.register(ScannerUnit(name="slow", runner=lambda ctx: time.sleep(0.1), timeout=0.001))
        registry.register(ScannerUnit(name="after", priority=-1, runner=noop))

        result = orchestrator.run(registry, [])

        statuses = {s.name: s for s in result.statuses}
        assert statuses["slow"].state == UnitState.TIMED_OUT
        assert statuses["after"].state == UnitState.COMPLETED

    def test_partial_findings_kept_on_timeout(self, orchestrator, finding_factory):
        """Findings emitted before a timeout survive."""
        async def emit_then_hang(context):
            context.emit(finding_factory(file="a.js", scanner=None))
            await asyncio.sleep(5)

        registry = ScannerRegistry()
        registry.register(ScannerUnit(name="hang", runner=emit_then_hang, timeout=0.2))

        result = orchestrator.run(registry, [])

        assert result.statuses[0].state == UnitState.TIMED_OUT
        assert [f.file for f in result.findings] == ["a.js"]
        assert result.findings[0].scanner == "hang"

    def test_emits_after_timeout_discarded(self, orchestrator, finding_factory):
        """A runner thread that keeps going after its timeout cannot add findings."""
        def slow_emitter(context):
            context.emit(finding_factory(file="a.js", line=1))
            time.sleep(0.3)
            context.emit(finding_factory(file="a.js", line=2))

        registry = ScannerRegistry()
        registry.register(ScannerUnit(name="slow", runner=slow_emitter, timeout=0.1))

        result = orchestrator.run(registry, [])

        assert [f.line for f in result.findings] == [1]
        assert result.statuses[0].findings_emitted == 1

    def test_runner_return_value_collected(self, orchestrator, finding_factory):
        """Findings returned by a runner are collected."""
        registry = ScannerRegistry()
        registry.register(
            ScannerUnit(name="ret", runner=lambda ctx: [finding_factory(file="b.js"), finding_factory(file="a.js")])
        )

        result = orchestrator.run(registry, [])

        assert [f.file for f in result.findings] == ["a.js", "b.js"]

    def test_final_order_is_canonical(self, orchestrator, finding_factory):
        """Findings from several units are re-sorted by path, line, rank and offset."""
        registry = ScannerRegistry()
        registry.register(ScannerUnit(name="one", priority=2, runner=lambda ctx: [
            finding_factory(file="b/x.js", line=3, id="1"),
            finding_factory(file="a.js", line=9, id="2"),
        ]))
        registry.register(ScannerUnit(name="two", priority=1, runner=lambda ctx: [
            finding_factory(file="a.js", line=2, id="3"),
            finding_factory(file="b/x.js", line=3, detector_rank=0, offset=0, id="4"),
        ]))

        result = orchestrator.run(registry, [])

        assert [(f.file, f.line) for f in result.findings] == [
            ("a.js", 2),
            ("a.js", 9),
            ("b/x.js", 3),
            ("b/x.js", 3),
        ]

    def test_command_unit(self, orchestrator, tmp_path):
        """External analyzers report findings as a JSON array on stdout."""
        records = [
            {"file": "src/a.js", "line": 4, "category": "xss", "severity": "high", "message": "ext"},
            {"file": "src/a.js", "category": "data-leak", "severity": "low"},
        ]
        script = f"import json; print(json.dumps({records!r}))"
        registry = ScannerRegistry()
        registry.register(ScannerUnit(name="ext", command=(sys.executable, "-c", script)))

        result = orchestrator.run(registry, [], str(tmp_path))

        assert result.statuses[0].state == UnitState.COMPLETED
        assert [(f.line, f.category, f.severity) for f in result.findings] == [
            (None, "data-leak", Severity.LOW),
            (4, "xss", Severity.HIGH),
        ]
        assert {f.scanner for f in result.findings} == {"ext"}

    def test_command_non_zero_exit_fails(self, orchestrator, tmp_path):
        """A non-zero exit marks the unit failed."""
        registry = ScannerRegistry()
        registry.register(ScannerUnit(name="bad", command=(sys.executable, "-c", "import sys; sys.exit(3)")))

        result = orchestrator.run(registry, [], str(tmp_path))

        assert result.statuses[0].state == UnitState.FAILED
        assert "exit code 3" in result.statuses[0].error

    def test_command_invalid_output_fails(self, orchestrator, tmp_path):
        """Output that is not a list of finding records is a failure."""
        registry = ScannerRegistry()
        registry.register(ScannerUnit(name="bad", command=(sys.executable, "-c", "print('{not json')")))

        result = orchestrator.run(registry, [], str(tmp_path))

        assert result.statuses[0].state == UnitState.FAILED
        assert "ExternalAnalyzerError" in result.statuses[0].error

    def test_command_timeout_kills_process(self, orchestrator, tmp_path):
        """A hanging analyzer is killed and the unit times out."""
        registry = ScannerRegistry()
        registry.register(
            ScannerUnit(name="hang", command=(sys.executable, "-c", "import time; time.sleep(30)"), timeout=0.5)
        )

        started = time.monotonic()
        result = orchestrator.run(registry, [], str(tmp_path))

        assert result.statuses[0].state == UnitState.TIMED_OUT
        assert time.monotonic() - started < 10

    def test_cancel_marks_units(self, orchestrator):
        """cancel() fails the in-flight unit and every unit not yet started."""
        async def cancel_and_wait(context):
            orchestrator.cancel()
            await asyncio.sleep(5)

        registry = ScannerRegistry()
        registry.register(ScannerUnit(name="first", priority=2, runner=cancel_and_wait))
        registry.register(ScannerUnit(name="second", priority=1, runner=noop))

        result = orchestrator.run(registry, [])

        statuses = {s.name: s for s in result.statuses}
        assert result.cancelled
        assert statuses["first"].state == UnitState.FAILED
        assert statuses["first"].error == "cancelled"
        assert statuses["second"].state == UnitState.FAILED
        assert statuses["second"].error == "cancelled before start"

    def test_registry_frozen_after_run(self, orchestrator):
        """The registry is read-only once a run starts."""
        registry = ScannerRegistry()
        registry.register(ScannerUnit(name="a", runner=noop))
        orchestrator.run(registry, [])
        with pytest.raises(RegistrationError):
            registry.register(ScannerUnit(name="b", runner=noop))

    @pytest.mark.asyncio
    async def test_run_async_with_parallel_units(self, catalog, finding_factory):
        """With several unit workers, units overlap but results stay ordered."""
        orchestrator = Orchestrator(catalog, unit_workers=3, default_timeout=5.0)

        def make_runner(file_name):
            def run(context):
                time.sleep(0.05)
                return [finding_factory(file=file_name, id=file_name)]
            return run

        registry = ScannerRegistry()
        for index, name in enumerate(["c.js", "a.js", "b.js"]):
            registry.register(ScannerUnit(name=f"u{index}", runner=make_runner(name)))

        result = await orchestrator.run_async(registry, [])

        assert [f.file for f in result.findings] == ["a.js", "b.js", "c.js"]
        assert all(s.state == UnitState.COMPLETED for s in result.statuses)
