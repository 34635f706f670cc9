"""Scanner registry and fault-isolated unit orchestration.

Units run by descending priority (registration order breaks ties), each
under its own timeout. A failing or timed-out unit is recorded and the run
moves on; findings a unit emitted before it stopped are kept.
"""

import asyncio
import inspect
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError

from triage.analyzers.base import Finding, ScanWarning
from triage.analyzers.catalog import PatternCatalog
from triage.analyzers.patterns import finding_id
from triage.schemas.external import external_findings_adapter
from triage.services.scan_service import ScanEngine

logger = logging.getLogger(__name__)

# Findings from external analyzers sort after every catalog detector.
EXTERNAL_RANK = 1_000_000


class UnitState(str, Enum):
    """Per-unit lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class RegistrationError(ValueError):
    """Invalid or duplicate scanner unit registration."""
    pass


class ExternalAnalyzerError(RuntimeError):
    """External analyzer exited non-zero or printed unusable output."""
    pass


@dataclass(frozen=True)
class ScannerUnit:
    """A named, prioritized detection job.

    Exactly one of ``detectors`` (catalog detector names), ``command``
    (external analyzer argv) or ``runner`` (callable taking a UnitContext)
    must be set.
    """

    name: str
    priority: int = 0
    auto_fix: bool = False
    detectors: Optional[tuple[str, ...]] = None
    command: Optional[tuple[str, ...]] = None
    runner: Optional[Callable[["UnitContext"], Any]] = None
    timeout: Optional[float] = None

    def __post_init__(self):
        if self.detectors is not None:
            object.__setattr__(self, "detectors", tuple(self.detectors))
        if self.command is not None:
            object.__setattr__(self, "command", tuple(self.command))

    @property
    def kind(self) -> str:
        if self.detectors is not None:
            return "detectors"
        if self.command is not None:
            return "command"
        return "runner"


@dataclass(frozen=True)
class ScannerStatus:
    """Final state of one unit in a run."""

    name: str
    priority: int
    state: UnitState
    error: Optional[str] = None
    findings_emitted: int = 0
    duration_seconds: float = 0.0
    order: Optional[int] = None


class ScannerRegistry:
    """Caller-owned set of scanner units.

    Configure with ``register`` and then run; the registry is frozen when the
    first run starts.
    """

    def __init__(self, catalog: Optional[PatternCatalog] = None):
        self.catalog = catalog
        self._units: list[ScannerUnit] = []
        self._frozen = False

    def register(self, unit: ScannerUnit) -> ScannerUnit:
        if self._frozen:
            raise RegistrationError(f"Registry is frozen; cannot register {unit.name!r}")
        if not unit.name or not unit.name.strip():
            raise RegistrationError("Scanner unit name must not be empty")
        if any(existing.name == unit.name for existing in self._units):
            raise RegistrationError(f"Scanner unit {unit.name!r} is already registered")

        sources = [s for s in (unit.detectors, unit.command, unit.runner) if s is not None]
        if len(sources) != 1:
            raise RegistrationError(
                f"Scanner unit {unit.name!r} needs exactly one of detectors, command or runner"
            )
        if unit.command is not None and not unit.command:
            raise RegistrationError(f"Scanner unit {unit.name!r} has an empty command")
        if unit.runner is not None and not callable(unit.runner):
            raise RegistrationError(f"Scanner unit {unit.name!r} runner is not callable")
        if unit.timeout is not None and unit.timeout <= 0:
            raise RegistrationError(f"Scanner unit {unit.name!r} timeout must be positive")
        if unit.detectors and self.catalog is not None:
            unknown = [name for name in unit.detectors if name not in self.catalog]
            if unknown:
                raise RegistrationError(
                    f"Scanner unit {unit.name!r} references unknown detector(s): {', '.join(unknown)}"
                )

        self._units.append(unit)
        return unit

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def ordered(self) -> list[ScannerUnit]:
        """Units by descending priority; sort is stable so ties keep registration order."""
        return sorted(self._units, key=lambda u: -u.priority)

    def get(self, name: str) -> ScannerUnit:
        for unit in self._units:
            if unit.name == name:
                return unit
        raise KeyError(name)

    def names(self) -> list[str]:
        return [unit.name for unit in self._units]

    def __iter__(self):
        return iter(list(self._units))

    def __len__(self) -> int:
        return len(self._units)


class FindingCollector:
    """Single synchronized append point for findings from concurrent units."""

    def __init__(self):
        self._lock = threading.Lock()
        self._findings: list[Finding] = []
        self._warnings: list[ScanWarning] = []
        self._open: set[str] = set()
        self._counts: dict[str, int] = {}

    def open(self, unit_name: str) -> None:
        with self._lock:
            self._open.add(unit_name)
            self._counts.setdefault(unit_name, 0)

    def close(self, unit_name: str) -> None:
        with self._lock:
            self._open.discard(unit_name)

    def emit(self, unit_name: str, finding: Finding) -> bool:
        """Record a finding; returns False once the unit has been closed."""
        with self._lock:
            if unit_name not in self._open:
                return False
            self._findings.append(finding)
            self._counts[unit_name] += 1
            return True

    def warn(self, warnings: Iterable[ScanWarning]) -> None:
        with self._lock:
            self._warnings.extend(warnings)

    def count(self, unit_name: str) -> int:
        with self._lock:
            return self._counts.get(unit_name, 0)

    @property
    def findings(self) -> list[Finding]:
        with self._lock:
            return list(self._findings)

    @property
    def warnings(self) -> list[ScanWarning]:
        with self._lock:
            return list(self._warnings)


@dataclass
class UnitContext:
    """What a unit sees while it runs."""

    unit: ScannerUnit
    files: tuple[str, ...]
    root: Optional[str]
    collector: FindingCollector
    cancelled: threading.Event = field(default_factory=threading.Event)

    def emit(self, finding: Finding) -> bool:
        if self.cancelled.is_set():
            return False
        if finding.scanner != self.unit.name:
            finding = replace(finding, scanner=self.unit.name)
        return self.collector.emit(self.unit.name, finding)


@dataclass
class OrchestrationResult:
    findings: list[Finding]
    statuses: list[ScannerStatus]
    warnings: list[ScanWarning]
    cancelled: bool = False


class Orchestrator:
    """Runs registered scanner units with fault isolation and timeouts."""

    CANCEL_POLL_INTERVAL = 0.05

    def __init__(
        self,
        catalog: PatternCatalog,
        scan_engine: Optional[ScanEngine] = None,
        unit_workers: int = 1,
        default_timeout: float = 60.0,
    ):
        self.catalog = catalog
        self.scan_engine = scan_engine or ScanEngine()
        self.unit_workers = max(1, unit_workers)
        self.default_timeout = default_timeout
        self._cancel_requested = threading.Event()

    def cancel(self) -> None:
        """Request whole-run cancellation; safe to call from any thread."""
        self._cancel_requested.set()

    def run(
        self,
        registry: ScannerRegistry,
        files: Iterable[str] = (),
        root: Optional[str] = None,
    ) -> OrchestrationResult:
        return asyncio.run(self.run_async(registry, files, root))

    async def run_async(
        self,
        registry: ScannerRegistry,
        files: Iterable[str] = (),
        root: Optional[str] = None,
    ) -> OrchestrationResult:
        registry.freeze()

        units = registry.ordered()
        file_list = tuple(files)
        collector = FindingCollector()
        states: dict[str, dict[str, Any]] = {
            unit.name: {"state": UnitState.PENDING, "error": None, "duration": 0.0, "order": None}
            for unit in units
        }
        inflight: dict[str, tuple[asyncio.Future, UnitContext]] = {}
        run_flags = {"cancelled": False}
        semaphore = asyncio.Semaphore(self.unit_workers)

        watcher = asyncio.create_task(self._watch_cancel(inflight, run_flags))
        tasks = []
        try:
            for order, unit in enumerate(units):
                await semaphore.acquire()
                if run_flags["cancelled"] or self._cancel_requested.is_set():
                    run_flags["cancelled"] = True
                    semaphore.release()
                    break
                context = UnitContext(unit=unit, files=file_list, root=root, collector=collector)
                states[unit.name]["order"] = order
                tasks.append(
                    asyncio.create_task(
                        self._run_unit(unit, context, states[unit.name], inflight, run_flags, semaphore)
                    )
                )
            await asyncio.gather(*tasks)
        finally:
            self._cancel_requested.clear()
            watcher.cancel()
            try:
                await watcher
            except asyncio.CancelledError:
                pass

        statuses = []
        for unit in units:
            record = states[unit.name]
            if record["state"] == UnitState.PENDING and run_flags["cancelled"]:
                record["state"] = UnitState.FAILED
                record["error"] = "cancelled before start"
            statuses.append(
                ScannerStatus(
                    name=unit.name,
                    priority=unit.priority,
                    state=record["state"],
                    error=record["error"],
                    findings_emitted=collector.count(unit.name),
                    duration_seconds=round(record["duration"], 4),
                    order=record["order"],
                )
            )

        findings = sorted(collector.findings, key=Finding.sort_key)
        return OrchestrationResult(
            findings=findings,
            statuses=statuses,
            warnings=collector.warnings,
            cancelled=run_flags["cancelled"],
        )

    async def _watch_cancel(self, inflight: dict, run_flags: dict) -> None:
        while True:
            if self._cancel_requested.is_set():
                run_flags["cancelled"] = True
                logger.warning("Run cancelled; stopping %d in-flight unit(s)", len(inflight))
                for future, context in list(inflight.values()):
                    context.cancelled.set()
                    future.cancel()
                return
            await asyncio.sleep(self.CANCEL_POLL_INTERVAL)

    async def _run_unit(
        self,
        unit: ScannerUnit,
        context: UnitContext,
        record: dict[str, Any],
        inflight: dict,
        run_flags: dict,
        semaphore: asyncio.Semaphore,
    ) -> None:
        timeout = unit.timeout or self.default_timeout
        started = time.monotonic()
        record["state"] = UnitState.RUNNING
        context.collector.open(unit.name)
        inner = asyncio.ensure_future(self._execute(unit, context))
        inflight[unit.name] = (inner, context)
        logger.info("Running scanner unit %s (priority %d)", unit.name, unit.priority)

        try:
            await asyncio.wait_for(inner, timeout=timeout)
            record["state"] = UnitState.COMPLETED
        except asyncio.TimeoutError:
            context.cancelled.set()
            record["state"] = UnitState.TIMED_OUT
            record["error"] = f"Timed out after {timeout}s"
            logger.warning("Scanner unit %s timed out after %ss", unit.name, timeout)
        except asyncio.CancelledError:
            context.cancelled.set()
            if not run_flags["cancelled"]:
                raise
            record["state"] = UnitState.FAILED
            record["error"] = "cancelled"
        except ExternalAnalyzerError as exc:
            context.cancelled.set()
            record["state"] = UnitState.FAILED
            record["error"] = f"{type(exc).__name__}: {exc}"
            logger.warning("Scanner unit %s failed: %s", unit.name, exc)
        except Exception as exc:
            context.cancelled.set()
            record["state"] = UnitState.FAILED
            record["error"] = f"{type(exc).__name__}: {exc}"
            logger.exception("Scanner unit %s failed: %s", unit.name, exc)
        finally:
            context.collector.close(unit.name)
            inflight.pop(unit.name, None)
            record["duration"] = time.monotonic() - started
            semaphore.release()

    async def _execute(self, unit: ScannerUnit, context: UnitContext) -> None:
        if unit.kind == "detectors":
            await self._run_detectors(unit, context)
        elif unit.kind == "command":
            await self._run_command(unit, context)
        else:
            await self._run_callable(unit, context)

    async def _run_detectors(self, unit: ScannerUnit, context: UnitContext) -> None:
        ranked = self.catalog.resolve(unit.detectors or ())
        if not ranked:
            return
        result = await asyncio.to_thread(
            self.scan_engine.scan,
            context.files,
            ranked,
            root=context.root,
            scanner=unit.name,
            cancel_event=context.cancelled,
            emit=context.emit,
        )
        context.collector.warn(result.warnings)

    async def _run_command(self, unit: ScannerUnit, context: UnitContext) -> None:
        process = await asyncio.create_subprocess_exec(
            *unit.command,
            cwd=context.root,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if process.returncode != 0:
            error_msg = stderr.decode("utf-8", errors="replace").strip()[:500]
            raise ExternalAnalyzerError(f"exit code {process.returncode}: {error_msg}")

        try:
            records = external_findings_adapter.validate_json(stdout or b"[]")
        except ValidationError as exc:
            raise ExternalAnalyzerError(f"invalid analyzer output: {exc.error_count()} error(s)") from exc

        for index, record in enumerate(records):
            pattern_id = record.pattern_id or unit.name
            context.emit(
                Finding(
                    id=finding_id(unit.name, record.file, pattern_id, index),
                    file=record.file,
                    line=record.line,
                    category=record.category,
                    severity=record.severity,
                    pattern_id=pattern_id,
                    message=record.message or record.category,
                    suggested_fix=record.suggested_fix,
                    scanner=unit.name,
                    detector_rank=EXTERNAL_RANK,
                    offset=index,
                )
            )

    async def _run_callable(self, unit: ScannerUnit, context: UnitContext) -> None:
        if inspect.iscoroutinefunction(unit.runner):
            produced = await unit.runner(context)
        else:
            produced = await asyncio.to_thread(unit.runner, context)
        for finding in produced or ():
            context.emit(finding)
