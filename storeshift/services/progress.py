"""Run progress: phase state machine, subscribers, statistics and the run report."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from ..models.errors import InvalidPhaseTransition, MigrationIssue
from ..models.migration import PIPELINE_PHASES, MigrationPhase, ProgressUpdate

logger = logging.getLogger(__name__)

Subscriber = Callable[[ProgressUpdate], None]

_ACTIVE_PHASES = set(PIPELINE_PHASES[1:])


def _now() -> datetime:
    return datetime.now(timezone.utc)


def is_legal_transition(current: MigrationPhase, target: MigrationPhase, rolled_back: bool) -> bool:
    """
    Legal moves:
    - forward along the pipeline, skipping phases if needed
    - any active phase to completed or failed
    - failed to rolling_back, once per run
    - rolling_back to completed or failed
    """
    if current in PIPELINE_PHASES and target in PIPELINE_PHASES:
        return PIPELINE_PHASES.index(target) > PIPELINE_PHASES.index(current)
    if target in (MigrationPhase.COMPLETED, MigrationPhase.FAILED):
        return current in _ACTIVE_PHASES or current == MigrationPhase.ROLLING_BACK
    if target == MigrationPhase.ROLLING_BACK:
        return current == MigrationPhase.FAILED and not rolled_back
    return False


@dataclass
class RunReport:
    """Summary of one run, written once when the run ends."""
    run_id: str
    started_at: Optional[datetime]
    ended_at: Optional[datetime]
    final_phase: MigrationPhase
    statistics: Dict[str, Any]
    phase_breakdown: Dict[str, Dict[str, Any]]
    error_summary: Dict[str, Any]
    recommendations: List[str]
    result: Dict[str, Any] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=_now)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.ended_at:
            return (self.ended_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": self.duration_seconds,
            "final_phase": self.final_phase.value,
            "statistics": self.statistics,
            "phase_breakdown": self.phase_breakdown,
            "error_summary": self.error_summary,
            "recommendations": self.recommendations,
            "result": self.result,
            "generated_at": self.generated_at.isoformat(),
        }


class ProgressTracker:
    """
    Tracks the phase and progress of the current run and publishes updates.

    The orchestrator drives it; subscribers only observe. Illegal phase
    transitions raise InvalidPhaseTransition.
    """

    def __init__(
        self,
        slow_run_seconds: float = 300.0,
        slow_phase_seconds: float = 120.0,
        error_rate_threshold: float = 0.1,
        heartbeat_interval: Optional[float] = None,
    ):
        """
        Args:
            slow_run_seconds: Runs longer than this get a batching recommendation
            slow_phase_seconds: Phases longer than this get an optimization note
            error_rate_threshold: Failed/total ratio above which errors are flagged
            heartbeat_interval: Seconds between re-published updates, None to disable
        """
        self.slow_run_seconds = slow_run_seconds
        self.slow_phase_seconds = slow_phase_seconds
        self.error_rate_threshold = error_rate_threshold
        self.heartbeat_interval = heartbeat_interval

        self._subscribers: List[Subscriber] = []
        self._queues: List[asyncio.Queue] = []
        self._heartbeat: Optional[asyncio.Task] = None
        self._reset(None)

    def _reset(self, run_id: Optional[str]) -> None:
        self.run_id = run_id
        self.phase = MigrationPhase.IDLE
        self.progress = 0.0
        self.label = ""
        self.started_at: Optional[datetime] = None
        self.ended_at: Optional[datetime] = None
        self._phase_started_at: Optional[datetime] = None
        self.phase_timings: Dict[str, float] = {}
        self.history: List[ProgressUpdate] = []
        self.total_operations = 0
        self.completed_operations = 0
        self.failed_operations = 0
        self.issues: List[Tuple[MigrationPhase, MigrationIssue]] = []
        self._rolled_back = False

    # Observers

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def updates(self) -> AsyncIterator[ProgressUpdate]:
        """Yield updates as they are published, ending at the first terminal phase."""
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        try:
            while True:
                update = await queue.get()
                yield update
                if update.phase.is_terminal:
                    return
        finally:
            self._queues.remove(queue)

    def _publish(self, label: str) -> ProgressUpdate:
        update = ProgressUpdate(
            run_id=self.run_id,
            phase=self.phase,
            progress=self.progress,
            label=label,
            completed_operations=self.completed_operations,
            failed_operations=self.failed_operations,
        )
        self.history.append(update)
        for callback in list(self._subscribers):
            try:
                callback(update)
            except Exception:
                logger.exception("Progress subscriber failed")
        for queue in list(self._queues):
            queue.put_nowait(update)
        return update

    # State machine

    @property
    def is_in_progress(self) -> bool:
        return self.phase in _ACTIVE_PHASES or self.phase == MigrationPhase.ROLLING_BACK

    def start(self, run_id: str) -> None:
        """Begin tracking a new run. Only one run may be tracked at a time."""
        if self.is_in_progress:
            raise InvalidPhaseTransition(f"Run {self.run_id} is still {self.phase.value}")
        self._reset(run_id)
        self.started_at = _now()
        self.transition(MigrationPhase.INITIALIZING, "Initializing migration")
        self._start_heartbeat()

    def transition(self, phase: MigrationPhase, label: str = "") -> ProgressUpdate:
        """Move to a new phase."""
        if not is_legal_transition(self.phase, phase, self._rolled_back):
            raise InvalidPhaseTransition(f"Illegal transition {self.phase.value} -> {phase.value}")

        now = _now()
        if self._phase_started_at is not None:
            elapsed = (now - self._phase_started_at).total_seconds()
            self.phase_timings[self.phase.value] = self.phase_timings.get(self.phase.value, 0.0) + elapsed

        if phase == MigrationPhase.ROLLING_BACK:
            self._rolled_back = True
        self.phase = phase
        self.progress = 1.0 if phase.is_terminal else 0.0
        self.label = label or phase.value
        self._phase_started_at = None if phase.is_terminal else now

        if phase.is_terminal:
            self.ended_at = now
            self._stop_heartbeat()
        elif phase == MigrationPhase.ROLLING_BACK:
            self._start_heartbeat()

        logger.info(f"Phase -> {phase.value}: {self.label}")
        return self._publish(self.label)

    def update(self, progress: float, label: str) -> ProgressUpdate:
        """Report progress within the current phase."""
        self.progress = max(0.0, min(1.0, progress))
        self.label = label
        return self._publish(label)

    def record_success(self, count: int = 1) -> None:
        self.total_operations += count
        self.completed_operations += count

    def record_failure(self, issue: MigrationIssue) -> None:
        self.total_operations += 1
        self.failed_operations += 1
        self.issues.append((self.phase, issue))
        logger.error(f"[{issue.kind.value}] {issue.message}")

    # Heartbeat

    def _start_heartbeat(self) -> None:
        if not self.heartbeat_interval or (self._heartbeat and not self._heartbeat.done()):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; heartbeat disabled")
            return
        self._heartbeat = loop.create_task(self._beat())

    async def _beat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            self._publish(self.label)

    def _stop_heartbeat(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None

    # Reporting

    @property
    def success_rate(self) -> float:
        if self.total_operations == 0:
            return 0.0
        return self.completed_operations / self.total_operations

    def statistics(self) -> Dict[str, Any]:
        return {
            "total_operations": self.total_operations,
            "completed_operations": self.completed_operations,
            "failed_operations": self.failed_operations,
            "success_rate": self.success_rate,
            "phase_timings": dict(self.phase_timings),
            "updates_published": len(self.history),
        }

    def status_summary(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "phase": self.phase.value,
            "progress": self.progress,
            "label": self.label,
            "in_progress": self.is_in_progress,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "statistics": self.statistics(),
        }

    def _phase_breakdown(self) -> Dict[str, Dict[str, Any]]:
        breakdown = {}
        for phase_name, seconds in self.phase_timings.items():
            updates = [u for u in self.history if u.phase.value == phase_name]
            breakdown[phase_name] = {
                "duration_seconds": seconds,
                "updates": len(updates),
                "success": not any(p.value == phase_name for p, _ in self.issues),
            }
        return breakdown

    def _error_summary(self) -> Dict[str, Any]:
        by_kind: Dict[str, List[str]] = {}
        for _, issue in self.issues:
            by_kind.setdefault(issue.kind.value, []).append(issue.message)
        return {
            "total_errors": len(self.issues),
            "errors_by_kind": by_kind,
            "errors": [issue.to_dict() for _, issue in self.issues],
        }

    def _recommendations(self) -> List[str]:
        recommendations = []

        duration = (self.ended_at or _now()) - self.started_at if self.started_at else None
        if duration is not None and duration.total_seconds() > self.slow_run_seconds:
            recommendations.append(
                "Consider breaking large migrations into smaller batches for better performance"
            )

        if self.total_operations and self.failed_operations / self.total_operations > self.error_rate_threshold:
            recommendations.append("High error rate detected. Review data validation and error handling")

        for phase_name, seconds in self.phase_timings.items():
            if seconds > self.slow_phase_seconds:
                recommendations.append(f"Phase {phase_name} took {int(seconds)}s. Consider optimization")

        if self.phase == MigrationPhase.COMPLETED and self.failed_operations == 0 and not self._rolled_back:
            recommendations.append("Migration completed successfully with no errors")
            recommendations.append("Consider running verification tests to ensure data integrity")

        return recommendations

    def generate_report(self, result: Optional[Dict[str, Any]] = None) -> RunReport:
        """Build the report for the tracked run."""
        return RunReport(
            run_id=self.run_id or "",
            started_at=self.started_at,
            ended_at=self.ended_at,
            final_phase=self.phase,
            statistics=self.statistics(),
            phase_breakdown=self._phase_breakdown(),
            error_summary=self._error_summary(),
            recommendations=self._recommendations(),
            result=result or {},
        )


class FileReportSink:
    """Writes each run report once to {directory}/{run_id}_report.json."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def path_for(self, run_id: str) -> Path:
        return self.directory / f"{run_id}_report.json"

    def write(self, report: RunReport) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(report.run_id)
        with open(path, "x") as f:
            json.dump(report.to_dict(), f, indent=2, default=str)
        logger.info(f"Run report saved to {path}")
        return path

    def load(self, run_id: str) -> Dict[str, Any]:
        with open(self.path_for(run_id), "r") as f:
            return json.load(f)

    def latest(self) -> Optional[Dict[str, Any]]:
        """Most recently written report, if any."""
        if not self.directory.exists():
            return None
        paths = sorted(self.directory.glob("*_report.json"), key=lambda p: p.stat().st_mtime)
        if not paths:
            return None
        with open(paths[-1], "r") as f:
            return json.load(f)
