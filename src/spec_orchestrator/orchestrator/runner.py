"""Control shell: select, execute, correct, advance, escalate."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from spec_orchestrator.config import Settings
from spec_orchestrator.orchestrator.collaborators import (
    CorrectionGenerator,
    SpecParser,
    TaskExecutor,
)
from spec_orchestrator.orchestrator.errors import InvalidSpecStateError
from spec_orchestrator.orchestrator.events import JsonlTransitionLog, TransitionListeners
from spec_orchestrator.orchestrator.models import ErrorContext, Task, TaskStatus
from spec_orchestrator.orchestrator.ralph_loop import RalphLoop, RalphLoopResult
from spec_orchestrator.orchestrator.state import StateStore
from spec_orchestrator.orchestrator.task_manager import TaskManager
from spec_orchestrator.storage.common import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EscalationReport:
    """Everything an operator needs after the correction budget is spent."""

    task_id: str
    task_description: str
    error: ErrorContext
    attempts: list[RalphLoopResult]
    max_attempts: int


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of one orchestration run."""

    completed: bool
    completed_tasks: list[str] = field(default_factory=list)
    skipped_tasks: list[str] = field(default_factory=list)
    escalation: EscalationReport | None = None
    error: str | None = None


class SpecOrchestrator:
    """Runs tasks one at a time and routes failures through the Ralph-Loop."""

    def __init__(
        self,
        task_manager: TaskManager,
        executor: TaskExecutor,
        ralph_loop: RalphLoop,
    ) -> None:
        self.task_manager = task_manager
        self.executor = executor
        self.ralph_loop = ralph_loop

    @classmethod
    def from_settings(  # noqa: PLR0913
        cls,
        settings: Settings,
        *,
        spec_dir: Path,
        parser: SpecParser,
        executor: TaskExecutor,
        generator: CorrectionGenerator,
    ) -> SpecOrchestrator:
        """Wire the task manager and Ralph-Loop from settings."""

        settings.validate()
        listeners = TransitionListeners()
        if settings.storage.transition_log_path is not None:
            listeners.add(JsonlTransitionLog(settings.storage.transition_log_path))
        task_manager = TaskManager(
            parser,
            state_store=StateStore(settings.storage.state_path),
            backup_dir=settings.storage.backup_dir,
            max_backups=settings.storage.max_backups,
            backup_task_updates=settings.storage.backup_task_updates,
            listeners=listeners,
        )
        ralph_loop = RalphLoop(
            task_manager,
            generator,
            spec_path=spec_dir,
            max_attempts=settings.correction.max_attempts,
            backup_dir=settings.storage.backup_dir,
            max_backups=settings.storage.max_backups,
            strict_validation=settings.correction.strict_validation,
        )
        return cls(task_manager, executor, ralph_loop)

    def run(self, *, include_optional: bool = False) -> ExecutionResult:
        """Execute tasks until everything is done or a task needs escalation."""

        manager = self.task_manager
        if manager.spec is None:
            raise InvalidSpecStateError(message="No spec loaded - call load_spec or resume_spec")
        if manager.state.execution_started_at is None:
            manager.start_execution()

        history: dict[str, list[RalphLoopResult]] = {}
        while True:
            task = manager.get_in_flight_task() or manager.select_next_task(
                include_optional=include_optional,
            )
            if task is None:
                break
            failure = self._execute(task)
            if failure is None:
                manager.complete_task(task.id)
                continue

            escalation = self._correct(task, failure, history.setdefault(task.id, []))
            if escalation is not None:
                logger.error(
                    "Escalating task %s after %d correction attempts",
                    task.id,
                    escalation.max_attempts,
                )
                return self._result(completed=False, escalation=escalation)

        if not manager.is_execution_complete():
            summary = manager.get_execution_summary()
            return self._result(
                completed=False,
                error=(
                    "No eligible task left but execution is incomplete: "
                    f"{summary.completed}/{summary.total} tasks completed"
                ),
            )
        for task in manager.all_tasks():
            if task.is_optional and task.status is TaskStatus.NOT_STARTED:
                manager.skip_task(task.id)
        logger.info("Execution complete: %d tasks completed", len(manager.state.completed_tasks))
        return self._result(completed=True)

    def _execute(self, task: Task) -> ErrorContext | None:
        manager = self.task_manager
        if task.status is TaskStatus.NOT_STARTED:
            manager.queue_task(task.id)
        if task.status is TaskStatus.QUEUED:
            manager.start_task(task.id)
        logger.info("Executing task %s: %s", task.id, task.description)
        try:
            outcome = self.executor.execute(task)
        except Exception as error:  # noqa: BLE001
            return manager.halt_on_failure(task.id, error)
        if outcome.success:
            return None
        if outcome.error is not None:
            return outcome.error
        return ErrorContext(
            task_id=task.id,
            error_message=f"Task {task.id} failed without error details",
            stack_trace="",
            failed_test=None,
            timestamp=utc_now(),
        )

    def _correct(
        self,
        task: Task,
        failure: ErrorContext,
        attempts: list[RalphLoopResult],
    ) -> EscalationReport | None:
        """Correct until a fix lands; return a report once attempts are exhausted."""

        while True:
            outcome = self.ralph_loop.execute_correction(failure)
            attempts.append(outcome)
            if outcome.success:
                return None
            if outcome.exhausted:
                return EscalationReport(
                    task_id=task.id,
                    task_description=task.description,
                    error=failure,
                    attempts=list(attempts),
                    max_attempts=self.ralph_loop.max_attempts,
                )

    def _result(
        self,
        *,
        completed: bool,
        escalation: EscalationReport | None = None,
        error: str | None = None,
    ) -> ExecutionResult:
        state = self.task_manager.state
        return ExecutionResult(
            completed=completed,
            completed_tasks=list(state.completed_tasks),
            skipped_tasks=list(state.skipped_tasks),
            escalation=escalation,
            error=error,
        )


def render_escalation_lines(report: EscalationReport) -> list[str]:
    """Operator-facing escalation text; message and trace are reproduced verbatim."""

    error = report.error
    lines = [
        f"Escalation required for task {report.task_id}: {report.task_description}",
        f"Correction attempts exhausted: {report.max_attempts}",
        f"Failed at: {error.timestamp.isoformat()}",
        f"Failed test: {error.failed_test or '-'}",
        "Error message:",
        *error.error_message.splitlines(),
        "Stack trace:",
        *(error.stack_trace.splitlines() or ["-"]),
        "Attempt history:",
    ]
    if not report.attempts:
        lines.append("  (no attempts recorded)")
    for outcome in report.attempts:
        status = "succeeded" if outcome.success else "failed"
        lines.append(
            f"  attempt={outcome.attempt_number} status={status} "
            f"exhausted={'yes' if outcome.exhausted else 'no'}",
        )
        if outcome.analysis is not None:
            analysis = outcome.analysis
            lines.append(
                f"    analysis: type={analysis.error_type.value} "
                f"target={analysis.target_file.value} confidence={analysis.confidence}",
            )
            lines.append(f"    root_cause: {analysis.root_cause}")
        if outcome.plan is not None:
            lines.append(f"    correction: {outcome.plan.correction}")
        if outcome.error:
            lines.append(f"    error: {outcome.error}")
    return lines
