"""Task state machine backed by tasks.md markers and a persisted state file.

Every committed status change is written to tasks.md first, then announced to
listeners, then recorded in the state file. tasks.md is therefore the source
of truth when the two disagree after a crash.
"""

from __future__ import annotations

import logging
import re
import traceback
from pathlib import Path

from spec_orchestrator.orchestrator.collaborators import SpecParser, StatusTransitionListener
from spec_orchestrator.orchestrator.dependency_graph import DependencyGraph
from spec_orchestrator.orchestrator.errors import (
    IncompleteChildrenError,
    InvalidSpecStateError,
    OrchestratorError,
    PrerequisiteError,
    SpecParseError,
    TaskFileUpdateError,
    TaskNotFoundError,
)
from spec_orchestrator.orchestrator.events import TransitionListeners
from spec_orchestrator.orchestrator.models import (
    ErrorContext,
    ExecutionStatus,
    ExecutionSummary,
    LoadSpecResult,
    ParsedSpec,
    SpecArtifact,
    StatusTransitionEvent,
    Task,
    TaskStatus,
    iter_tasks,
)
from spec_orchestrator.orchestrator.state import OrchestratorState, StateStore
from spec_orchestrator.orchestrator.task_file import (
    read_task_statuses,
    replace_all_markers,
    replace_task_marker,
)
from spec_orchestrator.storage.common import utc_now
from spec_orchestrator.storage.file_store import (
    DEFAULT_BACKUP_DIR,
    DEFAULT_MAX_BACKUPS,
    WriteResult,
    atomic_write,
    atomic_write_with_backup,
    safe_read,
    validate_markdown,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.NOT_STARTED: frozenset({TaskStatus.QUEUED}),
    TaskStatus.QUEUED: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.NOT_STARTED}),
    TaskStatus.COMPLETED: frozenset(),
}

_PROPERTY_REF = re.compile(r"^(?:Property\s+)?(\d+)$", re.IGNORECASE)


def is_valid_transition(current: TaskStatus, new: TaskStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


class TaskManager:
    """Owns the loaded task tree, its dependency graph, and orchestrator state."""

    def __init__(  # noqa: PLR0913
        self,
        parser: SpecParser,
        *,
        state_store: StateStore | None = None,
        backup_dir: Path = DEFAULT_BACKUP_DIR,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        backup_task_updates: bool = False,
        listeners: TransitionListeners | None = None,
    ) -> None:
        self.parser = parser
        self.state_store = state_store or StateStore()
        self.backup_dir = backup_dir
        self.max_backups = max_backups
        self.backup_task_updates = backup_task_updates
        self.listeners = listeners if listeners is not None else TransitionListeners()
        self.spec: ParsedSpec | None = None
        self.spec_dir: Path | None = None
        self.state = OrchestratorState()
        self.graph = DependencyGraph({})
        self._tasks: dict[str, Task] = {}

    def load_spec(self, spec_dir: Path) -> LoadSpecResult:
        """Load a spec for a fresh run: every task starts as not started."""

        parsed = self._parse(spec_dir)
        if isinstance(parsed, LoadSpecResult):
            return parsed

        for task in iter_tasks(parsed.tasks):
            task.status = TaskStatus.NOT_STARTED
        tasks_path = spec_dir / SpecArtifact.TASKS.value
        content = safe_read(tasks_path)
        if content is None:
            return LoadSpecResult(success=False, error=f"Cannot read {tasks_path}")
        reset_content = replace_all_markers(
            content,
            {task.id: TaskStatus.NOT_STARTED for task in iter_tasks(parsed.tasks)},
        )
        if reset_content != content:
            written = self._write_tasks_file(tasks_path, reset_content)
            if not written.success:
                return LoadSpecResult(
                    success=False,
                    error=f"Failed to reset task markers: {written.error}",
                )

        self._install(parsed, spec_dir)
        self.state = OrchestratorState(current_spec=str(spec_dir))
        self.state_store.save(self.state)
        logger.info(
            "Loaded spec %s from %s with %d tasks",
            parsed.feature_name,
            spec_dir,
            len(self._tasks),
        )
        return LoadSpecResult(success=True, spec=parsed)

    def resume_spec(self, spec_dir: Path) -> LoadSpecResult:
        """Reload a spec after a crash, keeping the statuses recorded in tasks.md."""

        parsed = self._parse(spec_dir)
        if isinstance(parsed, LoadSpecResult):
            return parsed
        content = safe_read(spec_dir / SpecArtifact.TASKS.value)
        if content is None:
            return LoadSpecResult(
                success=False,
                error=f"Cannot read {spec_dir / SpecArtifact.TASKS.value}",
            )

        recorded = read_task_statuses(content)
        for task in iter_tasks(parsed.tasks):
            task.status = recorded.get(task.id, TaskStatus.NOT_STARTED)
        self._install(parsed, spec_dir)

        persisted = self.state_store.load()
        if persisted is None or persisted.current_spec != str(spec_dir):
            persisted = OrchestratorState(current_spec=str(spec_dir))
        self.state = self._reconcile(persisted)
        self.state_store.save(self.state)
        logger.info(
            "Resumed spec %s: %d of %d tasks completed",
            parsed.feature_name,
            len(self.state.completed_tasks),
            len(self._tasks),
        )
        return LoadSpecResult(success=True, spec=parsed)

    def load_state(self) -> bool:
        """Restore persisted state; a missing or corrupt file reports ``False``."""

        loaded = self.state_store.load()
        if loaded is None:
            return False
        self.state = loaded
        return True

    def tasks_path(self) -> Path:
        return self._require_spec_dir() / SpecArtifact.TASKS.value

    def align_task_markers(self, content: str) -> str | None:
        """Stamp the live task statuses onto a rewritten tasks.md document.

        Returns ``None`` when the document no longer lists every loaded task.
        """

        recorded = read_task_statuses(content)
        missing = [task_id for task_id in self._tasks if task_id not in recorded]
        if missing:
            logger.warning("Rewritten tasks.md drops tasks: %s", ", ".join(missing))
            return None
        return replace_all_markers(content, {task.id: task.status for task in self.all_tasks()})

    def all_tasks(self) -> list[Task]:
        if self.spec is None:
            return []
        return list(iter_tasks(self.spec.tasks))

    def get_task(self, task_id: str) -> Task:
        self._require_spec_dir()
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(message=f"Task not found: {task_id}", task_id=task_id)
        return task

    def get_task_status(self, task_id: str) -> TaskStatus:
        return self.get_task(task_id).status

    def get_prerequisites(self, task_id: str) -> list[str]:
        return self.graph.prerequisites(task_id)

    def get_dependents(self, task_id: str) -> list[str]:
        return self.graph.dependents(task_id)

    def are_prerequisites_completed(self, task_id: str) -> bool:
        return not self.graph.incomplete_prerequisites(task_id, self._status_of)

    def can_complete(self, task_id: str) -> bool:
        return not _incomplete_children(self.get_task(task_id))

    def select_next_task(self, *, include_optional: bool = False) -> Task | None:
        """First eligible task in document order, children before their parent.

        Returns ``None`` while any task is in progress.
        """

        if self.spec is None or self.has_task_in_progress():
            return None
        return self._find_next(self.spec.tasks, include_optional=include_optional)

    def _find_next(self, tasks: list[Task], *, include_optional: bool) -> Task | None:
        for task in tasks:
            if task.children:
                child = self._find_next(task.children, include_optional=include_optional)
                if child is not None:
                    return child
                if _incomplete_children(task):
                    continue
            if self._is_eligible(task, include_optional=include_optional):
                return task
        return None

    def _is_eligible(self, task: Task, *, include_optional: bool) -> bool:
        if task.status is not TaskStatus.NOT_STARTED:
            return False
        if task.is_optional and not include_optional:
            return False
        if task.id in self.state.skipped_tasks:
            return False
        return self.are_prerequisites_completed(task.id)

    def queue_task(self, task_id: str) -> bool:
        return self.update_task_status(task_id, TaskStatus.QUEUED)

    def start_task(self, task_id: str) -> bool:
        task = self.get_task(task_id)
        incomplete = [
            *self.graph.incomplete_prerequisites(task_id, self._status_of),
            *_incomplete_children(task),
        ]
        if incomplete:
            raise PrerequisiteError(
                message=(
                    f"Cannot start task {task_id}: prerequisites not completed: "
                    f"{', '.join(incomplete)}"
                ),
                task_id=task_id,
                incomplete=tuple(incomplete),
            )
        return self.update_task_status(task_id, TaskStatus.IN_PROGRESS)

    def complete_task(self, task_id: str) -> bool:
        incomplete = _incomplete_children(self.get_task(task_id))
        if incomplete:
            raise IncompleteChildrenError(
                message=(
                    f"Cannot complete parent task {task_id}: "
                    f"non-optional sub-tasks not completed: {', '.join(incomplete)}"
                ),
                task_id=task_id,
            )
        return self.update_task_status(task_id, TaskStatus.COMPLETED)

    def reset_task(self, task_id: str) -> bool:
        return self.update_task_status(task_id, TaskStatus.NOT_STARTED)

    def update_task_status(self, task_id: str, new_status: TaskStatus) -> bool:
        """Apply one validated transition and persist it everywhere.

        Transitions outside the table are refused with ``False``. A failed
        tasks.md rewrite rolls the in-memory status back and raises
        ``TaskFileUpdateError``.
        """

        task = self.get_task(task_id)
        previous = task.status
        if not is_valid_transition(previous, new_status):
            logger.warning(
                "Invalid status transition for task %s: %s -> %s",
                task_id,
                previous.value,
                new_status.value,
            )
            return False
        if new_status is TaskStatus.IN_PROGRESS:
            running = [other.id for other in self.get_in_progress_tasks() if other.id != task_id]
            if running:
                logger.warning(
                    "Cannot start task %s while task %s is in progress",
                    task_id,
                    running[0],
                )
                return False

        task.status = new_status
        try:
            self._write_marker(task_id, new_status)
        except TaskFileUpdateError:
            task.status = previous
            raise

        if new_status is TaskStatus.IN_PROGRESS:
            self.state.current_task = task_id
        elif self.state.current_task == task_id:
            self.state.current_task = None
        if new_status is TaskStatus.COMPLETED and task_id not in self.state.completed_tasks:
            self.state.completed_tasks.append(task_id)

        self.listeners.notify(
            StatusTransitionEvent(
                task_id=task_id,
                previous_status=previous,
                new_status=new_status,
                timestamp=utc_now(),
            ),
        )
        self.state_store.save(self.state)
        logger.info("Task %s: %s -> %s", task_id, previous.value, new_status.value)
        return True

    def skip_task(self, task_id: str) -> bool:
        """Record an optional, not-started task as skipped."""

        task = self.get_task(task_id)
        if not task.is_optional or task.status is not TaskStatus.NOT_STARTED:
            logger.warning("Task %s cannot be skipped (status=%s)", task_id, task.status.value)
            return False
        if task_id not in self.state.skipped_tasks:
            self.state.skipped_tasks.append(task_id)
            self.state_store.save(self.state)
        return True

    def complete_and_queue_next(
        self,
        task_id: str,
        *,
        include_optional: bool = False,
    ) -> Task | None:
        """Complete ``task_id`` and queue the next eligible task, if any."""

        if not self.complete_task(task_id):
            raise OrchestratorError(message=f"Failed to complete task: {task_id}")
        next_task = self.select_next_task(include_optional=include_optional)
        if next_task is None:
            return None
        if not self.queue_task(next_task.id):
            raise OrchestratorError(message=f"Failed to queue next task: {next_task.id}")
        return next_task

    def halt_on_failure(
        self,
        task_id: str,
        error: BaseException,
        failed_test: str | None = None,
    ) -> ErrorContext:
        """Capture an executor exception.

        The task stays in progress and current until a correction resets it.
        """

        context = ErrorContext(
            task_id=task_id,
            error_message=str(error) or type(error).__name__,
            stack_trace="".join(traceback.format_exception(error)),
            failed_test=failed_test,
            timestamp=utc_now(),
        )
        logger.info("Captured failure of task %s: %s", task_id, context.error_message)
        return context

    def start_execution(self) -> None:
        self.state.execution_started_at = utc_now()
        self.state_store.save(self.state)

    def clear_execution(self) -> None:
        self.state = OrchestratorState()
        self.state_store.save(self.state)

    def increment_ralph_loop_attempts(self, task_id: str) -> int:
        attempts = self.state.ralph_loop_attempts.get(task_id, 0) + 1
        self.state.ralph_loop_attempts[task_id] = attempts
        self.state_store.save(self.state)
        return attempts

    def get_ralph_loop_attempts(self, task_id: str) -> int:
        return self.state.ralph_loop_attempts.get(task_id, 0)

    def reset_ralph_loop_attempts(self, task_id: str) -> None:
        self.state.ralph_loop_attempts.pop(task_id, None)
        self.state_store.save(self.state)

    def has_task_in_progress(self) -> bool:
        return any(task.status is TaskStatus.IN_PROGRESS for task in self.all_tasks())

    def get_in_progress_tasks(self) -> list[Task]:
        return [task for task in self.all_tasks() if task.status is TaskStatus.IN_PROGRESS]

    def get_in_flight_task(self) -> Task | None:
        """Task left queued or in progress, for example by an interrupted run."""

        for task in self.all_tasks():
            if task.status in (TaskStatus.QUEUED, TaskStatus.IN_PROGRESS):
                return task
        return None

    def is_execution_complete(self) -> bool:
        if self.spec is None:
            return False
        return all(
            task.is_optional or task.status is TaskStatus.COMPLETED for task in self.all_tasks()
        )

    def get_status(self) -> ExecutionStatus:
        tasks = self.all_tasks()
        completed = sum(1 for task in tasks if task.status is TaskStatus.COMPLETED)
        current = self._tasks.get(self.state.current_task) if self.state.current_task else None
        return ExecutionStatus(
            current_task=current,
            completed_count=completed,
            total_count=len(tasks),
            is_running=self.state.current_task is not None,
            progress=(completed / len(tasks) * 100) if tasks else 0.0,
        )

    def get_execution_summary(self) -> ExecutionSummary:
        summary = ExecutionSummary()
        for task in self.all_tasks():
            summary.total += 1
            if task.is_optional:
                summary.optional += 1
            if task.status is TaskStatus.NOT_STARTED:
                summary.not_started += 1
            elif task.status is TaskStatus.QUEUED:
                summary.queued += 1
            elif task.status is TaskStatus.IN_PROGRESS:
                summary.in_progress += 1
            else:
                summary.completed += 1
        return summary

    def on_status_transition(self, listener: StatusTransitionListener) -> None:
        self.listeners.add(listener)

    def off_status_transition(self, listener: StatusTransitionListener) -> None:
        self.listeners.remove(listener)

    def _parse(self, spec_dir: Path) -> ParsedSpec | LoadSpecResult:
        try:
            parsed = self.parser.parse_spec(spec_dir)
        except SpecParseError as error:
            logger.warning("Failed to parse spec %s: %s", spec_dir, error)
            return LoadSpecResult(success=False, error=f"Failed to load spec: {error}")
        problem = find_reference_errors(parsed)
        if problem is not None:
            return LoadSpecResult(success=False, error=problem)
        return parsed

    def _install(self, parsed: ParsedSpec, spec_dir: Path) -> None:
        self.spec = parsed
        self.spec_dir = spec_dir
        self._tasks = {task.id: task for task in iter_tasks(parsed.tasks)}
        self.graph = DependencyGraph.build(parsed.tasks)

    def _reconcile(self, persisted: OrchestratorState) -> OrchestratorState:
        in_progress = [task.id for task in self.get_in_progress_tasks()]
        return OrchestratorState(
            current_spec=persisted.current_spec,
            current_task=in_progress[0] if in_progress else None,
            execution_started_at=persisted.execution_started_at,
            ralph_loop_attempts={
                task_id: count
                for task_id, count in persisted.ralph_loop_attempts.items()
                if task_id in self._tasks
            },
            completed_tasks=[
                task.id for task in self.all_tasks() if task.status is TaskStatus.COMPLETED
            ],
            skipped_tasks=[
                task_id
                for task_id in persisted.skipped_tasks
                if task_id in self._tasks and self._tasks[task_id].is_optional
            ],
        )

    def _write_marker(self, task_id: str, status: TaskStatus) -> None:
        tasks_path = self.tasks_path()
        content = safe_read(tasks_path)
        if content is None:
            raise TaskFileUpdateError(message=f"Failed to update tasks.md: cannot read {tasks_path}")
        updated = replace_task_marker(content, task_id, status)
        if updated is None:
            raise TaskFileUpdateError(
                message=f"Failed to update tasks.md: task {task_id} not found in {tasks_path}",
            )
        written = self._write_tasks_file(tasks_path, updated)
        if not written.success:
            raise TaskFileUpdateError(message=f"Failed to update tasks.md: {written.error}")

    def _write_tasks_file(self, tasks_path: Path, content: str) -> WriteResult:
        if self.backup_task_updates:
            return atomic_write_with_backup(
                tasks_path,
                content,
                backup_dir=self.backup_dir,
                max_backups=self.max_backups,
                validate=validate_markdown,
            )
        return atomic_write(tasks_path, content, validate=validate_markdown)

    def _status_of(self, task_id: str) -> TaskStatus:
        return self._tasks[task_id].status

    def _require_spec_dir(self) -> Path:
        if self.spec_dir is None:
            raise InvalidSpecStateError(message="No spec loaded - cannot access tasks")
        return self.spec_dir


def find_reference_errors(spec: ParsedSpec) -> str | None:
    """Describe the first duplicate id or dangling reference in the task tree."""

    requirement_ids = {requirement.id for requirement in spec.requirements}
    property_numbers = {str(prop.number) for prop in spec.properties}
    seen: set[str] = set()
    for task in iter_tasks(spec.tasks):
        if task.id in seen:
            return f"Duplicate task id: {task.id}"
        seen.add(task.id)
        for ref in task.requirement_refs:
            if ref not in requirement_ids:
                return f"Task {task.id} references non-existent requirement: {ref}"
        for ref in task.property_refs:
            match = _PROPERTY_REF.match(ref.strip())
            if match is None or match.group(1) not in property_numbers:
                return f"Task {task.id} references non-existent property: {ref}"
    return None


def _incomplete_children(task: Task) -> list[str]:
    """Non-optional descendants that are not completed yet."""

    incomplete: list[str] = []
    for child in task.children:
        if child.is_optional:
            continue
        if child.status is not TaskStatus.COMPLETED:
            incomplete.append(child.id)
        incomplete.extend(_incomplete_children(child))
    return incomplete
