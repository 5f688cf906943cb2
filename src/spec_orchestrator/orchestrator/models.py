"""Domain models for spec-driven task orchestration."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TaskStatus(str, Enum):
    """Task lifecycle states mirrored by checkbox markers in tasks.md."""

    NOT_STARTED = "not_started"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ErrorType(str, Enum):
    """Closed set of failure categories produced by the error analyzer."""

    TEST_FAILURE = "test_failure"
    COMPILATION_ERROR = "compilation_error"
    RUNTIME_ERROR = "runtime_error"
    MISSING_DEPENDENCY = "missing_dependency"
    INVALID_SPEC = "invalid_spec"
    TIMEOUT_ERROR = "timeout_error"
    UNKNOWN_ERROR = "unknown_error"


class SpecArtifact(str, Enum):
    """The three fixed-name spec files a correction may replace."""

    REQUIREMENTS = "requirements.md"
    DESIGN = "design.md"
    TASKS = "tasks.md"


@dataclass(slots=True)
class Task:
    """One entry of the task tree; ``id`` is derived from document position."""

    id: str
    description: str
    status: TaskStatus = TaskStatus.NOT_STARTED
    is_optional: bool = False
    parent_id: str | None = None
    children: list[Task] = field(default_factory=list)
    requirement_refs: list[str] = field(default_factory=list)
    property_refs: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Requirement:
    """Requirement entry from requirements.md."""

    id: str
    user_story: str = ""
    acceptance_criteria: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Property:
    """Correctness property from design.md."""

    number: int
    title: str = ""
    statement: str = ""
    requirement_refs: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ParsedSpec:
    """Structured spec produced by the external parser."""

    feature_name: str
    requirements: list[Requirement]
    properties: list[Property]
    tasks: list[Task]


@dataclass(slots=True)
class DependencyNode:
    """Prerequisites and dependents of one task."""

    task_id: str
    prerequisites: list[str] = field(default_factory=list)
    dependents: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ErrorContext:
    """Failure details captured by the executor for one task."""

    task_id: str
    error_message: str
    stack_trace: str
    failed_test: str | None
    timestamp: datetime


@dataclass(slots=True)
class AnalysisContext:
    """Extra hints extracted for the correction generator."""

    property_ref: str | None = None
    requirement_ref: str | None = None
    error_location: str | None = None
    suggestion: str | None = None


@dataclass(slots=True)
class ErrorAnalysis:
    """Classification, root cause, and correction target for one failure."""

    error_type: ErrorType
    root_cause: str
    target_file: SpecArtifact
    confidence: int
    context: AnalysisContext = field(default_factory=AnalysisContext)


@dataclass(slots=True)
class CorrectionPlan:
    """Whole-document replacement for one spec artifact.

    Plans come from an external generator, so ``target_file`` and ``error_type``
    may hold arbitrary strings until the applier validates them.
    """

    target_file: SpecArtifact | str
    updated_content: str
    correction: str
    error_type: ErrorType | str
    attempt_number: int


@dataclass(frozen=True, slots=True)
class StatusTransitionEvent:
    """Committed task status change delivered to listeners."""

    task_id: str
    previous_status: TaskStatus
    new_status: TaskStatus
    timestamp: datetime


@dataclass(slots=True)
class LoadSpecResult:
    """Outcome of loading a spec directory."""

    success: bool
    spec: ParsedSpec | None = None
    error: str | None = None


@dataclass(slots=True)
class ExecutionStatus:
    """Progress snapshot for CLI and listeners."""

    current_task: Task | None
    completed_count: int
    total_count: int
    is_running: bool
    progress: float


@dataclass(slots=True)
class ExecutionSummary:
    """Task counts by status."""

    total: int = 0
    not_started: int = 0
    queued: int = 0
    in_progress: int = 0
    completed: int = 0
    optional: int = 0


def iter_tasks(tasks: list[Task]) -> Iterator[Task]:
    """Depth-first walk in document order."""

    for task in tasks:
        yield task
        yield from iter_tasks(task.children)
