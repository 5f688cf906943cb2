"""Exceptions raised for caller-side logic errors in the orchestrator.

Anticipated failures (bad correction plans, invalid transitions, write
failures) are returned as result objects instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class OrchestratorError(Exception):
    """Base orchestrator error with an actionable message."""

    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class InvalidSpecStateError(OrchestratorError):
    """Operation requires a loaded spec."""


@dataclass(slots=True)
class TaskNotFoundError(OrchestratorError):
    """Task id does not exist in the loaded spec."""

    task_id: str = ""


@dataclass(slots=True)
class PrerequisiteError(OrchestratorError):
    """Task was started before its prerequisites completed."""

    task_id: str = ""
    incomplete: tuple[str, ...] = field(default_factory=tuple)


@dataclass(slots=True)
class IncompleteChildrenError(OrchestratorError):
    """Parent task was completed before its non-optional children."""

    task_id: str = ""


@dataclass(slots=True)
class TaskFileUpdateError(OrchestratorError):
    """tasks.md could not be rewritten for a status transition."""


@dataclass(slots=True)
class StatePersistenceError(OrchestratorError):
    """Orchestrator state file could not be written."""


@dataclass(slots=True)
class SpecParseError(OrchestratorError):
    """External parser rejected the spec directory."""

    file: str | None = None
    line_number: int | None = None
