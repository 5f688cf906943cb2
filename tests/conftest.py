"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from spec_orchestrator.config import CorrectionSettings, Settings, StorageSettings
from spec_orchestrator.orchestrator.collaborators import TaskExecutionResult
from spec_orchestrator.orchestrator.errors import SpecParseError
from spec_orchestrator.orchestrator.models import (
    CorrectionPlan,
    ErrorAnalysis,
    ErrorContext,
    ParsedSpec,
    Property,
    Requirement,
    Task,
)
from spec_orchestrator.orchestrator.state import StateStore
from spec_orchestrator.orchestrator.task_manager import TaskManager
from spec_orchestrator.storage.common import utc_now

REQUIREMENTS_MD = """# Requirements Document

### Requirement 1: Project layout

**User Story:** As a developer, I want a predictable layout.

#### Acceptance Criteria

1. WHEN the project is created THEN it SHALL contain a src directory

### Requirement 2: Core behaviour

**User Story:** As a user, I want parsing and writing.

#### Acceptance Criteria

1. WHEN a document is parsed THEN writing it back SHALL produce the same text
"""

DESIGN_MD = """# Design Document

## Overview

Parser and writer share one document model.

## Correctness Properties

### Property 1: Round trip

For any document, parsing then writing yields the original text.
**Validates: Requirements 2.1**
"""

TASKS_MD = """# Implementation Plan

- [ ] 1 Set up project structure
  - _Requirements: 1_
- [ ] 2 Implement core
  - [ ] 2.1 Implement parser
    - _Property 1_
  - [ ] 2.2 Implement writer
- [ ] 3 Wire CLI
- [ ]* 4 Write extra docs
"""


def build_sample_spec() -> ParsedSpec:
    """Fresh task tree matching ``TASKS_MD``."""

    parent = Task(id="2", description="Implement core", requirement_refs=["2"])
    parent.children = [
        Task(id="2.1", description="Implement parser", parent_id="2", property_refs=["Property 1"]),
        Task(id="2.2", description="Implement writer", parent_id="2"),
    ]
    return ParsedSpec(
        feature_name="sample-feature",
        requirements=[Requirement(id="1"), Requirement(id="2")],
        properties=[Property(number=1, title="Round trip", requirement_refs=["2.1"])],
        tasks=[
            Task(id="1", description="Set up project structure", requirement_refs=["1"]),
            parent,
            Task(id="3", description="Wire CLI"),
            Task(id="4", description="Write extra docs", is_optional=True),
        ],
    )


@dataclass(slots=True)
class InMemorySpecParser:
    """Parser double that builds a fresh task tree on every call."""

    build: Callable[[], ParsedSpec] = build_sample_spec
    error: str | None = None
    calls: list[Path] = field(default_factory=list)

    def parse_spec(self, spec_dir: Path) -> ParsedSpec:
        self.calls.append(spec_dir)
        if self.error is not None:
            raise SpecParseError(message=self.error, file="tasks.md")
        return self.build()


Outcome = bool | ErrorContext | Exception


@dataclass(slots=True)
class ScriptedExecutor:
    """Executor double: per-task queue of outcomes, success once a queue is empty."""

    script: dict[str, list[Outcome]] = field(default_factory=dict)
    executed: list[str] = field(default_factory=list)

    def execute(self, task: Task) -> TaskExecutionResult:
        self.executed.append(task.id)
        queue = self.script.get(task.id) or []
        outcome: Outcome = queue.pop(0) if queue else True
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, ErrorContext):
            return TaskExecutionResult(success=False, error=outcome)
        return TaskExecutionResult(success=outcome)


@dataclass(slots=True)
class ScriptedGenerator:
    """Generator double that appends a note to the analyzed target artifact."""

    failures: int = 0
    target_override: str | None = None
    calls: list[tuple[str, int]] = field(default_factory=list)

    def generate_correction(
        self,
        error: ErrorContext,
        analysis: ErrorAnalysis,
        *,
        spec_path: Path,
        attempt_number: int,
    ) -> CorrectionPlan:
        self.calls.append((error.task_id, attempt_number))
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("generator unavailable")
        target = self.target_override or analysis.target_file.value
        current = (spec_path / target).read_text("utf-8")
        return CorrectionPlan(
            target_file=target,
            updated_content=f"{current}\n<!-- correction {attempt_number} for {error.task_id} -->\n",
            correction=f"Clarify guidance for task {error.task_id}",
            error_type=analysis.error_type,
            attempt_number=attempt_number,
        )


def make_error(
    task_id: str = "2.1",
    message: str = "TypeError: Cannot read property 'x' of undefined",
    *,
    trace: str = "",
    failed_test: str | None = None,
) -> ErrorContext:
    return ErrorContext(
        task_id=task_id,
        error_message=message,
        stack_trace=trace,
        failed_test=failed_test,
        timestamp=utc_now(),
    )


@pytest.fixture()
def spec_dir(tmp_path: Path) -> Path:
    directory = tmp_path / ".kiro" / "specs" / "sample-feature"
    directory.mkdir(parents=True)
    (directory / "requirements.md").write_text(REQUIREMENTS_MD, "utf-8")
    (directory / "design.md").write_text(DESIGN_MD, "utf-8")
    (directory / "tasks.md").write_text(TASKS_MD, "utf-8")
    return directory


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        storage=StorageSettings(
            state_path=tmp_path / "state" / "orchestrator-state.json",
            backup_dir=tmp_path / "backups",
            max_backups=5,
        ),
        correction=CorrectionSettings(max_attempts=3),
    )


@pytest.fixture()
def parser() -> InMemorySpecParser:
    return InMemorySpecParser()


@pytest.fixture()
def state_store(settings: Settings) -> StateStore:
    return StateStore(settings.storage.state_path)


@pytest.fixture()
def task_manager(
    parser: InMemorySpecParser,
    state_store: StateStore,
    settings: Settings,
    spec_dir: Path,
) -> TaskManager:
    manager = TaskManager(
        parser,
        state_store=state_store,
        backup_dir=settings.storage.backup_dir,
        max_backups=settings.storage.max_backups,
    )
    result = manager.load_spec(spec_dir)
    assert result.success, result.error
    return manager
