"""Contracts for the external parser, executor, and correction generator."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from spec_orchestrator.orchestrator.models import (
    CorrectionPlan,
    ErrorAnalysis,
    ErrorContext,
    ParsedSpec,
    StatusTransitionEvent,
    Task,
)


@dataclass(slots=True)
class TaskExecutionResult:
    """Outcome of executing one task."""

    success: bool
    error: ErrorContext | None = None


class SpecParser(Protocol):
    """Turns a spec directory into a task tree with requirements and properties."""

    def parse_spec(self, spec_dir: Path) -> ParsedSpec:
        """Parse ``spec_dir`` or raise ``SpecParseError``."""


class TaskExecutor(Protocol):
    """Runs the implementation and tests for a single task."""

    def execute(self, task: Task) -> TaskExecutionResult:
        """Execute ``task`` and report success or an error context."""


class CorrectionGenerator(Protocol):
    """Produces a whole-document correction for one spec artifact."""

    def generate_correction(
        self,
        error: ErrorContext,
        analysis: ErrorAnalysis,
        *,
        spec_path: Path,
        attempt_number: int,
    ) -> CorrectionPlan:
        """Return a correction plan for the analyzed failure."""


StatusTransitionListener = Callable[[StatusTransitionEvent], None]
