"""Bounded analyze, correct, and retry loop for a failing task."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path

from spec_orchestrator.orchestrator.collaborators import CorrectionGenerator
from spec_orchestrator.orchestrator.correction_applier import (
    DEFAULT_MAX_ATTEMPTS,
    CorrectionApplier,
)
from spec_orchestrator.orchestrator.error_analyzer import ErrorAnalyzer
from spec_orchestrator.orchestrator.models import (
    CorrectionPlan,
    ErrorAnalysis,
    ErrorContext,
    SpecArtifact,
)
from spec_orchestrator.orchestrator.task_manager import TaskManager
from spec_orchestrator.orchestrator.validator import resolve_artifact
from spec_orchestrator.storage.file_store import DEFAULT_BACKUP_DIR, DEFAULT_MAX_BACKUPS

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RalphLoopResult:
    """Outcome of one correction attempt.

    ``exhausted`` is only ever set on failures: either the attempt budget was
    already spent, or this failed attempt was the last one permitted.
    """

    success: bool
    attempt_number: int
    exhausted: bool = False
    plan: CorrectionPlan | None = None
    analysis: ErrorAnalysis | None = None
    error: str | None = None


class _CorrectionStepError(Exception):
    pass


class RalphLoop:
    """Coordinates analyzer, generator, applier, and task reset for one task."""

    def __init__(  # noqa: PLR0913
        self,
        task_manager: TaskManager,
        generator: CorrectionGenerator,
        *,
        spec_path: Path,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        analyzer: ErrorAnalyzer | None = None,
        applier: CorrectionApplier | None = None,
        backup_dir: Path = DEFAULT_BACKUP_DIR,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        strict_validation: bool = True,
    ) -> None:
        self.task_manager = task_manager
        self.generator = generator
        self.spec_path = spec_path
        self.max_attempts = max_attempts
        self.analyzer = analyzer or ErrorAnalyzer()
        self.applier = applier or CorrectionApplier(max_attempts=max_attempts)
        self.backup_dir = backup_dir
        self.max_backups = max_backups
        self.strict_validation = strict_validation

    def execute_correction(self, error: ErrorContext) -> RalphLoopResult:
        task_id = error.task_id
        current = self.task_manager.get_ralph_loop_attempts(task_id)
        attempt_number = current + 1
        if attempt_number > self.max_attempts:
            logger.warning(
                "Ralph-Loop exhausted for task %s after %d attempts",
                task_id,
                self.max_attempts,
            )
            return RalphLoopResult(
                success=False,
                attempt_number=current,
                exhausted=True,
                error=(
                    f"Ralph-Loop exhausted: {self.max_attempts} attempts failed for task {task_id}"
                ),
            )

        self.task_manager.increment_ralph_loop_attempts(task_id)
        logger.info(
            "Ralph-Loop attempt %d/%d for task %s",
            attempt_number,
            self.max_attempts,
            task_id,
        )
        analysis: ErrorAnalysis | None = None
        plan: CorrectionPlan | None = None
        try:
            analysis = self.analyzer.analyze(error)
            plan = self.generator.generate_correction(
                error,
                analysis,
                spec_path=self.spec_path,
                attempt_number=attempt_number,
            )
            plan = self._align_task_markers(plan)
            applied = self.applier.apply_correction(
                plan,
                spec_path=self.spec_path,
                backup_dir=self.backup_dir,
                max_backups=self.max_backups,
                strict_validation=self.strict_validation,
            )
            if not applied.success:
                raise _CorrectionStepError(f"Correction not applied: {applied.error}")
            if not self.task_manager.reset_task(task_id):
                raise _CorrectionStepError(f"Task {task_id} could not be reset to not_started")
        except Exception as step_error:  # noqa: BLE001
            exhausted = attempt_number >= self.max_attempts
            logger.warning(
                "Ralph-Loop attempt %d for task %s failed (exhausted=%s): %s",
                attempt_number,
                task_id,
                exhausted,
                step_error,
            )
            return RalphLoopResult(
                success=False,
                attempt_number=attempt_number,
                exhausted=exhausted,
                plan=plan,
                analysis=analysis,
                error=str(step_error) or type(step_error).__name__,
            )

        return RalphLoopResult(
            success=True,
            attempt_number=attempt_number,
            plan=plan,
            analysis=analysis,
        )

    def is_exhausted(self, task_id: str) -> bool:
        return self.task_manager.get_ralph_loop_attempts(task_id) >= self.max_attempts

    def get_remaining_attempts(self, task_id: str) -> int:
        return max(0, self.max_attempts - self.task_manager.get_ralph_loop_attempts(task_id))

    def reset_attempts(self, task_id: str) -> None:
        self.task_manager.reset_ralph_loop_attempts(task_id)

    def _align_task_markers(self, plan: CorrectionPlan) -> CorrectionPlan:
        """Replace the markers of a tasks.md rewrite with the live task statuses."""

        if resolve_artifact(plan.target_file) is not SpecArtifact.TASKS:
            return plan
        if not plan.updated_content.strip():
            return plan
        aligned = self.task_manager.align_task_markers(plan.updated_content)
        if aligned is None:
            raise _CorrectionStepError("Correction drops tasks from tasks.md")
        return replace(plan, updated_content=aligned)
