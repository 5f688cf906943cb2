"""Validated, atomic replacement of one spec artifact."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from spec_orchestrator.orchestrator.models import CorrectionPlan
from spec_orchestrator.orchestrator.validator import (
    artifact_checker,
    resolve_artifact,
    validate_artifact_content,
    validate_plan,
)
from spec_orchestrator.storage.file_store import (
    DEFAULT_BACKUP_DIR,
    DEFAULT_MAX_BACKUPS,
    atomic_write_with_backup,
    safe_read,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


@dataclass(slots=True)
class CorrectionResult:
    """Outcome of applying one correction plan."""

    success: bool
    file_path: Path | None
    plan: CorrectionPlan
    backup_path: Path | None = None
    error: str | None = None


class CorrectionApplier:
    """Applies whole-document corrections to requirements, design, or tasks."""

    def __init__(self, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        self.max_attempts = max_attempts

    def apply_correction(
        self,
        plan: CorrectionPlan,
        *,
        spec_path: Path,
        backup_dir: Path = DEFAULT_BACKUP_DIR,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        strict_validation: bool = True,
    ) -> CorrectionResult:
        """Validate ``plan`` and its content, then replace the target file.

        Rejected plans and content leave the spec directory untouched.
        """

        plan_check = validate_plan(plan, max_attempts=self.max_attempts)
        artifact = resolve_artifact(plan.target_file)
        if not plan_check.is_valid or artifact is None:
            logger.warning("Rejected correction plan: %s", plan_check.error_summary)
            return CorrectionResult(
                success=False,
                file_path=None,
                plan=plan,
                error=plan_check.error_summary,
            )

        file_path = spec_path / artifact.value
        content_check = validate_artifact_content(
            artifact,
            plan.updated_content,
            strict=strict_validation,
        )
        if not content_check.is_valid:
            logger.warning(
                "Rejected correction content for %s: %s",
                file_path,
                content_check.error_summary,
            )
            return CorrectionResult(
                success=False,
                file_path=file_path,
                plan=plan,
                error=f"Content validation failed: {content_check.error_summary}",
            )

        try:
            written = atomic_write_with_backup(
                file_path,
                plan.updated_content,
                backup_dir=backup_dir,
                max_backups=max_backups,
                validate=artifact_checker(artifact, strict=strict_validation),
            )
        except OSError as error:
            return CorrectionResult(
                success=False,
                file_path=file_path,
                plan=plan,
                error=f"Failed to apply correction: {error}",
            )
        if not written.success:
            logger.warning("Failed to write correction to %s: %s", file_path, written.error)
            return CorrectionResult(
                success=False,
                file_path=file_path,
                plan=plan,
                error=written.error,
            )

        logger.info(
            "Applied correction attempt %d to %s: %s",
            plan.attempt_number,
            file_path,
            plan.correction,
        )
        return CorrectionResult(
            success=True,
            file_path=file_path,
            plan=plan,
            backup_path=written.backup_path,
        )


def verify_correction(file_path: Path, expected: str) -> bool:
    """Re-read ``file_path`` and compare it with ``expected`` ignoring line endings."""

    actual = safe_read(file_path)
    if actual is None:
        return False
    return _normalize_newlines(actual) == _normalize_newlines(expected)


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n")
