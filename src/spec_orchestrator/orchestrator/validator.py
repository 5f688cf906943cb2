"""Structural checks for spec artifacts and correction plans."""

from __future__ import annotations

import re
from dataclasses import dataclass

from spec_orchestrator.orchestrator.models import CorrectionPlan, ErrorType, SpecArtifact
from spec_orchestrator.storage.file_store import ContentValidator, validate_markdown

_REQUIREMENT_SECTION = re.compile(r"^###\s+Requirement\s+\d+:", re.MULTILINE)
_ACCEPTANCE_CRITERIA = re.compile(r"^####\s+Acceptance Criteria", re.MULTILINE)
_MAJOR_HEADING = re.compile(r"^##\s+\w+", re.MULTILINE)
_TASK_CHECKBOX = re.compile(r"^\s*-\s+\[[^\]]\]\*?\s+[\d.]+\s+", re.MULTILINE)

_KNOWN_ERROR_TYPES = frozenset(item.value for item in ErrorType)


@dataclass(slots=True)
class ValidationResult:
    """Result of a structural check."""

    is_valid: bool
    error_summary: str | None = None


def resolve_artifact(value: SpecArtifact | str) -> SpecArtifact | None:
    """Map a file name onto one of the three known artifacts."""

    if isinstance(value, SpecArtifact):
        return value
    try:
        return SpecArtifact(value)
    except ValueError:
        return None


def validate_plan(plan: CorrectionPlan, *, max_attempts: int) -> ValidationResult:  # noqa: PLR0911
    """Reject plans that do not target a known artifact or carry empty content."""

    if resolve_artifact(plan.target_file) is None:
        return ValidationResult(
            is_valid=False,
            error_summary=f"Invalid target file: {plan.target_file}",
        )
    if not isinstance(plan.updated_content, str) or not plan.updated_content.strip():
        return ValidationResult(is_valid=False, error_summary="Updated content is empty")
    if not isinstance(plan.correction, str) or not plan.correction.strip():
        return ValidationResult(
            is_valid=False,
            error_summary="Correction description is empty",
        )
    error_type = plan.error_type.value if isinstance(plan.error_type, ErrorType) else plan.error_type
    if error_type not in _KNOWN_ERROR_TYPES:
        return ValidationResult(
            is_valid=False,
            error_summary=f"Invalid error type: {plan.error_type}",
        )
    if isinstance(plan.attempt_number, bool) or not isinstance(plan.attempt_number, int):
        return ValidationResult(is_valid=False, error_summary="Attempt number must be an integer")
    if not 1 <= plan.attempt_number <= max_attempts:
        return ValidationResult(
            is_valid=False,
            error_summary=(
                f"Invalid attempt number: {plan.attempt_number} (must be 1-{max_attempts})"
            ),
        )
    return ValidationResult(is_valid=True)


def validate_artifact_content(
    artifact: SpecArtifact,
    content: str,
    *,
    strict: bool = True,
) -> ValidationResult:
    """Check well-formedness and, in strict mode, the per-artifact schema."""

    if not validate_markdown(content):
        return ValidationResult(
            is_valid=False,
            error_summary="Content is empty or not well-formed markdown",
        )
    if not strict:
        return ValidationResult(is_valid=True)

    if artifact is SpecArtifact.REQUIREMENTS:
        if not _REQUIREMENT_SECTION.search(content):
            return ValidationResult(
                is_valid=False,
                error_summary="requirements.md must contain a '### Requirement N:' section",
            )
        if not _ACCEPTANCE_CRITERIA.search(content):
            return ValidationResult(
                is_valid=False,
                error_summary="requirements.md must contain an '#### Acceptance Criteria' section",
            )
    elif artifact is SpecArtifact.DESIGN:
        if not _MAJOR_HEADING.search(content):
            return ValidationResult(
                is_valid=False,
                error_summary="design.md must contain at least one '## ' heading",
            )
    elif not _TASK_CHECKBOX.search(content):
        return ValidationResult(
            is_valid=False,
            error_summary="tasks.md must contain at least one '- [ ] N.N' task line",
        )
    return ValidationResult(is_valid=True)


def artifact_checker(artifact: SpecArtifact, *, strict: bool = True) -> ContentValidator:
    """Bind the content check to one artifact for use as a write-time validator."""

    def _check(content: str) -> bool:
        return validate_artifact_content(artifact, content, strict=strict).is_valid

    return _check
