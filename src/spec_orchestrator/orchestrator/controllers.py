"""Controllers for orchestrator CLI commands."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from spec_orchestrator.config import Settings
from spec_orchestrator.orchestrator.error_analyzer import analyze_error
from spec_orchestrator.orchestrator.events import read_transition_log
from spec_orchestrator.orchestrator.models import ErrorContext, SpecArtifact
from spec_orchestrator.orchestrator.state import StateStore
from spec_orchestrator.orchestrator.validator import validate_artifact_content
from spec_orchestrator.storage.file_store import list_backups, restore_from_backup, safe_read


@dataclass(slots=True)
class StatusCommand:
    """CLI input for persisted state inspection."""

    state_path: Path | None
    output_format: str = "table"


@dataclass(slots=True)
class ResetAttemptsCommand:
    """CLI input for clearing a task's correction attempts."""

    state_path: Path | None
    task_id: str


@dataclass(slots=True)
class AnalyzeCommand:
    """CLI input for one-off error analysis."""

    task_id: str
    message: str
    trace: str
    failed_test: str | None
    output_format: str = "table"


@dataclass(slots=True)
class ValidateCommand:
    """CLI input for spec artifact validation."""

    path: Path
    artifact: str | None
    strict: bool


@dataclass(slots=True)
class BackupsListCommand:
    """CLI input for listing backups of one file."""

    file: Path
    backup_dir: Path | None


@dataclass(slots=True)
class BackupsRestoreCommand:
    """CLI input for restoring a file from a backup."""

    backup: Path
    target: Path


@dataclass(slots=True)
class HistoryCommand:
    """CLI input for the status transition log."""

    log_path: Path | None
    task_id: str | None
    limit: int


@dataclass(slots=True)
class CommandResult:
    """Lines to render plus whether the command succeeded."""

    lines: list[str]
    success: bool


class OrchestratorCliController:
    """Coordinates state, analysis, validation, and backup CLI operations."""

    def status(self, command: StatusCommand) -> list[str]:
        settings = Settings.from_env(state_path=command.state_path)
        state = StateStore(settings.storage.state_path).load()
        if state is None:
            return [f"No orchestrator state at {settings.storage.state_path}"]

        if command.output_format == "json":
            return [json.dumps(state.to_dict(), indent=2, ensure_ascii=False)]

        max_attempts = settings.correction.max_attempts
        started = state.execution_started_at.isoformat() if state.execution_started_at else "-"
        lines = [
            f"Spec: {state.current_spec or '-'}",
            f"Current task: {state.current_task or '-'}",
            f"Execution started: {started}",
            f"Completed tasks ({len(state.completed_tasks)}): "
            f"{', '.join(state.completed_tasks) or '-'}",
            f"Skipped tasks ({len(state.skipped_tasks)}): "
            f"{', '.join(state.skipped_tasks) or '-'}",
            "Correction attempts:",
        ]
        if not state.ralph_loop_attempts:
            lines.append("  -")
        for task_id, attempts in sorted(state.ralph_loop_attempts.items()):
            marker = " exhausted" if attempts >= max_attempts else ""
            lines.append(f"  task_id={task_id} attempts={attempts}/{max_attempts}{marker}")
        return lines

    def reset_attempts(self, command: ResetAttemptsCommand) -> list[str]:
        """Clear the attempt counter so an escalated task can be corrected again."""

        settings = Settings.from_env(state_path=command.state_path)
        store = StateStore(settings.storage.state_path)
        state = store.load()
        if state is None:
            raise ValueError(f"No orchestrator state at {settings.storage.state_path}")
        previous = state.ralph_loop_attempts.pop(command.task_id, 0)
        store.save(state)
        return [f"Attempts reset: task_id={command.task_id} previous={previous}"]

    def analyze(self, command: AnalyzeCommand) -> list[str]:
        analysis = analyze_error(
            ErrorContext(
                task_id=command.task_id,
                error_message=command.message,
                stack_trace=command.trace,
                failed_test=command.failed_test,
                timestamp=datetime.now(tz=UTC),
            ),
        )
        if command.output_format == "json":
            return [
                json.dumps(
                    {
                        "task_id": command.task_id,
                        "error_type": analysis.error_type.value,
                        "root_cause": analysis.root_cause,
                        "target_file": analysis.target_file.value,
                        "confidence": analysis.confidence,
                        "context": {
                            "property_ref": analysis.context.property_ref,
                            "requirement_ref": analysis.context.requirement_ref,
                            "error_location": analysis.context.error_location,
                            "suggestion": analysis.context.suggestion,
                        },
                    },
                    indent=2,
                    ensure_ascii=False,
                ),
            ]
        return [
            f"Error type: {analysis.error_type.value}",
            f"Target file: {analysis.target_file.value}",
            f"Confidence: {analysis.confidence}",
            f"Root cause: {analysis.root_cause}",
            f"Location: {analysis.context.error_location or '-'}",
            f"Property: {analysis.context.property_ref or '-'}",
            f"Requirement: {analysis.context.requirement_ref or '-'}",
            f"Suggestion: {analysis.context.suggestion or '-'}",
        ]

    def validate(self, command: ValidateCommand) -> CommandResult:
        artifact_name = command.artifact or command.path.name
        try:
            artifact = SpecArtifact(artifact_name)
        except ValueError as error:
            raise ValueError(
                f"Unsupported artifact: {artifact_name!r}; "
                f"expected one of {', '.join(item.value for item in SpecArtifact)}",
            ) from error

        content = safe_read(command.path)
        if content is None:
            return CommandResult(lines=[f"Cannot read {command.path}"], success=False)
        result = validate_artifact_content(artifact, content, strict=command.strict)
        if result.is_valid:
            return CommandResult(
                lines=[f"Valid {artifact.value}: {command.path}"],
                success=True,
            )
        return CommandResult(
            lines=[f"Invalid {artifact.value}: {command.path}", f"  {result.error_summary}"],
            success=False,
        )

    def list_backups(self, command: BackupsListCommand) -> list[str]:
        backup_dir = command.backup_dir or Settings.from_env().storage.backup_dir
        backups = list_backups(command.file, backup_dir=backup_dir)
        lines = [f"Backups of {command.file.name}: {len(backups)} (dir={backup_dir})"]
        for backup in backups:
            lines.append(f"  {backup}")
        return lines

    def restore_backup(self, command: BackupsRestoreCommand) -> CommandResult:
        result = restore_from_backup(command.backup, command.target)
        if not result.success:
            return CommandResult(
                lines=[f"Restore failed: {result.error}"],
                success=False,
            )
        return CommandResult(
            lines=[f"Restored {command.target} from {command.backup}"],
            success=True,
        )

    def history(self, command: HistoryCommand) -> list[str]:
        log_path = command.log_path or Settings.from_env().storage.transition_log_path
        if log_path is None:
            raise ValueError(
                "Transition log path is not configured. "
                "Set SPEC_ORCHESTRATOR_TRANSITION_LOG_PATH or pass --log-path.",
            )
        records = read_transition_log(log_path)
        if command.task_id is not None:
            records = [record for record in records if record.get("task_id") == command.task_id]
        records = records[-command.limit :]
        lines = [f"Transitions: {len(records)} ({log_path})"]
        for record in records:
            lines.append(
                f"  {record.get('timestamp', '-')} task_id={record.get('task_id', '-')} "
                f"{record.get('previous_status', '-')} -> {record.get('new_status', '-')}",
            )
        return lines
