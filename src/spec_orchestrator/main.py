"""CLI entrypoint for spec-orchestrator."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from spec_orchestrator import __version__
from spec_orchestrator.orchestrator.controllers import (
    AnalyzeCommand,
    BackupsListCommand,
    BackupsRestoreCommand,
    HistoryCommand,
    OrchestratorCliController,
    ResetAttemptsCommand,
    StatusCommand,
    ValidateCommand,
)
from spec_orchestrator.orchestrator.models import SpecArtifact

click.rich_click.USE_MARKDOWN = True
CONTROLLER = OrchestratorCliController()

_CommandT = TypeVar("_CommandT")
_ResultT = TypeVar("_ResultT")


@click.group()
@click.version_option(version=__version__, prog_name="spec-orchestrator")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def spec_orchestrator(log_level: str) -> None:
    """Spec-driven task orchestration with bounded self-correction."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@spec_orchestrator.command("status")
@click.option(
    "--state-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Orchestrator state file. Defaults to SPEC_ORCHESTRATOR_STATE_PATH.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    show_default=True,
    help="Output format.",
)
def status(state_path: Path | None, output_format: str) -> None:
    """Show persisted execution state, including correction attempts per task."""

    _emit_lines(
        _invoke(
            CONTROLLER.status,
            StatusCommand(state_path=state_path, output_format=output_format),
        ),
    )


@spec_orchestrator.command("reset-attempts")
@click.argument("task_id")
@click.option(
    "--state-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Orchestrator state file. Defaults to SPEC_ORCHESTRATOR_STATE_PATH.",
)
def reset_attempts(task_id: str, state_path: Path | None) -> None:
    """Clear correction attempts for an escalated task so it can be retried."""

    _emit_lines(
        _invoke(
            CONTROLLER.reset_attempts,
            ResetAttemptsCommand(state_path=state_path, task_id=task_id),
        ),
    )


@spec_orchestrator.command("analyze")
@click.option("--task-id", required=True, help="Task the failure belongs to.")
@click.option("--message", required=True, help="Error message reported by the executor.")
@click.option("--trace", default="", help="Stack trace text.")
@click.option("--failed-test", default=None, help="Name of the failing test, if any.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print JSON output.")
def analyze(
    task_id: str,
    message: str,
    trace: str,
    failed_test: str | None,
    as_json: bool,
) -> None:
    """Classify an error and show which spec artifact a correction should target."""

    _emit_lines(
        CONTROLLER.analyze(
            AnalyzeCommand(
                task_id=task_id,
                message=message,
                trace=trace,
                failed_test=failed_test,
                output_format="json" if as_json else "table",
            ),
        ),
    )


@spec_orchestrator.command("validate")
@click.argument("path", type=click.Path(path_type=Path, dir_okay=False))
@click.option(
    "--artifact",
    type=click.Choice([item.value for item in SpecArtifact]),
    default=None,
    help="Artifact schema to check against. Defaults to the file name.",
)
@click.option(
    "--strict/--no-strict",
    default=True,
    show_default=True,
    help="Enforce the per-artifact section schema.",
)
def validate(path: Path, artifact: str | None, strict: bool) -> None:
    """Check a requirements, design, or tasks file before handing it to the orchestrator."""

    result = _invoke(
        CONTROLLER.validate,
        ValidateCommand(path=path, artifact=artifact, strict=strict),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Validation failed.")


@spec_orchestrator.command("history")
@click.option(
    "--log-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Transition log. Defaults to SPEC_ORCHESTRATOR_TRANSITION_LOG_PATH.",
)
@click.option("--task-id", default=None, help="Only show transitions of this task.")
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=50,
    show_default=True,
    help="How many latest transitions to display.",
)
def history(log_path: Path | None, task_id: str | None, limit: int) -> None:
    """Show recorded task status transitions."""

    _emit_lines(
        _invoke(
            CONTROLLER.history,
            HistoryCommand(log_path=log_path, task_id=task_id, limit=limit),
        ),
    )


@spec_orchestrator.group()
def backups() -> None:
    """Spec file backup commands."""


@backups.command("list")
@click.argument("file", type=click.Path(path_type=Path))
@click.option(
    "--backup-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Backup directory. Defaults to SPEC_ORCHESTRATOR_BACKUP_DIR.",
)
def backups_list(file: Path, backup_dir: Path | None) -> None:
    """List backups of a spec file, newest first."""

    _emit_lines(
        _invoke(
            CONTROLLER.list_backups,
            BackupsListCommand(file=file, backup_dir=backup_dir),
        ),
    )


@backups.command("restore")
@click.argument("backup", type=click.Path(path_type=Path, dir_okay=False))
@click.argument("target", type=click.Path(path_type=Path, dir_okay=False))
def backups_restore(backup: Path, target: Path) -> None:
    """Atomically restore TARGET from a BACKUP copy."""

    result = CONTROLLER.restore_backup(BackupsRestoreCommand(backup=backup, target=target))
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Restore failed.")


def _invoke(handler: Callable[[_CommandT], _ResultT], command: _CommandT) -> _ResultT:
    try:
        return handler(command)
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    spec_orchestrator()
