from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from click import ClickException
from click.testing import CliRunner

from conftest import DESIGN_MD, TASKS_MD
from spec_orchestrator import __version__
from spec_orchestrator.main import _invoke, spec_orchestrator
from spec_orchestrator.orchestrator.events import JsonlTransitionLog
from spec_orchestrator.orchestrator.models import StatusTransitionEvent, TaskStatus
from spec_orchestrator.orchestrator.state import OrchestratorState, StateStore
from spec_orchestrator.storage.common import utc_now
from spec_orchestrator.storage.file_store import atomic_write_with_backup

pytestmark = [
    allure.epic("Operator CLI"),
    allure.feature("Inspection & Recovery Commands"),
]


def _seed_state(path: Path) -> None:
    StateStore(path).save(
        OrchestratorState(
            current_spec="/repo/.kiro/specs/demo",
            current_task="2.1",
            ralph_loop_attempts={"2.1": 3, "1": 1},
            completed_tasks=["1"],
        ),
    )


def test_version_option() -> None:
    result = CliRunner().invoke(spec_orchestrator, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_invoke_returns_handler_result_and_maps_value_errors() -> None:
    assert _invoke(int, "7") == 7
    with pytest.raises(ClickException, match="invalid literal"):
        _invoke(int, "seven")


def test_status_shows_attempts_and_exhaustion(tmp_path: Path) -> None:
    state_path = tmp_path / "state.json"
    _seed_state(state_path)

    result = CliRunner().invoke(spec_orchestrator, ["status", "--state-path", str(state_path)])

    assert result.exit_code == 0, result.output
    assert "Current task: 2.1" in result.output
    assert "Completed tasks (1): 1" in result.output
    assert "task_id=1 attempts=1/3" in result.output
    assert "task_id=2.1 attempts=3/3 exhausted" in result.output


def test_status_json_and_missing_state(tmp_path: Path) -> None:
    state_path = tmp_path / "state.json"
    runner = CliRunner()

    missing = runner.invoke(spec_orchestrator, ["status", "--state-path", str(state_path)])
    _seed_state(state_path)
    as_json = runner.invoke(
        spec_orchestrator,
        ["status", "--state-path", str(state_path), "--format", "json"],
    )

    assert missing.exit_code == 0
    assert "No orchestrator state at" in missing.output
    assert as_json.exit_code == 0
    assert json.loads(as_json.output)["ralph_loop_attempts"] == {"1": 1, "2.1": 3}


def test_reset_attempts_clears_counter(tmp_path: Path) -> None:
    state_path = tmp_path / "state.json"
    _seed_state(state_path)

    result = CliRunner().invoke(
        spec_orchestrator,
        ["reset-attempts", "2.1", "--state-path", str(state_path)],
    )

    assert result.exit_code == 0, result.output
    assert "Attempts reset: task_id=2.1 previous=3" in result.output
    assert StateStore(state_path).load().ralph_loop_attempts == {"1": 1}


def test_reset_attempts_without_state_fails(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        spec_orchestrator,
        ["reset-attempts", "2.1", "--state-path", str(tmp_path / "absent.json")],
    )

    assert result.exit_code != 0
    assert "No orchestrator state at" in result.output


def test_analyze_json_output() -> None:
    result = CliRunner().invoke(
        spec_orchestrator,
        [
            "analyze",
            "--task-id",
            "2.3",
            "--message",
            "TypeError: Cannot read property 'x' of undefined",
            "--json",
        ],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["task_id"] == "2.3"
    assert payload["error_type"] == "runtime_error"
    assert payload["target_file"] == "tasks.md"
    assert payload["confidence"] >= 50


def test_analyze_table_output() -> None:
    result = CliRunner().invoke(
        spec_orchestrator,
        ["analyze", "--task-id", "1", "--message", "error TS2304: Cannot find name 'Foo'."],
    )

    assert result.exit_code == 0, result.output
    assert "Error type: compilation_error" in result.output
    assert "Target file: design.md" in result.output


def test_validate_accepts_and_rejects(tmp_path: Path) -> None:
    good = tmp_path / "tasks.md"
    good.write_text(TASKS_MD, "utf-8")
    bad = tmp_path / "design.md"
    bad.write_text("# Design\n\nNo sections.\n", "utf-8")
    runner = CliRunner()

    accepted = runner.invoke(spec_orchestrator, ["validate", str(good)])
    rejected = runner.invoke(spec_orchestrator, ["validate", str(bad)])
    relaxed = runner.invoke(spec_orchestrator, ["validate", str(bad), "--no-strict"])

    assert accepted.exit_code == 0, accepted.output
    assert f"Valid tasks.md: {good}" in accepted.output
    assert rejected.exit_code != 0
    assert "Invalid design.md" in rejected.output
    assert "Validation failed." in rejected.output
    assert relaxed.exit_code == 0, relaxed.output


def test_validate_unknown_artifact_name(tmp_path: Path) -> None:
    notes = tmp_path / "notes.md"
    notes.write_text("# Notes\n", "utf-8")

    result = CliRunner().invoke(spec_orchestrator, ["validate", str(notes)])

    assert result.exit_code != 0
    assert "Unsupported artifact" in result.output


def test_backups_list_and_restore(tmp_path: Path) -> None:
    target = tmp_path / "design.md"
    backup_dir = tmp_path / "backups"
    target.write_text(DESIGN_MD, "utf-8")
    written = atomic_write_with_backup(target, "## Broken\n", backup_dir=backup_dir)
    assert written.backup_path is not None
    runner = CliRunner()

    listed = runner.invoke(
        spec_orchestrator,
        ["backups", "list", str(target), "--backup-dir", str(backup_dir)],
    )
    restored = runner.invoke(
        spec_orchestrator,
        ["backups", "restore", str(written.backup_path), str(target)],
    )

    assert listed.exit_code == 0, listed.output
    assert "Backups of design.md: 1" in listed.output
    assert restored.exit_code == 0, restored.output
    assert target.read_text("utf-8") == DESIGN_MD


def test_backups_restore_missing_backup_fails(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        spec_orchestrator,
        ["backups", "restore", str(tmp_path / "gone.md"), str(tmp_path / "design.md")],
    )

    assert result.exit_code != 0
    assert "Restore failed: Backup file does not exist" in result.output


def test_history_filters_by_task(tmp_path: Path) -> None:
    log_path = tmp_path / "transitions.jsonl"
    log = JsonlTransitionLog(log_path)
    for task_id, new_status in (
        ("1", TaskStatus.QUEUED),
        ("2.1", TaskStatus.QUEUED),
        ("1", TaskStatus.IN_PROGRESS),
    ):
        log(
            StatusTransitionEvent(
                task_id=task_id,
                previous_status=TaskStatus.NOT_STARTED,
                new_status=new_status,
                timestamp=utc_now(),
            ),
        )

    result = CliRunner().invoke(
        spec_orchestrator,
        ["history", "--log-path", str(log_path), "--task-id", "1"],
    )

    assert result.exit_code == 0, result.output
    assert "Transitions: 2" in result.output
    assert "task_id=2.1" not in result.output
    assert "not_started -> in_progress" in result.output


def test_history_requires_log_path(monkeypatch) -> None:
    monkeypatch.delenv("SPEC_ORCHESTRATOR_TRANSITION_LOG_PATH", raising=False)

    result = CliRunner().invoke(spec_orchestrator, ["history"])

    assert result.exit_code != 0
    assert "Transition log path is not configured" in result.output
