from __future__ import annotations

import logging
from pathlib import Path

import allure
import pytest

from conftest import InMemorySpecParser, ScriptedExecutor, ScriptedGenerator, make_error
from spec_orchestrator.config import Settings
from spec_orchestrator.orchestrator.errors import InvalidSpecStateError
from spec_orchestrator.orchestrator.events import read_transition_log
from spec_orchestrator.orchestrator.models import TaskStatus
from spec_orchestrator.orchestrator.ralph_loop import RalphLoop
from spec_orchestrator.orchestrator.runner import SpecOrchestrator, render_escalation_lines
from spec_orchestrator.orchestrator.state import StateStore
from spec_orchestrator.orchestrator.task_manager import TaskManager

pytestmark = [
    allure.epic("Task Execution"),
    allure.feature("Orchestration Run"),
]

FULL_ORDER = ["1", "2.1", "2.2", "2", "3"]


def _orchestrator(
    manager: TaskManager,
    executor: ScriptedExecutor,
    generator: ScriptedGenerator,
    spec_dir: Path,
    tmp_path: Path,
) -> SpecOrchestrator:
    loop = RalphLoop(manager, generator, spec_path=spec_dir, backup_dir=tmp_path / "backups")
    return SpecOrchestrator(manager, executor, loop)


def test_happy_path_runs_every_required_task_in_order(
    task_manager: TaskManager,
    spec_dir: Path,
    tmp_path: Path,
) -> None:
    executor = ScriptedExecutor()
    orchestrator = _orchestrator(task_manager, executor, ScriptedGenerator(), spec_dir, tmp_path)

    result = orchestrator.run()

    assert result.completed
    assert result.escalation is None
    assert executor.executed == FULL_ORDER
    assert result.completed_tasks == FULL_ORDER
    assert result.skipped_tasks == ["4"]
    assert task_manager.state.execution_started_at is not None


def test_optional_tasks_run_when_included(
    task_manager: TaskManager,
    spec_dir: Path,
    tmp_path: Path,
) -> None:
    executor = ScriptedExecutor()
    orchestrator = _orchestrator(task_manager, executor, ScriptedGenerator(), spec_dir, tmp_path)

    result = orchestrator.run(include_optional=True)

    assert result.completed
    assert executor.executed == [*FULL_ORDER, "4"]
    assert result.skipped_tasks == []


def test_failed_task_is_corrected_and_retried(
    task_manager: TaskManager,
    spec_dir: Path,
    tmp_path: Path,
) -> None:
    executor = ScriptedExecutor(script={"2.1": [make_error("2.1")]})
    generator = ScriptedGenerator()
    orchestrator = _orchestrator(task_manager, executor, generator, spec_dir, tmp_path)

    result = orchestrator.run()

    assert result.completed
    assert executor.executed == ["1", "2.1", "2.1", "2.2", "2", "3"]
    assert generator.calls == [("2.1", 1)]
    assert "<!-- correction 1 for 2.1 -->" in (spec_dir / "tasks.md").read_text("utf-8")


def test_executor_exception_flows_through_correction(
    task_manager: TaskManager,
    spec_dir: Path,
    tmp_path: Path,
) -> None:
    executor = ScriptedExecutor(script={"1": [RuntimeError("connection refused")]})
    generator = ScriptedGenerator()
    orchestrator = _orchestrator(task_manager, executor, generator, spec_dir, tmp_path)

    result = orchestrator.run()

    assert result.completed
    assert executor.executed[:2] == ["1", "1"]
    assert generator.calls == [("1", 1)]


def test_failed_correction_is_retried_with_same_failure(
    task_manager: TaskManager,
    spec_dir: Path,
    tmp_path: Path,
) -> None:
    executor = ScriptedExecutor(script={"2.1": [make_error("2.1")]})
    generator = ScriptedGenerator(failures=1)
    orchestrator = _orchestrator(task_manager, executor, generator, spec_dir, tmp_path)

    result = orchestrator.run()

    assert result.completed
    assert generator.calls == [("2.1", 1), ("2.1", 2)]
    assert executor.executed.count("2.1") == 2


def test_exhausted_corrections_escalate_with_verbatim_error(
    task_manager: TaskManager,
    spec_dir: Path,
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    failure = make_error(
        "2.1",
        "TypeError: Cannot read property 'x' of undefined\n    while parsing header",
        trace="at parse (/repo/src/parser.ts:42:13)",
    )
    executor = ScriptedExecutor(script={"2.1": [failure]})
    generator = ScriptedGenerator(failures=10)
    orchestrator = _orchestrator(task_manager, executor, generator, spec_dir, tmp_path)

    with caplog.at_level(logging.ERROR):
        result = orchestrator.run()

    assert not result.completed
    assert result.completed_tasks == ["1"]
    report = result.escalation
    assert report is not None
    assert report.task_id == "2.1"
    assert report.error is failure
    assert [outcome.attempt_number for outcome in report.attempts] == [1, 2, 3]
    assert report.attempts[-1].exhausted
    assert task_manager.get_task_status("2.1") is TaskStatus.IN_PROGRESS
    assert "Escalating task 2.1" in caplog.text

    lines = render_escalation_lines(report)
    assert lines[0] == "Escalation required for task 2.1: Implement parser"
    assert "Correction attempts exhausted: 3" in lines
    message_at = lines.index("Error message:")
    assert lines[message_at + 1 : message_at + 3] == [
        "TypeError: Cannot read property 'x' of undefined",
        "    while parsing header",
    ]
    assert "at parse (/repo/src/parser.ts:42:13)" in lines
    assert "  attempt=3 status=failed exhausted=yes" in lines
    assert "    error: generator unavailable" in lines


def test_run_resumes_in_flight_task_first(
    task_manager: TaskManager,
    parser: InMemorySpecParser,
    state_store: StateStore,
    spec_dir: Path,
    tmp_path: Path,
) -> None:
    for task_id in ("1", "2.1"):
        task_manager.queue_task(task_id)
        task_manager.start_task(task_id)
        task_manager.complete_task(task_id)
    task_manager.queue_task("2.2")
    task_manager.start_task("2.2")

    resumed = TaskManager(parser, state_store=state_store)
    assert resumed.resume_spec(spec_dir).success
    executor = ScriptedExecutor()
    orchestrator = _orchestrator(resumed, executor, ScriptedGenerator(), spec_dir, tmp_path)

    result = orchestrator.run()

    assert result.completed
    assert executor.executed == ["2.2", "2", "3"]


def test_run_without_spec_raises(parser: InMemorySpecParser, tmp_path: Path) -> None:
    manager = TaskManager(parser, state_store=StateStore(tmp_path / "state.json"))
    orchestrator = _orchestrator(
        manager,
        ScriptedExecutor(),
        ScriptedGenerator(),
        tmp_path,
        tmp_path,
    )

    with pytest.raises(InvalidSpecStateError):
        orchestrator.run()


def test_from_settings_wires_transition_log(
    settings: Settings,
    parser: InMemorySpecParser,
    spec_dir: Path,
    tmp_path: Path,
) -> None:
    settings.storage.transition_log_path = tmp_path / "logs" / "transitions.jsonl"
    executor = ScriptedExecutor()
    orchestrator = SpecOrchestrator.from_settings(
        settings,
        spec_dir=spec_dir,
        parser=parser,
        executor=executor,
        generator=ScriptedGenerator(),
    )
    assert orchestrator.task_manager.load_spec(spec_dir).success

    result = orchestrator.run()

    assert result.completed
    records = read_transition_log(settings.storage.transition_log_path)
    assert len(records) == 3 * len(FULL_ORDER)
    assert [record["new_status"] for record in records[:3]] == [
        "queued",
        "in_progress",
        "completed",
    ]
    assert settings.storage.state_path.exists()


def test_from_settings_rejects_invalid_settings(
    settings: Settings,
    parser: InMemorySpecParser,
    spec_dir: Path,
) -> None:
    settings.correction.max_attempts = 0

    with pytest.raises(ValueError, match="MAX_ATTEMPTS"):
        SpecOrchestrator.from_settings(
            settings,
            spec_dir=spec_dir,
            parser=parser,
            executor=ScriptedExecutor(),
            generator=ScriptedGenerator(),
        )
