from __future__ import annotations

from pathlib import Path

import allure
import pytest

from spec_orchestrator.config import CorrectionSettings, Settings, StorageSettings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]

_ENV_NAMES = (
    "SPEC_ORCHESTRATOR_STATE_PATH",
    "SPEC_ORCHESTRATOR_BACKUP_DIR",
    "SPEC_ORCHESTRATOR_MAX_BACKUPS",
    "SPEC_ORCHESTRATOR_BACKUP_TASK_UPDATES",
    "SPEC_ORCHESTRATOR_TRANSITION_LOG_PATH",
    "SPEC_ORCHESTRATOR_MAX_ATTEMPTS",
    "SPEC_ORCHESTRATOR_STRICT_VALIDATION",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults_follow_kiro_layout() -> None:
    settings = Settings.from_env()

    assert settings.storage.state_path == Path(".kiro/state/orchestrator-state.json")
    assert settings.storage.backup_dir == Path(".kiro/backups")
    assert settings.storage.max_backups == 10
    assert not settings.storage.backup_task_updates
    assert settings.storage.transition_log_path is None
    assert settings.correction.max_attempts == 3
    assert settings.correction.strict_validation
    settings.validate()


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SPEC_ORCHESTRATOR_STATE_PATH", str(tmp_path / "state.json"))
    monkeypatch.setenv("SPEC_ORCHESTRATOR_BACKUP_DIR", str(tmp_path / "backups"))
    monkeypatch.setenv("SPEC_ORCHESTRATOR_MAX_BACKUPS", " 4 ")
    monkeypatch.setenv("SPEC_ORCHESTRATOR_BACKUP_TASK_UPDATES", "yes")
    monkeypatch.setenv("SPEC_ORCHESTRATOR_TRANSITION_LOG_PATH", str(tmp_path / "log.jsonl"))
    monkeypatch.setenv("SPEC_ORCHESTRATOR_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("SPEC_ORCHESTRATOR_STRICT_VALIDATION", "off")

    settings = Settings.from_env()

    assert settings.storage.state_path == tmp_path / "state.json"
    assert settings.storage.backup_dir == tmp_path / "backups"
    assert settings.storage.max_backups == 4
    assert settings.storage.backup_task_updates
    assert settings.storage.transition_log_path == tmp_path / "log.jsonl"
    assert settings.correction.max_attempts == 5
    assert not settings.correction.strict_validation


def test_explicit_state_path_wins_over_environment(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setenv("SPEC_ORCHESTRATOR_STATE_PATH", "/ignored/state.json")

    settings = Settings.from_env(state_path=tmp_path / "explicit.json")

    assert settings.storage.state_path == tmp_path / "explicit.json"


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("SPEC_ORCHESTRATOR_MAX_BACKUPS", "many", "Invalid integer value"),
        ("SPEC_ORCHESTRATOR_BACKUP_TASK_UPDATES", "maybe", "Invalid boolean value"),
    ],
)
def test_malformed_environment_values_raise(
    monkeypatch: pytest.MonkeyPatch,
    name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message):
        Settings.from_env()


def test_validate_rejects_non_positive_max_backups() -> None:
    settings = Settings(storage=StorageSettings(max_backups=0))

    with pytest.raises(ValueError, match="MAX_BACKUPS"):
        settings.validate()


def test_validate_rejects_non_positive_max_attempts() -> None:
    settings = Settings(correction=CorrectionSettings(max_attempts=0))

    with pytest.raises(ValueError, match="MAX_ATTEMPTS"):
        settings.validate()
