"""Runtime configuration for spec orchestration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class StorageSettings:
    """Where state and backups live on disk."""

    state_path: Path = Path(".kiro/state/orchestrator-state.json")
    backup_dir: Path = Path(".kiro/backups")
    max_backups: int = 10
    backup_task_updates: bool = False
    transition_log_path: Path | None = None


@dataclass(slots=True)
class CorrectionSettings:
    """Ralph-Loop correction policy."""

    max_attempts: int = 3
    strict_validation: bool = True


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    storage: StorageSettings = field(default_factory=StorageSettings)
    correction: CorrectionSettings = field(default_factory=CorrectionSettings)

    @classmethod
    def from_env(cls, state_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults matching the .kiro layout."""

        transition_log = os.getenv("SPEC_ORCHESTRATOR_TRANSITION_LOG_PATH", "").strip()
        return cls(
            storage=StorageSettings(
                state_path=state_path
                or Path(
                    os.getenv(
                        "SPEC_ORCHESTRATOR_STATE_PATH",
                        ".kiro/state/orchestrator-state.json",
                    ),
                ),
                backup_dir=Path(os.getenv("SPEC_ORCHESTRATOR_BACKUP_DIR", ".kiro/backups")),
                max_backups=_env_int("SPEC_ORCHESTRATOR_MAX_BACKUPS", default=10),
                backup_task_updates=_env_bool(
                    "SPEC_ORCHESTRATOR_BACKUP_TASK_UPDATES",
                    default=False,
                ),
                transition_log_path=Path(transition_log) if transition_log else None,
            ),
            correction=CorrectionSettings(
                max_attempts=_env_int("SPEC_ORCHESTRATOR_MAX_ATTEMPTS", default=3),
                strict_validation=_env_bool(
                    "SPEC_ORCHESTRATOR_STRICT_VALIDATION",
                    default=True,
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the orchestrator cannot work with."""

        if self.storage.max_backups < 1:
            raise ValueError("SPEC_ORCHESTRATOR_MAX_BACKUPS must be >= 1.")
        if self.correction.max_attempts < 1:
            raise ValueError("SPEC_ORCHESTRATOR_MAX_ATTEMPTS must be >= 1.")
        if self.storage.state_path.name == "":
            raise ValueError("SPEC_ORCHESTRATOR_STATE_PATH must point to a file.")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
