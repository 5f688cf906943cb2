"""Versioned orchestrator state and its JSON file store.

State is saved after every committed transition so execution can resume after
a crash. A state file that cannot be parsed or fails the structural check is
treated as absent.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from spec_orchestrator.orchestrator.errors import StatePersistenceError
from spec_orchestrator.storage.common import from_iso
from spec_orchestrator.storage.file_store import atomic_write, safe_read

logger = logging.getLogger(__name__)

STATE_VERSION = 1
DEFAULT_STATE_PATH = Path(".kiro/state/orchestrator-state.json")


@dataclass(slots=True)
class OrchestratorState:
    """Execution bookkeeping owned by the task manager."""

    version: int = STATE_VERSION
    current_spec: str | None = None
    current_task: str | None = None
    execution_started_at: datetime | None = None
    ralph_loop_attempts: dict[str, int] = field(default_factory=dict)
    completed_tasks: list[str] = field(default_factory=list)
    skipped_tasks: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "current_spec": self.current_spec,
            "current_task": self.current_task,
            "execution_started_at": (
                self.execution_started_at.isoformat() if self.execution_started_at else None
            ),
            "ralph_loop_attempts": dict(self.ralph_loop_attempts),
            "completed_tasks": list(self.completed_tasks),
            "skipped_tasks": list(self.skipped_tasks),
        }

    @classmethod
    def from_dict(cls, payload: object) -> OrchestratorState:
        """Rebuild state from its JSON form, raising ``ValueError`` on bad structure."""

        if not isinstance(payload, dict):
            raise ValueError("State must be a JSON object.")
        version = payload.get("version")
        if version != STATE_VERSION:
            raise ValueError(f"Unsupported state version: {version!r}")
        current_spec = _optional_str(payload, "current_spec")
        current_task = _optional_str(payload, "current_task")
        started_raw = _optional_str(payload, "execution_started_at")

        attempts = payload.get("ralph_loop_attempts")
        if not isinstance(attempts, dict):
            raise ValueError("ralph_loop_attempts must be an object.")
        for task_id, count in attempts.items():
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                raise ValueError(f"Invalid attempt count for task {task_id}: {count!r}")

        return cls(
            version=version,
            current_spec=current_spec,
            current_task=current_task,
            execution_started_at=from_iso(started_raw) if started_raw else None,
            ralph_loop_attempts=dict(attempts),
            completed_tasks=_str_list(payload, "completed_tasks"),
            skipped_tasks=_str_list(payload, "skipped_tasks"),
        )


class StateStore:
    """Reads and atomically writes the orchestrator state file."""

    def __init__(self, path: Path = DEFAULT_STATE_PATH) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> OrchestratorState | None:
        """Return the persisted state, or ``None`` when absent or corrupt."""

        if not self.path.exists():
            return None
        content = safe_read(self.path)
        if content is None:
            logger.warning("State file %s exists but could not be read", self.path)
            return None
        try:
            return OrchestratorState.from_dict(json.loads(content))
        except ValueError as error:
            logger.warning("State file %s is invalid, starting fresh: %s", self.path, error)
            return None

    def save(self, state: OrchestratorState) -> None:
        content = json.dumps(state.to_dict(), indent=2, sort_keys=True) + "\n"
        result = atomic_write(self.path, content, validate=_is_json_object)
        if not result.success:
            raise StatePersistenceError(
                message=f"Failed to persist state to {self.path}: {result.error}",
            )


def _is_json_object(content: str) -> bool:
    try:
        return isinstance(json.loads(content), dict)
    except ValueError:
        return False


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{key} must be a string or null.")
    return value


def _str_list(payload: dict[str, Any], key: str) -> list[str]:
    value = payload.get(key)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"{key} must be a list of strings.")
    return list(value)
