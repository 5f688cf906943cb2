"""Status-transition observers."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from spec_orchestrator.orchestrator.collaborators import StatusTransitionListener
from spec_orchestrator.orchestrator.models import StatusTransitionEvent

logger = logging.getLogger(__name__)


class TransitionListeners:
    """Ordered listener collection; one failing listener never stops the others."""

    def __init__(self) -> None:
        self._listeners: list[StatusTransitionListener] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def add(self, listener: StatusTransitionListener) -> None:
        self._listeners.append(listener)

    def remove(self, listener: StatusTransitionListener) -> bool:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def notify(self, event: StatusTransitionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Status transition listener failed for task %s (%s -> %s)",
                    event.task_id,
                    event.previous_status.value,
                    event.new_status.value,
                )


class JsonlTransitionLog:
    """Listener that appends each committed transition as one JSON line."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def __call__(self, event: StatusTransitionEvent) -> None:
        record = {
            "timestamp": event.timestamp.isoformat(),
            "event": "status_transition",
            "task_id": event.task_id,
            "previous_status": event.previous_status.value,
            "new_status": event.new_status.value,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, ensure_ascii=False) + "\n")


def read_transition_log(path: Path) -> list[dict[str, object]]:
    """Parse a transition log, skipping lines that are not JSON objects."""

    if not path.exists():
        return []
    records: list[dict[str, object]] = []
    for line in path.read_text("utf-8").splitlines():
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed transition log line in %s", path)
            continue
        if isinstance(record, dict):
            records.append(record)
    return records
