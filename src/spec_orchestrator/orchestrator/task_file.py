"""Checkbox markers in tasks.md mirror task status.

``- [ ] 1.2 Description`` is not started, ``[~]`` queued, ``[>]`` in progress and
``[x]`` completed. An optional task carries ``*`` right after the checkbox.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from spec_orchestrator.orchestrator.models import TaskStatus

STATUS_MARKERS: dict[TaskStatus, str] = {
    TaskStatus.NOT_STARTED: "[ ]",
    TaskStatus.QUEUED: "[~]",
    TaskStatus.IN_PROGRESS: "[>]",
    TaskStatus.COMPLETED: "[x]",
}
_MARKER_STATUSES: dict[str, TaskStatus] = {
    " ": TaskStatus.NOT_STARTED,
    "~": TaskStatus.QUEUED,
    ">": TaskStatus.IN_PROGRESS,
    "x": TaskStatus.COMPLETED,
    "X": TaskStatus.COMPLETED,
}
_TASK_LINE = re.compile(r"^\s*-\s*\[([^\]]?)\]\*?\s+(\d+(?:\.\d+)*)\.?(?=\s|$)", re.MULTILINE)


def status_marker(status: TaskStatus) -> str:
    return STATUS_MARKERS[status]


def replace_task_marker(content: str, task_id: str, status: TaskStatus) -> str | None:
    """Rewrite the first checkbox line for ``task_id``.

    Returns ``None`` when no line carries that id, so callers can treat a task
    missing from the file as a failed update instead of a silent no-op.
    """

    pattern = re.compile(
        rf"^(\s*-\s*)\[[^\]]*\](\*?)(\s+)({re.escape(task_id)})(?!\.?\d)(.*)$",
        re.MULTILINE,
    )
    marker = status_marker(status)
    updated, count = pattern.subn(
        lambda match: f"{match.group(1)}{marker}{match.group(2)}{match.group(3)}"
        f"{match.group(4)}{match.group(5)}",
        content,
        count=1,
    )
    if count == 0:
        return None
    return updated


def replace_all_markers(content: str, statuses: Mapping[str, TaskStatus]) -> str:
    """Rewrite every listed task marker; ids missing from the file are ignored."""

    for task_id, status in statuses.items():
        updated = replace_task_marker(content, task_id, status)
        if updated is not None:
            content = updated
    return content


def read_task_statuses(content: str) -> dict[str, TaskStatus]:
    """Status per task id as recorded by the checkbox markers.

    Unrecognized markers read as not started.
    """

    statuses: dict[str, TaskStatus] = {}
    for match in _TASK_LINE.finditer(content):
        task_id = match.group(2)
        if task_id in statuses:
            continue
        statuses[task_id] = _MARKER_STATUSES.get(match.group(1) or " ", TaskStatus.NOT_STARTED)
    return statuses
