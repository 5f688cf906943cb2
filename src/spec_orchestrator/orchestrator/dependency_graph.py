"""Prerequisite graph derived from task-tree document order.

A task depends on every earlier non-optional sibling (top-level tasks are
siblings of each other) and inherits the prerequisites of its ancestors. Edges
always point from an earlier document position to a later one, so the graph
has no cycles. Parent/child containment is not an edge here; the task manager
checks it separately.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from spec_orchestrator.orchestrator.models import DependencyNode, Task, TaskStatus


class DependencyGraph:
    """Prerequisite and dependent lookups keyed by task id."""

    def __init__(self, nodes: dict[str, DependencyNode]) -> None:
        self._nodes = nodes

    @classmethod
    def build(cls, tasks: list[Task]) -> DependencyGraph:
        nodes: dict[str, DependencyNode] = {}
        _collect(tasks, inherited=[], nodes=nodes)
        for node in nodes.values():
            for prerequisite in node.prerequisites:
                nodes[prerequisite].dependents.append(node.task_id)
        return cls(nodes)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._nodes

    def node(self, task_id: str) -> DependencyNode:
        return self._nodes[task_id]

    def nodes(self) -> Iterable[DependencyNode]:
        return self._nodes.values()

    def prerequisites(self, task_id: str) -> list[str]:
        node = self._nodes.get(task_id)
        return list(node.prerequisites) if node else []

    def dependents(self, task_id: str) -> list[str]:
        node = self._nodes.get(task_id)
        return list(node.dependents) if node else []

    def incomplete_prerequisites(
        self,
        task_id: str,
        status_of: Callable[[str], TaskStatus],
    ) -> list[str]:
        return [
            prerequisite
            for prerequisite in self.prerequisites(task_id)
            if status_of(prerequisite) is not TaskStatus.COMPLETED
        ]


def _collect(
    siblings: list[Task],
    *,
    inherited: list[str],
    nodes: dict[str, DependencyNode],
) -> None:
    earlier: list[str] = []
    for task in siblings:
        prerequisites = [*earlier, *inherited]
        nodes[task.id] = DependencyNode(task_id=task.id, prerequisites=prerequisites)
        _collect(task.children, inherited=prerequisites, nodes=nodes)
        if not task.is_optional:
            earlier.append(task.id)
