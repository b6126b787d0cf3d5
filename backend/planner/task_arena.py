"""
In-memory arena of tasks keyed by id.

Parent/child links are plain ids, never object references, so a corrupt
parent chain can be detected instead of recursing forever. The arena is a
read model: it is built from rows, queried, and thrown away.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Iterator, Optional


class CorruptTreeError(RuntimeError):
    """Persisted parent links form a cycle or point outside the arena."""


@dataclass
class TaskNode:
    id: int
    name: str = ""
    stage_id: Optional[int] = None
    parent_task_id: Optional[int] = None
    display_order: int = 0
    sold_days: Optional[Decimal] = None
    remaining_hours: Optional[Decimal] = None
    last_remaining_update_total: Optional[Decimal] = None
    status: str = "todo"
    subtask_ids: list[int] = field(default_factory=list)

    @classmethod
    def from_task(cls, task) -> "TaskNode":
        return cls(
            id=task.id,
            name=task.name,
            stage_id=task.stage_id,
            parent_task_id=task.parent_task_id,
            display_order=task.display_order or 0,
            sold_days=task.sold_days,
            remaining_hours=task.remaining_hours,
            last_remaining_update_total=task.last_remaining_update_total,
            status=task.status,
        )


class TaskArena:
    def __init__(self, nodes: Iterable[TaskNode]):
        self._nodes: dict[int, TaskNode] = {}
        for node in nodes:
            node.subtask_ids = []
            self._nodes[node.id] = node

        self._roots_by_stage: dict[Optional[int], list[int]] = {}
        ordered = sorted(self._nodes.values(), key=lambda n: (n.display_order, n.id))
        for node in ordered:
            if node.parent_task_id is None:
                self._roots_by_stage.setdefault(node.stage_id, []).append(node.id)
                continue
            parent = self._nodes.get(node.parent_task_id)
            if parent is None:
                raise CorruptTreeError(f"Task {node.id} references missing parent {node.parent_task_id}")
            parent.subtask_ids.append(node.id)

    @classmethod
    def from_tasks(cls, tasks) -> "TaskArena":
        return cls(TaskNode.from_task(t) for t in tasks)

    def node(self, task_id: int) -> TaskNode:
        try:
            return self._nodes[task_id]
        except KeyError:
            raise KeyError(f"Task {task_id} is not in the arena") from None

    def subtasks(self, task_id: int) -> list[TaskNode]:
        return [self._nodes[i] for i in self.node(task_id).subtask_ids]

    def roots(self, stage_id: Optional[int] = None) -> list[TaskNode]:
        """Top-level tasks of one stage; stage_id None is the unstaged group."""
        return [self._nodes[i] for i in self._roots_by_stage.get(stage_id, [])]

    def stage_ids(self) -> list[Optional[int]]:
        return list(self._roots_by_stage.keys())

    def ancestors(self, task_id: int) -> Iterator[TaskNode]:
        """Walk parent ids upward, nearest parent first."""
        seen = {task_id}
        current = self.node(task_id)
        while current.parent_task_id is not None:
            if current.parent_task_id in seen:
                raise CorruptTreeError(f"Cycle detected above task {task_id}")
            seen.add(current.parent_task_id)
            current = self.node(current.parent_task_id)
            yield current

    def descendants(self, task_id: int) -> Iterator[TaskNode]:
        """Depth-first, in display order."""
        stack = list(reversed(self.node(task_id).subtask_ids))
        seen: set[int] = set()
        while stack:
            current_id = stack.pop()
            if current_id in seen:
                raise CorruptTreeError(f"Cycle detected below task {task_id}")
            seen.add(current_id)
            current = self._nodes[current_id]
            yield current
            stack.extend(reversed(current.subtask_ids))

    def is_descendant(self, candidate_id: int, ancestor_id: int) -> bool:
        return any(a.id == ancestor_id for a in self.ancestors(candidate_id))

    def effective_stage_id(self, task_id: int) -> Optional[int]:
        node = self.node(task_id)
        if node.stage_id is not None or node.parent_task_id is None:
            return node.stage_id
        for ancestor in self.ancestors(task_id):
            if ancestor.stage_id is not None:
                return ancestor.stage_id
        return None

    def depth(self, task_id: int) -> int:
        return sum(1 for _ in self.ancestors(task_id))
