"""Read-only list and board projections over a workspace snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .graph import DependencyGraph
from .model import Task, TaskStatus
from .workflow import effective_status

BOARD_COLUMNS: tuple[TaskStatus, ...] = (
    TaskStatus.TODO,
    TaskStatus.BLOCKED,
    TaskStatus.IN_PROGRESS,
    TaskStatus.IN_REVIEW,
    TaskStatus.DONE,
)


@dataclass
class TaskView:
    """A task as the list and board render it."""

    task: Task
    effective_status: TaskStatus
    blocked_by: list[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.task.id

    def to_dict(self) -> dict[str, Any]:
        data = self.task.to_dict()
        data["comments"] = [c for c in data["comments"] if not c.get("deleted")]
        data["attachments"] = [a for a in data["attachments"] if not a.get("removed")]
        data["effective_status"] = self.effective_status.value
        data["blocked_by"] = list(self.blocked_by)
        return data


@dataclass
class TaskFilter:
    status: Optional[str] = None
    assignee_id: Optional[str] = None
    search: Optional[str] = None
    include_cancelled: bool = False

    def matches(self, view: TaskView) -> bool:
        task = view.task
        wants_cancelled = self.include_cancelled or self.status == TaskStatus.CANCELLED.value
        if task.status == TaskStatus.CANCELLED and not wants_cancelled:
            return False
        if self.status and view.effective_status.value != self.status:
            return False
        if self.assignee_id and not task.is_assigned_to(self.assignee_id):
            return False
        if self.search:
            q = self.search.lower()
            if q not in task.title.lower() and q not in task.description.lower() and q not in task.id.lower():
                return False
        return True


def build_view(task: Task, tasks: Mapping[str, Task], graph: DependencyGraph) -> TaskView:
    def status_of(task_id: str) -> Optional[TaskStatus]:
        other = tasks.get(task_id)
        return other.status if other is not None else None

    blocked_by = graph.blockers(task.id, status_of)
    return TaskView(
        task=task,
        effective_status=effective_status(task.status, not blocked_by),
        blocked_by=blocked_by,
    )


def list_view(
    tasks: Mapping[str, Task],
    graph: DependencyGraph,
    task_filter: Optional[TaskFilter] = None,
) -> list[TaskView]:
    flt = task_filter or TaskFilter()
    views = [build_view(t, tasks, graph) for t in tasks.values()]
    out = [v for v in views if flt.matches(v)]
    out.sort(key=lambda v: (v.task.created_at, v.task.id))
    return out


def board_view(tasks: Mapping[str, Task], graph: DependencyGraph) -> dict[str, list[TaskView]]:
    """Group tasks into Kanban columns by effective status; cancelled tasks are hidden."""
    columns: dict[str, list[TaskView]] = {status.value: [] for status in BOARD_COLUMNS}
    for view in list_view(tasks, graph):
        columns[view.effective_status.value].append(view)
    return columns
