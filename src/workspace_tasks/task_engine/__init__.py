"""Workspace task engine: model, dependency graph, workflow, store and views."""

from .model import ChangeEvent, Task, TaskStatus
from .store import TaskChange, TaskStore

__all__ = ["ChangeEvent", "Task", "TaskChange", "TaskStatus", "TaskStore"]
