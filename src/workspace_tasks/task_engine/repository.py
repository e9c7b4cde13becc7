"""Persistence backends for workspace tasks.

The task store needs five things from a backend: load every task of a
workspace, atomically write back one or many task records, find which
workspace a task id belongs to, hold a workspace lock for the length of a
mutation, and report a revision token that changes whenever the stored
records do.  :class:`YamlTaskRepository` keeps one YAML file per workspace
(``workspaces/<id>/tasks.yaml``) and serializes writers across processes with
a file lock; :class:`InMemoryTaskRepository` is used by tests and by throwaway
servers.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, ContextManager, Hashable, Optional, Protocol

from filelock import FileLock

from ..constants import (
    LOCK_TIMEOUT_SECONDS,
    STORE_FORMAT_VERSION,
    TASKS_FILE,
    TASKS_LOCK_FILE,
    WORKSPACES_DIR,
)
from ..io_utils import _atomic_write_yaml, _load_data_with_error
from .model import Task


class TaskRepository(Protocol):
    def load_all(self, workspace_id: str) -> list[Task]: ...

    def save(self, workspace_id: str, tasks: list[Task]) -> None: ...

    def locate(self, task_id: str) -> Optional[str]: ...

    def lock(self, workspace_id: str) -> ContextManager[Any]: ...

    def revision(self, workspace_id: str) -> Hashable: ...


class InMemoryTaskRepository:
    """Dict-backed repository; stores copies so callers cannot alias state."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._revisions: dict[str, int] = {}
        self._workspace_locks: dict[str, threading.RLock] = {}
        self._lock = threading.Lock()

    def load_all(self, workspace_id: str) -> list[Task]:
        with self._lock:
            raw = list(self._data.get(workspace_id, {}).values())
        return [Task.from_dict(d) for d in raw]

    def save(self, workspace_id: str, tasks: list[Task]) -> None:
        with self._lock:
            bucket = self._data.setdefault(workspace_id, {})
            for task in tasks:
                bucket[task.id] = task.to_dict()
            self._revisions[workspace_id] = self._revisions.get(workspace_id, 0) + 1

    def locate(self, task_id: str) -> Optional[str]:
        with self._lock:
            for workspace_id, bucket in self._data.items():
                if task_id in bucket:
                    return workspace_id
        return None

    def lock(self, workspace_id: str) -> ContextManager[Any]:
        with self._lock:
            return self._workspace_locks.setdefault(workspace_id, threading.RLock())

    def revision(self, workspace_id: str) -> Hashable:
        with self._lock:
            return self._revisions.get(workspace_id, 0)


class YamlTaskRepository:
    """File-backed repository with one YAML document per workspace.

    Parameters
    ----------
    state_dir:
        Path to the ``.workspace_tasks/`` directory.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir
        self._root = state_dir / WORKSPACES_DIR
        self._locks: dict[str, FileLock] = {}
        self._locks_guard = threading.Lock()

    def _paths(self, workspace_id: str) -> tuple[Path, Path]:
        base = self._root / workspace_id
        return base / TASKS_FILE, base / TASKS_LOCK_FILE

    def lock(self, workspace_id: str) -> FileLock:
        """Reentrant cross-process lock for one workspace file.

        The same :class:`FileLock` instance is handed out on every call, so a
        mutation can hold it while :meth:`load_all` and :meth:`save` take it
        again.
        """
        with self._locks_guard:
            lock = self._locks.get(workspace_id)
            if lock is None:
                _, lock_path = self._paths(workspace_id)
                lock_path.parent.mkdir(parents=True, exist_ok=True)
                lock = FileLock(str(lock_path), timeout=LOCK_TIMEOUT_SECONDS)
                self._locks[workspace_id] = lock
            return lock

    def revision(self, workspace_id: str) -> Hashable:
        """Identity of the current task file; every atomic write replaces the inode."""
        store_path, _ = self._paths(workspace_id)
        try:
            stat = store_path.stat()
        except FileNotFoundError:
            return None
        return (stat.st_ino, stat.st_mtime_ns, stat.st_size)

    def _read(self, path: Path) -> list[dict[str, Any]]:
        data, err = _load_data_with_error(path, {})
        if err:
            raise OSError(f"Unreadable task file {path}: {err}")
        tasks = data.get("tasks")
        return list(tasks) if isinstance(tasks, list) else []

    def load_all(self, workspace_id: str) -> list[Task]:
        store_path, _ = self._paths(workspace_id)
        if not store_path.exists():
            return []
        with self.lock(workspace_id):
            raw = self._read(store_path)
        return [Task.from_dict(d) for d in raw if isinstance(d, dict)]

    def save(self, workspace_id: str, tasks: list[Task]) -> None:
        """Merge *tasks* into the workspace file by id (write-tmp-then-rename)."""
        store_path, _ = self._paths(workspace_id)
        with self.lock(workspace_id):
            records = self._read(store_path)
            index = {str(r.get("id")): i for i, r in enumerate(records) if isinstance(r, dict)}
            for task in tasks:
                data = task.to_dict()
                if task.id in index:
                    records[index[task.id]] = data
                else:
                    index[task.id] = len(records)
                    records.append(data)
            _atomic_write_yaml(store_path, {"version": STORE_FORMAT_VERSION, "tasks": records})

    def locate(self, task_id: str) -> Optional[str]:
        if not self._root.exists():
            return None
        for store_path in sorted(self._root.glob(f"*/{TASKS_FILE}")):
            workspace_id = store_path.parent.name
            for task in self.load_all(workspace_id):
                if task.id == task_id:
                    return workspace_id
        return None

    def workspace_ids(self) -> list[str]:
        if not self._root.exists():
            return []
        return sorted(p.parent.name for p in self._root.glob(f"*/{TASKS_FILE}"))
