"""In-memory dependency graph for one workspace.

Edges point from a task to the tasks it depends on.  The graph is rebuilt from
the tasks' ``depends_on`` lists on load and never persisted on its own.
"""

from __future__ import annotations

from collections import deque
from typing import Callable, Iterable, Iterator, Optional

from ..errors import CycleError, NotFoundError, SelfDependencyError
from .model import TERMINAL_STATUSES, Task, TaskStatus

StatusLookup = Callable[[str], Optional[TaskStatus]]


class DependencyGraph:
    """Directed acyclic "depends-on" graph.

    Acyclicity is maintained at insertion time: :meth:`add_edge` refuses any
    edge whose target can already reach its source.
    """

    def __init__(self) -> None:
        self._deps: dict[str, set[str]] = {}
        self._dependents: dict[str, set[str]] = {}

    @classmethod
    def from_tasks(cls, tasks: Iterable[Task]) -> "DependencyGraph":
        """Build a graph from stored tasks.

        Cancelled tasks are left out, and so are edges naming ids that are not
        part of the graph.  Stored edges are trusted to be acyclic but are
        re-validated anyway so a hand-edited store cannot smuggle in a cycle.
        """
        graph = cls()
        task_list = [t for t in tasks if t.status != TaskStatus.CANCELLED]
        for task in task_list:
            graph.add_node(task.id)
        for task in task_list:
            for dep_id in task.depends_on:
                if graph.has_node(dep_id):
                    graph.add_edge(task.id, dep_id)
        return graph

    def copy(self) -> "DependencyGraph":
        clone = DependencyGraph()
        clone._deps = {k: set(v) for k, v in self._deps.items()}
        clone._dependents = {k: set(v) for k, v in self._dependents.items()}
        return clone

    # -- nodes --------------------------------------------------------------

    def add_node(self, task_id: str) -> None:
        self._deps.setdefault(task_id, set())
        self._dependents.setdefault(task_id, set())

    def has_node(self, task_id: str) -> bool:
        return task_id in self._deps

    def nodes(self) -> list[str]:
        return sorted(self._deps)

    def remove_task(self, task_id: str) -> list[tuple[str, str]]:
        """Drop a node and every edge touching it; returns the removed edges."""
        if task_id not in self._deps:
            return []
        removed: list[tuple[str, str]] = []
        for dep_id in sorted(self._deps.pop(task_id)):
            self._dependents[dep_id].discard(task_id)
            removed.append((task_id, dep_id))
        for dependent_id in sorted(self._dependents.pop(task_id)):
            self._deps[dependent_id].discard(task_id)
            removed.append((dependent_id, task_id))
        return removed

    # -- edges --------------------------------------------------------------

    def add_edge(self, from_id: str, to_id: str) -> None:
        """Record that *from_id* depends on *to_id*.

        Raises :class:`SelfDependencyError` for a self-edge and
        :class:`CycleError` if *to_id* already (transitively) depends on
        *from_id*.
        """
        if from_id == to_id:
            raise SelfDependencyError(from_id)
        for node in (from_id, to_id):
            if node not in self._deps:
                raise NotFoundError("task", node, "is not part of this workspace's dependency graph")
        if to_id in self._deps[from_id]:
            return
        path = self._path(to_id, from_id)
        if path is not None:
            raise CycleError(from_id, to_id, path)
        self._deps[from_id].add(to_id)
        self._dependents[to_id].add(from_id)

    def remove_edge(self, from_id: str, to_id: str) -> bool:
        """Remove an edge; missing edges and nodes are ignored."""
        deps = self._deps.get(from_id)
        if deps is None or to_id not in deps:
            return False
        deps.discard(to_id)
        self._dependents[to_id].discard(from_id)
        return True

    def has_edge(self, from_id: str, to_id: str) -> bool:
        return to_id in self._deps.get(from_id, ())

    def edges(self) -> Iterator[tuple[str, str]]:
        for from_id in sorted(self._deps):
            for to_id in sorted(self._deps[from_id]):
                yield from_id, to_id

    def dependencies_of(self, task_id: str) -> frozenset[str]:
        return frozenset(self._deps.get(task_id, ()))

    def dependents_of(self, task_id: str) -> frozenset[str]:
        return frozenset(self._dependents.get(task_id, ()))

    # -- queries ------------------------------------------------------------

    def blockers(self, task_id: str, status_of: StatusLookup) -> list[str]:
        """Dependencies of *task_id* that are not done or cancelled."""
        return sorted(
            dep_id for dep_id in self._deps.get(task_id, ())
            if status_of(dep_id) not in TERMINAL_STATUSES
        )

    def is_ready(self, task_id: str, status_of: StatusLookup) -> bool:
        return not self.blockers(task_id, status_of)

    def subgraph(self, task_id: str) -> dict[str, list[str]]:
        """Adjacency list of everything connected to *task_id*, either direction."""
        if task_id not in self._deps:
            return {}
        visited: set[str] = set()
        queue: deque[str] = deque([task_id])
        sub: dict[str, list[str]] = {}
        while queue:
            nid = queue.popleft()
            if nid in visited:
                continue
            visited.add(nid)
            sub[nid] = sorted(self._deps[nid])
            queue.extend(self._deps[nid] - visited)
            queue.extend(self._dependents[nid] - visited)
        return dict(sorted(sub.items()))

    def _path(self, start: str, goal: str) -> Optional[list[str]]:
        """BFS along dependency edges; the path from *start* to *goal* if any."""
        parents: dict[str, Optional[str]] = {start: None}
        queue: deque[str] = deque([start])
        while queue:
            current = queue.popleft()
            if current == goal:
                path = [current]
                while parents[path[-1]] is not None:
                    path.append(parents[path[-1]])  # type: ignore[arg-type]
                return list(reversed(path))
            for dep in sorted(self._deps.get(current, ())):
                if dep not in parents:
                    parents[dep] = current
                    queue.append(dep)
        return None
