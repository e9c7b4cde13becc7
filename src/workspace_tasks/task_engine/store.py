"""Task store: the single writer boundary for workspace tasks.

Every command resolves the actor's workspace role, checks it against the role
authority, validates dependency and workflow rules against a private working
copy of the workspace, persists the changed records, and only then publishes
the new state.  Change events are handed to the notification sinks after the
workspace lock has been released.

Concurrency model
-----------------
Each workspace has one writer lock and one immutable snapshot (tasks plus
dependency graph).  A mutation forks the snapshot, edits the fork, writes the
touched records through the repository, and swaps the snapshot reference.
Readers grab the current reference without locking, so they never see a
half-applied update; a failed validation or persistence write simply discards
the fork.

The repository lock is held alongside the workspace lock for the whole
mutation.  If the stored revision moved since the snapshot was built (another
process, or another store over the same state dir, wrote to it), the snapshot
is reloaded before the fork is taken, so cycle and readiness checks always run
against the records that will be overwritten.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Hashable, Iterator, Mapping, NoReturn, Optional

from loguru import logger

from ..config import get_events_config, get_storage_config, load_config, resolve_state_dir
from ..constants import ARTIFACTS_DIR, EVENTS_FILE, TITLE_MAX_LENGTH
from ..errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from ..membership import MemberRoster, MemberStatus, TeamMember
from ..roles import TaskAction, WorkspaceRole, can, is_elevated
from . import workflow
from .events import EventDispatcher, JsonlEventLog, NotificationSink
from .graph import DependencyGraph
from .model import ChangeEvent, Comment, Attachment, Task, TaskStatus, _id_set, _now_iso
from .projections import TaskFilter, TaskView, board_view, build_view, list_view
from .repository import InMemoryTaskRepository, TaskRepository, YamlTaskRepository

CREATE_FIELDS = frozenset({"title", "description", "assignee_ids", "depends_on"})
PATCH_FIELDS = frozenset({"title", "description", "status", "progress", "depends_on", "assignee_ids"})


@dataclass
class TaskChange:
    """Result of a mutation: the task as committed plus the events it produced."""

    task: Task
    events: list[ChangeEvent] = field(default_factory=list)

    @property
    def event(self) -> Optional[ChangeEvent]:
        return self.events[0] if self.events else None

    @property
    def changed(self) -> bool:
        return bool(self.events)


@dataclass(frozen=True)
class _Snapshot:
    tasks: Mapping[str, Task]
    graph: DependencyGraph

    @classmethod
    def build(cls, tasks: list[Task]) -> "_Snapshot":
        return cls(tasks={t.id: t for t in tasks}, graph=DependencyGraph.from_tasks(tasks))

    def status_of(self, task_id: str) -> Optional[TaskStatus]:
        task = self.tasks.get(task_id)
        return task.status if task is not None else None


class _WorkspaceState:
    def __init__(self, snapshot: _Snapshot, revision: Hashable) -> None:
        self.lock = threading.Lock()
        self.snapshot = snapshot
        self.revision = revision


class _WorkspaceTx:
    """Working copy of one workspace for the duration of a mutation.

    Tasks are cloned on first write, so the published snapshot is never
    touched until the store swaps in :meth:`snapshot`.

    Callbacks in ``on_commit`` run after the records are saved, while the
    workspace lock is still held.
    """

    def __init__(self, workspace_id: str, snapshot: _Snapshot) -> None:
        self.workspace_id = workspace_id
        self.tasks: dict[str, Task] = dict(snapshot.tasks)
        self.graph = snapshot.graph.copy()
        self.events: list[ChangeEvent] = []
        self.on_commit: list[Callable[[], None]] = []
        self._dirty: dict[str, Task] = {}
        self._before: dict[str, Optional[dict[str, Any]]] = {}

    # -- lookups ------------------------------------------------------------

    def get(self, task_id: str) -> Task:
        task = self.tasks.get(task_id)
        if task is None:
            raise NotFoundError("task", task_id, f"not found in workspace {self.workspace_id}")
        return task

    def status_of(self, task_id: str) -> Optional[TaskStatus]:
        task = self.tasks.get(task_id)
        return task.status if task is not None else None

    def blockers(self, task_id: str) -> list[str]:
        return self.graph.blockers(task_id, self.status_of)

    # -- mutations ----------------------------------------------------------

    def edit(self, task_id: str) -> Task:
        if task_id in self._dirty:
            return self._dirty[task_id]
        original = self.get(task_id)
        self._before[task_id] = original.to_dict()
        task = original.clone()
        self.tasks[task_id] = task
        self._dirty[task_id] = task
        return task

    def add(self, task: Task) -> Task:
        if task.id in self.tasks:
            raise ValidationError(f"Task {task.id} already exists", field="id")
        self.tasks[task.id] = task
        self._dirty[task.id] = task
        self._before[task.id] = None
        self.graph.add_node(task.id)
        return task

    def record(self, task_id: str, actor_id: str, kind: str, **details: Any) -> None:
        self.events.append(ChangeEvent(
            task_id=task_id,
            workspace_id=self.workspace_id,
            actor_id=actor_id,
            kind=kind,
            before=self._before.get(task_id),
            after=self.tasks[task_id].to_dict(),
            details=details,
        ))

    @property
    def changed(self) -> list[Task]:
        return list(self._dirty.values())

    def snapshot(self) -> _Snapshot:
        return _Snapshot(tasks=self.tasks, graph=self.graph)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class TaskStore:
    """Role-gated, dependency-aware task store for event workspaces.

    Parameters
    ----------
    repository:
        Persistence backend; defaults to an in-memory repository.
    members:
        Membership directory used to resolve each actor's role.
    dispatcher:
        Delivers change events to notification sinks.
    event_log:
        Optional JSONL log used to answer recent-event queries.  It should also
        be subscribed to *dispatcher*; :meth:`from_project` wires both.
    """

    def __init__(
        self,
        repository: Optional[TaskRepository] = None,
        members: Optional[MemberRoster] = None,
        dispatcher: Optional[EventDispatcher] = None,
        event_log: Optional[JsonlEventLog] = None,
    ) -> None:
        self.repository: TaskRepository = repository if repository is not None else InMemoryTaskRepository()
        self.members = members if members is not None else MemberRoster()
        self.dispatcher = dispatcher if dispatcher is not None else EventDispatcher()
        self.event_log = event_log
        self._workspaces: dict[str, _WorkspaceState] = {}
        self._registry_lock = threading.Lock()
        self._task_index: dict[str, str] = {}

    @classmethod
    def from_project(cls, project_dir: Path, members: Optional[MemberRoster] = None) -> "TaskStore":
        """Build a store from ``<project_dir>/.workspace_tasks/config.yaml``."""
        config, err = load_config(project_dir)
        if err:
            logger.warning("Ignoring unreadable config: {}", err)
        state_dir = resolve_state_dir(project_dir, config)
        storage = get_storage_config(config)
        events_cfg = get_events_config(config)

        repository: TaskRepository
        if storage["backend"] == "memory":
            repository = InMemoryTaskRepository()
        else:
            repository = YamlTaskRepository(state_dir)

        dispatcher = EventDispatcher(background=events_cfg["background"])
        event_log: Optional[JsonlEventLog] = None
        if events_cfg["log_enabled"]:
            event_log = JsonlEventLog(state_dir / ARTIFACTS_DIR / EVENTS_FILE)
            dispatcher.subscribe(event_log)
        logger.info("Task store ready ({} backend, state dir {})", storage["backend"], state_dir)
        return cls(repository, members, dispatcher, event_log)

    def subscribe(self, sink: NotificationSink) -> None:
        self.dispatcher.subscribe(sink)

    # ------------------------------------------------------------------
    # Workspace state
    # ------------------------------------------------------------------

    def _state(self, workspace_id: str) -> _WorkspaceState:
        state = self._workspaces.get(workspace_id)
        if state is not None:
            return state
        with self.repository.lock(workspace_id):
            revision = self.repository.revision(workspace_id)
            tasks = self.repository.load_all(workspace_id)
        snapshot = _Snapshot.build(tasks)
        with self._registry_lock:
            state = self._workspaces.get(workspace_id)
            if state is None:
                state = _WorkspaceState(snapshot, revision)
                self._workspaces[workspace_id] = state
                for task in tasks:
                    self._task_index[task.id] = workspace_id
                logger.debug("Loaded workspace {} ({} tasks)", workspace_id, len(tasks))
        return state

    def _refresh(self, workspace_id: str, state: _WorkspaceState) -> None:
        """Reload *state* if another writer changed the stored workspace.

        Must be called with both the workspace lock and the repository lock
        held.
        """
        revision = self.repository.revision(workspace_id)
        if revision == state.revision:
            return
        tasks = self.repository.load_all(workspace_id)
        state.snapshot = _Snapshot.build(tasks)
        state.revision = revision
        for task in tasks:
            self._task_index[task.id] = workspace_id
        logger.debug("Reloaded workspace {} after an outside write ({} tasks)", workspace_id, len(tasks))

    def _workspace_of(self, task_id: str) -> str:
        workspace_id = self._task_index.get(task_id)
        if workspace_id is None:
            workspace_id = self.repository.locate(task_id)
        if workspace_id is None:
            raise NotFoundError("task", task_id)
        return workspace_id

    @contextmanager
    def _mutate(self, workspace_id: str) -> Iterator[_WorkspaceTx]:
        state = self._state(workspace_id)
        with state.lock, self.repository.lock(workspace_id):
            self._refresh(workspace_id, state)
            tx = _WorkspaceTx(workspace_id, state.snapshot)
            yield tx
            changed = tx.changed
            if changed:
                try:
                    self.repository.save(workspace_id, changed)
                except Exception as exc:
                    logger.error("Persisting {} task(s) in {} failed: {}", len(changed), workspace_id, exc)
                    raise PersistenceError(workspace_id, exc) from exc
                state.snapshot = tx.snapshot()
                state.revision = self.repository.revision(workspace_id)
                for task in changed:
                    self._task_index[task.id] = workspace_id
            for hook in tx.on_commit:
                hook()
        self.dispatcher.publish(tx.events)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def _deny(self, workspace_id: str, actor_id: str, action: str, task_id: Optional[str] = None) -> NoReturn:
        logger.bind(audit=True).warning(
            "Denied {} for {} in workspace {} (task={})", action, actor_id, workspace_id, task_id,
        )
        raise ForbiddenError(actor_id, action, task_id)

    def _role(self, workspace_id: str, actor_id: str) -> WorkspaceRole:
        role = self.members.role_of(workspace_id, actor_id)
        if role is None:
            self._deny(workspace_id, actor_id, "act in this workspace")
        return role

    def _require(
        self,
        workspace_id: str,
        role: WorkspaceRole,
        action: TaskAction,
        actor_id: str,
        task: Optional[Task] = None,
    ) -> None:
        is_assignee = task is not None and task.is_assigned_to(actor_id)
        if not can(role, action, is_assignee=is_assignee):
            self._deny(workspace_id, actor_id, action.value, task.id if task else None)

    def _require_assignee_or_elevated(
        self, workspace_id: str, role: WorkspaceRole, actor_id: str, task: Task, action: str,
    ) -> None:
        if not (task.is_assigned_to(actor_id) or is_elevated(role)):
            self._deny(workspace_id, actor_id, action, task.id)

    def _authorize_assignment(
        self,
        workspace_id: str,
        role: WorkspaceRole,
        actor_id: str,
        task: Task,
        new_ids: list[str],
    ) -> tuple[list[str], list[str]]:
        old, new = set(task.assignee_ids), set(new_ids)
        added, removed = sorted(new - old), sorted(old - new)
        if not added and removed == [actor_id]:
            return added, removed
        if added and not can(role, TaskAction.ASSIGN_TASK):
            self._deny(workspace_id, actor_id, TaskAction.ASSIGN_TASK.value, task.id)
        if set(removed) - {actor_id} and not can(role, TaskAction.CHANGE_OTHERS_ASSIGNMENT):
            self._deny(workspace_id, actor_id, TaskAction.CHANGE_OTHERS_ASSIGNMENT.value, task.id)
        return added, removed

    @staticmethod
    def _comment(task: Task, comment_id: str) -> Comment:
        comment = task.get_comment(comment_id)
        if comment is None:
            raise NotFoundError("comment", comment_id)
        return comment

    @staticmethod
    def _attachment(task: Task, attachment_id: str) -> Attachment:
        attachment = task.get_attachment(attachment_id)
        if attachment is None:
            raise NotFoundError("attachment", attachment_id)
        return attachment

    def _check_assignable(self, workspace_id: str, user_ids: list[str]) -> None:
        for user_id in user_ids:
            member = self.members.require(workspace_id, user_id)
            if member.status != MemberStatus.ACTIVE:
                raise ValidationError(
                    f"Member {user_id} is {member.status.value} and cannot be assigned",
                    field="assignee_ids",
                )

    # ------------------------------------------------------------------
    # Field helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _clean_title(value: Any) -> str:
        title = str(value or "").strip()
        if not title:
            raise ValidationError("'title' is required and must be non-empty", field="title")
        if len(title) > TITLE_MAX_LENGTH:
            raise ValidationError(f"'title' must be at most {TITLE_MAX_LENGTH} characters", field="title")
        return title

    @staticmethod
    def _check_fields(data: Mapping[str, Any], allowed: frozenset[str]) -> None:
        unknown = sorted(set(data) - allowed)
        if unknown:
            raise ValidationError(f"Unknown task field(s): {', '.join(unknown)}", field=unknown[0])

    def _link(self, tx: _WorkspaceTx, task: Task, depends_on_id: str) -> None:
        """Add one dependency edge on the working graph (raises before mutating)."""
        target = tx.tasks.get(depends_on_id)
        if target is None:
            raise NotFoundError("task", depends_on_id, f"not found in workspace {tx.workspace_id}")
        if target.status == TaskStatus.CANCELLED and depends_on_id != task.id:
            raise ValidationError(
                f"Task {depends_on_id} is cancelled and cannot be depended on", field="depends_on",
            )
        tx.graph.add_edge(task.id, depends_on_id)

    def _set_dependencies(self, tx: _WorkspaceTx, task: Task, value: Any) -> None:
        new = _id_set(value)
        if new == task.depends_on:
            return
        if task.is_terminal:
            raise InvalidTransitionError(
                task.id, task.status.value, task.status.value,
                "dependencies of a finished task cannot change",
            )
        for dep_id in set(task.depends_on) - set(new):
            tx.graph.remove_edge(task.id, dep_id)
        for dep_id in new:
            if dep_id not in task.depends_on:
                self._link(tx, task, dep_id)
        task.depends_on = new

    def _cancel(self, tx: _WorkspaceTx, task: Task) -> list[str]:
        """Cancel *task* and drop its node from the working graph.

        Dependents keep naming the task in ``depends_on`` until their owners
        remove the edge; a cancelled dependency no longer blocks them.  Returns
        the ids of those dependents.
        """
        workflow.transition(task, TaskStatus.CANCELLED, lambda: [])
        return sorted(from_id for from_id, to_id in tx.graph.remove_task(task.id) if to_id == task.id)

    def _apply_patch(
        self,
        tx: _WorkspaceTx,
        role: WorkspaceRole,
        actor_id: str,
        task_id: str,
        patch: Mapping[str, Any],
    ) -> None:
        self._check_fields(patch, PATCH_FIELDS)
        current = tx.get(task_id)
        self._require(tx.workspace_id, role, TaskAction.EDIT_TASK, actor_id, current)

        target: Optional[TaskStatus] = None
        if "status" in patch:
            target = workflow.coerce_status(current, patch["status"])
            if target == current.status:
                target = None
            elif target == TaskStatus.CANCELLED:
                self._require(tx.workspace_id, role, TaskAction.DELETE_TASK, actor_id, current)
        assignees: Optional[list[str]] = None
        if "assignee_ids" in patch:
            assignees = _id_set(patch["assignee_ids"])
            added, _ = self._authorize_assignment(tx.workspace_id, role, actor_id, current, assignees)
            self._check_assignable(tx.workspace_id, added)

        task = tx.edit(task_id)
        if "depends_on" in patch:
            self._set_dependencies(tx, task, patch["depends_on"])
        if assignees is not None:
            task.assignee_ids = assignees
        dependents: list[str] = []
        if target == TaskStatus.CANCELLED:
            dependents = self._cancel(tx, task)
        elif target is not None:
            workflow.transition(task, target, lambda: tx.blockers(task_id))
        if "progress" in patch and patch["progress"] != task.progress:
            task.progress = workflow.check_progress(task, patch["progress"])
        if "title" in patch:
            task.title = self._clean_title(patch["title"])
        if "description" in patch:
            task.description = str(patch["description"] or "")
        task.touch()

        details: dict[str, Any] = {"fields": sorted(patch)}
        if target == TaskStatus.CANCELLED:
            details["dependents"] = dependents
        tx.record(task_id, actor_id, "task.updated", **details)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_task(self, workspace_id: str, actor_id: str, fields: Mapping[str, Any]) -> TaskChange:
        """Create a task in ``todo``; all dependency edges are validated or none are added."""
        self._check_fields(fields, CREATE_FIELDS)
        with self._mutate(workspace_id) as tx:
            role = self._role(workspace_id, actor_id)
            self._require(workspace_id, role, TaskAction.CREATE_TASK, actor_id)
            assignees = _id_set(fields.get("assignee_ids"))
            if assignees:
                self._require(workspace_id, role, TaskAction.ASSIGN_TASK, actor_id)
                self._check_assignable(workspace_id, assignees)

            task = tx.add(Task(
                workspace_id=workspace_id,
                title=self._clean_title(fields.get("title")),
                description=str(fields.get("description") or ""),
                assignee_ids=assignees,
                created_by=actor_id,
            ))
            self._set_dependencies(tx, task, fields.get("depends_on"))
            tx.record(task.id, actor_id, "task.created")
            change = TaskChange(task.clone(), list(tx.events))
        logger.info("Created task {} in {}: {}", change.task.id, workspace_id, change.task.title)
        return change

    def update_task(self, task_id: str, actor_id: str, patch: Mapping[str, Any]) -> TaskChange:
        """Apply a partial update; emits one ``task.updated`` event per call."""
        workspace_id = self._workspace_of(task_id)
        with self._mutate(workspace_id) as tx:
            role = self._role(workspace_id, actor_id)
            self._apply_patch(tx, role, actor_id, task_id, patch)
            return TaskChange(tx.tasks[task_id].clone(), list(tx.events))

    def bulk_update(
        self,
        workspace_id: str,
        actor_id: str,
        patches: Mapping[str, Mapping[str, Any]],
    ) -> list[TaskChange]:
        """Apply several patches in one workspace atomically, in the given order."""
        with self._mutate(workspace_id) as tx:
            role = self._role(workspace_id, actor_id)
            for task_id, patch in patches.items():
                self._apply_patch(tx, role, actor_id, task_id, patch)
            return [
                TaskChange(tx.tasks[task_id].clone(), [e for e in tx.events if e.task_id == task_id])
                for task_id in patches
            ]

    def assign_task(self, task_id: str, actor_id: str, member_ids: list[str]) -> TaskChange:
        """Replace the assignee set."""
        workspace_id = self._workspace_of(task_id)
        with self._mutate(workspace_id) as tx:
            role = self._role(workspace_id, actor_id)
            current = tx.get(task_id)
            new_ids = _id_set(member_ids)
            added, removed = self._authorize_assignment(workspace_id, role, actor_id, current, new_ids)
            if not added and not removed:
                return TaskChange(current.clone())
            self._check_assignable(workspace_id, added)
            task = tx.edit(task_id)
            task.assignee_ids = new_ids
            task.touch()
            tx.record(task_id, actor_id, "task.assigned", added=added, removed=removed)
            return TaskChange(task.clone(), list(tx.events))

    def delete_task(self, task_id: str, actor_id: str) -> TaskChange:
        """Cancel a task; tasks are never physically removed."""
        workspace_id = self._workspace_of(task_id)
        with self._mutate(workspace_id) as tx:
            role = self._role(workspace_id, actor_id)
            current = tx.get(task_id)
            self._require(workspace_id, role, TaskAction.DELETE_TASK, actor_id, current)
            if current.status == TaskStatus.CANCELLED:
                return TaskChange(current.clone())
            task = tx.edit(task_id)
            dependents = self._cancel(tx, task)
            tx.record(task_id, actor_id, "task.cancelled", dependents=dependents)
            change = TaskChange(task.clone(), list(tx.events))
        logger.info("Cancelled task {} in {} ({} dependents)", task_id, workspace_id, len(dependents))
        return change

    # -- dependencies -------------------------------------------------------

    def add_dependency(self, task_id: str, actor_id: str, depends_on_id: str) -> TaskChange:
        workspace_id = self._workspace_of(task_id)
        with self._mutate(workspace_id) as tx:
            role = self._role(workspace_id, actor_id)
            current = tx.get(task_id)
            self._require(workspace_id, role, TaskAction.EDIT_TASK, actor_id, current)
            if depends_on_id in current.depends_on:
                return TaskChange(current.clone())
            task = tx.edit(task_id)
            self._set_dependencies(tx, task, task.depends_on + [depends_on_id])
            task.touch()
            tx.record(task_id, actor_id, "task.dependency_added", depends_on=depends_on_id)
            return TaskChange(task.clone(), list(tx.events))

    def remove_dependency(self, task_id: str, actor_id: str, depends_on_id: str) -> TaskChange:
        """Remove one edge; removing an absent edge is a no-op."""
        workspace_id = self._workspace_of(task_id)
        with self._mutate(workspace_id) as tx:
            role = self._role(workspace_id, actor_id)
            current = tx.get(task_id)
            self._require(workspace_id, role, TaskAction.EDIT_TASK, actor_id, current)
            if depends_on_id not in current.depends_on:
                return TaskChange(current.clone())
            task = tx.edit(task_id)
            self._set_dependencies(tx, task, [d for d in task.depends_on if d != depends_on_id])
            task.touch()
            tx.record(task_id, actor_id, "task.dependency_removed", depends_on=depends_on_id)
            return TaskChange(task.clone(), list(tx.events))

    # -- comments -----------------------------------------------------------

    def add_comment(self, task_id: str, actor_id: str, body: str) -> TaskChange:
        workspace_id = self._workspace_of(task_id)
        text = str(body or "").strip()
        if not text:
            raise ValidationError("Comment body must be non-empty", field="body")
        with self._mutate(workspace_id) as tx:
            self._role(workspace_id, actor_id)
            tx.get(task_id)
            task = tx.edit(task_id)
            comment = Comment(author_id=actor_id, body=text)
            task.comments.append(comment)
            task.touch()
            tx.record(task_id, actor_id, "task.comment_added", comment_id=comment.id)
            return TaskChange(task.clone(), list(tx.events))

    def edit_comment(self, task_id: str, actor_id: str, comment_id: str, body: str) -> TaskChange:
        """Edit a comment body; only its original author may do so."""
        workspace_id = self._workspace_of(task_id)
        text = str(body or "").strip()
        if not text:
            raise ValidationError("Comment body must be non-empty", field="body")
        with self._mutate(workspace_id) as tx:
            self._role(workspace_id, actor_id)
            comment = tx.get(task_id).get_comment(comment_id)
            if comment is None or comment.deleted:
                raise NotFoundError("comment", comment_id)
            if comment.author_id != actor_id:
                self._deny(workspace_id, actor_id, "edit another member's comment", task_id)
            if comment.body == text:
                return TaskChange(tx.get(task_id).clone())
            task = tx.edit(task_id)
            editable = self._comment(task, comment_id)
            editable.body = text
            editable.edited_at = _now_iso()
            task.touch()
            tx.record(task_id, actor_id, "task.comment_edited", comment_id=comment_id)
            return TaskChange(task.clone(), list(tx.events))

    def soft_delete_comment(self, task_id: str, actor_id: str, comment_id: str) -> TaskChange:
        """Hide a comment (author or elevated role); repeating the call is a no-op."""
        workspace_id = self._workspace_of(task_id)
        with self._mutate(workspace_id) as tx:
            role = self._role(workspace_id, actor_id)
            current = tx.get(task_id)
            comment = current.get_comment(comment_id)
            if comment is None:
                raise NotFoundError("comment", comment_id)
            if comment.author_id != actor_id and not is_elevated(role):
                self._deny(workspace_id, actor_id, "delete another member's comment", task_id)
            if comment.deleted:
                return TaskChange(current.clone())
            task = tx.edit(task_id)
            hidden = self._comment(task, comment_id)
            hidden.deleted = True
            hidden.deleted_at = _now_iso()
            hidden.deleted_by = actor_id
            task.touch()
            tx.record(task_id, actor_id, "task.comment_deleted", comment_id=comment_id)
            return TaskChange(task.clone(), list(tx.events))

    # -- attachments --------------------------------------------------------

    def add_attachment(self, task_id: str, actor_id: str, file_ref: str) -> TaskChange:
        workspace_id = self._workspace_of(task_id)
        ref = str(file_ref or "").strip()
        if not ref:
            raise ValidationError("file_ref must be non-empty", field="file_ref")
        with self._mutate(workspace_id) as tx:
            role = self._role(workspace_id, actor_id)
            self._require_assignee_or_elevated(workspace_id, role, actor_id, tx.get(task_id), "add attachment")
            task = tx.edit(task_id)
            attachment = Attachment(file_ref=ref, uploaded_by=actor_id)
            task.attachments.append(attachment)
            task.touch()
            tx.record(task_id, actor_id, "task.attachment_added", attachment_id=attachment.id)
            return TaskChange(task.clone(), list(tx.events))

    def remove_attachment(self, task_id: str, actor_id: str, attachment_id: str) -> TaskChange:
        workspace_id = self._workspace_of(task_id)
        with self._mutate(workspace_id) as tx:
            role = self._role(workspace_id, actor_id)
            current = tx.get(task_id)
            self._require_assignee_or_elevated(workspace_id, role, actor_id, current, "remove attachment")
            attachment = current.get_attachment(attachment_id)
            if attachment is None:
                raise NotFoundError("attachment", attachment_id)
            if attachment.removed:
                return TaskChange(current.clone())
            task = tx.edit(task_id)
            marked = self._attachment(task, attachment_id)
            marked.removed = True
            marked.removed_at = _now_iso()
            marked.removed_by = actor_id
            task.touch()
            tx.record(task_id, actor_id, "task.attachment_removed", attachment_id=attachment_id)
            return TaskChange(task.clone(), list(tx.events))

    # -- membership ---------------------------------------------------------

    def add_member(
        self,
        workspace_id: str,
        actor_id: str,
        user_id: str,
        role: WorkspaceRole | str,
        *,
        status: MemberStatus | str = MemberStatus.ACTIVE,
        display_name: str = "",
    ) -> TeamMember:
        actor_role = self._role(workspace_id, actor_id)
        self._require(workspace_id, actor_role, TaskAction.MANAGE_MEMBERS, actor_id)
        member = self.members.add_member(
            workspace_id, user_id, role, status=MemberStatus(status), display_name=display_name,
        )
        logger.info("Added {} to {} as {}", user_id, workspace_id, member.role.value)
        return member

    def update_member_role(
        self, workspace_id: str, actor_id: str, user_id: str, role: WorkspaceRole | str,
    ) -> TeamMember:
        actor_role = self._role(workspace_id, actor_id)
        self._require(workspace_id, actor_role, TaskAction.MANAGE_MEMBERS, actor_id)
        return self.members.update_role(workspace_id, user_id, role)

    def remove_member(self, workspace_id: str, actor_id: str, user_id: str) -> list[TaskChange]:
        """Remove a membership and unassign the user from every task in one commit."""
        with self._mutate(workspace_id) as tx:
            role = self._role(workspace_id, actor_id)
            self._require(workspace_id, role, TaskAction.MANAGE_MEMBERS, actor_id)
            self.members.require(workspace_id, user_id)
            affected = sorted(tid for tid, t in tx.tasks.items() if t.is_assigned_to(user_id))
            for task_id in affected:
                task = tx.edit(task_id)
                task.assignee_ids = [a for a in task.assignee_ids if a != user_id]
                task.touch()
                tx.record(task_id, actor_id, "task.unassigned", user_id=user_id, reason="member_removed")
            tx.on_commit.append(lambda: self.members.remove(workspace_id, user_id))
            changes = [
                TaskChange(tx.tasks[tid].clone(), [e for e in tx.events if e.task_id == tid])
                for tid in affected
            ]
        logger.info("Removed {} from {} ({} tasks unassigned)", user_id, workspace_id, len(changes))
        return changes

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _snapshot(self, workspace_id: str) -> _Snapshot:
        state = self._state(workspace_id)
        if self.repository.revision(workspace_id) != state.revision:
            with state.lock, self.repository.lock(workspace_id):
                self._refresh(workspace_id, state)
        return state.snapshot

    def get_task(self, task_id: str) -> Task:
        snap = self._snapshot(self._workspace_of(task_id))
        task = snap.tasks.get(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task.clone()

    def get_task_view(self, task_id: str) -> TaskView:
        snap = self._snapshot(self._workspace_of(task_id))
        task = snap.tasks.get(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        view = build_view(task, snap.tasks, snap.graph)
        view.task = view.task.clone()
        return view

    def list_tasks(self, workspace_id: str, task_filter: Optional[TaskFilter] = None) -> list[TaskView]:
        snap = self._snapshot(workspace_id)
        views = list_view(snap.tasks, snap.graph, task_filter)
        for view in views:
            view.task = view.task.clone()
        return views

    def board_view(self, workspace_id: str) -> dict[str, list[TaskView]]:
        snap = self._snapshot(workspace_id)
        columns = board_view(snap.tasks, snap.graph)
        for views in columns.values():
            for view in views:
                view.task = view.task.clone()
        return columns

    def dependency_graph(self, task_id: str) -> dict[str, list[str]]:
        snap = self._snapshot(self._workspace_of(task_id))
        if task_id not in snap.tasks:
            raise NotFoundError("task", task_id)
        return snap.graph.subgraph(task_id)

    def is_ready(self, task_id: str) -> bool:
        snap = self._snapshot(self._workspace_of(task_id))
        return snap.graph.is_ready(task_id, snap.status_of)

    def recent_events(self, workspace_id: str, limit: int = 100) -> list[dict[str, Any]]:
        if self.event_log is None:
            return []
        return self.event_log.recent(limit, workspace_id=workspace_id)

    def task_events(self, task_id: str, limit: int = 100) -> list[dict[str, Any]]:
        if self.event_log is None:
            return []
        return self.event_log.for_task(task_id, limit)
