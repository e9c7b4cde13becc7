"""Error taxonomy for the workspace task engine.

Every recoverable failure raised by the engine derives from
:class:`WorkspaceTaskError` and carries the structured fields a caller needs to
render an actionable message (the offending edge, the blocking task ids, the
current and requested status).  Unknown roles and other programming errors are
raised as plain ``ValueError`` and are deliberately outside this hierarchy.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional


class WorkspaceTaskError(Exception):
    """Base class for engine errors surfaced to callers."""

    code = "workspace_task_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.message}


class ForbiddenError(WorkspaceTaskError):
    """The actor's workspace role does not allow the requested action."""

    code = "forbidden"

    def __init__(self, actor_id: str, action: str, task_id: Optional[str] = None) -> None:
        target = f" on {task_id}" if task_id else ""
        super().__init__(f"Actor {actor_id} is not allowed to {action}{target}")
        self.actor_id = actor_id
        self.action = action
        self.task_id = task_id

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({"actor_id": self.actor_id, "action": self.action, "task_id": self.task_id})
        return data


class NotFoundError(WorkspaceTaskError):
    code = "not_found"

    def __init__(self, kind: str, ident: str, reason: str = "not found") -> None:
        super().__init__(f"{kind.capitalize()} {ident} {reason}")
        self.kind = kind
        self.ident = ident

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({"kind": self.kind, "id": self.ident})
        return data


class DependencyError(WorkspaceTaskError):
    """An invalid dependency edit; carries the offending pair."""

    code = "invalid_dependency"

    def __init__(self, from_id: str, to_id: str, message: str) -> None:
        super().__init__(message)
        self.from_id = from_id
        self.to_id = to_id

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({"from_id": self.from_id, "to_id": self.to_id})
        return data


class SelfDependencyError(DependencyError):
    code = "self_dependency"

    def __init__(self, task_id: str) -> None:
        super().__init__(task_id, task_id, f"Task {task_id} cannot depend on itself")


class CycleError(DependencyError):
    code = "dependency_cycle"

    def __init__(self, from_id: str, to_id: str, path: Iterable[str] = ()) -> None:
        self.path = list(path)
        via = f" (existing path: {' -> '.join(self.path)})" if self.path else ""
        super().__init__(
            from_id,
            to_id,
            f"Adding dependency {from_id} -> {to_id} would create a cycle{via}",
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["path"] = list(self.path)
        return data


class NotReadyError(WorkspaceTaskError):
    """The task is blocked by unfinished dependencies."""

    code = "blocked_by_dependency"

    def __init__(self, task_id: str, blocking_ids: Iterable[str], requested: str) -> None:
        self.blocking_ids = sorted(blocking_ids)
        super().__init__(
            f"Task {task_id} cannot move to {requested}; blocked by {', '.join(self.blocking_ids)}"
        )
        self.task_id = task_id
        self.requested = requested

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "task_id": self.task_id,
            "blocking_ids": list(self.blocking_ids),
            "requested": self.requested,
        })
        return data


class InvalidTransitionError(WorkspaceTaskError):
    """A status or progress change the workflow does not allow.

    Usually a stale client; callers should refresh their state.
    """

    code = "invalid_transition"

    def __init__(self, task_id: str, current: str, requested: str, reason: str = "") -> None:
        msg = f"Cannot move {task_id} from {current} to {requested}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
        self.task_id = task_id
        self.current = current
        self.requested = requested

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({"task_id": self.task_id, "current": self.current, "requested": self.requested})
        return data


class ValidationError(WorkspaceTaskError):
    code = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class PersistenceError(WorkspaceTaskError):
    """The backing store rejected a write after validation succeeded."""

    code = "persistence_error"

    def __init__(self, workspace_id: str, cause: BaseException) -> None:
        super().__init__(
            f"Failed to persist workspace {workspace_id}: {cause.__class__.__name__}: {cause}"
        )
        self.workspace_id = workspace_id
        self.cause = cause
