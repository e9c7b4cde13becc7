"""Status workflow for a single task.

The transition table is fixed.  ``blocked`` is never a transition target; it
is computed by :func:`effective_status` from the stored status and readiness.
"""

from __future__ import annotations

from typing import Any, Callable

from ..constants import PROGRESS_MAX, PROGRESS_MIN
from ..errors import InvalidTransitionError, NotReadyError, ValidationError
from .model import Task, TaskStatus, _now_iso


# ---------------------------------------------------------------------------
# Valid status transitions
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.TODO: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.IN_REVIEW, TaskStatus.TODO, TaskStatus.CANCELLED}),
    TaskStatus.IN_REVIEW: frozenset({TaskStatus.DONE, TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.DONE: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

# Transitions that require every dependency to be done or cancelled
READINESS_GUARDS: frozenset[tuple[TaskStatus, TaskStatus]] = frozenset({
    (TaskStatus.TODO, TaskStatus.IN_PROGRESS),
    (TaskStatus.IN_REVIEW, TaskStatus.DONE),
})

PROGRESS_EDITABLE = frozenset({TaskStatus.IN_PROGRESS, TaskStatus.IN_REVIEW})
BLOCKABLE = frozenset({TaskStatus.TODO, TaskStatus.IN_PROGRESS})


def coerce_status(task: Task, value: Any) -> TaskStatus:
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(str(value))
    except ValueError:
        raise InvalidTransitionError(task.id, task.status.value, str(value), "unknown status") from None


def effective_status(status: TaskStatus, ready: bool) -> TaskStatus:
    """Status shown to users: ``blocked`` for an unready todo/in-progress task."""
    if status in BLOCKABLE and not ready:
        return TaskStatus.BLOCKED
    return status


def check_transition(
    task: Task,
    target: TaskStatus,
    blockers: Callable[[], list[str]],
) -> None:
    """Raise unless *task* may move to *target* right now.

    *blockers* is only called for readiness-guarded transitions, so the
    dependency lookup happens against the same snapshot the commit uses.
    """
    current = task.status
    if target == TaskStatus.BLOCKED:
        raise InvalidTransitionError(
            task.id, current.value, target.value,
            "blocked is derived from dependencies and cannot be set",
        )
    if target not in VALID_TRANSITIONS[current]:
        reason = "task is terminal" if task.is_terminal else (
            f"valid targets: {sorted(s.value for s in VALID_TRANSITIONS[current])}"
        )
        raise InvalidTransitionError(task.id, current.value, target.value, reason)
    if (current, target) in READINESS_GUARDS:
        unresolved = blockers()
        if unresolved:
            raise NotReadyError(task.id, unresolved, target.value)


def apply_transition(task: Task, target: TaskStatus) -> None:
    """Move *task* to *target* with progress snapping and timestamp bookkeeping.

    Callers must run :func:`check_transition` first.
    """
    task.status = target
    if target == TaskStatus.DONE:
        task.progress = PROGRESS_MAX
        task.completed_at = _now_iso()
    elif target in (TaskStatus.TODO, TaskStatus.CANCELLED):
        task.progress = PROGRESS_MIN
        if target == TaskStatus.CANCELLED:
            task.cancelled_at = _now_iso()
    task.touch()


def transition(task: Task, target: TaskStatus, blockers: Callable[[], list[str]]) -> None:
    check_transition(task, target, blockers)
    apply_transition(task, target)


def check_progress(task: Task, value: Any) -> int:
    """Validate a progress update and return it as an int."""
    if task.status not in PROGRESS_EDITABLE:
        raise InvalidTransitionError(
            task.id, task.status.value, task.status.value,
            "progress can only change while in_progress or in_review",
        )
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"progress must be an integer, got {value!r}", field="progress")
    if not PROGRESS_MIN <= value <= PROGRESS_MAX:
        raise ValidationError(
            f"progress must be between {PROGRESS_MIN} and {PROGRESS_MAX}, got {value}",
            field="progress",
        )
    if value < task.progress:
        raise ValidationError(
            f"progress cannot go backwards ({task.progress} -> {value}); reset the task to todo instead",
            field="progress",
        )
    return value


def describe() -> dict[str, Any]:
    """Static description of the workflow for clients that render it."""
    return {
        "states": [s.value for s in TaskStatus],
        "transitions": {
            src.value: sorted(t.value for t in targets)
            for src, targets in VALID_TRANSITIONS.items()
        },
        "guards": {
            f"{src.value}->{dst.value}": "All dependencies must be done or cancelled."
            for src, dst in sorted(READINESS_GUARDS, key=lambda p: (p[0].value, p[1].value))
        },
        "derived": {"blocked": sorted(s.value for s in BLOCKABLE)},
        "terminal": [TaskStatus.DONE.value, TaskStatus.CANCELLED.value],
    }
