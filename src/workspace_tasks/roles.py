"""Role authority: what each workspace role may do to tasks.

Permissions are a pure lookup keyed by :class:`WorkspaceRole`.  Roles outside
the elevated set only get ``edit_task``, and only on tasks they are assigned
to; that conditional grant is expressed through the ``is_assignee`` flag rather
than by looking at task state here.
"""

from __future__ import annotations

from enum import Enum
from typing import Union


class WorkspaceRole(str, Enum):
    OWNER = "owner"
    TEAM_LEAD = "team_lead"
    COORDINATOR = "coordinator"
    VOLUNTEER_MANAGER = "volunteer_manager"
    SPECIALIST = "specialist"
    MARKETING_LEAD = "marketing_lead"
    GENERAL_VOLUNTEER = "general_volunteer"


class TaskAction(str, Enum):
    CREATE_TASK = "create_task"
    EDIT_TASK = "edit_task"
    ASSIGN_TASK = "assign_task"
    DELETE_TASK = "delete_task"
    CHANGE_OTHERS_ASSIGNMENT = "change_others_assignment"
    MANAGE_MEMBERS = "manage_members"


_ALL_ACTIONS = frozenset(TaskAction)

_COORDINATING_ACTIONS = frozenset({
    TaskAction.CREATE_TASK,
    TaskAction.EDIT_TASK,
    TaskAction.ASSIGN_TASK,
    TaskAction.CHANGE_OTHERS_ASSIGNMENT,
})

# Permissions per role
ROLE_PERMISSIONS: dict[WorkspaceRole, frozenset[TaskAction]] = {
    WorkspaceRole.OWNER: _ALL_ACTIONS,
    WorkspaceRole.TEAM_LEAD: _ALL_ACTIONS,
    WorkspaceRole.COORDINATOR: _COORDINATING_ACTIONS,
    WorkspaceRole.VOLUNTEER_MANAGER: _COORDINATING_ACTIONS,
    WorkspaceRole.SPECIALIST: frozenset(),
    WorkspaceRole.MARKETING_LEAD: frozenset(),
    WorkspaceRole.GENERAL_VOLUNTEER: frozenset(),
}

# Granted to any role, but only on tasks the actor is assigned to
ASSIGNEE_PERMISSIONS: frozenset[TaskAction] = frozenset({TaskAction.EDIT_TASK})


def coerce_role(role: Union[WorkspaceRole, str]) -> WorkspaceRole:
    """Return *role* as a :class:`WorkspaceRole`.

    An unknown role is a programming error in the caller, so this raises
    ``ValueError`` rather than one of the engine's recoverable errors.
    """
    if isinstance(role, WorkspaceRole):
        return role
    try:
        return WorkspaceRole(str(role))
    except ValueError:
        raise ValueError(f"Unknown workspace role: {role!r}") from None


def can(
    role: Union[WorkspaceRole, str],
    action: Union[TaskAction, str],
    *,
    is_assignee: bool = False,
) -> bool:
    role = coerce_role(role)
    action = TaskAction(action)
    if role not in ROLE_PERMISSIONS:
        raise ValueError(f"No permission table for role {role.value!r}")
    if action in ROLE_PERMISSIONS[role]:
        return True
    return is_assignee and action in ASSIGNEE_PERMISSIONS


def is_elevated(role: Union[WorkspaceRole, str]) -> bool:
    """True for roles that may edit any task, assigned or not."""
    return can(role, TaskAction.EDIT_TASK)


def permissions_for(role: Union[WorkspaceRole, str]) -> list[str]:
    return sorted(a.value for a in ROLE_PERMISSIONS[coerce_role(role)])
