"""Workspace membership: team members and their roles.

Provides a simple in-memory member directory.  Each user has at most one
membership per workspace; the task store resolves an actor's role through it.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from .errors import NotFoundError, ValidationError
from .roles import WorkspaceRole, coerce_role


class MemberStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"      # invited, not yet accepted
    INACTIVE = "inactive"


@dataclass
class TeamMember:
    """A user's membership in one workspace."""
    user_id: str
    workspace_id: str
    role: WorkspaceRole = WorkspaceRole.GENERAL_VOLUNTEER
    status: MemberStatus = MemberStatus.ACTIVE
    display_name: str = ""
    joined_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "workspace_id": self.workspace_id,
            "role": self.role.value,
            "status": self.status.value,
            "display_name": self.display_name or self.user_id,
            "joined_at": self.joined_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TeamMember":
        return cls(
            user_id=str(data["user_id"]),
            workspace_id=str(data["workspace_id"]),
            role=coerce_role(data.get("role", WorkspaceRole.GENERAL_VOLUNTEER.value)),
            status=MemberStatus(str(data.get("status", MemberStatus.ACTIVE.value))),
            display_name=str(data.get("display_name", "") or ""),
            joined_at=str(data.get("joined_at") or datetime.now(timezone.utc).isoformat()),
        )


class MemberRoster:
    """In-memory directory of :class:`TeamMember` records."""

    def __init__(self, members: Optional[Iterable[TeamMember]] = None) -> None:
        self._members: dict[tuple[str, str], TeamMember] = {}
        self._lock = threading.Lock()
        for member in members or []:
            self.add_member(
                member.workspace_id,
                member.user_id,
                member.role,
                status=member.status,
                display_name=member.display_name,
            )

    def add_member(
        self,
        workspace_id: str,
        user_id: str,
        role: WorkspaceRole | str,
        *,
        status: MemberStatus = MemberStatus.ACTIVE,
        display_name: str = "",
    ) -> TeamMember:
        """Record a membership. A second membership for the same user is rejected."""
        member = TeamMember(
            user_id=user_id,
            workspace_id=workspace_id,
            role=coerce_role(role),
            status=MemberStatus(status),
            display_name=display_name,
        )
        with self._lock:
            key = (workspace_id, user_id)
            if key in self._members:
                raise ValidationError(
                    f"User {user_id} is already a member of workspace {workspace_id}",
                    field="user_id",
                )
            self._members[key] = member
        return member

    def get(self, workspace_id: str, user_id: str) -> Optional[TeamMember]:
        return self._members.get((workspace_id, user_id))

    def require(self, workspace_id: str, user_id: str) -> TeamMember:
        member = self.get(workspace_id, user_id)
        if member is None:
            raise NotFoundError("member", user_id, f"is not a member of workspace {workspace_id}")
        return member

    def role_of(self, workspace_id: str, user_id: str) -> Optional[WorkspaceRole]:
        """Role of an *active* member, or None for strangers and inactive members."""
        member = self.get(workspace_id, user_id)
        if member is None or not member.is_active:
            return None
        return member.role

    def update_role(self, workspace_id: str, user_id: str, role: WorkspaceRole | str) -> TeamMember:
        with self._lock:
            member = self.require(workspace_id, user_id)
            member.role = coerce_role(role)
        return member

    def set_status(self, workspace_id: str, user_id: str, status: MemberStatus | str) -> TeamMember:
        with self._lock:
            member = self.require(workspace_id, user_id)
            member.status = MemberStatus(status)
        return member

    def remove(self, workspace_id: str, user_id: str) -> bool:
        with self._lock:
            return self._members.pop((workspace_id, user_id), None) is not None

    def list_members(
        self,
        workspace_id: str,
        *,
        role: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[TeamMember]:
        out: list[TeamMember] = []
        for (ws, _), member in sorted(self._members.items()):
            if ws != workspace_id:
                continue
            if role and member.role.value != role:
                continue
            if status and member.status.value != status:
                continue
            if search:
                q = search.lower()
                if q not in member.user_id.lower() and q not in member.display_name.lower():
                    continue
            out.append(member)
        return out
