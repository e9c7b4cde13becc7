"""Task model for the workspace task board.

Tasks, their comment log and attachments, and the change events emitted when
the store mutates them.  Everything here serializes to plain dicts for YAML /
JSON persistence and for event payloads.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """Board-level status used for list badges and Kanban columns.

    ``BLOCKED`` is derived from dependency state and never stored.
    """

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    BLOCKED = "blocked"
    DONE = "done"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.CANCELLED})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _generate_id(prefix: str = "task") -> str:
    """Short human-friendly ID: ``<prefix>-<8hex>``."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def _id_set(values: Any) -> list[str]:
    """Normalize an id collection to a sorted list without duplicates."""
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    return sorted({str(v) for v in values})


# ---------------------------------------------------------------------------
# Comments & attachments
# ---------------------------------------------------------------------------

@dataclass
class Comment:
    id: str = field(default_factory=lambda: _generate_id("cmt"))
    author_id: str = ""
    body: str = ""
    created_at: str = field(default_factory=_now_iso)
    edited_at: Optional[str] = None
    deleted: bool = False
    deleted_at: Optional[str] = None
    deleted_by: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Comment":
        return cls(
            id=str(data.get("id") or _generate_id("cmt")),
            author_id=str(data.get("author_id", "")),
            body=str(data.get("body", "")),
            created_at=str(data.get("created_at") or _now_iso()),
            edited_at=data.get("edited_at"),
            deleted=bool(data.get("deleted", False)),
            deleted_at=data.get("deleted_at"),
            deleted_by=data.get("deleted_by"),
        )


@dataclass
class Attachment:
    id: str = field(default_factory=lambda: _generate_id("att"))
    file_ref: str = ""
    uploaded_by: str = ""
    uploaded_at: str = field(default_factory=_now_iso)
    removed: bool = False
    removed_at: Optional[str] = None
    removed_by: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attachment":
        return cls(
            id=str(data.get("id") or _generate_id("att")),
            file_ref=str(data.get("file_ref", "")),
            uploaded_by=str(data.get("uploaded_by", "")),
            uploaded_at=str(data.get("uploaded_at") or _now_iso()),
            removed=bool(data.get("removed", False)),
            removed_at=data.get("removed_at"),
            removed_by=data.get("removed_by"),
        )


# ---------------------------------------------------------------------------
# Task dataclass
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A task on a workspace's board.

    ``assignee_ids`` and ``depends_on`` have set semantics; they are kept as
    sorted lists so that serialized tasks compare and diff deterministically.
    """

    # Identity
    id: str = field(default_factory=_generate_id)
    workspace_id: str = ""
    title: str = ""
    description: str = ""

    # Workflow
    status: TaskStatus = TaskStatus.TODO
    progress: int = 0

    # Assignment & dependencies
    assignee_ids: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)

    # Discussion
    comments: list[Comment] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)

    # Provenance
    created_by: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None
    cancelled_at: Optional[str] = None

    def __post_init__(self) -> None:
        self.assignee_ids = _id_set(self.assignee_ids)
        self.depends_on = _id_set(self.depends_on)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for YAML/JSON persistence."""
        data: dict[str, Any] = {}
        for k, v in asdict(self).items():
            if isinstance(v, Enum):
                data[k] = v.value
            else:
                data[k] = v
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict.

        A stored ``blocked`` status (written by older clients) is read back as
        ``todo``; blocked is recomputed from the dependency graph.
        """
        d = dict(data)
        raw_status = d.pop("status", None)
        try:
            status = TaskStatus(str(raw_status)) if raw_status is not None else TaskStatus.TODO
        except ValueError:
            status = TaskStatus.TODO
        if status == TaskStatus.BLOCKED:
            status = TaskStatus.TODO

        return cls(
            id=str(d.pop("id", None) or _generate_id()),
            workspace_id=str(d.pop("workspace_id", "")),
            title=str(d.pop("title", "")),
            description=str(d.pop("description", "") or ""),
            status=status,
            progress=int(d.pop("progress", 0) or 0),
            assignee_ids=d.pop("assignee_ids", None) or [],
            depends_on=d.pop("depends_on", None) or [],
            comments=[Comment.from_dict(c) for c in d.pop("comments", None) or []],
            attachments=[Attachment.from_dict(a) for a in d.pop("attachments", None) or []],
            created_by=d.pop("created_by", None),
            created_at=str(d.pop("created_at", None) or _now_iso()),
            updated_at=str(d.pop("updated_at", None) or _now_iso()),
            completed_at=d.pop("completed_at", None),
            cancelled_at=d.pop("cancelled_at", None),
        )

    def clone(self) -> "Task":
        return Task.from_dict(self.to_dict())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = _now_iso()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_assigned_to(self, user_id: str) -> bool:
        return user_id in self.assignee_ids

    def get_comment(self, comment_id: str) -> Optional[Comment]:
        for comment in self.comments:
            if comment.id == comment_id:
                return comment
        return None

    def get_attachment(self, attachment_id: str) -> Optional[Attachment]:
        for attachment in self.attachments:
            if attachment.id == attachment_id:
                return attachment
        return None

    def visible_comments(self) -> list[Comment]:
        return [c for c in self.comments if not c.deleted]

    def visible_attachments(self) -> list[Attachment]:
        return [a for a in self.attachments if not a.removed]


# ---------------------------------------------------------------------------
# Change events
# ---------------------------------------------------------------------------

@dataclass
class ChangeEvent:
    """What one successful mutation did to one task.

    ``before`` is ``None`` for creations.  Events are handed to notification
    sinks after the mutation has been committed.
    """

    task_id: str
    workspace_id: str
    actor_id: str
    kind: str
    before: Optional[dict[str, Any]]
    after: Optional[dict[str, Any]]
    timestamp: str = field(default_factory=_now_iso)
    event_id: str = field(default_factory=lambda: _generate_id("evt"))
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
