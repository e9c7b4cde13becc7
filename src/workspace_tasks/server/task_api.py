"""Workspace task API endpoints for the list and board views.

This module provides a FastAPI router with task CRUD, assignment, comments,
attachments, dependency editing, bulk updates and membership management.  All
routes live under ``/api/workspaces/{workspace_id}`` and identify the caller by
the ``X-Actor-Id`` header; authentication happens upstream.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import APIRouter, Header, HTTPException, Query
from pydantic import BaseModel, Field

from ..errors import NotFoundError
from ..membership import MemberStatus
from ..task_engine import workflow
from ..task_engine.projections import TaskFilter
from ..task_engine.store import TaskChange, TaskStore


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class CreateTaskRequest(BaseModel):
    title: str
    description: str = ""
    assignee_ids: list[str] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list)


class UpdateTaskRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    progress: Optional[int] = None
    assignee_ids: Optional[list[str]] = None
    depends_on: Optional[list[str]] = None


class BulkUpdateRequest(BaseModel):
    patches: dict[str, UpdateTaskRequest]


class AssignRequest(BaseModel):
    assignee_ids: list[str]


class CommentRequest(BaseModel):
    body: str


class AttachmentRequest(BaseModel):
    file_ref: str


class AddDependencyRequest(BaseModel):
    depends_on: str


class AddMemberRequest(BaseModel):
    user_id: str
    role: str
    display_name: str = ""
    status: str = MemberStatus.ACTIVE.value


class UpdateMemberRequest(BaseModel):
    role: str


class TaskResponse(BaseModel):
    """Standard wrapper for task responses."""
    task: dict[str, Any]
    events: list[dict[str, Any]] = Field(default_factory=list)


class TaskListResponse(BaseModel):
    tasks: list[dict[str, Any]]
    total: int


class BoardResponse(BaseModel):
    columns: dict[str, list[dict[str, Any]]]


class DependencyGraphResponse(BaseModel):
    graph: dict[str, list[str]]


class MemberListResponse(BaseModel):
    members: list[dict[str, Any]]
    total: int


class EventListResponse(BaseModel):
    events: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_task_router(get_store: Callable[[], TaskStore]) -> APIRouter:
    """Create the workspace task router.

    Parameters
    ----------
    get_store:
        A callable returning the :class:`TaskStore` that serves the request.
    """
    router = APIRouter(prefix="/api/workspaces/{workspace_id}", tags=["tasks"])

    def _actor(x_actor_id: Optional[str]) -> str:
        if not x_actor_id:
            raise HTTPException(status_code=401, detail="Missing X-Actor-Id header")
        return x_actor_id

    def _check_workspace(store: TaskStore, workspace_id: str, task_id: str) -> None:
        if store.get_task(task_id).workspace_id != workspace_id:
            raise NotFoundError("task", task_id, f"not found in workspace {workspace_id}")

    def _response(store: TaskStore, change: TaskChange) -> TaskResponse:
        view = store.get_task_view(change.task.id)
        return TaskResponse(task=view.to_dict(), events=[e.to_dict() for e in change.events])

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @router.get("/tasks", response_model=TaskListResponse)
    async def list_tasks(
        workspace_id: str,
        status: Optional[str] = Query(None),
        assignee_id: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
        include_cancelled: bool = Query(False),
    ) -> TaskListResponse:
        store = get_store()
        views = store.list_tasks(workspace_id, TaskFilter(
            status=status,
            assignee_id=assignee_id,
            search=search,
            include_cancelled=include_cancelled,
        ))
        data = [v.to_dict() for v in views]
        return TaskListResponse(tasks=data, total=len(data))

    @router.get("/board", response_model=BoardResponse)
    async def get_board(workspace_id: str) -> BoardResponse:
        columns = get_store().board_view(workspace_id)
        return BoardResponse(columns={
            col: [v.to_dict() for v in views] for col, views in columns.items()
        })

    @router.get("/meta/workflow")
    async def get_workflow(workspace_id: str) -> dict[str, Any]:
        return workflow.describe()

    @router.get("/events", response_model=EventListResponse)
    async def recent_events(
        workspace_id: str,
        limit: int = Query(100, ge=1, le=1000),
    ) -> EventListResponse:
        return EventListResponse(events=get_store().recent_events(workspace_id, limit))

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @router.post("/tasks", response_model=TaskResponse, status_code=201)
    async def create_task(
        workspace_id: str,
        body: CreateTaskRequest,
        x_actor_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        store = get_store()
        change = store.create_task(workspace_id, _actor(x_actor_id), body.model_dump())
        return _response(store, change)

    @router.post("/tasks/bulk", response_model=TaskListResponse)
    async def bulk_update(
        workspace_id: str,
        body: BulkUpdateRequest,
        x_actor_id: Optional[str] = Header(None),
    ) -> TaskListResponse:
        store = get_store()
        patches = {tid: p.model_dump(exclude_unset=True) for tid, p in body.patches.items()}
        changes = store.bulk_update(workspace_id, _actor(x_actor_id), patches)
        data = [store.get_task_view(c.task.id).to_dict() for c in changes]
        return TaskListResponse(tasks=data, total=len(data))

    @router.get("/tasks/{task_id}", response_model=TaskResponse)
    async def get_task(workspace_id: str, task_id: str) -> TaskResponse:
        store = get_store()
        _check_workspace(store, workspace_id, task_id)
        return TaskResponse(task=store.get_task_view(task_id).to_dict())

    @router.patch("/tasks/{task_id}", response_model=TaskResponse)
    async def update_task(
        workspace_id: str,
        task_id: str,
        body: UpdateTaskRequest,
        x_actor_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        store = get_store()
        _check_workspace(store, workspace_id, task_id)
        change = store.update_task(task_id, _actor(x_actor_id), body.model_dump(exclude_unset=True))
        return _response(store, change)

    @router.delete("/tasks/{task_id}", response_model=TaskResponse)
    async def delete_task(
        workspace_id: str,
        task_id: str,
        x_actor_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        store = get_store()
        _check_workspace(store, workspace_id, task_id)
        return _response(store, store.delete_task(task_id, _actor(x_actor_id)))

    @router.post("/tasks/{task_id}/assign", response_model=TaskResponse)
    async def assign_task(
        workspace_id: str,
        task_id: str,
        body: AssignRequest,
        x_actor_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        store = get_store()
        _check_workspace(store, workspace_id, task_id)
        return _response(store, store.assign_task(task_id, _actor(x_actor_id), body.assignee_ids))

    # ------------------------------------------------------------------
    # Comments & attachments
    # ------------------------------------------------------------------

    @router.post("/tasks/{task_id}/comments", response_model=TaskResponse, status_code=201)
    async def add_comment(
        workspace_id: str,
        task_id: str,
        body: CommentRequest,
        x_actor_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        store = get_store()
        _check_workspace(store, workspace_id, task_id)
        return _response(store, store.add_comment(task_id, _actor(x_actor_id), body.body))

    @router.patch("/tasks/{task_id}/comments/{comment_id}", response_model=TaskResponse)
    async def edit_comment(
        workspace_id: str,
        task_id: str,
        comment_id: str,
        body: CommentRequest,
        x_actor_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        store = get_store()
        _check_workspace(store, workspace_id, task_id)
        return _response(store, store.edit_comment(task_id, _actor(x_actor_id), comment_id, body.body))

    @router.delete("/tasks/{task_id}/comments/{comment_id}", response_model=TaskResponse)
    async def delete_comment(
        workspace_id: str,
        task_id: str,
        comment_id: str,
        x_actor_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        store = get_store()
        _check_workspace(store, workspace_id, task_id)
        return _response(store, store.soft_delete_comment(task_id, _actor(x_actor_id), comment_id))

    @router.post("/tasks/{task_id}/attachments", response_model=TaskResponse, status_code=201)
    async def add_attachment(
        workspace_id: str,
        task_id: str,
        body: AttachmentRequest,
        x_actor_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        store = get_store()
        _check_workspace(store, workspace_id, task_id)
        return _response(store, store.add_attachment(task_id, _actor(x_actor_id), body.file_ref))

    @router.delete("/tasks/{task_id}/attachments/{attachment_id}", response_model=TaskResponse)
    async def remove_attachment(
        workspace_id: str,
        task_id: str,
        attachment_id: str,
        x_actor_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        store = get_store()
        _check_workspace(store, workspace_id, task_id)
        return _response(store, store.remove_attachment(task_id, _actor(x_actor_id), attachment_id))

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    @router.get("/tasks/{task_id}/dependencies", response_model=DependencyGraphResponse)
    async def get_task_dependencies(workspace_id: str, task_id: str) -> DependencyGraphResponse:
        store = get_store()
        _check_workspace(store, workspace_id, task_id)
        return DependencyGraphResponse(graph=store.dependency_graph(task_id))

    @router.post("/tasks/{task_id}/dependencies", response_model=TaskResponse)
    async def add_dependency(
        workspace_id: str,
        task_id: str,
        body: AddDependencyRequest,
        x_actor_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        store = get_store()
        _check_workspace(store, workspace_id, task_id)
        return _response(store, store.add_dependency(task_id, _actor(x_actor_id), body.depends_on))

    @router.delete("/tasks/{task_id}/dependencies/{dep_id}", response_model=TaskResponse)
    async def remove_dependency(
        workspace_id: str,
        task_id: str,
        dep_id: str,
        x_actor_id: Optional[str] = Header(None),
    ) -> TaskResponse:
        store = get_store()
        _check_workspace(store, workspace_id, task_id)
        return _response(store, store.remove_dependency(task_id, _actor(x_actor_id), dep_id))

    @router.get("/tasks/{task_id}/events", response_model=EventListResponse)
    async def task_events(
        workspace_id: str,
        task_id: str,
        limit: int = Query(100, ge=1, le=1000),
    ) -> EventListResponse:
        store = get_store()
        _check_workspace(store, workspace_id, task_id)
        return EventListResponse(events=store.task_events(task_id, limit))

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    @router.get("/members", response_model=MemberListResponse)
    async def list_members(
        workspace_id: str,
        role: Optional[str] = Query(None),
        status: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
    ) -> MemberListResponse:
        members = get_store().members.list_members(workspace_id, role=role, status=status, search=search)
        return MemberListResponse(members=[m.to_dict() for m in members], total=len(members))

    @router.post("/members", status_code=201)
    async def add_member(
        workspace_id: str,
        body: AddMemberRequest,
        x_actor_id: Optional[str] = Header(None),
    ) -> dict[str, Any]:
        store = get_store()
        try:
            member = store.add_member(
                workspace_id,
                _actor(x_actor_id),
                body.user_id,
                body.role,
                status=body.status,
                display_name=body.display_name,
            )
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {"member": member.to_dict()}

    @router.patch("/members/{user_id}")
    async def update_member(
        workspace_id: str,
        user_id: str,
        body: UpdateMemberRequest,
        x_actor_id: Optional[str] = Header(None),
    ) -> dict[str, Any]:
        store = get_store()
        try:
            member = store.update_member_role(workspace_id, _actor(x_actor_id), user_id, body.role)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {"member": member.to_dict()}

    @router.delete("/members/{user_id}", response_model=TaskListResponse)
    async def remove_member(
        workspace_id: str,
        user_id: str,
        x_actor_id: Optional[str] = Header(None),
    ) -> TaskListResponse:
        """Remove a member; the response lists the tasks they were unassigned from."""
        store = get_store()
        changes = store.remove_member(workspace_id, _actor(x_actor_id), user_id)
        data = [store.get_task_view(c.task.id).to_dict() for c in changes]
        return TaskListResponse(tasks=data, total=len(data))

    return router
