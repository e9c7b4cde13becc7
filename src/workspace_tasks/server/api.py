"""FastAPI application factory for the workspace task board."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ..errors import (
    DependencyError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    NotReadyError,
    PersistenceError,
    ValidationError,
    WorkspaceTaskError,
)
from ..membership import MemberRoster
from ..task_engine.store import TaskStore
from .task_api import create_task_router

# Most specific first; DependencyError covers both cycle and self-edge errors.
ERROR_STATUS: tuple[tuple[type[WorkspaceTaskError], int], ...] = (
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (DependencyError, 409),
    (NotReadyError, 409),
    (InvalidTransitionError, 409),
    (ValidationError, 422),
    (PersistenceError, 503),
)


def status_for(exc: WorkspaceTaskError) -> int:
    for cls, code in ERROR_STATUS:
        if isinstance(exc, cls):
            return code
    return 400


def create_app(
    store: Optional[TaskStore] = None,
    project_dir: Optional[Path] = None,
    members: Optional[MemberRoster] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI app.

    Args:
        store: Task store to serve. Built from *project_dir* when omitted.
        project_dir: Project directory holding `.workspace_tasks/`; defaults to cwd.
        members: Membership roster for a store built here.
        enable_cors: Whether to enable CORS.

    Returns:
        Configured FastAPI app.
    """
    if store is None:
        store = TaskStore.from_project(project_dir or Path.cwd(), members)

    app = FastAPI(
        title="Workspace Tasks",
        description="Role-gated task board for event workspaces",
        version="0.1.0",
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.task_store = store

    @app.exception_handler(WorkspaceTaskError)
    async def _task_error_handler(request: Request, exc: WorkspaceTaskError) -> JSONResponse:
        code = status_for(exc)
        if code >= 500:
            logger.error("{} {} failed: {}", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content=exc.to_dict())

    def _get_store() -> TaskStore:
        return app.state.task_store

    app.include_router(create_task_router(_get_store))

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
