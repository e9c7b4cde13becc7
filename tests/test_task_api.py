"""Tests for the workspace task API endpoints."""

from __future__ import annotations

from contextlib import nullcontext
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from workspace_tasks.membership import MemberRoster
from workspace_tasks.server import create_app
from workspace_tasks.task_engine.store import TaskStore

BASE = "/api/workspaces/ws-1"
LEE = {"X-Actor-Id": "lee"}
VAL = {"X-Actor-Id": "val"}


@pytest.fixture
def app(tmp_path: Path, roster: MemberRoster):
    """Create a test app with a temp project directory."""
    project_dir = tmp_path / "test_project"
    project_dir.mkdir()
    return create_app(project_dir=project_dir, members=roster, enable_cors=False)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _create(client: AsyncClient, title: str, **extra) -> dict:
    resp = await client.post(f"{BASE}/tasks", json={"title": title, **extra}, headers=LEE)
    assert resp.status_code == 201, resp.text
    return resp.json()["task"]


@pytest.mark.anyio
class TestTaskCRUD:
    async def test_list_empty(self, client: AsyncClient) -> None:
        resp = await client.get(f"{BASE}/tasks")
        assert resp.status_code == 200
        assert resp.json() == {"tasks": [], "total": 0}

    async def test_create_and_get(self, client: AsyncClient) -> None:
        resp = await client.post(f"{BASE}/tasks", json={
            "title": "Book venue",
            "description": "Downtown hall",
            "assignee_ids": ["val"],
        }, headers=LEE)
        assert resp.status_code == 201
        body = resp.json()
        task = body["task"]
        assert task["status"] == "todo"
        assert task["effective_status"] == "todo"
        assert task["assignee_ids"] == ["val"]
        assert [e["kind"] for e in body["events"]] == ["task.created"]

        resp = await client.get(f"{BASE}/tasks/{task['id']}")
        assert resp.status_code == 200
        assert resp.json()["task"]["title"] == "Book venue"

    async def test_missing_actor_header(self, client: AsyncClient) -> None:
        resp = await client.post(f"{BASE}/tasks", json={"title": "Anonymous"})
        assert resp.status_code == 401

    async def test_get_nonexistent(self, client: AsyncClient) -> None:
        resp = await client.get(f"{BASE}/tasks/task-nope")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    async def test_task_from_other_workspace_is_hidden(self, client: AsyncClient, roster: MemberRoster) -> None:
        roster.add_member("ws-2", "lee", "team_lead")
        resp = await client.post("/api/workspaces/ws-2/tasks", json={"title": "Elsewhere"}, headers=LEE)
        task_id = resp.json()["task"]["id"]
        resp = await client.get(f"{BASE}/tasks/{task_id}")
        assert resp.status_code == 404

    async def test_forbidden(self, client: AsyncClient) -> None:
        resp = await client.post(f"{BASE}/tasks", json={"title": "Nope"}, headers=VAL)
        assert resp.status_code == 403
        data = resp.json()
        assert data["error"] == "forbidden"
        assert data["action"] == "create_task"

    async def test_empty_title_is_422(self, client: AsyncClient) -> None:
        resp = await client.post(f"{BASE}/tasks", json={"title": "  "}, headers=LEE)
        assert resp.status_code == 422
        assert resp.json()["field"] == "title"

    async def test_update_and_transition(self, client: AsyncClient) -> None:
        task = await _create(client, "Old")
        resp = await client.patch(f"{BASE}/tasks/{task['id']}", json={
            "title": "New",
            "status": "in_progress",
            "progress": 30,
        }, headers=LEE)
        assert resp.status_code == 200
        updated = resp.json()["task"]
        assert updated["title"] == "New"
        assert updated["status"] == "in_progress"
        assert updated["progress"] == 30

    async def test_invalid_transition_is_409(self, client: AsyncClient) -> None:
        task = await _create(client, "Jump")
        resp = await client.patch(f"{BASE}/tasks/{task['id']}", json={"status": "done"}, headers=LEE)
        assert resp.status_code == 409
        data = resp.json()
        assert data["current"] == "todo"
        assert data["requested"] == "done"

    async def test_delete_cancels(self, client: AsyncClient) -> None:
        task = await _create(client, "Drop me")
        resp = await client.delete(f"{BASE}/tasks/{task['id']}", headers=LEE)
        assert resp.status_code == 200
        assert resp.json()["task"]["status"] == "cancelled"
        resp = await client.get(f"{BASE}/tasks")
        assert resp.json()["total"] == 0
        resp = await client.get(f"{BASE}/tasks?include_cancelled=true")
        assert resp.json()["total"] == 1


@pytest.mark.anyio
class TestDependencies:
    async def test_blocked_flow(self, client: AsyncClient) -> None:
        t1 = await _create(client, "T1")
        t2 = await _create(client, "T2", depends_on=[t1["id"]])
        assert t2["effective_status"] == "blocked"
        assert t2["blocked_by"] == [t1["id"]]

        resp = await client.patch(f"{BASE}/tasks/{t2['id']}", json={"status": "in_progress"}, headers=LEE)
        assert resp.status_code == 409
        assert resp.json()["blocking_ids"] == [t1["id"]]

        resp = await client.get(f"{BASE}/board")
        columns = resp.json()["columns"]
        assert [t["id"] for t in columns["blocked"]] == [t2["id"]]

        resp = await client.post(f"{BASE}/tasks/bulk", json={"patches": {
            t1["id"]: {"status": "in_progress"},
        }}, headers=LEE)
        assert resp.status_code == 200

    async def test_add_remove_dependency(self, client: AsyncClient) -> None:
        t1 = await _create(client, "T1")
        t2 = await _create(client, "T2")
        resp = await client.post(
            f"{BASE}/tasks/{t1['id']}/dependencies", json={"depends_on": t2["id"]}, headers=LEE,
        )
        assert resp.status_code == 200
        resp = await client.post(
            f"{BASE}/tasks/{t2['id']}/dependencies", json={"depends_on": t1["id"]}, headers=LEE,
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "dependency_cycle"

        resp = await client.get(f"{BASE}/tasks/{t1['id']}/dependencies")
        assert resp.json()["graph"] == {t1["id"]: [t2["id"]], t2["id"]: []}

        for _ in range(2):
            resp = await client.delete(f"{BASE}/tasks/{t1['id']}/dependencies/{t2['id']}", headers=LEE)
            assert resp.status_code == 200
        assert resp.json()["task"]["depends_on"] == []

    async def test_self_dependency(self, client: AsyncClient) -> None:
        t1 = await _create(client, "T1")
        resp = await client.post(
            f"{BASE}/tasks/{t1['id']}/dependencies", json={"depends_on": t1["id"]}, headers=LEE,
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "self_dependency"


@pytest.mark.anyio
class TestCollaboration:
    async def test_assign_comment_attach(self, client: AsyncClient) -> None:
        task = await _create(client, "Shared")
        resp = await client.post(f"{BASE}/tasks/{task['id']}/assign", json={"assignee_ids": ["val"]}, headers=LEE)
        assert resp.json()["task"]["assignee_ids"] == ["val"]

        resp = await client.post(f"{BASE}/tasks/{task['id']}/comments", json={"body": "On it"}, headers=VAL)
        assert resp.status_code == 201
        comment_id = resp.json()["task"]["comments"][-1]["id"]

        resp = await client.patch(
            f"{BASE}/tasks/{task['id']}/comments/{comment_id}", json={"body": "Done soon"}, headers=VAL,
        )
        assert resp.json()["task"]["comments"][-1]["body"] == "Done soon"

        resp = await client.post(
            f"{BASE}/tasks/{task['id']}/attachments", json={"file_ref": "files/floorplan.pdf"}, headers=VAL,
        )
        assert resp.status_code == 201
        attachment_id = resp.json()["task"]["attachments"][-1]["id"]

        resp = await client.delete(f"{BASE}/tasks/{task['id']}/attachments/{attachment_id}", headers=VAL)
        assert resp.json()["task"]["attachments"] == []

        resp = await client.delete(f"{BASE}/tasks/{task['id']}/comments/{comment_id}", headers=LEE)
        assert resp.json()["task"]["comments"] == []

        resp = await client.get(f"{BASE}/tasks/{task['id']}/events")
        kinds = [e["kind"] for e in resp.json()["events"]]
        assert kinds[0] == "task.created"
        assert "task.comment_deleted" in kinds

    async def test_members(self, client: AsyncClient) -> None:
        resp = await client.get(f"{BASE}/members?role=team_lead")
        assert [m["user_id"] for m in resp.json()["members"]] == ["lee"]

        resp = await client.post(f"{BASE}/members", json={"user_id": "nia", "role": "specialist"}, headers=LEE)
        assert resp.status_code == 201
        resp = await client.post(f"{BASE}/members", json={"user_id": "zed", "role": "wizard"}, headers=LEE)
        assert resp.status_code == 422
        resp = await client.patch(f"{BASE}/members/nia", json={"role": "coordinator"}, headers=LEE)
        assert resp.json()["member"]["role"] == "coordinator"

        task = await _create(client, "Staffed", assignee_ids=["nia"])
        resp = await client.delete(f"{BASE}/members/nia", headers=LEE)
        assert resp.status_code == 200
        assert [t["id"] for t in resp.json()["tasks"]] == [task["id"]]
        assert resp.json()["tasks"][0]["assignee_ids"] == []

    async def test_workflow_and_events(self, client: AsyncClient) -> None:
        resp = await client.get(f"{BASE}/meta/workflow")
        assert resp.json()["transitions"]["in_review"] == ["cancelled", "done", "in_progress"]
        await _create(client, "Logged")
        resp = await client.get(f"{BASE}/events?limit=5")
        assert [e["kind"] for e in resp.json()["events"]] == ["task.created"]


@pytest.mark.anyio
async def test_persistence_error_maps_to_503(roster: MemberRoster) -> None:
    class BrokenRepository:
        def load_all(self, workspace_id: str) -> list:
            return []

        def save(self, workspace_id: str, tasks: list) -> None:
            raise OSError("read-only filesystem")

        def locate(self, task_id: str) -> None:
            return None

        def lock(self, workspace_id: str) -> nullcontext:
            return nullcontext()

        def revision(self, workspace_id: str) -> int:
            return 0

    app = create_app(store=TaskStore(BrokenRepository(), roster), enable_cors=False)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        resp = await c.post(f"{BASE}/tasks", json={"title": "Lost"}, headers=LEE)
    assert resp.status_code == 503
    assert resp.json()["error"] == "persistence_error"
