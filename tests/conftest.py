"""Shared fixtures: one workspace with a member for each role."""

from __future__ import annotations

import pytest

from workspace_tasks.membership import MemberRoster, MemberStatus
from workspace_tasks.task_engine.events import EventDispatcher, InMemoryEventSink
from workspace_tasks.task_engine.repository import InMemoryTaskRepository
from workspace_tasks.task_engine.store import TaskStore

WORKSPACE = "ws-1"


@pytest.fixture
def roster() -> MemberRoster:
    r = MemberRoster()
    r.add_member(WORKSPACE, "olivia", "owner", display_name="Olivia")
    r.add_member(WORKSPACE, "lee", "team_lead", display_name="Lee")
    r.add_member(WORKSPACE, "cora", "coordinator", display_name="Cora")
    r.add_member(WORKSPACE, "sam", "specialist", display_name="Sam")
    r.add_member(WORKSPACE, "val", "general_volunteer", display_name="Val")
    r.add_member(WORKSPACE, "ina", "general_volunteer", status=MemberStatus.INACTIVE)
    return r


@pytest.fixture
def sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def store(roster: MemberRoster, sink: InMemoryEventSink) -> TaskStore:
    return TaskStore(InMemoryTaskRepository(), roster, EventDispatcher([sink]))
