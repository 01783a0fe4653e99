"""Shared fixtures for Task Timer tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from tasktimer.catalog import Catalog
from tasktimer.db import TrackerStore
from tasktimer.models import ActivityForm, ProjectForm, Task, TaskForm
from tasktimer.timeutil import to_ms

# 2025-01-25T10:00:00Z
BASE_MS = to_ms(datetime(2025, 1, 25, 10, 0, 0, tzinfo=timezone.utc))


class FixedClock:
    """Clock returning a settable time in epoch milliseconds."""

    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(BASE_MS)


@pytest.fixture
def store():
    """In-memory store, closed after the test."""
    with TrackerStore.open_in_memory() as store:
        yield store


@pytest.fixture
def make_task(store: TrackerStore):
    """Factory creating a task (with a fresh project and activity if none given)."""

    def _make_task(
        owner: str = "alice",
        name: str = "Write report",
        *,
        project_id: int | None = None,
        activity_id: int | None = None,
    ) -> Task:
        catalog = Catalog(store)
        if project_id is None:
            project_id = catalog.add_project(owner, ProjectForm(name="Website", color="#FF5733")).id
        if activity_id is None:
            activity_id = catalog.add_activity(owner, ActivityForm(name="Coding")).id
        form = TaskForm(name=name, project_id=project_id, activity_id=activity_id)
        return catalog.add_task(owner, form)

    return _make_task
