"""Duration aggregation across tasks, projects and days."""

from __future__ import annotations

from collections.abc import Iterable

from tasktimer.db import TrackerStore
from tasktimer.errors import NotFoundError, has_owner
from tasktimer.models import TaskRecord
from tasktimer.timeutil import calculate_duration, normalize_timestamp, now_ms, start_of_day


def sum_durations(records: Iterable[TaskRecord], *, now: int | None = None) -> int:
    """Sum the durations of records. Open records count up to now."""
    if now is None:
        now = now_ms()
    return sum(calculate_duration(r.started_at, r.ended_at, now=now) for r in records)


def task_total(
    store: TrackerStore, owner: str | None, task_id: int, *, now: int | None = None
) -> int:
    """Total milliseconds tracked on a task.

    Raises:
        NotFoundError: If the task does not exist for the owner.
    """
    if not has_owner(owner):
        return 0
    if store.get_task(owner, task_id) is None:
        raise NotFoundError("task", task_id)
    return sum_durations(store.get_records(owner, task_id=task_id), now=now)


def task_totals(
    store: TrackerStore, owner: str | None, task_ids: list[int], *, now: int | None = None
) -> dict[int, int]:
    """Total milliseconds per task, fetched in one batched query.

    Every requested task ID is present in the result, with 0 if it has no
    records.
    """
    totals = {task_id: 0 for task_id in task_ids}
    if not has_owner(owner) or not task_ids:
        return totals
    if now is None:
        now = now_ms()
    for record in store.get_records_for_tasks(owner, task_ids):
        totals[record.task_id] += calculate_duration(record.started_at, record.ended_at, now=now)
    return totals


def project_total(
    store: TrackerStore, owner: str | None, project_id: int, *, now: int | None = None
) -> int:
    """Total milliseconds tracked across a project's tasks.

    Raises:
        NotFoundError: If the project does not exist for the owner.
    """
    if not has_owner(owner):
        return 0
    if store.get_project(owner, project_id) is None:
        raise NotFoundError("project", project_id)
    task_ids = [task.id for task in store.list_tasks(owner, project_id=project_id)]
    return sum(task_totals(store, owner, task_ids, now=now).values())


def project_totals(
    store: TrackerStore, owner: str | None, project_ids: list[int], *, now: int | None = None
) -> dict[int, int]:
    """Total milliseconds per project, from one task listing and one record fetch.

    Every requested project ID is present in the result. Unknown projects
    total 0.
    """
    totals = {project_id: 0 for project_id in project_ids}
    if not has_owner(owner) or not project_ids:
        return totals

    tasks = [t for t in store.list_tasks(owner) if t.project_id in totals]
    per_task = task_totals(store, owner, [t.id for t in tasks], now=now)
    for task in tasks:
        totals[task.project_id] += per_task[task.id]
    return totals


def day_totals(
    store: TrackerStore,
    owner: str | None,
    day_start: int,
    day_end: int | None = None,
    *,
    now: int | None = None,
) -> dict[int, int]:
    """Total milliseconds per task for records started within a window.

    A record counts in full toward the window its start falls in.

    Args:
        store: The backing store.
        owner: The owning user.
        day_start: Epoch ms (inclusive).
        day_end: Epoch ms (exclusive), or None for no upper bound.
        now: Current time in epoch ms, for open records.

    Returns:
        Dict mapping task_id to milliseconds, only for tasks with records
        in the window.
    """
    if not has_owner(owner):
        return {}
    if now is None:
        now = now_ms()

    totals: dict[int, int] = {}
    for record in store.get_records(owner):
        started = normalize_timestamp(record.started_at, now=now)
        if started is None or started < day_start:
            continue
        if day_end is not None and started >= day_end:
            continue
        duration = calculate_duration(record.started_at, record.ended_at, now=now)
        totals[record.task_id] = totals.get(record.task_id, 0) + duration
    return totals


def today_total(store: TrackerStore, owner: str | None, *, now: int | None = None) -> int:
    """Total milliseconds for records started since local midnight."""
    if now is None:
        now = now_ms()
    return sum(day_totals(store, owner, start_of_day(now), now=now).values())
