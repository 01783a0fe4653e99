"""CLI entry point for Task Timer."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from tasktimer import totals
from tasktimer.catalog import Catalog
from tasktimer.db import TrackerStore
from tasktimer.errors import TrackerError
from tasktimer.models import ActivityForm, ProjectForm, TaskForm, TaskRecord
from tasktimer.timeutil import (
    calculate_duration,
    format_duration,
    get_day_range,
    normalize_timestamp,
    now_ms,
)
from tasktimer.tracking import Tracker

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "tasktimer" / "tasks.db"


def format_timestamp(value: Any, *, now: int | None = None) -> str:
    """Format a stored timestamp as local 'YYYY-MM-DD HH:MM:SS'."""
    ms = normalize_timestamp(value, now=now)
    if ms is None:
        return "-"
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc).astimezone()
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def format_validation_error(error: ValidationError) -> str:
    """Collapse a pydantic ValidationError into one line per field."""
    parts = []
    for err in error.errors():
        field = ".".join(str(loc) for loc in err["loc"])
        parts.append(f"{field}: {err['msg']}" if field else err["msg"])
    return "; ".join(parts)


@contextmanager
def open_store(ctx: click.Context) -> Iterator[TrackerStore]:
    """Open the configured store, turning tracker errors into exit code 1."""
    db: Path = ctx.obj["db"]
    db.parent.mkdir(parents=True, exist_ok=True)

    try:
        with TrackerStore.open(db) as store:
            yield store
    except TrackerError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except ValidationError as e:
        click.echo(f"Error: {format_validation_error(e)}", err=True)
        sys.exit(1)


def _record_dict(record: TaskRecord, now: int) -> dict[str, Any]:
    return {
        "id": record.id,
        "task_id": record.task_id,
        "started_at": normalize_timestamp(record.started_at, now=now),
        "ended_at": normalize_timestamp(record.ended_at, now=now),
        "duration_ms": calculate_duration(record.started_at, record.ended_at, now=now),
    }


@click.group()
@click.option(
    "--db",
    type=click.Path(path_type=Path),
    default=DEFAULT_DB_PATH,
    envvar="TASKTIMER_DB",
    help="Path to SQLite database",
)
@click.option(
    "--user",
    envvar="TASKTIMER_USER",
    help="User to act as (default: $TASKTIMER_USER)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, db: Path, user: str | None, verbose: bool) -> None:
    """Task Timer CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"db": db, "user": user}


# Projects


@main.group("project")
def project_group() -> None:
    """Manage projects."""


@project_group.command("add")
@click.argument("name")
@click.option("--description", help="Optional description")
@click.option("--color", default="#FFFFFF", help="Hex color, e.g. #FF5733")
@click.pass_context
def project_add(ctx: click.Context, name: str, description: str | None, color: str) -> None:
    """Create a project."""
    with open_store(ctx) as store:
        form = ProjectForm(name=name, description=description, color=color)
        project = Catalog(store).add_project(ctx.obj["user"], form)
    click.echo(f"Created project {project.id}: {project.name}")


@project_group.command("edit")
@click.argument("project_id", type=int)
@click.option("--name", help="New name")
@click.option("--description", help="New description")
@click.option("--color", help="New hex color")
@click.pass_context
def project_edit(
    ctx: click.Context,
    project_id: int,
    name: str | None,
    description: str | None,
    color: str | None,
) -> None:
    """Edit a project. Unset options keep their current value."""
    with open_store(ctx) as store:
        catalog = Catalog(store)
        current = catalog.get_project(ctx.obj["user"], project_id)
        form = ProjectForm(
            name=name if name is not None else current.name,
            description=description if description is not None else current.description,
            color=color if color is not None else current.color,
        )
        project = catalog.edit_project(ctx.obj["user"], project_id, form)
    click.echo(f"Updated project {project.id}: {project.name}")


@project_group.command("delete")
@click.argument("project_id", type=int)
@click.pass_context
def project_delete(ctx: click.Context, project_id: int) -> None:
    """Delete a project together with its tasks."""
    with open_store(ctx) as store:
        Catalog(store).delete_project(ctx.obj["user"], project_id)
    click.echo(f"Deleted project {project_id}")


@project_group.command("list")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def project_list(ctx: click.Context, output_json: bool) -> None:
    """List projects with their total tracked time."""
    user = ctx.obj["user"]
    now = now_ms()
    with open_store(ctx) as store:
        projects = Catalog(store).list_projects(user)
        project_totals = totals.project_totals(store, user, [p.id for p in projects], now=now)

    if output_json:
        output = [
            {**p.model_dump(exclude={"user_id", "deleted"}), "total_ms": project_totals[p.id]}
            for p in projects
        ]
        click.echo(json.dumps(output, indent=2))
        return

    if not projects:
        click.echo("No projects")
        return
    for p in projects:
        click.echo(f"  {p.id:>4}  {p.name:<30} {p.color:<8} {format_duration(project_totals[p.id])}")


# Activities


@main.group("activity")
def activity_group() -> None:
    """Manage activities."""


@activity_group.command("add")
@click.argument("name")
@click.pass_context
def activity_add(ctx: click.Context, name: str) -> None:
    """Create an activity."""
    with open_store(ctx) as store:
        activity = Catalog(store).add_activity(ctx.obj["user"], ActivityForm(name=name))
    click.echo(f"Created activity {activity.id}: {activity.name}")


@activity_group.command("edit")
@click.argument("activity_id", type=int)
@click.argument("name")
@click.pass_context
def activity_edit(ctx: click.Context, activity_id: int, name: str) -> None:
    """Rename an activity."""
    with open_store(ctx) as store:
        activity = Catalog(store).edit_activity(
            ctx.obj["user"], activity_id, ActivityForm(name=name)
        )
    click.echo(f"Updated activity {activity.id}: {activity.name}")


@activity_group.command("delete")
@click.argument("activity_id", type=int)
@click.pass_context
def activity_delete(ctx: click.Context, activity_id: int) -> None:
    """Delete an activity together with its tasks."""
    with open_store(ctx) as store:
        Catalog(store).delete_activity(ctx.obj["user"], activity_id)
    click.echo(f"Deleted activity {activity_id}")


@activity_group.command("list")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def activity_list(ctx: click.Context, output_json: bool) -> None:
    """List activities."""
    with open_store(ctx) as store:
        activities = Catalog(store).list_activities(ctx.obj["user"])

    if output_json:
        output = [a.model_dump(exclude={"user_id", "deleted"}) for a in activities]
        click.echo(json.dumps(output, indent=2))
        return

    if not activities:
        click.echo("No activities")
        return
    for a in activities:
        click.echo(f"  {a.id:>4}  {a.name}")


# Tasks


@main.group("task")
def task_group() -> None:
    """Manage tasks."""


@task_group.command("add")
@click.argument("name")
@click.option("--project", "project_id", type=int, required=True, help="Project ID")
@click.option("--activity", "activity_id", type=int, required=True, help="Activity ID")
@click.pass_context
def task_add(ctx: click.Context, name: str, project_id: int, activity_id: int) -> None:
    """Create a task under a project and activity."""
    with open_store(ctx) as store:
        form = TaskForm(name=name, project_id=project_id, activity_id=activity_id)
        task = Catalog(store).add_task(ctx.obj["user"], form)
    click.echo(f"Created task {task.id}: {task.name}")


@task_group.command("edit")
@click.argument("task_id", type=int)
@click.option("--name", help="New name")
@click.option("--project", "project_id", type=int, help="New project ID")
@click.option("--activity", "activity_id", type=int, help="New activity ID")
@click.pass_context
def task_edit(
    ctx: click.Context,
    task_id: int,
    name: str | None,
    project_id: int | None,
    activity_id: int | None,
) -> None:
    """Edit a task. Unset options keep their current value."""
    with open_store(ctx) as store:
        catalog = Catalog(store)
        current = catalog.get_task(ctx.obj["user"], task_id)
        form = TaskForm(
            name=name if name is not None else current.name,
            project_id=project_id if project_id is not None else current.project_id,
            activity_id=activity_id if activity_id is not None else current.activity_id,
        )
        task = catalog.edit_task(ctx.obj["user"], task_id, form)
    click.echo(f"Updated task {task.id}: {task.name}")


@task_group.command("done")
@click.argument("task_id", type=int)
@click.option("--undo", is_flag=True, help="Mark the task as not done")
@click.pass_context
def task_done(ctx: click.Context, task_id: int, undo: bool) -> None:
    """Mark a task as done."""
    with open_store(ctx) as store:
        task = Catalog(store).mark_task_done(ctx.obj["user"], task_id, done=not undo)
    state = "done" if task.done else "not done"
    click.echo(f"Task {task.id} marked {state}")


@task_group.command("delete")
@click.argument("task_id", type=int)
@click.pass_context
def task_delete(ctx: click.Context, task_id: int) -> None:
    """Delete a task and its tracked sessions."""
    with open_store(ctx) as store:
        Catalog(store).delete_task(ctx.obj["user"], task_id)
    click.echo(f"Deleted task {task_id}")


@task_group.command("list")
@click.option("--project", "project_id", type=int, help="Only tasks of this project")
@click.option("--hide-done", is_flag=True, help="Hide tasks marked done")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def task_list(
    ctx: click.Context, project_id: int | None, hide_done: bool, output_json: bool
) -> None:
    """List tasks with their total tracked time."""
    user = ctx.obj["user"]
    with open_store(ctx) as store:
        tasks = Catalog(store).list_tasks(
            user, project_id=project_id, include_done=not hide_done
        )
        task_totals = totals.task_totals(store, user, [t.id for t in tasks])
        active = Tracker(store).get_active_task(user)

    active_id = active.id if active is not None else None

    if output_json:
        output = [
            {
                **t.model_dump(exclude={"user_id", "deleted"}),
                "total_ms": task_totals[t.id],
                "active": t.id == active_id,
            }
            for t in tasks
        ]
        click.echo(json.dumps(output, indent=2))
        return

    if not tasks:
        click.echo("No tasks")
        return
    for t in tasks:
        marker = "*" if t.id == active_id else " "
        done = " (done)" if t.done else ""
        click.echo(f"{marker} {t.id:>4}  {t.name + done:<36} {format_duration(task_totals[t.id])}")


@task_group.command("log")
@click.argument("task_id", type=int)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def task_log(ctx: click.Context, task_id: int, output_json: bool) -> None:
    """Show the tracked sessions of a task."""
    user = ctx.obj["user"]
    now = now_ms()
    with open_store(ctx) as store:
        catalog = Catalog(store)
        task = catalog.get_task(user, task_id)
        records = catalog.get_task_records(user, task_id)

    if output_json:
        click.echo(json.dumps([_record_dict(r, now) for r in records], indent=2))
        return

    click.echo(f"Sessions for {task.name}:")
    if not records:
        click.echo("  (none)")
        return
    for r in records:
        end = format_timestamp(r.ended_at, now=now) if not r.is_open else "running"
        duration = calculate_duration(r.started_at, r.ended_at, now=now)
        click.echo(
            f"  {format_timestamp(r.started_at, now=now)}  ->  {end:<19}  {format_duration(duration)}"
        )


# Tracking


@main.command("start")
@click.argument("task_id", type=int)
@click.pass_context
def start_command(ctx: click.Context, task_id: int) -> None:
    """Start tracking a task, stopping whatever runs now."""
    with open_store(ctx) as store:
        record = Tracker(store).start(ctx.obj["user"], task_id)
    click.echo(f"Started task {task_id} at {format_timestamp(record.started_at)}")


@main.command("stop")
@click.argument("task_id", type=int)
@click.pass_context
def stop_command(ctx: click.Context, task_id: int) -> None:
    """Stop tracking a task."""
    with open_store(ctx) as store:
        record = Tracker(store).stop(ctx.obj["user"], task_id)

    if record is None:
        click.echo(f"No active session for task {task_id}")
        return
    duration = calculate_duration(record.started_at, record.ended_at)
    click.echo(f"Stopped task {task_id} after {format_duration(duration)}")


@main.command("toggle")
@click.argument("task_id", type=int)
@click.pass_context
def toggle_command(ctx: click.Context, task_id: int) -> None:
    """Start the task, or stop it if it is already running."""
    with open_store(ctx) as store:
        record = Tracker(store).toggle(ctx.obj["user"], task_id)

    if record is None:
        click.echo(f"No active session for task {task_id}")
    elif record.is_open:
        click.echo(f"Started task {task_id} at {format_timestamp(record.started_at)}")
    else:
        duration = calculate_duration(record.started_at, record.ended_at)
        click.echo(f"Stopped task {task_id} after {format_duration(duration)}")


@main.command("status")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status_command(ctx: click.Context, output_json: bool) -> None:
    """Show the running task and today's tracked time."""
    user = ctx.obj["user"]
    now = now_ms()
    with open_store(ctx) as store:
        active = Tracker(store).get_active_session(user)
        today_ms = totals.today_total(store, user, now=now)

    elapsed = (
        calculate_duration(active.record.started_at, None, now=now) if active is not None else 0
    )

    if output_json:
        output = {
            "active_task": active.task.model_dump(exclude={"user_id", "deleted"}) if active else None,
            "elapsed_ms": elapsed,
            "today_ms": today_ms,
        }
        click.echo(json.dumps(output, indent=2))
        return

    if active is None:
        click.echo("Not tracking")
    else:
        click.echo(f"Tracking: {active.task.name} (task {active.task.id}) for {format_duration(elapsed)}")
    click.echo(f"Today: {format_duration(today_ms)}")


@main.command("report")
@click.option(
    "--day",
    "day_date",
    type=str,
    default=None,
    help="Day to report (YYYY-MM-DD, default: today)",
)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def report_command(ctx: click.Context, day_date: str | None, output_json: bool) -> None:
    """Show time per project and task for one day."""
    if day_date is None:
        start, end = get_day_range()
    else:
        try:
            date = datetime.strptime(day_date, "%Y-%m-%d")
        except ValueError:
            click.echo(f"Invalid date format: {day_date}. Use YYYY-MM-DD.", err=True)
            sys.exit(1)
        start, end = get_day_range(date)

    user = ctx.obj["user"]
    now = now_ms()
    with open_store(ctx) as store:
        catalog = Catalog(store)
        by_task = totals.day_totals(store, user, start, end, now=now)
        tasks = {t.id: t for t in catalog.list_tasks(user)}
        projects = catalog.list_projects(user)

    by_project: list[dict[str, Any]] = []
    for project in projects:
        project_tasks = [
            {"task_id": task_id, "name": tasks[task_id].name, "total_ms": ms}
            for task_id, ms in by_task.items()
            if task_id in tasks and tasks[task_id].project_id == project.id
        ]
        if not project_tasks:
            continue
        project_tasks.sort(key=lambda t: -t["total_ms"])
        by_project.append({
            "project_id": project.id,
            "name": project.name,
            "color": project.color,
            "total_ms": sum(t["total_ms"] for t in project_tasks),
            "tasks": project_tasks,
        })
    by_project.sort(key=lambda p: -p["total_ms"])
    total_ms = sum(p["total_ms"] for p in by_project)
    day_label = datetime.fromtimestamp(start / 1000, tz=timezone.utc).astimezone()

    if output_json:
        output = {
            "date": day_label.strftime("%Y-%m-%d"),
            "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "total_ms": total_ms,
            "by_project": by_project,
        }
        click.echo(json.dumps(output, indent=2))
        return

    click.echo(f"Time Report: {day_label.strftime('%b %d, %Y')}")
    click.echo()
    if total_ms == 0:
        click.echo("No time tracked for this day.")
        return

    click.echo(f"Total: {format_duration(total_ms)}")
    click.echo()
    for project in by_project:
        click.echo(f"{project['name']:<32} {format_duration(project['total_ms'])}")
        for task in project["tasks"]:
            click.echo(f"  {task['name']:<30} {format_duration(task['total_ms'])}")


if __name__ == "__main__":
    main()
