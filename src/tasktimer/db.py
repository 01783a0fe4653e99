"""SQLite store for Task Timer."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from tasktimer.errors import PersistenceError
from tasktimer.models import (
    Activity,
    ActivityForm,
    Project,
    ProjectForm,
    Task,
    TaskForm,
    TaskRecord,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT,
    color TEXT NOT NULL DEFAULT '#FFFFFF',
    created_at TEXT NOT NULL,
    user_id TEXT NOT NULL,
    deleted INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS activities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL,
    user_id TEXT NOT NULL,
    deleted INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    project_id INTEGER NOT NULL,
    activity_id INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    user_id TEXT NOT NULL,
    deleted INTEGER NOT NULL DEFAULT 0,
    done INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
    FOREIGN KEY (activity_id) REFERENCES activities(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS task_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id INTEGER NOT NULL,
    started_at INTEGER NOT NULL,
    ended_at INTEGER,
    user_id TEXT NOT NULL,
    deleted INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_projects_user ON projects(user_id, deleted);
CREATE INDEX IF NOT EXISTS idx_activities_user ON activities(user_id, deleted);
CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks(user_id, deleted);
CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id);
CREATE INDEX IF NOT EXISTS idx_tasks_activity ON tasks(activity_id);
CREATE INDEX IF NOT EXISTS idx_records_task ON task_records(task_id);
CREATE INDEX IF NOT EXISTS idx_records_open ON task_records(user_id, ended_at);
"""

# Stay under SQLite's 999-parameter limit
BATCH_SIZE = 500

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class TrackerStore:
    """SQLite-backed store for projects, activities, tasks and task records.

    Every query is scoped by owner. Soft-deleted rows are filtered out of all
    reads. Not thread-safe. Each thread should have its own TrackerStore
    instance.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def __enter__(self) -> "TrackerStore":
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    @classmethod
    def open(cls, path: Path) -> TrackerStore:
        """Open or create a database at the given path."""
        conn = sqlite3.connect(path)
        conn.row_factory = sqlite3.Row
        return cls(conn)

    @classmethod
    def open_in_memory(cls) -> TrackerStore:
        """Create an in-memory database for testing."""
        conn = sqlite3.connect(":memory:")
        conn.row_factory = sqlite3.Row
        return cls(conn)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes into one transaction.

        Commits on success and rolls back on any error. Methods called inside
        must pass commit=False.
        """
        try:
            with self._conn:
                yield
        except sqlite3.Error as e:
            raise PersistenceError(f"Transaction failed: {e}") from e

    def _execute(self, query: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(query, params)
        except sqlite3.Error as e:
            raise PersistenceError(f"Database error: {e}") from e

    def _fetch_all(self, query: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        # fetchall steps RETURNING statements to completion before any commit
        cursor = self._execute(query, params)
        try:
            return [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise PersistenceError(f"Database error: {e}") from e

    def _fetch_one(self, query: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        rows = self._fetch_all(query, params)
        return rows[0] if rows else None

    def _commit(self, commit: bool) -> None:
        if not commit:
            return
        try:
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Commit failed: {e}") from e

    # Projects

    def insert_project(self, owner: str, form: ProjectForm, *, commit: bool = True) -> Project:
        """Insert a project and return the stored row."""
        row = self._fetch_one(
            """
            INSERT INTO projects (name, description, color, created_at, user_id)
            VALUES (?, ?, ?, ?, ?)
            RETURNING *
            """,
            (form.name, form.description, form.color, _utc_now_iso(), owner),
        )
        self._commit(commit)
        return Project.model_validate(row)

    def update_project(
        self, owner: str, project_id: int, form: ProjectForm, *, commit: bool = True
    ) -> Project | None:
        """Update a non-deleted project. Returns None if no row matched."""
        row = self._fetch_one(
            """
            UPDATE projects SET name = ?, description = ?, color = ?
            WHERE id = ? AND user_id = ? AND deleted = 0
            RETURNING *
            """,
            (form.name, form.description, form.color, project_id, owner),
        )
        self._commit(commit)
        return Project.model_validate(row) if row else None

    def get_project(self, owner: str, project_id: int) -> Project | None:
        row = self._fetch_one(
            "SELECT * FROM projects WHERE id = ? AND user_id = ? AND deleted = 0",
            (project_id, owner),
        )
        return Project.model_validate(row) if row else None

    def list_projects(self, owner: str) -> list[Project]:
        """Get non-deleted projects, newest first."""
        rows = self._fetch_all(
            """
            SELECT * FROM projects WHERE user_id = ? AND deleted = 0
            ORDER BY created_at DESC, id DESC
            """,
            (owner,),
        )
        return [Project.model_validate(row) for row in rows]

    # Activities

    def insert_activity(self, owner: str, form: ActivityForm, *, commit: bool = True) -> Activity:
        """Insert an activity and return the stored row."""
        row = self._fetch_one(
            """
            INSERT INTO activities (name, created_at, user_id)
            VALUES (?, ?, ?)
            RETURNING *
            """,
            (form.name, _utc_now_iso(), owner),
        )
        self._commit(commit)
        return Activity.model_validate(row)

    def update_activity(
        self, owner: str, activity_id: int, form: ActivityForm, *, commit: bool = True
    ) -> Activity | None:
        """Update a non-deleted activity. Returns None if no row matched."""
        row = self._fetch_one(
            """
            UPDATE activities SET name = ?
            WHERE id = ? AND user_id = ? AND deleted = 0
            RETURNING *
            """,
            (form.name, activity_id, owner),
        )
        self._commit(commit)
        return Activity.model_validate(row) if row else None

    def get_activity(self, owner: str, activity_id: int) -> Activity | None:
        row = self._fetch_one(
            "SELECT * FROM activities WHERE id = ? AND user_id = ? AND deleted = 0",
            (activity_id, owner),
        )
        return Activity.model_validate(row) if row else None

    def list_activities(self, owner: str) -> list[Activity]:
        """Get non-deleted activities, newest first."""
        rows = self._fetch_all(
            """
            SELECT * FROM activities WHERE user_id = ? AND deleted = 0
            ORDER BY created_at DESC, id DESC
            """,
            (owner,),
        )
        return [Activity.model_validate(row) for row in rows]

    # Tasks

    def insert_task(self, owner: str, form: TaskForm, *, commit: bool = True) -> Task:
        """Insert a task and return the stored row.

        Does not check that the project and activity belong to the owner.
        Callers validate references first.
        """
        row = self._fetch_one(
            """
            INSERT INTO tasks (name, project_id, activity_id, created_at, user_id)
            VALUES (?, ?, ?, ?, ?)
            RETURNING *
            """,
            (form.name, form.project_id, form.activity_id, _utc_now_iso(), owner),
        )
        self._commit(commit)
        return Task.model_validate(row)

    def update_task(
        self, owner: str, task_id: int, form: TaskForm, *, commit: bool = True
    ) -> Task | None:
        """Update a non-deleted task. Returns None if no row matched."""
        row = self._fetch_one(
            """
            UPDATE tasks SET name = ?, project_id = ?, activity_id = ?
            WHERE id = ? AND user_id = ? AND deleted = 0
            RETURNING *
            """,
            (form.name, form.project_id, form.activity_id, task_id, owner),
        )
        self._commit(commit)
        return Task.model_validate(row) if row else None

    def set_task_done(
        self, owner: str, task_id: int, done: bool, *, commit: bool = True
    ) -> Task | None:
        """Set the done flag on a non-deleted task. Returns None if no row matched."""
        row = self._fetch_one(
            """
            UPDATE tasks SET done = ?
            WHERE id = ? AND user_id = ? AND deleted = 0
            RETURNING *
            """,
            (int(done), task_id, owner),
        )
        self._commit(commit)
        return Task.model_validate(row) if row else None

    def get_task(self, owner: str, task_id: int) -> Task | None:
        row = self._fetch_one(
            "SELECT * FROM tasks WHERE id = ? AND user_id = ? AND deleted = 0",
            (task_id, owner),
        )
        return Task.model_validate(row) if row else None

    def list_tasks(
        self,
        owner: str,
        *,
        project_id: int | None = None,
        include_done: bool = True,
    ) -> list[Task]:
        """Get non-deleted tasks, newest first.

        Args:
            owner: The owning user.
            project_id: Only tasks of this project.
            include_done: Whether to include tasks marked done.
        """
        query = "SELECT * FROM tasks WHERE user_id = ? AND deleted = 0"
        params: list[str | int] = [owner]

        if project_id is not None:
            query += " AND project_id = ?"
            params.append(project_id)
        if not include_done:
            query += " AND done = 0"

        query += " ORDER BY created_at DESC, id DESC"

        return [Task.model_validate(row) for row in self._fetch_all(query, params)]

    # Task records

    def insert_record(
        self,
        owner: str,
        task_id: int,
        started_at: int,
        ended_at: int | None = None,
        *,
        commit: bool = True,
    ) -> TaskRecord:
        """Insert a task record and return the stored row."""
        row = self._fetch_one(
            """
            INSERT INTO task_records (task_id, started_at, ended_at, user_id)
            VALUES (?, ?, ?, ?)
            RETURNING *
            """,
            (task_id, started_at, ended_at, owner),
        )
        self._commit(commit)
        return TaskRecord.model_validate(row)

    def get_open_records(self, owner: str, *, task_id: int | None = None) -> list[TaskRecord]:
        """Get open (not ended) records, most recently started first.

        Args:
            owner: The owning user.
            task_id: Only records for this task.
        """
        query = "SELECT * FROM task_records WHERE user_id = ? AND ended_at IS NULL AND deleted = 0"
        params: list[str | int] = [owner]
        if task_id is not None:
            query += " AND task_id = ?"
            params.append(task_id)
        query += " ORDER BY started_at DESC, id DESC"
        return [TaskRecord.model_validate(row) for row in self._fetch_all(query, params)]

    def close_records(
        self, record_ids: list[int], ended_at: int, *, commit: bool = True
    ) -> list[TaskRecord]:
        """Set ended_at on the given open records. Returns the closed rows."""
        closed: list[TaskRecord] = []
        for i in range(0, len(record_ids), BATCH_SIZE):
            batch = record_ids[i : i + BATCH_SIZE]
            placeholders = ",".join("?" * len(batch))
            rows = self._fetch_all(
                f"""
                UPDATE task_records SET ended_at = ?
                WHERE id IN ({placeholders}) AND ended_at IS NULL
                RETURNING *
                """,
                [ended_at] + batch,
            )
            closed.extend(TaskRecord.model_validate(row) for row in rows)
        self._commit(commit)
        return closed

    def close_open_records(
        self, owner: str, ended_at: int, *, commit: bool = True
    ) -> list[TaskRecord]:
        """Close every open record of the owner, whatever the task."""
        rows = self._fetch_all(
            """
            UPDATE task_records SET ended_at = ?
            WHERE user_id = ? AND ended_at IS NULL AND deleted = 0
            RETURNING *
            """,
            (ended_at, owner),
        )
        self._commit(commit)
        return [TaskRecord.model_validate(row) for row in rows]

    def get_records(self, owner: str, *, task_id: int | None = None) -> list[TaskRecord]:
        """Get non-deleted records, most recently started first."""
        query = "SELECT * FROM task_records WHERE user_id = ? AND deleted = 0"
        params: list[str | int] = [owner]
        if task_id is not None:
            query += " AND task_id = ?"
            params.append(task_id)
        query += " ORDER BY started_at DESC, id DESC"
        return [TaskRecord.model_validate(row) for row in self._fetch_all(query, params)]

    def get_records_for_tasks(self, owner: str, task_ids: list[int]) -> list[TaskRecord]:
        """Get non-deleted records for a set of tasks.

        Uses batching (500 IDs per query) to stay under SQLite's 999-parameter limit.
        """
        records: list[TaskRecord] = []
        unique_ids = list(dict.fromkeys(task_ids))
        for i in range(0, len(unique_ids), BATCH_SIZE):
            batch = unique_ids[i : i + BATCH_SIZE]
            placeholders = ",".join("?" * len(batch))
            rows = self._fetch_all(
                f"""
                SELECT * FROM task_records
                WHERE user_id = ? AND deleted = 0 AND task_id IN ({placeholders})
                """,
                [owner] + batch,
            )
            records.extend(TaskRecord.model_validate(row) for row in rows)
        return records

    # Soft delete

    def soft_delete_project(self, owner: str, project_id: int) -> bool:
        """Mark a project, its tasks and their records deleted.

        Returns False if the project was not found.
        """
        with self.transaction():
            cursor = self._execute(
                "UPDATE projects SET deleted = 1 WHERE id = ? AND user_id = ? AND deleted = 0",
                (project_id, owner),
            )
            if cursor.rowcount == 0:
                return False
            records, tasks = self._cascade_tasks(owner, "project_id", project_id)
        logger.info(
            "Deleted project %s with %d tasks and %d records", project_id, tasks, records
        )
        return True

    def soft_delete_activity(self, owner: str, activity_id: int) -> bool:
        """Mark an activity, its tasks and their records deleted.

        Returns False if the activity was not found.
        """
        with self.transaction():
            cursor = self._execute(
                "UPDATE activities SET deleted = 1 WHERE id = ? AND user_id = ? AND deleted = 0",
                (activity_id, owner),
            )
            if cursor.rowcount == 0:
                return False
            records, tasks = self._cascade_tasks(owner, "activity_id", activity_id)
        logger.info(
            "Deleted activity %s with %d tasks and %d records", activity_id, tasks, records
        )
        return True

    def soft_delete_task(self, owner: str, task_id: int) -> bool:
        """Mark a task and its records deleted.

        Returns False if the task was not found.
        """
        with self.transaction():
            records, tasks = self._cascade_tasks(owner, "id", task_id)
        if tasks == 0:
            return False
        logger.info("Deleted task %s with %d records", task_id, records)
        return True

    def _cascade_tasks(self, owner: str, column: str, value: int) -> tuple[int, int]:
        """Soft-delete the matching tasks and their records inside a transaction.

        Returns (records deleted, tasks deleted).
        """
        # Records first: the subquery only sees tasks not yet deleted
        records = self._execute(
            f"""
            UPDATE task_records SET deleted = 1
            WHERE deleted = 0 AND task_id IN (
                SELECT id FROM tasks WHERE {column} = ? AND user_id = ? AND deleted = 0
            )
            """,
            (value, owner),
        )
        tasks = self._execute(
            f"UPDATE tasks SET deleted = 1 WHERE {column} = ? AND user_id = ? AND deleted = 0",
            (value, owner),
        )
        return records.rowcount, tasks.rowcount
