"""Projects, activities and tasks, with soft-delete cascades."""

from __future__ import annotations

import logging

from tasktimer.db import TrackerStore
from tasktimer.errors import InvalidReferenceError, NotFoundError, has_owner, require_owner
from tasktimer.models import (
    Activity,
    ActivityForm,
    Project,
    ProjectForm,
    Task,
    TaskForm,
    TaskRecord,
)

logger = logging.getLogger(__name__)


class Catalog:
    """Owner-scoped management of projects, activities and tasks.

    Mutations raise UnauthenticatedError without an owner. Listings return
    nothing without an owner. Deletes are soft: rows are flagged and drop
    out of every read, their tracked time is kept.
    """

    def __init__(self, store: TrackerStore) -> None:
        self._store = store

    # Projects

    def add_project(self, owner: str | None, form: ProjectForm) -> Project:
        owner = require_owner(owner)
        project = self._store.insert_project(owner, form)
        logger.info("Added project %s (%s)", project.id, project.name)
        return project

    def edit_project(self, owner: str | None, project_id: int, form: ProjectForm) -> Project:
        owner = require_owner(owner)
        project = self._store.update_project(owner, project_id, form)
        if project is None:
            raise NotFoundError("project", project_id)
        return project

    def delete_project(self, owner: str | None, project_id: int) -> None:
        """Soft-delete a project with its tasks and their records."""
        owner = require_owner(owner)
        if not self._store.soft_delete_project(owner, project_id):
            raise NotFoundError("project", project_id)

    def get_project(self, owner: str | None, project_id: int) -> Project:
        owner = require_owner(owner)
        project = self._store.get_project(owner, project_id)
        if project is None:
            raise NotFoundError("project", project_id)
        return project

    def list_projects(self, owner: str | None) -> list[Project]:
        if not has_owner(owner):
            return []
        return self._store.list_projects(owner)

    # Activities

    def add_activity(self, owner: str | None, form: ActivityForm) -> Activity:
        owner = require_owner(owner)
        activity = self._store.insert_activity(owner, form)
        logger.info("Added activity %s (%s)", activity.id, activity.name)
        return activity

    def edit_activity(self, owner: str | None, activity_id: int, form: ActivityForm) -> Activity:
        owner = require_owner(owner)
        activity = self._store.update_activity(owner, activity_id, form)
        if activity is None:
            raise NotFoundError("activity", activity_id)
        return activity

    def delete_activity(self, owner: str | None, activity_id: int) -> None:
        """Soft-delete an activity with its tasks and their records."""
        owner = require_owner(owner)
        if not self._store.soft_delete_activity(owner, activity_id):
            raise NotFoundError("activity", activity_id)

    def get_activity(self, owner: str | None, activity_id: int) -> Activity:
        owner = require_owner(owner)
        activity = self._store.get_activity(owner, activity_id)
        if activity is None:
            raise NotFoundError("activity", activity_id)
        return activity

    def list_activities(self, owner: str | None) -> list[Activity]:
        if not has_owner(owner):
            return []
        return self._store.list_activities(owner)

    # Tasks

    def _check_references(self, owner: str, form: TaskForm) -> None:
        if self._store.get_project(owner, form.project_id) is None:
            raise InvalidReferenceError("project", form.project_id)
        if self._store.get_activity(owner, form.activity_id) is None:
            raise InvalidReferenceError("activity", form.activity_id)

    def add_task(self, owner: str | None, form: TaskForm) -> Task:
        """Create a task under an owned, live project and activity.

        Raises:
            UnauthenticatedError: If owner is missing.
            InvalidReferenceError: If the project or activity is unusable.
        """
        owner = require_owner(owner)
        self._check_references(owner, form)
        task = self._store.insert_task(owner, form)
        logger.info("Added task %s (%s)", task.id, task.name)
        return task

    def edit_task(self, owner: str | None, task_id: int, form: TaskForm) -> Task:
        """Rename a task or move it to another project or activity.

        Raises:
            UnauthenticatedError: If owner is missing.
            NotFoundError: If the task does not exist for the owner.
            InvalidReferenceError: If the new project or activity is unusable.
        """
        owner = require_owner(owner)
        if self._store.get_task(owner, task_id) is None:
            raise NotFoundError("task", task_id)
        self._check_references(owner, form)
        task = self._store.update_task(owner, task_id, form)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def mark_task_done(self, owner: str | None, task_id: int, done: bool = True) -> Task:
        owner = require_owner(owner)
        task = self._store.set_task_done(owner, task_id, done)
        if task is None:
            raise NotFoundError("task", task_id)
        logger.info("Task %s marked %s", task_id, "done" if done else "not done")
        return task

    def delete_task(self, owner: str | None, task_id: int) -> None:
        """Soft-delete a task and its records."""
        owner = require_owner(owner)
        if not self._store.soft_delete_task(owner, task_id):
            raise NotFoundError("task", task_id)

    def get_task(self, owner: str | None, task_id: int) -> Task:
        owner = require_owner(owner)
        task = self._store.get_task(owner, task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def list_tasks(
        self,
        owner: str | None,
        *,
        project_id: int | None = None,
        include_done: bool = True,
    ) -> list[Task]:
        if not has_owner(owner):
            return []
        return self._store.list_tasks(owner, project_id=project_id, include_done=include_done)

    def get_task_records(self, owner: str | None, task_id: int | None = None) -> list[TaskRecord]:
        """Records of one task, or of all tasks, most recently started first."""
        if not has_owner(owner):
            return []
        return self._store.get_records(owner, task_id=task_id)
