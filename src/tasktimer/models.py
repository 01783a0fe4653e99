"""Row and form models for Task Timer."""

from __future__ import annotations

from pydantic import BaseModel, Field

HEX_COLOR_PATTERN = r"^#([0-9A-Fa-f]{3}|[0-9A-Fa-f]{6})$"


class Project(BaseModel):
    id: int
    name: str
    description: str | None = None
    color: str = Field(pattern=HEX_COLOR_PATTERN)
    created_at: str
    user_id: str
    deleted: bool = False


class Activity(BaseModel):
    id: int
    name: str
    created_at: str
    user_id: str
    deleted: bool = False


class Task(BaseModel):
    id: int
    name: str
    project_id: int
    activity_id: int
    created_at: str
    user_id: str
    deleted: bool = False
    done: bool = False


class TaskRecord(BaseModel):
    """One tracked interval against a task.

    Timestamps are epoch milliseconds as stored. They are normalized when
    durations are computed, not here. A record without ended_at is open.
    """

    id: int
    task_id: int
    started_at: int | float | str
    ended_at: int | float | str | None = None
    user_id: str
    deleted: bool = False

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class ActiveSession(BaseModel):
    """The reconciled tracking state of an owner."""

    task: Task
    record: TaskRecord


class ProjectForm(BaseModel):
    """User input for creating or editing a project."""

    name: str = Field(min_length=2, max_length=50)
    description: str | None = None
    color: str = Field(default="#FFFFFF", pattern=HEX_COLOR_PATTERN)

    model_config = {"str_strip_whitespace": True}


class ActivityForm(BaseModel):
    """User input for creating or editing an activity."""

    name: str = Field(min_length=2, max_length=50)

    model_config = {"str_strip_whitespace": True}


class TaskForm(BaseModel):
    """User input for creating or editing a task."""

    name: str = Field(min_length=2, max_length=50)
    project_id: int
    activity_id: int

    model_config = {"str_strip_whitespace": True}
