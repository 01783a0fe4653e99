"""Tracking session state machine for Task Timer.

An owner is either idle (no open record) or tracking exactly one task (one
open record). Starting a task closes whatever was open before. Reads go
through reconciliation, which repairs owners left with several open records
or with an open record whose task has since disappeared.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from tasktimer.db import TrackerStore
from tasktimer.errors import NotFoundError, has_owner, require_owner
from tasktimer.models import ActiveSession, Task, TaskRecord
from tasktimer.timeutil import now_ms

logger = logging.getLogger(__name__)


class Tracker:
    """Starts, stops and reconciles tracking sessions.

    Args:
        store: The backing store.
        clock: Returns the current time in epoch milliseconds.
    """

    def __init__(self, store: TrackerStore, clock: Callable[[], int] | None = None) -> None:
        self._store = store
        self._clock = clock or now_ms

    def start(self, owner: str | None, task_id: int) -> TaskRecord:
        """Start tracking a task, closing any session the owner has open.

        Raises:
            UnauthenticatedError: If owner is missing.
            NotFoundError: If the task does not exist for the owner.
        """
        owner = require_owner(owner)
        if self._store.get_task(owner, task_id) is None:
            raise NotFoundError("task", task_id)

        now = self._clock()
        with self._store.transaction():
            closed = self._store.close_open_records(owner, now, commit=False)
            record = self._store.insert_record(owner, task_id, now, commit=False)

        for previous in closed:
            logger.info("Closed record %s for task %s", previous.id, previous.task_id)
        logger.info("Started tracking task %s (record %s)", task_id, record.id)
        return record

    def stop(self, owner: str | None, task_id: int) -> TaskRecord | None:
        """Stop tracking a task.

        Returns:
            The closed record, or None if the task had no open session.

        Raises:
            UnauthenticatedError: If owner is missing.
            NotFoundError: If there is nothing to stop and the task does not
                exist for the owner.
        """
        owner = require_owner(owner)
        open_records = self._store.get_open_records(owner, task_id=task_id)
        if not open_records:
            if self._store.get_task(owner, task_id) is None:
                raise NotFoundError("task", task_id)
            logger.debug("Task %s has no open session", task_id)
            return None

        # Several open rows for one task is a legacy anomaly; stop the newest
        latest = open_records[0]
        closed = self._store.close_records([latest.id], self._clock())
        if not closed:
            # Closed concurrently between the read and the write
            return None
        logger.info("Stopped tracking task %s (record %s)", task_id, latest.id)
        return closed[0]

    def toggle(self, owner: str | None, task_id: int) -> TaskRecord | None:
        """Stop the task if it is the active one, otherwise start it.

        Returns:
            The closed record when stopping, the new record when starting.
        """
        active = self.get_active_session(owner)
        if active is not None and active.task.id == task_id:
            return self.stop(owner, task_id)
        return self.start(owner, task_id)

    def get_active_session(self, owner: str | None) -> ActiveSession | None:
        """Reconcile and return the owner's single open session.

        Extra open records are closed, keeping the most recently started one.
        An open record whose task is gone is closed too. Returns None when
        the owner is idle or missing.
        """
        if not has_owner(owner):
            return None

        open_records = self._store.get_open_records(owner)
        if not open_records:
            return None

        survivor, extras = open_records[0], open_records[1:]
        if extras:
            logger.warning(
                "Owner %s had %d open records; keeping record %s",
                owner,
                len(open_records),
                survivor.id,
            )
            self._store.close_records([r.id for r in extras], self._clock())

        task = self._store.get_task(owner, survivor.task_id)
        if task is None:
            logger.warning(
                "Closing orphaned record %s: task %s no longer exists",
                survivor.id,
                survivor.task_id,
            )
            self._store.close_records([survivor.id], self._clock())
            return None

        return ActiveSession(task=task, record=survivor)

    def get_active_task(self, owner: str | None) -> Task | None:
        """Return the task being tracked, or None when idle."""
        active = self.get_active_session(owner)
        return active.task if active is not None else None
