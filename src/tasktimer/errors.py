"""Error kinds raised by the Task Timer service layer."""

from __future__ import annotations


class TrackerError(Exception):
    """Base exception for Task Timer errors."""

    pass


class UnauthenticatedError(TrackerError):
    """Raised when an operation needs an owner and none was supplied."""

    def __init__(self) -> None:
        super().__init__("No user set. Pass --user or set TASKTIMER_USER.")


class NotFoundError(TrackerError):
    """Raised when a task, project or activity does not exist for the owner.

    Soft-deleted rows and rows owned by someone else count as missing.
    """

    def __init__(self, kind: str, entity_id: int) -> None:
        super().__init__(f"{kind.capitalize()} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class InvalidReferenceError(TrackerError):
    """Raised when a task points at a project or activity the owner can't use."""

    def __init__(self, kind: str, entity_id: int) -> None:
        super().__init__(f"Invalid {kind} {entity_id}: not found or deleted")
        self.kind = kind
        self.entity_id = entity_id


class PersistenceError(TrackerError):
    """Raised when the database rejects an operation.

    The underlying sqlite3 error is available as __cause__.
    """

    pass


def has_owner(owner: str | None) -> bool:
    """True if owner names a user. Blank strings count as missing."""
    return owner is not None and bool(owner.strip())


def require_owner(owner: str | None) -> str:
    """Return the owner, or raise UnauthenticatedError if it is missing."""
    if not has_owner(owner):
        raise UnauthenticatedError()
    return owner
