# src/taskflow/core/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .errors import ClassifiedError

# Owner email stored on tasks created by guest sessions.
ANONYMOUS_OWNER_EMAIL = "anonymous"


class SessionStatus(StrEnum):
    """
    Session gate status.

    UNKNOWN is only the initial state (persisted-session check pending);
    it is never re-entered.
    """

    UNKNOWN = "unknown"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True, slots=True)
class Identity:
    """Signed-in principal: a named account or an anonymous guest."""

    uid: str
    email: str | None = None
    is_anonymous: bool = False

    @property
    def display_name(self) -> str:
        if self.is_anonymous:
            return "Guest User"
        return self.email or self.uid

    @property
    def owner_email(self) -> str:
        return self.email or ANONYMOUS_OWNER_EMAIL


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    text: str
    owner_id: str
    completed: bool = False
    created_at: datetime | None = None
    owner_email: str | None = None

    def sort_key(self) -> datetime:
        """Creation time for ordering; undated tasks count as the oldest possible value."""
        ts = self.created_at
        if ts is None:
            return datetime.min.replace(tzinfo=UTC)
        if ts.tzinfo is None:
            return ts.replace(tzinfo=UTC)
        return ts


@dataclass(frozen=True, slots=True)
class NewTask:
    """Create payload. created_at=None asks the backend to stamp the creation time."""

    text: str
    owner_id: str
    owner_email: str
    completed: bool = False
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class SessionState:
    status: SessionStatus = SessionStatus.UNKNOWN
    identity: Identity | None = None
    error: ClassifiedError | None = None


@dataclass(frozen=True, slots=True)
class TaskListState:
    """Snapshot of the bound identity's tasks plus the last classified error."""

    identity: Identity | None = None
    tasks: tuple[Task, ...] = field(default_factory=tuple)
    error: ClassifiedError | None = None
