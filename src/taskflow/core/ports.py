# src/taskflow/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the backend (Firebase, in-memory) swappable and makes testing easier.

Backends report failures by raising errors.BackendError; classification happens in the core.
"""

from collections.abc import Callable
from typing import Any, Protocol

from .errors import BackendError
from .models import Identity, NewTask, Task
from .observable import Unsubscribe

AuthStateHandler = Callable[[Identity | None], None]
SnapshotHandler = Callable[[list[Task]], None]
FeedErrorHandler = Callable[[BackendError], None]


class AuthBackend(Protocol):
    """Authentication provider: credential checks and the persisted session."""

    async def sign_up(self, email: str, password: str) -> Identity: ...
    async def sign_in(self, email: str, password: str) -> Identity: ...
    async def sign_in_anonymously(self) -> Identity: ...
    async def sign_out(self) -> None: ...

    def on_state_change(self, handler: AuthStateHandler) -> Unsubscribe: ...

    async def restore_session(self) -> None:
        """Report the persisted session (or None) to state-change handlers once at startup."""
        ...


class TaskBackend(Protocol):
    """
    Document store + live change feed for tasks.

    subscribe() delivers the complete current set of the owner's tasks (not a diff)
    every time it changes. The returned Unsubscribe must stop delivery synchronously.
    """

    def subscribe(
            self,
            owner_id: str,
            on_snapshot: SnapshotHandler,
            on_error: FeedErrorHandler,
    ) -> Unsubscribe: ...

    async def create(self, task: NewTask) -> str: ...
    async def update(self, task_id: str, patch: dict[str, Any]) -> None: ...
    async def delete(self, task_id: str) -> None: ...

    async def aclose(self) -> None: ...
