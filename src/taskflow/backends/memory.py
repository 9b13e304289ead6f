# src/taskflow/backends/memory.py

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from ..core.errors import BackendError
from ..core.models import Identity, NewTask, Task
from ..core.observable import Unsubscribe
from ..core.ports import AuthStateHandler, FeedErrorHandler, SnapshotHandler

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class _Account:
    uid: str
    email: str | None
    password: str | None

    @property
    def identity(self) -> Identity:
        return Identity(uid=self.uid, email=self.email, is_anonymous=self.email is None)


@dataclass(slots=True)
class _Subscription:
    owner_id: str
    on_snapshot: SnapshotHandler
    on_error: FeedErrorHandler
    active: bool = True


class InMemoryBackend:
    """
    In-process backend implementing both AuthBackend and TaskBackend.

    Used when no Firebase project is configured (offline demo) and as a test double.
    Behaves like the hosted backend where the core can tell the difference:
    - error codes match the Firebase REST codes
    - creation timestamps are assigned here, not by the caller
    - a signed-in user may only touch its own tasks (PERMISSION_DENIED otherwise)
    - the change feed delivers full per-owner sets, once on subscribe and after every write

    Feed delivery is synchronous (inside the mutating call).
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        email_enabled: bool = True,
        anonymous_enabled: bool = True,
        min_password_length: int = 6,
    ) -> None:
        self.email_enabled = email_enabled
        self.anonymous_enabled = anonymous_enabled
        self.deny_reads = False
        self._clock = clock or _utcnow
        self._min_password_length = min_password_length

        self._accounts: dict[str, _Account] = {}  # uid -> account
        self._uids_by_email: dict[str, str] = {}
        self._tasks: dict[str, Task] = {}
        self._current: _Account | None = None

        self._auth_handlers: list[AuthStateHandler] = []
        self._subscriptions: list[_Subscription] = []
        self._failures: dict[str, str] = {}
        self._ids = itertools.count(1)

        self.calls: list[tuple[str, Any]] = []

    # ---- failure injection ----

    def fail_next(self, operation: str, code: str) -> None:
        """Make the next call of `operation` (e.g. "create", "sign_in") raise BackendError(code)."""
        self._failures[operation] = code

    def _maybe_fail(self, operation: str) -> None:
        code = self._failures.pop(operation, None)
        if code is not None:
            raise BackendError(code)

    # ---- AuthBackend ----

    async def sign_up(self, email: str, password: str) -> Identity:
        self.calls.append(("sign_up", email))
        self._maybe_fail("sign_up")
        if not self.email_enabled:
            raise BackendError("CONFIGURATION_NOT_FOUND")
        key = email.strip().lower()
        if "@" not in key:
            raise BackendError("INVALID_EMAIL")
        if key in self._uids_by_email:
            raise BackendError("EMAIL_EXISTS")
        if len(password) < self._min_password_length:
            raise BackendError(
                "WEAK_PASSWORD",
                f"Password should be at least {self._min_password_length} characters",
            )

        account = _Account(uid=self._new_id("user"), email=email.strip(), password=password)
        self._accounts[account.uid] = account
        self._uids_by_email[key] = account.uid
        logger.info("Account created uid=%s", account.uid)
        return self._set_current(account)

    async def sign_in(self, email: str, password: str) -> Identity:
        self.calls.append(("sign_in", email))
        self._maybe_fail("sign_in")
        if not self.email_enabled:
            raise BackendError("CONFIGURATION_NOT_FOUND")
        uid = self._uids_by_email.get(email.strip().lower())
        if uid is None:
            raise BackendError("EMAIL_NOT_FOUND")
        account = self._accounts[uid]
        if account.password != password:
            raise BackendError("INVALID_PASSWORD")
        return self._set_current(account)

    async def sign_in_anonymously(self) -> Identity:
        self.calls.append(("sign_in_anonymously", None))
        self._maybe_fail("sign_in_anonymously")
        if not self.anonymous_enabled:
            raise BackendError("ADMIN_ONLY_OPERATION")
        account = _Account(uid=self._new_id("anon"), email=None, password=None)
        self._accounts[account.uid] = account
        return self._set_current(account)

    async def sign_out(self) -> None:
        self.calls.append(("sign_out", None))
        self._maybe_fail("sign_out")
        self._set_current(None)

    def on_state_change(self, handler: AuthStateHandler) -> Unsubscribe:
        self._auth_handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._auth_handlers:
                self._auth_handlers.remove(handler)

        return _unsubscribe

    async def restore_session(self) -> None:
        self._notify_auth(self._current.identity if self._current else None)

    def expire_session(self) -> None:
        """Simulate a server-side invalidation of the current session."""
        if self._current is not None:
            logger.info("Session expired uid=%s", self._current.uid)
        self._set_current(None)

    @property
    def current_identity(self) -> Identity | None:
        return self._current.identity if self._current else None

    # ---- TaskBackend ----

    def subscribe(
            self,
            owner_id: str,
            on_snapshot: SnapshotHandler,
            on_error: FeedErrorHandler,
    ) -> Unsubscribe:
        self.calls.append(("subscribe", owner_id))
        sub = _Subscription(owner_id=owner_id, on_snapshot=on_snapshot, on_error=on_error)
        self._subscriptions.append(sub)

        def _unsubscribe() -> None:
            sub.active = False
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)
            self.calls.append(("unsubscribe", owner_id))

        self._deliver(sub)
        return _unsubscribe

    async def create(self, task: NewTask) -> str:
        self.calls.append(("create", task))
        self._maybe_fail("create")
        self._check_owner(task.owner_id)

        task_id = self._new_id("task")
        self._tasks[task_id] = Task(
            id=task_id,
            text=task.text,
            owner_id=task.owner_id,
            completed=task.completed,
            created_at=task.created_at or self._clock(),
            owner_email=task.owner_email,
        )
        self._broadcast(task.owner_id)
        return task_id

    async def update(self, task_id: str, patch: dict[str, Any]) -> None:
        self.calls.append(("update", (task_id, dict(patch))))
        self._maybe_fail("update")
        task = self._tasks.get(task_id)
        if task is None:
            raise BackendError("NOT_FOUND", f"No document to update: {task_id}")
        self._check_owner(task.owner_id)

        changes: dict[str, Any] = {}
        if "completed" in patch:
            changes["completed"] = bool(patch["completed"])
        if "text" in patch:
            changes["text"] = str(patch["text"])
        self._tasks[task_id] = replace(task, **changes)
        self._broadcast(task.owner_id)

    async def delete(self, task_id: str) -> None:
        self.calls.append(("delete", task_id))
        self._maybe_fail("delete")
        task = self._tasks.get(task_id)
        if task is None:
            # Firestore deletes are idempotent.
            return
        self._check_owner(task.owner_id)
        del self._tasks[task_id]
        self._broadcast(task.owner_id)

    async def aclose(self) -> None:
        for sub in list(self._subscriptions):
            sub.active = False
        self._subscriptions.clear()

    def fail_feed(self, owner_id: str, code: str = "PERMISSION_DENIED") -> None:
        """Push a subscription-level error to every live feed of `owner_id`."""
        err = BackendError(code)
        for sub in list(self._subscriptions):
            if sub.active and sub.owner_id == owner_id:
                sub.on_error(err)

    def tasks_of(self, owner_id: str) -> list[Task]:
        return [t for t in self._tasks.values() if t.owner_id == owner_id]

    # ---- internals ----

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _set_current(self, account: _Account | None) -> Identity | None:
        self._current = account
        identity = account.identity if account else None
        self._notify_auth(identity)
        return identity

    def _notify_auth(self, identity: Identity | None) -> None:
        for handler in list(self._auth_handlers):
            handler(identity)

    def _check_owner(self, owner_id: str) -> None:
        if self._current is None or self._current.uid != owner_id:
            raise BackendError("PERMISSION_DENIED", "Missing or insufficient permissions.")

    def _deliver(self, sub: _Subscription) -> None:
        if not sub.active:
            return
        if self.deny_reads or self._current is None or self._current.uid != sub.owner_id:
            sub.on_error(BackendError("PERMISSION_DENIED", "Missing or insufficient permissions."))
            return
        sub.on_snapshot(self.tasks_of(sub.owner_id))

    def _broadcast(self, owner_id: str) -> None:
        for sub in list(self._subscriptions):
            if sub.owner_id == owner_id:
                self._deliver(sub)
