# src/taskflow/tasks/task_list.py

"""
Task list store.

A pure projection of the latest backend snapshot for the bound identity:
- the backend change feed delivers the full task set, which replaces the list wholesale
- add/toggle/remove only issue backend requests; the next snapshot shows their effect
- subscription errors are recorded but the last snapshot stays visible

Ordering is done here, newest first. The backend query only filters by owner: ordering
server-side as well would need a composite (owner, createdAt) index on the backend.
Re-check that before moving the sort into the query.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from ..core.errors import BackendError, ClassifiedError, classify, validation_error
from ..core.models import Identity, NewTask, SessionState, Task, TaskListState
from ..core.observable import Observable, Observer, Unsubscribe
from ..core.ports import TaskBackend
from ..core.session import SessionGate

logger = logging.getLogger(__name__)


def sort_snapshot(tasks: Iterable[Task]) -> tuple[Task, ...]:
    """Newest first; undated tasks sort as the oldest. Stable for equal timestamps."""
    return tuple(sorted(tasks, key=Task.sort_key, reverse=True))


class TaskListStore:
    def __init__(self, backend: TaskBackend) -> None:
        self._backend = backend
        self._state: Observable[TaskListState] = Observable(TaskListState())
        self._unsubscribe: Unsubscribe | None = None
        self._session_unsubscribe: Unsubscribe | None = None
        # Bumped on every (re)bind; feed callbacks from older bindings are dropped.
        self._generation = 0

    # ---- read side ----

    @property
    def state(self) -> TaskListState:
        return self._state.value

    @property
    def identity(self) -> Identity | None:
        return self._state.value.identity

    @property
    def tasks(self) -> tuple[Task, ...]:
        return self._state.value.tasks

    @property
    def error(self) -> ClassifiedError | None:
        return self._state.value.error

    def subscribe(self, observer: Observer[TaskListState]) -> Unsubscribe:
        return self._state.subscribe(observer)

    def find(self, task_id: str) -> Task | None:
        for task in self._state.value.tasks:
            if task.id == task_id:
                return task
        return None

    # ---- binding ----

    def attach(self, gate: SessionGate) -> None:
        """Follow a session gate: rebind whenever its identity changes."""
        self.detach()
        self._session_unsubscribe = gate.subscribe(self._on_session)
        self.bind(gate.identity)

    def detach(self) -> None:
        if self._session_unsubscribe is not None:
            self._session_unsubscribe()
            self._session_unsubscribe = None

    def bind(self, identity: Identity | None) -> None:
        """
        Release the current subscription, then subscribe for `identity` (None = unbind).
        Nothing from the previous binding is observable once this returns.
        """
        if identity == self.identity and (identity is None or self._unsubscribe is not None):
            return

        self._release()
        self._generation += 1
        generation = self._generation

        self._state.publish(TaskListState(identity=identity))
        if identity is None:
            logger.debug("Task list unbound")
            return

        try:
            self._unsubscribe = self._backend.subscribe(
                identity.uid,
                lambda tasks: self._on_snapshot(generation, tasks),
                lambda err: self._on_feed_error(generation, err),
            )
        except Exception as e:
            if not isinstance(e, BackendError):
                logger.exception("Task feed subscribe crashed uid=%s", identity.uid)
            self._record_error(classify(e, context="Database error"))
            return

        logger.info("Task list bound uid=%s", identity.uid)

    def close(self) -> None:
        self.detach()
        self._release()
        self._generation += 1

    # ---- operations ----

    async def add(self, text: str) -> ClassifiedError | None:
        text = (text or "").strip()
        if not text:
            return self._record_error(validation_error("Task text cannot be empty."))
        identity = self.identity
        if identity is None:
            return self._record_error(validation_error("Sign in to add tasks."))

        new_task = NewTask(
            text=text,
            owner_id=identity.uid,
            owner_email=identity.owner_email,
            completed=False,
        )
        try:
            task_id = await self._backend.create(new_task)
        except Exception as e:
            return self._mutation_failed(e, "Failed to add task")

        logger.info("Task created id=%s uid=%s", task_id, identity.uid)
        self._clear_error()
        return None

    async def toggle(self, task_id: str, completed: bool | None = None) -> ClassifiedError | None:
        """Flip `completed`. Without an explicit current value it is read from the snapshot."""
        if self.identity is None:
            return self._record_error(validation_error("Sign in to update tasks."))
        if completed is None:
            task = self.find(task_id)
            if task is None:
                return self._record_error(validation_error(f"No task with id {task_id}."))
            completed = task.completed

        patch: dict[str, Any] = {"completed": not completed}
        try:
            await self._backend.update(task_id, patch)
        except Exception as e:
            return self._mutation_failed(e, "Failed to update task")

        logger.info("Task toggled id=%s completed=%s", task_id, patch["completed"])
        self._clear_error()
        return None

    async def remove(self, task_id: str) -> ClassifiedError | None:
        if self.identity is None:
            return self._record_error(validation_error("Sign in to delete tasks."))
        try:
            await self._backend.delete(task_id)
        except Exception as e:
            return self._mutation_failed(e, "Failed to delete task")

        logger.info("Task deleted id=%s", task_id)
        self._clear_error()
        return None

    # ---- feed callbacks ----

    def _on_session(self, session: SessionState) -> None:
        self.bind(session.identity)

    def _on_snapshot(self, generation: int, tasks: list[Task]) -> None:
        if generation != self._generation:
            logger.debug("Dropping stale snapshot (generation %s)", generation)
            return
        identity = self.identity
        if identity is None:
            return

        owned = [t for t in tasks if t.owner_id == identity.uid]
        if len(owned) != len(tasks):
            logger.warning("Feed delivered %d task(s) not owned by uid=%s", len(tasks) - len(owned), identity.uid)

        self._state.publish(TaskListState(identity=identity, tasks=sort_snapshot(owned), error=None))

    def _on_feed_error(self, generation: int, err: BackendError) -> None:
        if generation != self._generation:
            return
        classified = classify(err, context="Database error")
        logger.warning("Task feed error kind=%s code=%s", classified.kind, classified.code)
        self._record_error(classified)

    # ---- internals ----

    def _release(self) -> None:
        if self._unsubscribe is None:
            return
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        try:
            unsubscribe()
        except Exception:
            logger.exception("Task feed unsubscribe failed")

    def _mutation_failed(self, e: Exception, context: str) -> ClassifiedError:
        if not isinstance(e, BackendError):
            logger.exception("%s (backend crashed)", context)
        err = classify(e, context=context)
        logger.warning("%s kind=%s code=%s", context, err.kind, err.code)
        return self._record_error(err)

    def _record_error(self, err: ClassifiedError) -> ClassifiedError:
        current = self._state.value
        self._state.publish(TaskListState(identity=current.identity, tasks=current.tasks, error=err))
        return err

    def _clear_error(self) -> None:
        current = self._state.value
        if current.error is not None:
            self._state.publish(TaskListState(identity=current.identity, tasks=current.tasks))
