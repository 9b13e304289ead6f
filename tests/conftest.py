# tests/conftest.py

from __future__ import annotations

import itertools
from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest

from taskflow.backends.memory import InMemoryBackend
from taskflow.core.session import SessionGate
from taskflow.core.state import AppState
from taskflow.tasks.task_list import TaskListStore

from .fakes import RecordingTaskBackend, ScriptedAuthBackend

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with bootstrap and the backends.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the developer's environment/.env.
    """
    return SimpleNamespace(
        app_name="TaskFlow",
        log_level="WARNING",
        data_dir=tmp_path,
        backend="memory",
        firebase_api_key="test-key",
        firebase_project_id="demo-project",
        firebase_auth_url="https://auth.test/v1",
        firebase_token_url="https://token.test/v1",
        firestore_url="https://firestore.test/v1",
        tasks_collection="todos",
        session_path=tmp_path / "session.json",
        feed_poll_seconds=0.01,
        http_timeout_seconds=5.0,
        min_password_length=6,
    )


@pytest.fixture()
def clock():
    """Strictly increasing server clock: one minute per created task."""
    ticks = itertools.count()
    return lambda: T0 + timedelta(minutes=next(ticks))


@pytest.fixture()
def backend(clock) -> InMemoryBackend:
    return InMemoryBackend(clock=clock)


@pytest.fixture()
def gate(backend: InMemoryBackend) -> SessionGate:
    return SessionGate(backend)


@pytest.fixture()
def store(backend: InMemoryBackend, gate: SessionGate) -> TaskListStore:
    s = TaskListStore(backend)
    s.attach(gate)
    return s


@pytest.fixture()
def state(settings: SimpleNamespace, backend: InMemoryBackend, gate: SessionGate, store: TaskListStore) -> AppState:
    """AppState wired with the in-memory backend."""
    return AppState(settings=settings, backend=backend, session=gate, tasks=store, backend_name="memory")


@pytest.fixture()
def recording() -> RecordingTaskBackend:
    return RecordingTaskBackend()


@pytest.fixture()
def scripted_auth() -> ScriptedAuthBackend:
    return ScriptedAuthBackend()
