# src/taskflow/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- picks the backend (Firebase when configured, otherwise the in-memory demo backend),
- wires SessionGate and TaskListStore into AppState.
"""

from __future__ import annotations

import contextlib
import logging

from ..backends.firebase import FirebaseBackend
from ..backends.memory import InMemoryBackend
from ..config import get_settings
from ..core.session import SessionGate
from ..core.state import AppState
from ..tasks.task_list import TaskListStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.session_path.parent.mkdir(parents=True, exist_ok=True)


def _create_backend(settings) -> tuple[object, str]:
    choice = str(getattr(settings, "backend", "auto")).lower()
    min_len = int(getattr(settings, "min_password_length", 6))

    if choice == "memory":
        return InMemoryBackend(min_password_length=min_len), "memory"

    try:
        return FirebaseBackend(settings), "firebase"
    except ValueError:
        if choice == "firebase":
            raise
        # Fallback for demos / local runs without a Firebase project.
        logger.warning("Firebase is not configured; using the in-memory backend (data is not saved).")
        return InMemoryBackend(min_password_length=min_len), "memory"


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    backend, backend_name = _create_backend(settings)
    session = SessionGate(backend, min_password_length=getattr(settings, "min_password_length", 6))
    tasks = TaskListStore(backend)
    tasks.attach(session)

    return AppState(
        settings=settings,
        backend=backend,
        session=session,
        tasks=tasks,
        backend_name=backend_name,
    )


async def shutdown_state(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        state.tasks.close()
    except Exception:
        logger.exception("Task list close failed.")

    try:
        state.session.close()
    except Exception:
        logger.exception("Session gate close failed.")

    with contextlib.suppress(Exception):
        await state.backend.aclose()
