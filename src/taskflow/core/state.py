# src/taskflow/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..tasks.task_list import TaskListStore
from .session import SessionGate


@dataclass
class AppState:
    """Everything a connector needs, wired once by cli/bootstrap.py."""

    # Settings object (config.Settings or a test namespace).
    settings: Any

    # Backend adapter implementing both AuthBackend and TaskBackend.
    backend: Any

    session: SessionGate
    tasks: TaskListStore

    backend_name: str = "memory"
