# src/taskflow/tasks/task_api.py

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from ..core.models import Task


@dataclass(frozen=True, slots=True)
class Progress:
    completed: int
    total: int
    percent: int

    @property
    def all_done(self) -> bool:
        return self.total > 0 and self.completed == self.total


def summarize_progress(tasks: Sequence[Task]) -> Progress:
    """Completed/total counts and the completion percentage (rounded half up)."""
    total = len(tasks)
    completed = sum(1 for t in tasks if t.completed)
    if total == 0:
        return Progress(completed=0, total=0, percent=0)
    percent = int(completed * 100 / total + 0.5)
    return Progress(completed=completed, total=total, percent=percent)


def resolve_task_ref(tasks: Sequence[Task], ref: str) -> Task | None:
    """
    Accept either a 1-based position in the rendered list or a task id.
    Positions win when the reference is a plain number within range.
    """
    ref = (ref or "").strip()
    if not ref:
        return None
    if ref.isdigit():
        pos = int(ref)
        if 1 <= pos <= len(tasks):
            return tasks[pos - 1]
    for task in tasks:
        if task.id == ref:
            return task
    return None
