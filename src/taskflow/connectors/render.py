# src/taskflow/connectors/render.py

"""
Text rendering for the console connector.

Pure functions of the published state values: no I/O, no backend access.
"""

from __future__ import annotations

from ..core.errors import ClassifiedError
from ..core.models import SessionState, SessionStatus, Task, TaskListState
from ..tasks.task_api import summarize_progress

GUEST_WARNING = "[Guest Mode] Tasks belong to this temporary session and are lost when you sign out."


def render_error(error: ClassifiedError | None) -> str:
    if error is None:
        return ""
    return f"[!] {error.message}"


def render_session(session: SessionState) -> str:
    if session.status is SessionStatus.UNKNOWN:
        return "Loading..."
    identity = session.identity
    if identity is None:
        return "Not signed in. Use /signin, /signup or /guest."

    lines = [f"Signed in as {identity.display_name}"]
    if identity.is_anonymous:
        lines[0] += " (temporary session)"
        lines.append(GUEST_WARNING)
    return "\n".join(lines)


def render_progress(tasks: tuple[Task, ...] | list[Task]) -> str:
    p = summarize_progress(tasks)
    if p.total == 0:
        return ""
    tail = "All tasks completed!" if p.all_done else f"{p.percent}% complete"
    return f"Progress: {p.completed} of {p.total} completed - {tail}"


def render_task(index: int, task: Task) -> str:
    mark = "x" if task.completed else " "
    return f"{index:>2}. [{mark}] {task.text}"


def render_task_list(state: TaskListState) -> str:
    """Progress, error and the numbered list (numbers are accepted by /toggle and /rm)."""
    lines: list[str] = []

    progress = render_progress(state.tasks)
    if progress:
        lines.append(progress)

    err = render_error(state.error)
    if err:
        lines.append(err)

    if not state.tasks:
        lines.append("No tasks yet. Add your first task with /add <text>.")
    else:
        lines.extend(render_task(i, t) for i, t in enumerate(state.tasks, start=1))

    return "\n".join(lines)


def render_screen(session: SessionState, tasks: TaskListState) -> str:
    parts = [render_session(session)]
    if session.status is SessionStatus.AUTHENTICATED:
        parts.append(render_task_list(tasks))
    else:
        err = render_error(session.error)
        if err:
            parts.append(err)
    return "\n".join(p for p in parts if p)
