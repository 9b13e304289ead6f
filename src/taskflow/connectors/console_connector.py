# src/taskflow/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.models import SessionState, SessionStatus, TaskListState
from ..core.state import AppState
from .render import render_error, render_session, render_task_list

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except Exception:
        print(line)


def _print_ts_block(text: str) -> None:
    ts = _ts_local()
    lines = text.splitlines() or [""]
    for i, line in enumerate(lines):
        # keep nice alignment for multi-line output
        prefix = f"[{ts}] " if i == 0 else " " * (len(ts) + 3)
        print(prefix + line, flush=True)


class _LiveView:
    """Prints session changes and task list changes as they are published."""

    def __init__(self, state: AppState) -> None:
        self._state = state
        self._last_tasks: TaskListState | None = None
        self._unsubscribe = [
            state.session.subscribe(self._on_session),
            state.tasks.subscribe(self._on_tasks),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    def _on_session(self, session: SessionState) -> None:
        if session.error is not None and session.status is not SessionStatus.AUTHENTICATED:
            # Failed sign-in attempts are reported by the command reply.
            return
        _print_ts_block(render_session(session))

    def _on_tasks(self, tasks: TaskListState) -> None:
        if tasks.identity is None:
            self._last_tasks = tasks
            return
        previous = self._last_tasks
        self._last_tasks = tasks
        if previous is not None and previous.identity == tasks.identity and previous.tasks == tasks.tasks:
            # Error-only change: the command reply already showed it, unless it came from the feed.
            if tasks.error is not None and tasks.error != previous.error:
                _print_ts_block(render_error(tasks.error))
            return
        _print_ts_block(render_task_list(tasks))


async def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (backend=%s).", state.backend_name)
    app_name = str(getattr(state.settings, "app_name", "TaskFlow"))
    _print_ts_block(
        f"[{app_name}] Organize your life, one task at a time.\n"
        "Use /help for commands, plain text adds a task, /exit quits."
    )

    view = _LiveView(state)
    await state.session.start()

    def emit(text: str) -> None:
        # Immediate user-visible feedback for slow backend calls.
        _print_ts_block(text)

    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, ">>> ")).strip()
                _rewrite_prev_line(f"[{_ts_local()}] >>> {user_input}")
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            if not user_input.startswith("/"):
                # Plain text is a shortcut for /add while signed in.
                user_input = f"/add {user_input}"

            try:
                reply = await command_registry.handle(state, user_input, emit=emit)
            except Exception:
                logger.exception("Command handler crashed.")
                reply = "Internal error while handling a command."

            if reply:
                _print_ts_block(reply)
    finally:
        view.close()

    logger.info("Console connector finished.")
