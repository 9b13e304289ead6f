# src/taskflow/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import cast

from ..connectors.render import render_error, render_screen, render_session, render_task_list
from ..core.errors import ClassifiedError
from ..core.models import SessionStatus
from ..core.state import AppState
from ..tasks.task_api import resolve_task_ref

CommandEmitter = Callable[[str], None]
CommandResult = str | Awaitable[str]
CommandHandler2 = Callable[[AppState, list[str]], CommandResult]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], CommandResult]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console connector (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}
        self._raw: set[str] = set()

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
        raw_args: bool = False,
    ) -> None:
        """raw_args=True passes the rest of the line untouched as a single argument."""
        aliases = aliases or []
        key = name.lower()
        self._help[key] = help_text
        for k in [key, *(a.lower() for a in aliases)]:
            self._handlers[k] = handler
            if raw_args:
                self._raw.add(k)

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command. Handlers may be sync or async.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]
        if name in self._raw:
            rest = line[1:].lstrip().split(None, 1)
            args = rest[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except Exception:
            nparams = 3

        if nparams >= 3:
            result = cast(CommandHandler3, handler)(state, args, emit)
        else:
            result = cast(CommandHandler2, handler)(state, args)

        if inspect.isawaitable(result):
            result = await result
        return cast(str, result)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _outcome(result: object, ok: str) -> str:
    if isinstance(result, ClassifiedError):
        return render_error(result)
    return ok


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    session = render_session(state.session.state)
    return (
        "Status:\n"
        f"  Backend: {state.backend_name}\n"
        f"  Session: {state.session.status}\n"
        f"  {session.replace(chr(10), chr(10) + '  ')}\n"
        f"  Tasks: {len(state.tasks.tasks)}"
    )


async def cmd_signup(state: AppState, args: list[str]) -> str:
    if len(args) != 2:
        return "Usage: /signup <email> <password>"
    result = await state.session.sign_up(args[0], args[1])
    return _outcome(result, "Account created. You are signed in.")


async def cmd_signin(state: AppState, args: list[str]) -> str:
    if len(args) != 2:
        return "Usage: /signin <email> <password>"
    result = await state.session.sign_in(args[0], args[1])
    return _outcome(result, "Signed in.")


async def cmd_guest(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if emit:
        emit("Starting a guest session...")
    result = await state.session.sign_in_as_guest()
    return _outcome(result, "Signed in as guest.")


async def cmd_signout(state: AppState, args: list[str]) -> str:
    result = await state.session.sign_out()
    return _outcome(result, "Signed out.")


def _require_session(state: AppState) -> str | None:
    if state.session.status is not SessionStatus.AUTHENTICATED:
        return "Sign in first (/signin, /signup or /guest)."
    return None


async def cmd_add(state: AppState, args: list[str]) -> str:
    blocked = _require_session(state)
    if blocked:
        return blocked
    result = await state.tasks.add(args[0] if args else "")
    return _outcome(result, "Task added.")


async def cmd_toggle(state: AppState, args: list[str]) -> str:
    blocked = _require_session(state)
    if blocked:
        return blocked
    if len(args) != 1:
        return "Usage: /toggle <number|id>"
    task = resolve_task_ref(state.tasks.tasks, args[0])
    if task is None:
        return f"No task {args[0]}. Use /list to see task numbers."
    result = await state.tasks.toggle(task.id, task.completed)
    return _outcome(result, f"Marked {'not done' if task.completed else 'done'}: {task.text}")


async def cmd_rm(state: AppState, args: list[str]) -> str:
    blocked = _require_session(state)
    if blocked:
        return blocked
    if len(args) != 1:
        return "Usage: /rm <number|id>"
    task = resolve_task_ref(state.tasks.tasks, args[0])
    if task is None:
        return f"No task {args[0]}. Use /list to see task numbers."
    result = await state.tasks.remove(task.id)
    return _outcome(result, f"Deleted: {task.text}")


def cmd_list(state: AppState, args: list[str]) -> str:
    blocked = _require_session(state)
    if blocked:
        return blocked
    return render_task_list(state.tasks.state)


def cmd_screen(state: AppState, args: list[str]) -> str:
    return render_screen(state.session.state, state.tasks.state)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show backend and session status.")
registry.register("signup", cmd_signup, help_text="Create an account: /signup <email> <password>.")
registry.register("signin", cmd_signin, help_text="Sign in: /signin <email> <password>.", aliases=["login"])
registry.register("guest", cmd_guest, help_text="Continue as guest (temporary session).")
registry.register("signout", cmd_signout, help_text="Sign out.", aliases=["logout"])
registry.register("add", cmd_add, help_text="Add a task: /add <text>.", raw_args=True)
registry.register("toggle", cmd_toggle, help_text="Toggle a task done/not done: /toggle <number|id>.")
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <number|id>.", aliases=["del"])
registry.register("list", cmd_list, help_text="Show your tasks (newest first).", aliases=["ls"])
registry.register("screen", cmd_screen, help_text="Show session and tasks.")
