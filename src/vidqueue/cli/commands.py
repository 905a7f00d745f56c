# src/vidqueue/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import cast

from ..core.ports import resolve
from ..core.state import AppState
from ..uploads.models import OpResult, UploadCategory, UploadStatus, UploadTask

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], Awaitable[str] | str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str] | str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console connector (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except Exception:
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return await resolve(h3(state, args, emit))

        h2 = cast(CommandHandler2, handler)
        return await resolve(h2(state, args))

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts(ts: float | None) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _mb(n: int) -> str:
    return f"{n / 1024 / 1024:.2f} MB"


def _ordered(state: AppState) -> list[UploadTask]:
    return sorted(state.queue.get_all_tasks(), key=lambda t: t.created_at)


def resolve_task_id(state: AppState, raw: str) -> str | None:
    """
    Accept a full id, a 1-based index from /list, or a unique id prefix/suffix.
    """
    if state.queue.get_task(raw) is not None:
        return raw

    tasks = _ordered(state)
    if raw.isdigit():
        idx = int(raw)
        if 1 <= idx <= len(tasks):
            return tasks[idx - 1].id
        return None

    matches = [t.id for t in tasks if t.id.startswith(raw) or t.id.endswith(raw)]
    return matches[0] if len(matches) == 1 else None


def format_task(task: UploadTask, index: int | None = None) -> str:
    prefix = f"{index}. " if index is not None else ""
    line = (
        f"{prefix}{task.id} [{task.status.value}] {task.progress:3d}% "
        f"({_mb(task.uploaded_bytes)} / {_mb(task.total_bytes)}) {task.category.value} {task.source}"
    )
    if task.status == UploadStatus.FAILED and task.error:
        line += f"\n     error: {task.error}"
    if task.status == UploadStatus.COMPLETED and task.remote_url:
        line += f"\n     url: {task.remote_url}"
    return line


def _watch(state: AppState, task_id: str, emit: CommandEmitter | None) -> None:
    """Print progress (per 10 points), completion and errors of a task added here."""
    if emit is None:
        return
    state.watched.add(task_id)
    last_bucket = {"value": -1}

    def on_progress(percent: int, task: UploadTask) -> None:
        bucket = percent // 10
        if bucket == last_bucket["value"]:
            return
        last_bucket["value"] = bucket
        emit(f"[UPLOAD] {task.id}: {percent}%")

    def on_completed(task: UploadTask) -> None:
        emit(f"[UPLOAD] {task.id}: completed -> {task.remote_url}")

    def on_error(message: str, task: UploadTask) -> None:
        emit(f"[UPLOAD] {task.id}: failed: {message}")

    state.queue.on_progress(task_id, on_progress)
    state.queue.on_completed(task_id, on_completed)
    state.queue.on_error(task_id, on_error)


_OP_MESSAGES = {
    OpResult.NOT_FOUND: "No such upload: {id}",
    OpResult.INVALID_STATE: "Upload {id} is {status}; nothing to do.",
}


def _op_reply(state: AppState, result: OpResult, task_id: str, ok_text: str) -> str:
    if result == OpResult.OK:
        return ok_text.format(id=task_id)
    task = state.queue.get_task(task_id)
    status = task.status.value if task is not None else "gone"
    return _OP_MESSAGES[result].format(id=task_id, status=status)


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    q = state.queue
    counts: dict[str, int] = {s.value: 0 for s in UploadStatus}
    for t in q.get_all_tasks():
        counts[t.status.value] += 1
    mode = "OFFLINE DEMO" if state.offline else "MEDIA HOST"
    active = ", ".join(sorted(q.scheduler.active_set)) or "-"
    return (
        "Status:\n"
        f"  Transfer: {mode}\n"
        f"  Max concurrent uploads: {q.scheduler.concurrency_cap}\n"
        f"  Auto-advance: {'ON' if q.auto_advance else 'OFF'}\n"
        f"  Active: {active}\n"
        "  Tasks: " + ", ".join(f"{k}={v}" for k, v in counts.items())
    )


async def cmd_add(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /add <path> [category] [listing_id]
    """
    if not args:
        return "Usage: /add <path> [car|horse|real_estate] [listing_id]"

    source = args[0]
    category = UploadCategory.parse(args[1]) if len(args) > 1 else None
    listing_id = args[2] if len(args) > 2 else None

    task_id = await state.queue.enqueue(source, listing_id=listing_id, category=category)
    _watch(state, task_id, emit)
    task = state.queue.get_task(task_id)
    size = _mb(task.total_bytes) if task is not None else "?"
    hint = "" if state.queue.auto_advance else " Use /run to start."
    return f"Queued {task_id} ({size}).{hint}"


def cmd_list(state: AppState, args: list[str]) -> str:
    tasks = _ordered(state)
    if not tasks:
        return "Upload queue is empty."
    lines = [f"Uploads ({len(tasks)}):"]
    for i, t in enumerate(tasks, start=1):
        lines.append(format_task(t, i))
    return "\n".join(lines)


def cmd_show(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /show <id|#>"
    task_id = resolve_task_id(state, args[0])
    task = state.queue.get_task(task_id) if task_id else None
    if task is None:
        return f"No such upload: {args[0]}"
    return (
        f"{format_task(task)}\n"
        f"  listing: {task.listing_id or '-'}\n"
        f"  created: {_ts(task.created_at)}  started: {_ts(task.started_at)}  completed: {_ts(task.completed_at)}\n"
        f"  remote id: {task.remote_id or '-'}  thumbnail: {task.thumbnail_url or '-'}"
    )


def _id_command(op_name: str, ok_text: str):
    async def handler(state: AppState, args: list[str]) -> str:
        if not args:
            return f"Usage: /{op_name} <id|#>"
        task_id = resolve_task_id(state, args[0]) or args[0]
        op = getattr(state.queue, f"{op_name}_upload")
        result = await op(task_id)
        if op_name == "cancel" and result == OpResult.OK:
            state.watched.discard(task_id)
        return _op_reply(state, result, task_id, ok_text)

    handler.__name__ = f"cmd_{op_name}"
    return handler


cmd_pause = _id_command("pause", "Paused {id}.")
cmd_resume = _id_command("resume", "Resumed {id} (the upload restarts from the beginning).")
cmd_cancel = _id_command("cancel", "Cancelled {id}.")
cmd_retry = _id_command("retry", "Re-queued {id}.")


async def cmd_run(state: AppState, args: list[str]) -> str:
    """
    /run      -> start the next upload (if a slot is free)
    /run all  -> fill every free slot
    """
    if args and args[0].lower() == "all":
        started = await state.queue.scheduler.fill()
        return f"Started: {', '.join(started)}" if started else "Nothing to start."
    task_id = await state.queue.try_advance()
    return f"Started {task_id}." if task_id else "Nothing to start (queue empty or all slots busy)."


def cmd_auto(state: AppState, args: list[str]) -> str:
    if not args:
        return f"Auto-advance is {'ON' if state.queue.auto_advance else 'OFF'}. Use /auto on or /auto off."
    arg = args[0].lower()
    if arg in ("on", "1", "true", "yes"):
        state.queue.auto_advance = True
        return "Auto-advance enabled. Finished uploads pull the next one."
    if arg in ("off", "0", "false", "no"):
        state.queue.auto_advance = False
        return "Auto-advance disabled. Use /run to start uploads."
    return "Usage: /auto on or /auto off."


async def cmd_clear(state: AppState, args: list[str]) -> str:
    """
    /clear      -> remove completed uploads
    /clear all  -> remove everything (pending, failed, running) and erase the stored queue
    """
    if args and args[0].lower() == "all":
        n = await state.queue.clear_all()
        state.watched.clear()
        return f"Cleared all uploads ({n})."
    done = {t.id for t in state.queue.get_completed_uploads()}
    n = await state.queue.clear_completed()
    state.watched -= done
    return f"Cleared completed uploads ({n})."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show queue settings and counters.")
registry.register("add", cmd_add, help_text="Queue a video: /add <path> [category] [listing_id].")
registry.register("list", cmd_list, help_text="List uploads (oldest first).", aliases=["ls"])
registry.register("show", cmd_show, help_text="Show one upload: /show <id|#>.")
registry.register("pause", cmd_pause, help_text="Pause a running upload.")
registry.register("resume", cmd_resume, help_text="Resume a paused upload (restarts the transfer).")
registry.register("cancel", cmd_cancel, help_text="Cancel and remove an upload.", aliases=["rm"])
registry.register("retry", cmd_retry, help_text="Re-queue a failed upload.")
registry.register("run", cmd_run, help_text="Start the next upload: /run | /run all.")
registry.register("auto", cmd_auto, help_text="Auto-advance the queue: /auto on | /auto off.")
registry.register("clear", cmd_clear, help_text="Remove completed uploads: /clear | /clear all.")
