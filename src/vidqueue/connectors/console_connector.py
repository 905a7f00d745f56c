# src/vidqueue/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

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


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


async def run_console_loop(state: AppState) -> None:
    """
    Interactive console. Input is read in a worker thread so uploads keep
    running on the event loop while the prompt waits.
    """
    logger.info("Console connector started (offline=%s).", state.offline)
    _print_ts("[CONSOLE] Use /add <path> to queue a video, /help for commands, /exit to quit.\n")

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

        try:
            reply = await command_registry.handle(state, user_input, emit=_print_ts)
        except Exception:
            logger.exception("Command handler crashed.")
            reply = "Internal error while handling a command."

        if reply is None:
            reply = "Not a command. Use /help to list available commands."
        _print_ts(reply)

    logger.info("Console connector finished.")
