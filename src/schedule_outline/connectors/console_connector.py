# src/schedule_outline/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class ConsoleNotifier:
    """Notifier port for the console: prints and remembers what it showed."""

    def __init__(self, *, echo: bool = True) -> None:
        self.echo = echo
        self.errors: list[str] = []
        self.infos: list[str] = []

    def notify_error(self, message: str) -> None:
        self.errors.append(message)
        logger.debug("Notify error: %s", message)
        if self.echo:
            _print_ts(f"[ERROR] {message}")

    def notify_info(self, message: str) -> None:
        self.infos.append(message)
        if self.echo:
            _print_ts(message)


async def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (project=%s).", state.project_id)
    _print_ts("[CONSOLE] Use /help for commands. Use /exit to quit.\n")

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "outline> ")).strip()
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
            response = await command_registry.handle(state, user_input, emit=_print_ts)
        except Exception:
            logger.exception("Command handler crashed.")
            response = "Internal error while handling a command."

        if response is None:
            response = "Commands start with '/'. Use /help to list available commands."
        _print_ts(response)

    logger.info("Console connector finished.")
