# src/schedule_outline/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, loads the project outline and runs the
console REPL.
"""

from __future__ import annotations

import asyncio
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging
from ..outline.renumber import needs_normalization

logger = logging.getLogger(__name__)


def _shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        state.coordinator.close()
    except Exception:
        logger.debug("Coordinator close failed.", exc_info=True)

    # The store uses short-lived sqlite connections per call; close is a no-op hook.
    try:
        close = getattr(state.store, "close", None)
        if close is not None:
            close()
    except Exception:
        logger.debug("Store close failed.", exc_info=True)


async def _run(state: AppState) -> None:
    tasks = await state.coordinator.load()
    if needs_normalization(tasks):
        logger.warning("Outline of project %s has numbering gaps or invalid numbers", state.project_id)
        state.notifier.notify_info("Outline numbering has drifted; run /check and /normalize.")
    if state.settings.console_enabled:
        await run_console_loop(state)
    else:
        logger.info("Console disabled; nothing to do.")


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_file = setup_logging(
        log_dir=settings.data_dir,
        project_id=settings.project_id,
        console_level=console_level,
    )

    logger.info("Starting %s (project=%s, log=%s)...", settings.app_name, settings.project_id, log_file)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
    finally:
        _shutdown(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
