# src/schedule_outline/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the SQLite store, live-update channel and coordinator into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..connectors.console_connector import ConsoleNotifier
from ..core.state import AppState
from ..outline.cache import TaskCache
from ..outline.coordinator import HierarchyCoordinator
from ..storage.live_updates import LiveUpdateChannel
from ..storage.task_store import SQLiteTaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, notifier=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    channel = LiveUpdateChannel()
    store = SQLiteTaskStore(
        settings.tasks_db_path,
        channel=channel,
        timeout=float(getattr(settings, "sqlite_timeout", 30.0)),
    )
    if notifier is None:
        notifier = ConsoleNotifier()

    coordinator = HierarchyCoordinator(
        settings.project_id,
        store,
        TaskCache(settings.project_id),
        notifier=notifier,
        channel=channel,
        remap_on_reorder=bool(getattr(settings, "remap_on_reorder", False)),
        undo_limit=int(getattr(settings, "undo_limit", 20)),
        submit_retries=int(getattr(settings, "submit_retries", 1)),
    )
    logger.debug("State wired for project %s (db=%s)", settings.project_id, settings.tasks_db_path)

    return AppState(
        settings=settings,
        store=store,
        channel=channel,
        coordinator=coordinator,
        notifier=notifier,
    )
