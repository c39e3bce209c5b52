# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from schedule_outline.cli.bootstrap import create_initial_state
from schedule_outline.core.state import AppState
from schedule_outline.storage.live_updates import LiveUpdateChannel
from schedule_outline.storage.task_store import SQLiteTaskStore

from .fakes import RecordingNotifier


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="schedule-outline-test",
        log_level="DEBUG",
        console_enabled=False,
        project_id="p1",
        remap_on_reorder=False,
        undo_limit=20,
        submit_retries=1,
        # Paths (tmp per test run)
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        sqlite_timeout=5.0,
    )


@pytest.fixture()
def channel() -> LiveUpdateChannel:
    return LiveUpdateChannel()


@pytest.fixture()
def store(settings: SimpleNamespace, channel: LiveUpdateChannel) -> SQLiteTaskStore:
    """Real SQLite store: its transactional behaviour is part of what we test."""
    return SQLiteTaskStore(settings.tasks_db_path, channel=channel, timeout=settings.sqlite_timeout)


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def state(settings: SimpleNamespace, notifier: RecordingNotifier) -> AppState:
    """AppState wired exactly like the CLI, with a recording notifier."""
    return create_initial_state(settings=settings, notifier=notifier)
