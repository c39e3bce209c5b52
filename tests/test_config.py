# tests/test_config.py

from __future__ import annotations

from pathlib import Path

import pytest

from schedule_outline.config import Settings


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in (
        "PROJECT_ID",
        "REMAP_ON_REORDER",
        "UNDO_LIMIT",
        "SUBMIT_RETRIES",
        "DATA_DIR",
        "TASKS_DB_PATH",
        "SQLITE_TIMEOUT",
        "CONSOLE_ENABLED",
    ):
        monkeypatch.delenv(f"OUTLINE_{name}", raising=False)
    return monkeypatch


def test_defaults(clean_env) -> None:
    s = Settings.from_env()
    assert s.project_id == "default"
    assert s.remap_on_reorder is False
    assert s.undo_limit == 20
    assert s.submit_retries == 1
    assert s.tasks_db_path == Path(".local/outline") / "tasks.sqlite3"


def test_env_overrides_and_bad_values(clean_env, tmp_path: Path) -> None:
    clean_env.setenv("OUTLINE_PROJECT_ID", "  site-b ")
    clean_env.setenv("OUTLINE_REMAP_ON_REORDER", "yes")
    clean_env.setenv("OUTLINE_UNDO_LIMIT", "0")
    clean_env.setenv("OUTLINE_SUBMIT_RETRIES", "many")
    clean_env.setenv("OUTLINE_DATA_DIR", str(tmp_path))
    clean_env.setenv("OUTLINE_CONSOLE_ENABLED", "off")

    s = Settings.from_env()

    assert s.project_id == "site-b"
    assert s.remap_on_reorder is True
    assert s.undo_limit == 1
    assert s.submit_retries == 1
    assert s.console_enabled is False
    assert s.tasks_db_path == tmp_path / "tasks.sqlite3"
