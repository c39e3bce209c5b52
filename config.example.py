# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file,
see schedule_outline.config). Nothing here is imported by the application.

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "OUTLINE_APP_NAME": "App display name (default: schedule-outline).",
    "OUTLINE_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Connectors
    "OUTLINE_CONSOLE_ENABLED": "Run the interactive console after loading (true/false, default: true).",
    # Outline behaviour
    "OUTLINE_PROJECT_ID": "Project whose outline is edited (default: default).",
    "OUTLINE_REMAP_ON_REORDER": (
        "Rewrite predecessor references on move up/down and drag-and-drop too (default: false). "
        "Indent, outdent, insert, delete and normalize always rewrite them."
    ),
    "OUTLINE_UNDO_LIMIT": "How many committed changes /undo can step back through (default: 20).",
    "OUTLINE_SUBMIT_RETRIES": "Retries for a batch after a locked/busy database (default: 1).",
    # Paths (gitignored)
    "OUTLINE_DATA_DIR": "Local data directory (default: .local/outline).",
    "OUTLINE_TASKS_DB_PATH": "Task store SQLite path (default: <data_dir>/tasks.sqlite3).",
    "OUTLINE_SQLITE_TIMEOUT": "Seconds SQLite waits on a locked database (default: 30).",
}
