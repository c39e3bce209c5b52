# src/schedule_outline/storage/task_store.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
import time
from datetime import date
from pathlib import Path
from typing import Any

from ..core.errors import StaleBaseError, StoreError, TransientStoreError
from ..core.ports import LiveUpdates, TaskChangeEvent
from ..outline.models import ChangeSet, Task

logger = logging.getLogger(__name__)

_BASE_CHUNK = 500


class SQLiteTaskStore:
    """
    SQLite task store for project outlines.

    The schema is migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection, so the async methods can
      run the blocking work in a worker thread

    apply_batch is all-or-nothing: one BEGIN IMMEDIATE transaction, rolled
    back on any error.
    """

    def __init__(
        self,
        db_path: str | Path = "tasks.sqlite3",
        *,
        channel: LiveUpdates | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._timeout = timeout
        self._channel = channel
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("SQLiteTaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=self._timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS outline_tasks (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    hierarchy_number TEXT,
                    parent_id TEXT,
                    predecessors TEXT NOT NULL DEFAULT '[]',
                    start_date TEXT,
                    end_date TEXT,
                    duration INTEGER NOT NULL DEFAULT 1,
                    progress INTEGER NOT NULL DEFAULT 0,
                    order_index INTEGER NOT NULL DEFAULT 0,
                    meta TEXT NOT NULL DEFAULT '{}',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(outline_tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE outline_tasks ADD COLUMN {name} {decl}")
                logger.info("SQLiteTaskStore migration: added column %s", name)

            add_col("parent_id", "TEXT")
            add_col("predecessors", "TEXT NOT NULL DEFAULT '[]'")
            add_col("start_date", "TEXT")
            add_col("end_date", "TEXT")
            add_col("duration", "INTEGER NOT NULL DEFAULT 1")
            add_col("progress", "INTEGER NOT NULL DEFAULT 0")
            add_col("order_index", "INTEGER NOT NULL DEFAULT 0")
            add_col("meta", "TEXT NOT NULL DEFAULT '{}'")
            add_col("created_at", "REAL NOT NULL DEFAULT 0")
            add_col("updated_at", "REAL NOT NULL DEFAULT 0")

            # Not unique: a batch may permute numbers row by row.
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_outline_tasks_project "
                "ON outline_tasks(project_id, hierarchy_number)"
            )
        finally:
            conn.close()

    @staticmethod
    def _json_dumps(value: Any, default: str) -> str:
        if not value:
            return default
        return json.dumps(value, ensure_ascii=False)

    @staticmethod
    def _json_loads(s: str | None, kind: type) -> Any:
        if not s:
            return kind()
        try:
            val = json.loads(s)
        except ValueError:
            return kind()
        return val if isinstance(val, kind) else kind()

    @staticmethod
    def _date_to_str(d: date | None) -> str | None:
        return d.isoformat() if d else None

    @staticmethod
    def _str_to_date(s: str | None) -> date | None:
        if not s:
            return None
        try:
            return date.fromisoformat(s)
        except ValueError:
            logger.warning("Ignoring malformed stored date %r", s)
            return None

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            project_id=str(row["project_id"]),
            name=str(row["name"] or ""),
            hierarchy_number=row["hierarchy_number"] or None,
            parent_id=row["parent_id"],
            predecessors=[p for p in self._json_loads(row["predecessors"], list) if isinstance(p, str)],
            start_date=self._str_to_date(row["start_date"]),
            end_date=self._str_to_date(row["end_date"]),
            duration=int(row["duration"] or 0),
            progress=int(row["progress"] or 0),
            order_index=int(row["order_index"] or 0),
            meta=self._json_loads(row["meta"], dict),
        )

    def _insert(self, cur: sqlite3.Cursor, task: Task, now: float) -> None:
        cur.execute(
            """
            INSERT INTO outline_tasks(
                id, project_id, name, hierarchy_number, parent_id, predecessors,
                start_date, end_date, duration, progress, order_index, meta,
                created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.id,
                task.project_id,
                task.name,
                task.hierarchy_number,
                task.parent_id,
                self._json_dumps(task.predecessors, "[]"),
                self._date_to_str(task.start_date),
                self._date_to_str(task.end_date),
                int(task.duration),
                int(max(0, min(100, task.progress))),
                int(task.order_index),
                self._json_dumps(task.meta, "{}"),
                now,
                now,
            ),
        )

    # ---- sync API ----

    def count_tasks(self, project_id: str | None = None) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            if project_id is None:
                cur.execute("SELECT COUNT(*) FROM outline_tasks")
            else:
                cur.execute("SELECT COUNT(*) FROM outline_tasks WHERE project_id = ?", (project_id,))
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def add_task(self, task: Task) -> str:
        if not task.name or not task.name.strip():
            raise ValueError("name is required")
        conn = self._get_conn()
        try:
            self._insert(conn.cursor(), task, time.time())
            logger.debug("Task added id=%s project=%s h=%s", task.id, task.project_id, task.hierarchy_number)
            return task.id
        finally:
            conn.close()

    def get_task(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM outline_tasks WHERE id = ?", (task_id,))
            row = cur.fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def list_tasks_sync(self, project_id: str) -> list[Task]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM outline_tasks WHERE project_id = ? ORDER BY order_index ASC, created_at ASC",
                (project_id,),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def apply_batch_sync(self, project_id: str, changes: ChangeSet) -> None:
        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            try:
                self._check_base(cur, project_id, changes)

                for task_id in changes.deleted_ids:
                    cur.execute(
                        "DELETE FROM outline_tasks WHERE id = ? AND project_id = ?", (task_id, project_id)
                    )
                for task in changes.inserted:
                    self._insert(cur, task, now)
                for u in changes.hierarchy_updates:
                    cur.execute(
                        "UPDATE outline_tasks SET hierarchy_number = ?, updated_at = ? "
                        "WHERE id = ? AND project_id = ?",
                        (u.hierarchy_number, now, u.id, project_id),
                    )
                for p in changes.predecessor_updates:
                    cur.execute(
                        "UPDATE outline_tasks SET predecessors = ?, updated_at = ? "
                        "WHERE id = ? AND project_id = ?",
                        (self._json_dumps(p.predecessors, "[]"), now, p.task_id, project_id),
                    )
                for s in changes.schedule_updates:
                    cur.execute(
                        """
                        UPDATE outline_tasks
                        SET start_date = ?, end_date = ?, duration = ?, progress = ?, updated_at = ?
                        WHERE id = ? AND project_id = ?
                        """,
                        (
                            self._date_to_str(s.start_date),
                            self._date_to_str(s.end_date),
                            int(s.duration),
                            int(s.progress),
                            now,
                            s.id,
                            project_id,
                        ),
                    )
                cur.execute("COMMIT")
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    cur.execute("ROLLBACK")
                raise
        finally:
            conn.close()

        logger.debug(
            "Batch committed project=%s hierarchy=%d predecessors=%d schedule=%d inserted=%d deleted=%d",
            project_id,
            len(changes.hierarchy_updates),
            len(changes.predecessor_updates),
            len(changes.schedule_updates),
            len(changes.inserted),
            len(changes.deleted_ids),
        )

    @staticmethod
    def _check_base(cur: sqlite3.Cursor, project_id: str, changes: ChangeSet) -> None:
        if not changes.expected_hierarchy:
            return
        ids = list(changes.expected_hierarchy)
        found: dict[str, str | None] = {}
        # Whole sibling runs are checked; stay under the bound-variable limit.
        for start in range(0, len(ids), _BASE_CHUNK):
            chunk = ids[start : start + _BASE_CHUNK]
            placeholders = ",".join("?" for _ in chunk)
            cur.execute(
                f"SELECT id, hierarchy_number FROM outline_tasks WHERE project_id = ? AND id IN ({placeholders})",
                (project_id, *chunk),
            )
            found.update((row["id"], row["hierarchy_number"]) for row in cur.fetchall())
        mismatched: dict[str, tuple[str | None, str | None]] = {}
        for task_id, expected in changes.expected_hierarchy.items():
            if task_id not in found:
                mismatched[task_id] = (expected, None)
            elif (found[task_id] or None) != expected:
                mismatched[task_id] = (expected, found[task_id])
        if mismatched:
            raise StaleBaseError(mismatched)

    # ---- async port ----

    async def list_tasks(self, project_id: str) -> list[Task]:
        try:
            return await asyncio.to_thread(self.list_tasks_sync, project_id)
        except sqlite3.Error as exc:
            raise _map_sqlite_error(exc) from exc

    async def apply_batch(
        self,
        project_id: str,
        changes: ChangeSet,
        *,
        suppress_echo: bool = True,
    ) -> None:
        if changes.is_empty:
            return
        try:
            await asyncio.to_thread(self.apply_batch_sync, project_id, changes)
        except sqlite3.Error as exc:
            raise _map_sqlite_error(exc) from exc

        if self._channel is not None and not suppress_echo:
            await self._channel.publish(
                TaskChangeEvent(project_id=project_id, task_ids=frozenset(changes.affected_ids()))
            )


def _map_sqlite_error(exc: sqlite3.Error) -> StoreError:
    msg = str(exc).lower()
    if isinstance(exc, sqlite3.OperationalError) and ("locked" in msg or "busy" in msg):
        return TransientStoreError(str(exc))
    return StoreError(str(exc))
