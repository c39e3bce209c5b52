# src/schedule_outline/outline/cache.py

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace

from .hierarchy import sort_tasks
from .models import ChangeSet, Task

logger = logging.getLogger(__name__)


class TaskCache:
    """
    In-memory view of one project's outline.

    Owned by a single coordinator; the optimistic projection of an operation
    is written here before the store confirms it. Tasks are stored as values,
    so a snapshot is just a copy of the id -> Task mapping.
    """

    def __init__(self, project_id: str, tasks: Iterable[Task] = ()) -> None:
        self.project_id = project_id
        self._tasks: dict[str, Task] = {t.id: t for t in tasks}
        self.version = 0

    def replace(self, tasks: Iterable[Task]) -> None:
        self._tasks = {t.id: t for t in tasks}
        self.version += 1

    def tasks(self) -> list[Task]:
        """All tasks in outline order."""
        return sort_tasks(self._tasks.values())

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def find_by_hierarchy(self, hierarchy_number: str) -> Task | None:
        for t in self._tasks.values():
            if t.hierarchy_number == hierarchy_number:
                return t
        return None

    def __len__(self) -> int:
        return len(self._tasks)

    def snapshot(self) -> dict[str, Task]:
        return dict(self._tasks)

    def apply(self, changes: ChangeSet) -> None:
        """Project a change set onto the cached tasks."""
        for task_id in changes.deleted_ids:
            self._tasks.pop(task_id, None)
        for t in changes.inserted:
            self._tasks[t.id] = t
        for u in changes.hierarchy_updates:
            cur = self._tasks.get(u.id)
            if cur is not None:
                self._tasks[u.id] = replace(cur, hierarchy_number=u.hierarchy_number)
        for p in changes.predecessor_updates:
            cur = self._tasks.get(p.task_id)
            if cur is not None:
                self._tasks[p.task_id] = replace(cur, predecessors=list(p.predecessors or []))
        for s in changes.schedule_updates:
            cur = self._tasks.get(s.id)
            if cur is not None:
                self._tasks[s.id] = replace(
                    cur,
                    start_date=s.start_date,
                    end_date=s.end_date,
                    duration=s.duration,
                    progress=s.progress,
                )
        self.version += 1

    def restore(self, snapshot: dict[str, Task], ids: Iterable[str]) -> None:
        """
        Put the given ids back to their snapshot state.

        Ids missing from the snapshot were inserted by the operation and are
        dropped.
        """
        restored = 0
        for task_id in ids:
            old = snapshot.get(task_id)
            if old is None:
                self._tasks.pop(task_id, None)
            else:
                self._tasks[task_id] = old
            restored += 1
        self.version += 1
        logger.debug("Cache %s: restored %d task(s) from snapshot", self.project_id, restored)


class PendingUpdates:
    """Task ids with an unsettled submission; their echoes are ignored."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}

    def mark(self, ids: Iterable[str]) -> None:
        for task_id in ids:
            self._counts[task_id] = self._counts.get(task_id, 0) + 1

    def clear(self, ids: Iterable[str]) -> None:
        for task_id in ids:
            n = self._counts.get(task_id, 0) - 1
            if n > 0:
                self._counts[task_id] = n
            else:
                self._counts.pop(task_id, None)

    def is_pending(self, task_id: str) -> bool:
        return task_id in self._counts

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._counts

    def __bool__(self) -> bool:
        return bool(self._counts)

    def ids(self) -> set[str]:
        return set(self._counts)
