# tests/fakes.py

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace

from schedule_outline.core.errors import StaleBaseError
from schedule_outline.core.ports import LiveUpdates, TaskChangeEvent
from schedule_outline.outline.cache import TaskCache
from schedule_outline.outline.models import ChangeSet, Task


def task_id(h: str) -> str:
    """Ids in tests are derived from the task's initial hierarchy number."""
    return f"t{h}"


def make_tasks(*numbers: str, preds: dict[str, list[str]] | None = None, project_id: str = "p1") -> list[Task]:
    """
    Build an outline from hierarchy numbers.

    make_tasks("1", "1.1", "2", preds={"2": ["1.1"]})
    """
    preds = preds or {}
    return [
        Task(
            id=task_id(h),
            project_id=project_id,
            name=f"Task {h}",
            hierarchy_number=h,
            predecessors=list(preds.get(h, [])),
            order_index=i,
        )
        for i, h in enumerate(numbers)
    ]


def numbers_by_id(tasks: list[Task], updates) -> dict[str, str | None]:
    """Final hierarchy number per id after applying a list of HierarchyUpdate."""
    out = {t.id: t.hierarchy_number for t in tasks}
    out.update({u.id: u.hierarchy_number for u in updates})
    return out


def apply_updates(tasks: list[Task], updates) -> list[Task]:
    by_id = {u.id: u.hierarchy_number for u in updates}
    return [replace(t, hierarchy_number=by_id.get(t.id, t.hierarchy_number)) for t in tasks]


class FakeTaskRepo:
    """
    In-memory TaskRepo used for coordinator tests.

    - `failures` is a queue of exceptions raised by the next apply_batch calls
    - `during_apply` runs inside apply_batch, before the batch is stored
      (used to simulate echoes and overlapping operations)
    - every successful batch is recorded in `batches`
    """

    def __init__(self, tasks: list[Task] | None = None, *, channel: LiveUpdates | None = None) -> None:
        self._cache = TaskCache("fake", tasks or [])
        self.channel = channel
        self.failures: list[Exception] = []
        self.batches: list[ChangeSet] = []
        self.apply_calls = 0
        self.list_calls = 0
        self.during_apply: Callable[[ChangeSet], Awaitable[None]] | None = None
        self.echo = False

    def tasks(self) -> list[Task]:
        return self._cache.tasks()

    def get(self, task_id: str) -> Task | None:
        return self._cache.get(task_id)

    def put(self, task: Task) -> None:
        """Change a row behind the coordinator's back."""
        snapshot = {t.id: t for t in self._cache.tasks()}
        snapshot[task.id] = task
        self._cache.replace(snapshot.values())

    async def list_tasks(self, project_id: str) -> list[Task]:
        self.list_calls += 1
        return [t for t in self._cache.tasks() if t.project_id == project_id]

    async def apply_batch(self, project_id: str, changes: ChangeSet, *, suppress_echo: bool = True) -> None:
        self.apply_calls += 1
        if self.during_apply is not None:
            hook, self.during_apply = self.during_apply, None
            await hook(changes)
        if self.failures:
            raise self.failures.pop(0)

        mismatched = {}
        for tid, expected in changes.expected_hierarchy.items():
            cur = self._cache.get(tid)
            found = cur.hierarchy_number if cur else None
            if found != expected:
                mismatched[tid] = (expected, found)
        if mismatched:
            raise StaleBaseError(mismatched)

        self._cache.apply(changes)
        self.batches.append(changes)
        if self.channel is not None and (self.echo or not suppress_echo):
            await self.channel.publish(
                TaskChangeEvent(project_id=project_id, task_ids=frozenset(changes.affected_ids()))
            )


@dataclass(slots=True)
class RecordingNotifier:
    errors: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)

    def notify_error(self, message: str) -> None:
        self.errors.append(message)

    def notify_info(self, message: str) -> None:
        self.infos.append(message)
