# src/schedule_outline/outline/coordinator.py

"""
Hierarchy operation coordinator.

Runs one user-initiated change end-to-end:
snapshot -> compute (pure engines) -> optimistic cache projection ->
submit to the store -> commit, or restore + reload + notify on failure.

Committed structural changes and schedule edits are followed by an ancestor
roll-up batch. Every committed operation leaves an undo entry.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import StrEnum

from ..core.errors import StoreError, TransientStoreError
from ..core.ports import LiveUpdates, Notifier, TaskChangeEvent, TaskRepo
from .cache import PendingUpdates, TaskCache
from .hierarchy import children_of, has_children, parent_of
from .importer import OutlineImport
from .models import (
    ChangeSet,
    DropPosition,
    HierarchyUpdate,
    OperationKind,
    PredecessorUpdate,
    ScheduleUpdate,
    Task,
)
from .predecessors import (
    compute_predecessor_updates,
    find_self_references,
    parse_predecessors,
    validate_predecessors,
)
from .renumber import (
    OutlineConsistencyError,
    can_drop_at,
    can_indent,
    can_move_down,
    can_move_up,
    can_outdent,
    compute_delete,
    compute_indent,
    compute_insert,
    compute_move_down,
    compute_move_up,
    compute_normalization,
    compute_outdent,
    compute_reposition,
    verify_batch,
)
from .rollup import compute_full_rollup, compute_rollup_updates, span_days

logger = logging.getLogger(__name__)

BUSY_REASON = "Another change to these tasks is still saving"
UNDO_CONFLICT_REASON = "The outline has changed since; this change can no longer be undone"


class OperationState(StrEnum):
    IDLE = "idle"
    COMPUTING = "computing"
    OPTIMISTICALLY_APPLIED = "optimistically_applied"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    REJECTED = "rejected"


_TRANSITIONS: dict[OperationState, set[OperationState]] = {
    OperationState.IDLE: {OperationState.COMPUTING},
    OperationState.COMPUTING: {OperationState.OPTIMISTICALLY_APPLIED, OperationState.REJECTED},
    OperationState.OPTIMISTICALLY_APPLIED: {OperationState.COMMITTED, OperationState.ROLLED_BACK},
    OperationState.COMMITTED: set(),
    OperationState.ROLLED_BACK: set(),
    OperationState.REJECTED: set(),
}


@dataclass(slots=True)
class Operation:
    kind: OperationKind
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: OperationState = OperationState.IDLE
    task_ids: set[str] = field(default_factory=set)
    # task_ids plus "#<parent>" keys for every sibling run the change renumbers
    locks: set[str] = field(default_factory=set)

    def advance(self, new_state: OperationState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"operation {self.id}: illegal transition {self.state} -> {new_state}")
        logger.debug("Operation %s (%s): %s -> %s", self.id, self.kind.value, self.state, new_state)
        self.state = new_state


@dataclass(frozen=True, slots=True)
class OperationResult:
    ok: bool
    kind: OperationKind
    reason: str | None = None
    changes: ChangeSet | None = None
    rollup: ChangeSet | None = None
    task_id: str | None = None


@dataclass(slots=True)
class _UndoEntry:
    kind: OperationKind
    snapshot: dict[str, Task]
    task_ids: set[str]


# A compute step gets the current tasks and returns a change set, or the
# reason the operation does not apply.
_Compute = Callable[[list[Task]], "ChangeSet | str"]


class HierarchyCoordinator:
    """
    Per-project coordinator.

    Operations on disjoint tasks and sibling runs may overlap; an operation
    touching a task or run that belongs to an unsettled one is rejected with
    BUSY_REASON. A roll-up blocked that way runs once nothing is in flight.
    """

    def __init__(
        self,
        project_id: str,
        store: TaskRepo,
        cache: TaskCache | None = None,
        *,
        notifier: Notifier | None = None,
        channel: LiveUpdates | None = None,
        remap_on_reorder: bool = False,
        undo_limit: int = 20,
        submit_retries: int = 1,
    ) -> None:
        self.project_id = project_id
        self.cache = cache if cache is not None else TaskCache(project_id)
        self.pending = PendingUpdates()
        self._store = store
        self._notifier = notifier
        self._remap_on_reorder = remap_on_reorder
        self._submit_retries = max(0, submit_retries)
        self._undo: deque[_UndoEntry] = deque(maxlen=max(1, undo_limit))
        self._in_flight: dict[str, set[str]] = {}
        self._reload_deferred = False
        self._rollup_deferred = False
        self._unsubscribe: Callable[[], None] | None = None
        if channel is not None:
            self._unsubscribe = channel.subscribe(project_id, self.on_external_change)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def busy(self) -> bool:
        return bool(self._in_flight)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    async def load(self) -> list[Task]:
        tasks = await self._store.list_tasks(self.project_id)
        self.cache.replace(tasks)
        logger.info("Loaded %d task(s) for project %s", len(tasks), self.project_id)
        return self.cache.tasks()

    # ---- predicates ----

    def _task(self, task_id: str) -> Task | None:
        return self.cache.get(task_id)

    def can_indent(self, task_id: str) -> bool:
        task = self._task(task_id)
        return task is not None and can_indent(task, self.cache.tasks())

    def can_outdent(self, task_id: str) -> bool:
        task = self._task(task_id)
        return task is not None and can_outdent(task, self.cache.tasks())

    def can_move_up(self, task_id: str) -> bool:
        task = self._task(task_id)
        return task is not None and can_move_up(task, self.cache.tasks())

    def can_move_down(self, task_id: str) -> bool:
        task = self._task(task_id)
        return task is not None and can_move_down(task, self.cache.tasks())

    def can_drop_at(self, dragged_id: str, target_id: str, position: DropPosition) -> bool:
        dragged, target = self._task(dragged_id), self._task(target_id)
        if dragged is None or target is None:
            return False
        return can_drop_at(dragged, target, position, self.cache.tasks())

    # ---- structural commands ----

    def _renumbering(
        self,
        task_id: str,
        engine: Callable[[Task, list[Task]], list[HierarchyUpdate]],
        *,
        remap: bool,
        reason: str,
    ) -> _Compute:
        def compute(tasks: list[Task]) -> ChangeSet | str:
            task = next((t for t in tasks if t.id == task_id), None)
            if task is None:
                return "Task not found"
            updates = engine(task, tasks)
            if not updates:
                return reason
            preds = compute_predecessor_updates(updates, tasks) if remap else []
            return ChangeSet(hierarchy_updates=updates, predecessor_updates=preds)

        return compute

    async def indent(self, task_id: str) -> OperationResult:
        compute = self._renumbering(
            task_id, compute_indent, remap=True, reason="Task has no preceding sibling to indent under"
        )
        return await self._run(OperationKind.INDENT, compute)

    async def outdent(self, task_id: str) -> OperationResult:
        compute = self._renumbering(
            task_id, compute_outdent, remap=True, reason="Only second-level tasks can be outdented"
        )
        return await self._run(OperationKind.OUTDENT, compute)

    async def move_up(self, task_id: str) -> OperationResult:
        compute = self._renumbering(
            task_id, compute_move_up, remap=self._remap_on_reorder, reason="Task is already first"
        )
        return await self._run(OperationKind.MOVE_UP, compute)

    async def move_down(self, task_id: str) -> OperationResult:
        compute = self._renumbering(
            task_id, compute_move_down, remap=self._remap_on_reorder, reason="Task is already last"
        )
        return await self._run(OperationKind.MOVE_DOWN, compute)

    async def reposition(
        self, dragged_id: str, target_id: str, position: DropPosition = DropPosition.AFTER
    ) -> OperationResult:
        def compute(tasks: list[Task]) -> ChangeSet | str:
            by_id = {t.id: t for t in tasks}
            dragged, target = by_id.get(dragged_id), by_id.get(target_id)
            if dragged is None or target is None:
                return "Task not found"
            updates = compute_reposition(dragged, target, position, tasks)
            if not updates:
                return "Tasks can only be dropped next to a sibling at the same level"
            preds = compute_predecessor_updates(updates, tasks) if self._remap_on_reorder else []
            return ChangeSet(hierarchy_updates=updates, predecessor_updates=preds)

        return await self._run(OperationKind.REPOSITION, compute)

    async def insert_task(
        self,
        name: str,
        *,
        parent: str | None = None,
        anchor_id: str | None = None,
        position: DropPosition = DropPosition.AFTER,
        start_date: date | None = None,
        duration: int = 1,
    ) -> OperationResult:
        """
        Create a task as the last child of `parent` (hierarchy number, None for
        a root), or directly before/after the task `anchor_id`.
        """
        name = (name or "").strip()
        if not name:
            return OperationResult(ok=False, kind=OperationKind.INSERT, reason="Task name is required")
        new_id = uuid.uuid4().hex

        def compute(tasks: list[Task]) -> ChangeSet | str:
            anchor = None
            if anchor_id is not None:
                anchor = next((t for t in tasks if t.id == anchor_id), None)
                if anchor is None:
                    return "Task not found"
            plan = compute_insert(tasks, parent=parent, anchor=anchor, position=position)
            if plan is None:
                return f"Parent task {parent} not found"
            days = max(1, duration)
            task = Task(
                id=new_id,
                project_id=self.project_id,
                name=name,
                hierarchy_number=plan.hierarchy_number,
                start_date=start_date,
                end_date=start_date + timedelta(days=days - 1) if start_date else None,
                duration=days,
                order_index=len(tasks),
            )
            return ChangeSet(
                hierarchy_updates=plan.updates,
                predecessor_updates=compute_predecessor_updates(plan.updates, tasks),
                inserted=[task],
            )

        result = await self._run(OperationKind.INSERT, compute)
        if result.ok:
            return OperationResult(
                ok=True, kind=result.kind, changes=result.changes, rollup=result.rollup, task_id=new_id
            )
        return result

    async def delete_task(self, task_id: str) -> OperationResult:
        def compute(tasks: list[Task]) -> ChangeSet | str:
            task = next((t for t in tasks if t.id == task_id), None)
            if task is None:
                return "Task not found"
            plan = compute_delete(task, tasks)
            if plan is None:
                return "Task not found"
            gone = set(plan.deleted_ids)
            preds = [
                p
                for p in compute_predecessor_updates(
                    plan.updates, tasks, dropped=plan.deleted_numbers
                )
                if p.task_id not in gone
            ]
            return ChangeSet(
                hierarchy_updates=plan.updates,
                predecessor_updates=preds,
                deleted_ids=plan.deleted_ids,
            )

        return await self._run(OperationKind.DELETE, compute)

    # ---- field edits ----

    async def set_predecessors(
        self, task_id: str, predecessors: Iterable[str] | str | None
    ) -> OperationResult:
        if predecessors is None or isinstance(predecessors, str):
            proposed = parse_predecessors(predecessors)
        else:
            proposed = parse_predecessors(list(predecessors))

        def compute(tasks: list[Task]) -> ChangeSet | str:
            task = next((t for t in tasks if t.id == task_id), None)
            if task is None:
                return "Task not found"
            check = validate_predecessors(task_id, proposed, tasks)
            if not check.is_valid:
                return "; ".join(check.errors)
            for warning in check.warnings:
                logger.info("Predecessors for %s: %s", task.hierarchy_number, warning)
            cleaned = list(dict.fromkeys(proposed))
            if cleaned == parse_predecessors(task.predecessors):
                return "Predecessors unchanged"
            return ChangeSet(
                predecessor_updates=[PredecessorUpdate(task_id=task_id, predecessors=cleaned or None)]
            )

        return await self._run(OperationKind.SET_PREDECESSORS, compute, rollup=False)

    async def edit_schedule(
        self,
        task_id: str,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        duration: int | None = None,
        progress: int | None = None,
    ) -> OperationResult:
        """
        Edit a leaf task's dates/progress; parents are derived by roll-up.

        A given duration wins over a given end date; end = start + duration - 1.
        """

        def compute(tasks: list[Task]) -> ChangeSet | str:
            task = next((t for t in tasks if t.id == task_id), None)
            if task is None:
                return "Task not found"
            if task.hierarchy_number and has_children(task.hierarchy_number, tasks):
                return "Parent task dates are derived from its subtasks"

            start = start_date if start_date is not None else task.start_date
            end = end_date if end_date is not None else task.end_date
            days = task.duration
            if duration is not None:
                days = max(1, duration)
                if start is not None:
                    end = start + timedelta(days=days - 1)
            elif start is not None and end is not None:
                if end < start:
                    return "End date is before start date"
                days = span_days(start, end)
            pct = task.progress if progress is None else max(0, min(100, progress))

            update = ScheduleUpdate(id=task_id, start_date=start, end_date=end, duration=days, progress=pct)
            if (start, end, days, pct) == (task.start_date, task.end_date, task.duration, task.progress):
                return "Schedule unchanged"
            return ChangeSet(schedule_updates=[update])

        return await self._run(OperationKind.EDIT_SCHEDULE, compute)

    # ---- repair ----

    async def normalize(self) -> OperationResult:
        """Rebuild contiguous numbering and strip self/subtree predecessor references."""

        def compute(tasks: list[Task]) -> ChangeSet | str:
            updates = compute_normalization(tasks)
            preds = compute_predecessor_updates(updates, tasks)
            if updates:
                projected = TaskCache(self.project_id, tasks)
                projected.apply(ChangeSet(hierarchy_updates=updates, predecessor_updates=preds))
                fixes = {p.task_id: p for p in find_self_references(projected.tasks())}
                preds = [fixes.pop(p.task_id, p) for p in preds] + list(fixes.values())
            else:
                preds = find_self_references(tasks)
            if not updates and not preds:
                return "Outline is already contiguous"
            return ChangeSet(hierarchy_updates=updates, predecessor_updates=preds)

        return await self._run(OperationKind.NORMALIZE, compute, full_rollup=True)

    async def import_outline(self, outline: OutlineImport) -> OperationResult:
        """Append an imported outline after the existing roots, then roll up."""

        def compute(tasks: list[Task]) -> ChangeSet | str:
            if not outline.tasks:
                return "Outline has no tasks"
            offset = len(children_of(None, tasks))
            new_tasks = outline.to_tasks(self.project_id, root_offset=offset, order_start=len(tasks))
            return ChangeSet(inserted=new_tasks)

        return await self._run(OperationKind.INSERT, compute, full_rollup=True)

    async def undo(self) -> OperationResult:
        if not self._undo:
            return OperationResult(ok=False, kind=OperationKind.UNDO, reason="Nothing to undo")
        entry = self._undo.pop()

        def compute(tasks: list[Task]) -> ChangeSet | str:
            changes = _reverse_changes(entry, {t.id: t for t in tasks})
            if changes.is_empty:
                return "Nothing to undo"
            assignments = {u.id: u.hierarchy_number for u in changes.hierarchy_updates}
            try:
                verify_batch(tasks + changes.inserted, assignments, set(changes.deleted_ids))
            except OutlineConsistencyError as exc:
                logger.warning("Undo of %s dropped: %s", entry.kind.value, exc)
                return UNDO_CONFLICT_REASON
            return changes

        result = await self._run(OperationKind.UNDO, compute, rollup=False, record_undo=False)
        if not result.ok and result.reason not in ("Nothing to undo", UNDO_CONFLICT_REASON):
            self._undo.append(entry)
        return result

    # ---- live updates ----

    async def on_external_change(self, event: TaskChangeEvent) -> None:
        if event.project_id != self.project_id:
            return
        foreign = {i for i in event.task_ids if i not in self.pending}
        if event.task_ids and not foreign:
            logger.debug("Ignoring echo for %d pending task(s)", len(event.task_ids))
            return
        if self._in_flight:
            logger.debug("External change while busy; reload deferred")
            self._reload_deferred = True
            return
        await self._reload()

    async def _reload(self) -> None:
        try:
            await self.load()
            self._reload_deferred = False
        except Exception:
            logger.exception("Reload of project %s failed", self.project_id)

    # ---- machinery ----

    async def _submit(self, changes: ChangeSet) -> None:
        attempt = 0
        while True:
            try:
                await self._store.apply_batch(self.project_id, changes, suppress_echo=True)
                return
            except TransientStoreError as exc:
                if attempt >= self._submit_retries:
                    raise
                attempt += 1
                logger.warning("Transient store failure, retrying (%d/%d): %s", attempt, self._submit_retries, exc)

    def _notify_failure(self, kind: OperationKind) -> None:
        if self._notifier is not None:
            self._notifier.notify_error(kind.failure_message)

    async def _run(
        self,
        kind: OperationKind,
        compute: _Compute,
        *,
        rollup: bool = True,
        full_rollup: bool = False,
        record_undo: bool = True,
    ) -> OperationResult:
        op = Operation(kind=kind)
        op.advance(OperationState.COMPUTING)
        snapshot = self.cache.snapshot()
        tasks = self.cache.tasks()

        try:
            planned = compute(tasks)
        except OutlineConsistencyError as exc:
            logger.error("Operation %s (%s) aborted: %s", op.id, kind.value, exc)
            op.advance(OperationState.REJECTED)
            self._notify_failure(kind)
            return OperationResult(ok=False, kind=kind, reason=str(exc))

        if isinstance(planned, str):
            op.advance(OperationState.REJECTED)
            logger.debug("Operation %s (%s) rejected: %s", op.id, kind.value, planned)
            return OperationResult(ok=False, kind=kind, reason=planned)

        changes = planned
        op.task_ids = changes.affected_ids()
        touched = _touched_numbers(changes, snapshot)
        op.locks = op.task_ids | _run_keys(touched)
        if self._overlaps(op.locks):
            op.advance(OperationState.REJECTED)
            logger.info("Operation %s (%s) rejected: overlapping change in flight", op.id, kind.value)
            return OperationResult(ok=False, kind=kind, reason=BUSY_REASON)

        # The store checks every member of the runs the numbers were computed from.
        runs = {parent_of(h) for h in touched}
        read_ids = {
            t.id
            for t in snapshot.values()
            if t.hierarchy_number and parent_of(t.hierarchy_number) in runs
        }
        changes.expected_hierarchy = {
            i: snapshot[i].hierarchy_number for i in op.task_ids | read_ids if i in snapshot
        }

        self._in_flight[op.id] = op.locks
        self.pending.mark(op.task_ids)
        self.cache.apply(changes)
        op.advance(OperationState.OPTIMISTICALLY_APPLIED)

        try:
            await self._submit(changes)
        except Exception as exc:
            logger.warning(
                "Operation %s (%s) failed, rolling back: %s",
                op.id,
                kind.value,
                exc,
                exc_info=not isinstance(exc, StoreError),
            )
            self.cache.restore(snapshot, op.task_ids)
            op.advance(OperationState.ROLLED_BACK)
            self._settle(op)
            self._notify_failure(kind)
            if not self._in_flight:
                await self._reload()
            await self._flush_deferred_rollup()
            return OperationResult(ok=False, kind=kind, reason=kind.failure_message)

        op.advance(OperationState.COMMITTED)
        self._settle(op)
        logger.info("Operation %s (%s) committed: %d task(s)", op.id, kind.value, len(op.task_ids))

        entry = _UndoEntry(kind=kind, snapshot=snapshot, task_ids=set(op.task_ids))
        if record_undo:
            self._undo.append(entry)

        rolled: ChangeSet | None = None
        if rollup or full_rollup:
            numbers = self._chain_numbers(op.task_ids, snapshot)
            rolled = await self._follow_up_rollup(numbers, full=full_rollup)
            if rolled is not None:
                entry.task_ids.update(rolled.affected_ids())

        if self._reload_deferred and not self._in_flight:
            await self._reload()
        await self._flush_deferred_rollup()
        return OperationResult(ok=True, kind=kind, changes=changes, rollup=rolled)

    def _overlaps(self, locks: set[str]) -> bool:
        return any(locks & busy for busy in self._in_flight.values())

    def _settle(self, op: Operation) -> None:
        self._in_flight.pop(op.id, None)
        self.pending.clear(op.task_ids)

    def _chain_numbers(self, ids: Iterable[str], snapshot: dict[str, Task]) -> set[str]:
        # Old positions matter too: a parent that lost a child needs a recompute.
        numbers: set[str] = set()
        for task_id in ids:
            cur = self.cache.get(task_id)
            if cur is not None and cur.hierarchy_number:
                numbers.add(cur.hierarchy_number)
            old = snapshot.get(task_id)
            if old is not None and old.hierarchy_number:
                numbers.add(old.hierarchy_number)
        return numbers

    async def _follow_up_rollup(self, numbers: set[str], *, full: bool = False) -> ChangeSet | None:
        tasks = self.cache.tasks()
        updates = compute_full_rollup(tasks) if full else compute_rollup_updates(tasks, numbers)
        if not updates:
            return None
        rollup = ChangeSet(schedule_updates=updates)
        result = await self._run(OperationKind.ROLLUP, lambda _tasks: rollup, rollup=False, record_undo=False)
        if result.ok:
            return rollup
        if result.reason == BUSY_REASON:
            logger.info("Roll-up deferred until the change holding its parents settles")
            self._rollup_deferred = True
        return None

    async def _flush_deferred_rollup(self) -> None:
        if not self._rollup_deferred or self._in_flight:
            return
        self._rollup_deferred = False
        await self._follow_up_rollup(set(), full=True)


def _touched_numbers(changes: ChangeSet, snapshot: dict[str, Task]) -> set[str]:
    """Old and new hierarchy numbers of every task the change renumbers, adds or removes."""
    numbers = {u.hierarchy_number for u in changes.hierarchy_updates if u.hierarchy_number}
    numbers.update(t.hierarchy_number for t in changes.inserted if t.hierarchy_number)
    for task_id in [u.id for u in changes.hierarchy_updates] + list(changes.deleted_ids):
        old = snapshot.get(task_id)
        if old is not None and old.hierarchy_number:
            numbers.add(old.hierarchy_number)
    return numbers


def _run_keys(numbers: Iterable[str]) -> set[str]:
    # A number locks the run it sits in and the run of its children.
    keys: set[str] = set()
    for h in numbers:
        keys.add(f"#{parent_of(h) or ''}")
        keys.add(f"#{h}")
    return keys


def _reverse_changes(entry: _UndoEntry, current: dict[str, Task]) -> ChangeSet:
    """Change set that brings entry.task_ids back to their snapshot state."""
    out = ChangeSet()
    for task_id in sorted(entry.task_ids):
        before = entry.snapshot.get(task_id)
        now = current.get(task_id)
        if before is None and now is not None:
            out.deleted_ids.append(task_id)
            continue
        if before is not None and now is None:
            out.inserted.append(before)
            continue
        if before is None or now is None:
            continue
        if before.hierarchy_number != now.hierarchy_number and before.hierarchy_number:
            out.hierarchy_updates.append(HierarchyUpdate(id=task_id, hierarchy_number=before.hierarchy_number))
        if parse_predecessors(before.predecessors) != parse_predecessors(now.predecessors):
            out.predecessor_updates.append(
                PredecessorUpdate(task_id=task_id, predecessors=list(before.predecessors) or None)
            )
        if (before.start_date, before.end_date, before.duration, before.progress) != (
            now.start_date,
            now.end_date,
            now.duration,
            now.progress,
        ):
            out.schedule_updates.append(
                ScheduleUpdate(
                    id=task_id,
                    start_date=before.start_date,
                    end_date=before.end_date,
                    duration=before.duration,
                    progress=before.progress,
                )
            )
    return out
