# src/schedule_outline/outline/renumber.py

"""
Renumbering engine.

Every structural change (indent, outdent, move up/down, drag, insert, delete,
normalize) is computed here as a list of HierarchyUpdate values against a
read-only task list. Nothing in this module touches storage or the cache.

Rules:
- each operation has one private plan function; the public can_* predicate is
  "plan is not None", the compute_* function executes the same plan
- an illegal operation yields an empty list, never an exception
- every renumbered task carries its whole subtree (whole-segment prefix rewrite)
- a batch that would give two tasks the same number raises
  OutlineConsistencyError and nothing is emitted
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .hierarchy import (
    ancestors_of,
    child_number,
    children_of,
    descendants_of,
    is_contiguous,
    is_descendant_of,
    is_sibling_of,
    is_valid_hierarchy,
    last_segment,
    level_of,
    parent_of,
    replace_prefix,
    siblings_of,
    sort_tasks,
)
from .models import DropPosition, HierarchyUpdate, Task

logger = logging.getLogger(__name__)


class OutlineConsistencyError(RuntimeError):
    """The outline drifted so far that a safe batch cannot be computed."""


class _Batch:
    """
    Working state of one computation: tentative numbers plus slot occupancy.

    Subtrees are always resolved against the original numbers, so each
    original subtree must be moved at most once per batch.
    """

    def __init__(self, tasks: Iterable[Task]) -> None:
        self.tasks = [t for t in tasks if t.hierarchy_number]
        self.assignments: dict[str, str] = {}
        self.deleted: set[str] = set()
        self.occupied: dict[str, str] = {t.hierarchy_number or "": t.id for t in self.tasks}

    def _members(self, task: Task) -> list[Task]:
        h = task.hierarchy_number or ""
        return [task, *descendants_of(h, self.tasks)]

    def _current(self, task: Task) -> str:
        return self.assignments.get(task.id, task.hierarchy_number or "")

    def _release(self, members: Sequence[Task]) -> None:
        for m in members:
            cur = self._current(m)
            if self.occupied.get(cur) == m.id:
                del self.occupied[cur]

    def move_subtree(self, task: Task, new_h: str) -> None:
        old_h = task.hierarchy_number or ""
        if old_h == new_h:
            return
        members = self._members(task)
        self._release(members)
        for m in members:
            new = replace_prefix(m.hierarchy_number or "", old_h, new_h)
            self.assignments[m.id] = new
            self.occupied[new] = m.id

    def remove_subtree(self, task: Task) -> list[Task]:
        members = self._members(task)
        self._release(members)
        self.deleted.update(m.id for m in members)
        return members

    def claim_slot(self, parent: str | None, n: int) -> str:
        """
        First free number at or below n within parent's run.

        Bounded by the number of tasks; running out means the outline is not
        what the computation assumed.
        """
        limit = len(self.tasks) + 1
        candidate = n
        for _ in range(limit):
            if candidate < 1:
                break
            h = child_number(parent, candidate)
            if h not in self.occupied:
                return h
            candidate -= 1
        raise OutlineConsistencyError(
            f"no free slot at or below {child_number(parent, n)} after {limit} step(s)"
        )

    def updates(self) -> list[HierarchyUpdate]:
        verify_batch(self.tasks, self.assignments, self.deleted)
        by_id = {t.id: t for t in self.tasks}
        out = []
        for task_id, new_h in self.assignments.items():
            if task_id in self.deleted:
                continue
            if by_id[task_id].hierarchy_number != new_h:
                out.append(HierarchyUpdate(id=task_id, hierarchy_number=new_h))
        return out


def verify_batch(
    tasks: Iterable[Task], assignments: dict[str, str], deleted: set[str] | None = None
) -> None:
    deleted = deleted or set()
    final: dict[str, str] = {}
    for t in tasks:
        if t.id in deleted:
            continue
        h = assignments.get(t.id, t.hierarchy_number)
        if not h:
            continue
        if h in final:
            raise OutlineConsistencyError(
                f"batch assigns hierarchy number {h} to both {final[h]} and {t.id}"
            )
        final[h] = t.id


def _position(task: Task, run: Sequence[Task]) -> int:
    for i, t in enumerate(run):
        if t.id == task.id:
            return i
    return -1


def _shift_run_down(batch: _Batch, run: Sequence[Task]) -> None:
    # Ascending: each slot is vacated before the next sibling claims it.
    for sib in run:
        h = sib.hierarchy_number or ""
        target = batch.claim_slot(parent_of(h), last_segment(h) - 1)
        batch.move_subtree(sib, target)


def _shift_run_up(batch: _Batch, run: Sequence[Task]) -> None:
    for sib in reversed(run):
        h = sib.hierarchy_number or ""
        batch.move_subtree(sib, child_number(parent_of(h), last_segment(h) + 1))


# ---- indent ----


@dataclass(frozen=True, slots=True)
class _IndentPlan:
    new_number: str
    later_siblings: list[Task]


def _plan_indent(task: Task, tasks: Sequence[Task]) -> _IndentPlan | None:
    if not task.hierarchy_number:
        return None
    siblings = siblings_of(task, tasks)
    idx = _position(task, siblings)
    if idx <= 0:
        return None
    new_parent = siblings[idx - 1].hierarchy_number or ""
    new_number = child_number(new_parent, len(children_of(new_parent, tasks)) + 1)
    if any(t.hierarchy_number == new_number for t in tasks):
        return None
    return _IndentPlan(new_number=new_number, later_siblings=siblings[idx + 1 :])


def can_indent(task: Task, tasks: Sequence[Task]) -> bool:
    return _plan_indent(task, tasks) is not None


def compute_indent(task: Task, tasks: Sequence[Task]) -> list[HierarchyUpdate]:
    """
    Make task the last child of its preceding sibling.

    The task's subtree moves with it and the siblings after it close the gap.
    """
    plan = _plan_indent(task, tasks)
    if plan is None:
        logger.debug("Indent rejected for %s (%s)", task.id, task.hierarchy_number)
        return []
    batch = _Batch(tasks)
    batch.move_subtree(task, plan.new_number)
    _shift_run_down(batch, plan.later_siblings)
    updates = batch.updates()
    logger.debug("Indent %s -> %s: %d update(s)", task.hierarchy_number, plan.new_number, len(updates))
    return updates


# ---- outdent ----


@dataclass(frozen=True, slots=True)
class _OutdentPlan:
    new_number: str
    later_roots: list[Task]
    later_siblings: list[Task]


def _plan_outdent(task: Task, tasks: Sequence[Task]) -> _OutdentPlan | None:
    h = task.hierarchy_number
    # Only depth-2 children can be promoted.
    if not h or level_of(h) != 1:
        return None
    parent = parent_of(h) or ""
    parent_no = last_segment(parent)
    siblings = siblings_of(task, tasks)
    idx = _position(task, siblings)
    if idx < 0:
        return None
    later_roots = [r for r in children_of(None, tasks) if last_segment(r.hierarchy_number or "") > parent_no]
    return _OutdentPlan(
        new_number=str(parent_no + 1),
        later_roots=later_roots,
        later_siblings=siblings[idx + 1 :],
    )


def can_outdent(task: Task, tasks: Sequence[Task]) -> bool:
    return _plan_outdent(task, tasks) is not None


def compute_outdent(task: Task, tasks: Sequence[Task]) -> list[HierarchyUpdate]:
    """
    Promote a depth-2 task to the root slot right after its parent.

    Later roots shift up by one, later children of the old parent shift down.
    """
    plan = _plan_outdent(task, tasks)
    if plan is None:
        logger.debug("Outdent rejected for %s (%s)", task.id, task.hierarchy_number)
        return []
    batch = _Batch(tasks)
    _shift_run_up(batch, plan.later_roots)
    batch.move_subtree(task, plan.new_number)
    _shift_run_down(batch, plan.later_siblings)
    updates = batch.updates()
    logger.debug("Outdent %s -> %s: %d update(s)", task.hierarchy_number, plan.new_number, len(updates))
    return updates


# ---- move up / move down ----


def _plan_swap(task: Task, tasks: Sequence[Task], step: int) -> Task | None:
    if not task.hierarchy_number:
        return None
    siblings = siblings_of(task, tasks)
    idx = _position(task, siblings)
    other = idx + step
    if idx < 0 or other < 0 or other >= len(siblings):
        return None
    return siblings[other]


def can_move_up(task: Task, tasks: Sequence[Task]) -> bool:
    return _plan_swap(task, tasks, -1) is not None


def can_move_down(task: Task, tasks: Sequence[Task]) -> bool:
    return _plan_swap(task, tasks, 1) is not None


def _compute_swap(task: Task, tasks: Sequence[Task], step: int) -> list[HierarchyUpdate]:
    other = _plan_swap(task, tasks, step)
    if other is None:
        logger.debug("Move %s rejected for %s", "up" if step < 0 else "down", task.hierarchy_number)
        return []
    batch = _Batch(tasks)
    batch.move_subtree(task, other.hierarchy_number or "")
    batch.move_subtree(other, task.hierarchy_number or "")
    return batch.updates()


def compute_move_up(task: Task, tasks: Sequence[Task]) -> list[HierarchyUpdate]:
    return _compute_swap(task, tasks, -1)


def compute_move_down(task: Task, tasks: Sequence[Task]) -> list[HierarchyUpdate]:
    return _compute_swap(task, tasks, 1)


# ---- drag / reposition ----


def _plan_drop(
    dragged: Task, target: Task, position: DropPosition, tasks: Sequence[Task]
) -> list[Task] | None:
    dh, th = dragged.hierarchy_number, target.hierarchy_number
    if not dh or not th or dragged.id == target.id:
        return None
    if is_descendant_of(th, dh) or not is_sibling_of(dh, th):
        return None

    siblings = siblings_of(dragged, tasks)
    from_idx = _position(dragged, siblings)
    target_idx = _position(target, siblings)
    if from_idx < 0 or target_idx < 0:
        return None

    insert_at = target_idx + 1 if position is DropPosition.AFTER else target_idx
    if insert_at > from_idx:
        insert_at -= 1
    if insert_at == from_idx:
        return None

    order = [t for t in siblings if t.id != dragged.id]
    order.insert(insert_at, dragged)
    return order


def can_drop_at(
    dragged: Task, target: Task, position: DropPosition, tasks: Sequence[Task]
) -> bool:
    return _plan_drop(dragged, target, position, tasks) is not None


def compute_reposition(
    dragged: Task, target: Task, position: DropPosition, tasks: Sequence[Task]
) -> list[HierarchyUpdate]:
    """Reinsert dragged before/after target and renumber the run 1..N."""
    order = _plan_drop(dragged, target, position, tasks)
    if order is None:
        logger.debug(
            "Drop rejected: %s %s %s", dragged.hierarchy_number, position.value, target.hierarchy_number
        )
        return []
    parent = parent_of(dragged.hierarchy_number or "")
    batch = _Batch(tasks)
    for n, sib in enumerate(order, start=1):
        batch.move_subtree(sib, child_number(parent, n))
    return batch.updates()


# ---- insert ----


@dataclass(frozen=True, slots=True)
class InsertPlan:
    hierarchy_number: str
    updates: list[HierarchyUpdate] = field(default_factory=list)


def compute_insert(
    tasks: Sequence[Task],
    *,
    parent: str | None = None,
    anchor: Task | None = None,
    position: DropPosition = DropPosition.AFTER,
) -> InsertPlan | None:
    """
    Number for a new task plus the shifts that make room for it.

    With an anchor the task lands directly before/after it; otherwise it
    becomes the last child of parent (a root when parent is None). Returns
    None when the parent or anchor is not part of the outline.
    """
    numbered = [t for t in tasks if t.hierarchy_number]
    if anchor is not None:
        ah = anchor.hierarchy_number
        if not ah or _position(anchor, numbered) < 0:
            return None
        run = siblings_of(anchor, numbered)
        slot = last_segment(ah) + (1 if position is DropPosition.AFTER else 0)
        new_number = child_number(parent_of(ah), slot)
        batch = _Batch(numbered)
        _shift_run_up(batch, [s for s in run if last_segment(s.hierarchy_number or "") >= slot])
        if new_number in batch.occupied:
            raise OutlineConsistencyError(f"slot {new_number} still taken after shifting")
        return InsertPlan(hierarchy_number=new_number, updates=batch.updates())

    if parent is not None and not any(t.hierarchy_number == parent for t in numbered):
        return None
    new_number = child_number(parent, len(children_of(parent, numbered)) + 1)
    if any(t.hierarchy_number == new_number for t in numbered):
        raise OutlineConsistencyError(f"next child number {new_number} already exists")
    return InsertPlan(hierarchy_number=new_number)


# ---- delete ----


@dataclass(frozen=True, slots=True)
class DeletePlan:
    deleted_ids: list[str]
    deleted_numbers: list[str]
    updates: list[HierarchyUpdate]


def compute_delete(task: Task, tasks: Sequence[Task]) -> DeletePlan | None:
    """Remove task with its subtree and close the gap in its sibling run."""
    if not task.hierarchy_number:
        return DeletePlan(deleted_ids=[task.id], deleted_numbers=[], updates=[])
    siblings = siblings_of(task, tasks)
    idx = _position(task, siblings)
    if idx < 0:
        return None
    batch = _Batch(tasks)
    removed = batch.remove_subtree(task)
    _shift_run_down(batch, siblings[idx + 1 :])
    return DeletePlan(
        deleted_ids=[t.id for t in removed],
        deleted_numbers=[t.hierarchy_number or "" for t in removed],
        updates=batch.updates(),
    )


# ---- normalization ----


def needs_normalization(tasks: Iterable[Task]) -> bool:
    task_list = list(tasks)
    if any(not is_valid_hierarchy(t.hierarchy_number) for t in task_list):
        return True
    return not is_contiguous(task_list)


def compute_normalization(tasks: Iterable[Task]) -> list[HierarchyUpdate]:
    """
    Rebuild a contiguous outline from a drifted one.

    - existing relative order is kept (integer segment order, then order_index)
    - a task whose parent number is missing attaches to its nearest existing
      ancestor, or becomes a root
    - tasks without a valid number are appended as roots, by order_index
    """
    task_list = list(tasks)
    valid = sort_tasks(t for t in task_list if is_valid_hierarchy(t.hierarchy_number))
    loose = sorted(
        (t for t in task_list if not is_valid_hierarchy(t.hierarchy_number)),
        key=lambda t: t.order_index,
    )

    first_by_number: dict[str, Task] = {}
    for t in valid:
        first_by_number.setdefault(t.hierarchy_number or "", t)

    children: dict[str | None, list[Task]] = {}
    for t in valid:
        owner: str | None = None
        for anc in ancestors_of(t.hierarchy_number or ""):
            if anc in first_by_number:
                owner = first_by_number[anc].id
                break
        children.setdefault(owner, []).append(t)
    children.setdefault(None, []).extend(loose)

    out: list[HierarchyUpdate] = []
    stack: list[tuple[str | None, str | None]] = [(None, None)]
    while stack:
        owner_id, owner_number = stack.pop()
        for n, child in enumerate(children.get(owner_id, []), start=1):
            new_h = child_number(owner_number, n)
            if child.hierarchy_number != new_h:
                out.append(HierarchyUpdate(id=child.id, hierarchy_number=new_h))
            stack.append((child.id, new_h))

    final = {t.id: t.hierarchy_number for t in task_list}
    final.update({u.id: u.hierarchy_number for u in out})
    verify_batch(task_list, {k: v for k, v in final.items() if v})
    logger.debug("Normalization: %d of %d task(s) renumbered", len(out), len(task_list))
    return out
