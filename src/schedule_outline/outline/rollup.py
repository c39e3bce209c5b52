# src/schedule_outline/outline/rollup.py

"""
Ancestor roll-up: parent schedule fields derived from their direct children.

- start = earliest child start, end = latest child end
- duration = inclusive whole-day span (a one-day task has duration 1)
- progress = duration-weighted mean, plain mean when all durations are 0
- an update is emitted only when a value actually changes
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date

from .hierarchy import ancestors_of, children_of, level_of, parse_hierarchy
from .models import ScheduleUpdate, Task

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ParentValues:
    start_date: date | None
    end_date: date | None
    duration: int
    progress: int


def span_days(start: date, end: date) -> int:
    return (end - start).days + 1


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def compute_parent_values(parent: Task, children: Iterable[Task]) -> ParentValues | None:
    kids = list(children)
    if not kids:
        return None

    starts = [c.start_date for c in kids if c.start_date is not None]
    ends = [c.end_date for c in kids if c.end_date is not None]
    start = min(starts) if starts else parent.start_date
    end = max(ends) if ends else parent.end_date

    if start is not None and end is not None and end >= start:
        duration = span_days(start, end)
    else:
        duration = parent.duration

    weights = [max(0, c.duration) for c in kids]
    total = sum(weights)
    if total > 0:
        progress = _round_half_up(sum(c.progress * w for c, w in zip(kids, weights)) / total)
    else:
        progress = _round_half_up(sum(c.progress for c in kids) / len(kids))
    progress = max(0, min(100, progress))

    return ParentValues(start_date=start, end_date=end, duration=duration, progress=progress)


def _differs(task: Task, values: ParentValues) -> bool:
    return (
        task.start_date != values.start_date
        or task.end_date != values.end_date
        or task.duration != values.duration
        or task.progress != values.progress
    )


def _rollup(tasks: Iterable[Task], parents: Iterable[str]) -> list[ScheduleUpdate]:
    working: dict[str, Task] = {}
    for t in tasks:
        if t.hierarchy_number:
            working.setdefault(t.hierarchy_number, t)

    # Deepest first so each recomputed parent feeds the level above it.
    order = sorted(set(parents), key=lambda h: (-level_of(h), parse_hierarchy(h)))

    out: list[ScheduleUpdate] = []
    for h in order:
        parent = working.get(h)
        if parent is None:
            continue
        values = compute_parent_values(parent, children_of(h, working.values()))
        if values is None or not _differs(parent, values):
            continue
        working[h] = replace(
            parent,
            start_date=values.start_date,
            end_date=values.end_date,
            duration=values.duration,
            progress=values.progress,
        )
        out.append(
            ScheduleUpdate(
                id=parent.id,
                start_date=values.start_date,
                end_date=values.end_date,
                duration=values.duration,
                progress=values.progress,
            )
        )
    return out


def compute_rollup_updates(
    tasks: Iterable[Task], hierarchy_numbers: Iterable[str], *, include_self: bool = False
) -> list[ScheduleUpdate]:
    """Roll-up updates for every ancestor of the given (already current) numbers."""
    task_list = list(tasks)
    chains: set[str] = set()
    for h in hierarchy_numbers:
        if h:
            chains.update(ancestors_of(h, include_self=include_self))
    updates = _rollup(task_list, chains)
    logger.debug("Roll-up over %d ancestor(s): %d update(s)", len(chains), len(updates))
    return updates


def compute_full_rollup(tasks: Iterable[Task]) -> list[ScheduleUpdate]:
    task_list = list(tasks)
    return _rollup(task_list, (t.hierarchy_number for t in task_list if t.hierarchy_number))
