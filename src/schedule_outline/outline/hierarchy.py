# src/schedule_outline/outline/hierarchy.py

"""
Dotted hierarchy numbers ("1", "1.2", "2.3.1").

Pure helpers only: nothing here mutates tasks or talks to storage.
Segments are always compared as integers so that "10" sorts after "9".
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Iterable

from .models import Task

_HIERARCHY_RE = re.compile(r"^[1-9]\d*(?:\.[1-9]\d*)*$")


def is_valid_hierarchy(h: str | None) -> bool:
    return bool(h) and _HIERARCHY_RE.match(h) is not None


def parse_hierarchy(h: str) -> tuple[int, ...]:
    """Integer segments of a hierarchy number; non-numeric segments count as 0."""
    out: list[int] = []
    for part in h.split("."):
        try:
            out.append(int(part))
        except ValueError:
            out.append(0)
    return tuple(out)


def level_of(h: str) -> int:
    """Root = 0."""
    return len(h.split(".")) - 1


def parent_of(h: str) -> str | None:
    parts = h.split(".")
    if len(parts) == 1:
        return None
    return ".".join(parts[:-1])


def last_segment(h: str) -> int:
    return parse_hierarchy(h)[-1]


def child_number(parent: str | None, n: int) -> str:
    return str(n) if parent is None else f"{parent}.{n}"


def is_descendant_of(h: str | None, ancestor: str | None) -> bool:
    if not h or not ancestor:
        return False
    return h.startswith(ancestor + ".")


def is_sibling_of(h1: str | None, h2: str | None) -> bool:
    if not h1 or not h2:
        return False
    return level_of(h1) == level_of(h2) and parent_of(h1) == parent_of(h2)


def ancestors_of(h: str, *, include_self: bool = False) -> list[str]:
    """Ancestor numbers, nearest first: "1.2.3" -> ["1.2", "1"]."""
    parts = h.split(".")
    start = len(parts) if include_self else len(parts) - 1
    return [".".join(parts[:i]) for i in range(start, 0, -1)]


def replace_prefix(h: str, old_prefix: str, new_prefix: str) -> str:
    """
    Rewrite a whole-segment prefix: ("2.10.1", "2", "3") -> "3.10.1".

    Numbers that do not start with old_prefix as whole segments are returned
    unchanged ("21.1" is not under "2").
    """
    if h == old_prefix:
        return new_prefix
    if h.startswith(old_prefix + "."):
        return new_prefix + h[len(old_prefix):]
    return h


def sort_key(task: Task) -> tuple[int, tuple[int, ...], int]:
    # Unnumbered tasks go last, then by order_index.
    if not task.hierarchy_number:
        return (1, (), task.order_index)
    return (0, parse_hierarchy(task.hierarchy_number), task.order_index)


def sort_tasks(tasks: Iterable[Task]) -> list[Task]:
    return sorted(tasks, key=sort_key)


def children_of(h: str | None, tasks: Iterable[Task]) -> list[Task]:
    """Direct children of h (or root tasks when h is None), in outline order."""
    out = [t for t in tasks if t.hierarchy_number and parent_of(t.hierarchy_number) == h]
    return sort_tasks(out)


def descendants_of(h: str, tasks: Iterable[Task]) -> list[Task]:
    return sort_tasks(t for t in tasks if is_descendant_of(t.hierarchy_number, h))


def siblings_of(task: Task, tasks: Iterable[Task]) -> list[Task]:
    """The task's sibling run (including the task itself), in outline order."""
    if not task.hierarchy_number:
        return []
    return children_of(parent_of(task.hierarchy_number), tasks)


def has_children(h: str, tasks: Iterable[Task]) -> bool:
    return any(is_descendant_of(t.hierarchy_number, h) for t in tasks)


def find_contiguity_violations(tasks: Iterable[Task]) -> list[str]:
    """
    Describe every sibling run that is not exactly 1..N, every duplicate
    number and every task whose parent number does not exist.

    An empty list means the outline is valid.
    """
    numbered = [t for t in tasks if t.hierarchy_number]
    problems: list[str] = []

    seen: dict[str, str] = {}
    for t in numbered:
        h = t.hierarchy_number or ""
        if not is_valid_hierarchy(h):
            problems.append(f"task {t.id} has malformed hierarchy number '{h}'")
            continue
        if h in seen:
            problems.append(f"duplicate hierarchy number '{h}' ({seen[h]}, {t.id})")
        seen[h] = t.id

    runs: dict[str | None, list[int]] = defaultdict(list)
    for h in seen:
        parent = parent_of(h)
        if parent is not None and parent not in seen:
            problems.append(f"'{h}' has no parent task '{parent}'")
        runs[parent].append(last_segment(h))

    for parent, numbers in runs.items():
        numbers.sort()
        expected = list(range(1, len(numbers) + 1))
        if numbers != expected:
            label = parent if parent is not None else "root"
            problems.append(f"children of {label} are {numbers}, expected {expected}")

    return problems


def is_contiguous(tasks: Iterable[Task]) -> bool:
    return not find_contiguity_violations(tasks)
