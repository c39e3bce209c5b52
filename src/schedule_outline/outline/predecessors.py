# src/schedule_outline/outline/predecessors.py

"""
Predecessor references and the dependency remapper.

Predecessors name other tasks by hierarchy number, so any change of a number
has to be mirrored into every list that mentions the old value. This module
computes those rewrites; it never touches storage.

Reference format: "<hierarchy>[FS|SS|FF|SF][+Nd|-Nd]", e.g. "1.2", "9.2SS+5d".
Only the hierarchy part is rewritten; link type and lag are kept verbatim.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .hierarchy import is_descendant_of
from .models import HierarchyUpdate, PredecessorUpdate, Task

logger = logging.getLogger(__name__)

_REF_RE = re.compile(r"^(\d+(?:\.\d+)*)(SS|FS|FF|SF)?([+-]\d+)?(d)?$", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class PredecessorRef:
    hierarchy_number: str
    link_type: str = "FS"
    lag_days: int = 0

    @classmethod
    def parse(cls, raw: str) -> PredecessorRef | None:
        m = _REF_RE.match(raw.strip())
        if m is None:
            return None
        hierarchy, link, lag, _ = m.groups()
        return cls(
            hierarchy_number=hierarchy,
            link_type=(link or "FS").upper(),
            lag_days=int(lag) if lag else 0,
        )

    def format(self) -> str:
        link = "" if self.link_type == "FS" and not self.lag_days else self.link_type
        if self.lag_days > 0:
            return f"{self.hierarchy_number}{link}+{self.lag_days}d"
        if self.lag_days < 0:
            return f"{self.hierarchy_number}{link}{self.lag_days}d"
        return f"{self.hierarchy_number}{link}"


@dataclass(slots=True)
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def parse_predecessors(raw: Any) -> list[str]:
    """
    Normalize whatever the store or a form hands us into a list of strings.

    Accepts None, a list, a JSON array string, or a single reference string.
    """
    if not raw:
        return []
    if isinstance(raw, (list, tuple)):
        return [p.strip() for p in raw if isinstance(p, str) and p.strip()]
    if isinstance(raw, str):
        s = raw.strip()
        if not s:
            return []
        if s.startswith("["):
            try:
                parsed = json.loads(s)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return [p.strip() for p in parsed if isinstance(p, str) and p.strip()]
        return [s]
    return []


def reference_target(raw: str) -> str | None:
    """Hierarchy number a reference points at, or None if it is malformed."""
    ref = PredecessorRef.parse(raw)
    return ref.hierarchy_number if ref else None


# ---- remapping ----


def build_hierarchy_map(
    updates: Iterable[HierarchyUpdate], tasks: Iterable[Task]
) -> dict[str, str]:
    """old hierarchy number -> new hierarchy number, for every renumbered task."""
    by_id = {t.id: t for t in tasks}
    mapping: dict[str, str] = {}
    for u in updates:
        old = by_id.get(u.id)
        if old is None or not old.hierarchy_number:
            continue
        if old.hierarchy_number != u.hierarchy_number:
            mapping[old.hierarchy_number] = u.hierarchy_number
    return mapping


def remap_reference(raw: str, mapping: Mapping[str, str]) -> str:
    target = reference_target(raw)
    if target is None or target not in mapping:
        return raw
    stripped = raw.strip()
    return mapping[target] + stripped[len(target):]


def compute_predecessor_updates(
    updates: Iterable[HierarchyUpdate],
    tasks: Iterable[Task],
    *,
    dropped: Iterable[str] = (),
) -> list[PredecessorUpdate]:
    """
    Rewrite predecessor lists after a renumbering.

    - tasks must still carry their old hierarchy numbers
    - references found in the old->new map are rewritten, others kept
    - references to a number in `dropped` (deleted tasks) are removed
    - only tasks whose list actually changed are returned; an emptied list
      becomes None
    """
    task_list = list(tasks)
    mapping = build_hierarchy_map(updates, task_list)
    gone = set(dropped)
    if not mapping and not gone:
        return []

    out: list[PredecessorUpdate] = []
    for task in task_list:
        current = parse_predecessors(task.predecessors)
        if not current:
            continue
        rewritten: list[str] = []
        for pred in current:
            if reference_target(pred) in gone:
                continue
            rewritten.append(remap_reference(pred, mapping))
        if rewritten != current:
            out.append(PredecessorUpdate(task_id=task.id, predecessors=rewritten or None))

    logger.debug(
        "Predecessor remap: %d renumbered, %d dropped -> %d task(s) updated",
        len(mapping),
        len(gone),
        len(out),
    )
    return out


def drop_references(deleted_numbers: Iterable[str], tasks: Iterable[Task]) -> list[PredecessorUpdate]:
    """Strip references to deleted tasks without renumbering anything."""
    return compute_predecessor_updates((), tasks, dropped=deleted_numbers)


# ---- validation ----


def validate_predecessors(
    task_id: str, predecessors: Any, tasks: Iterable[Task]
) -> ValidationResult:
    """
    Check a proposed predecessor list for one task.

    Errors: malformed reference, self reference, unknown task, ancestor or
    descendant of the task, dependency cycle. Warnings: duplicates.
    """
    result = ValidationResult()
    preds = parse_predecessors(predecessors)
    if not preds:
        return result

    task_list = list(tasks)
    current = next((t for t in task_list if t.id == task_id), None)
    if current is None or not current.hierarchy_number:
        result.errors.append("Current task not found")
        return result
    own = current.hierarchy_number
    by_number = {t.hierarchy_number: t for t in task_list if t.hierarchy_number}

    targets: list[str] = []
    for pred in preds:
        target = reference_target(pred)
        if target is None:
            result.errors.append(f"Invalid predecessor format: {pred}")
            continue
        targets.append(target)

    if own in targets:
        result.errors.append("A task cannot be its own predecessor")

    unknown = sorted({h for h in targets if h not in by_number})
    if unknown:
        result.errors.append(f"Invalid task references: {', '.join(unknown)}")

    ancestors = sorted({h for h in targets if is_descendant_of(own, h)})
    if ancestors:
        result.errors.append(
            f"A parent task cannot be a predecessor of its child. Invalid: {', '.join(ancestors)}"
        )

    subtasks = sorted({h for h in targets if is_descendant_of(h, own)})
    if subtasks:
        result.errors.append(
            f"A task cannot depend on its own subtasks. Invalid: {', '.join(subtasks)}"
        )

    dependencies: dict[str, list[str]] = {}
    for t in task_list:
        if not t.hierarchy_number:
            continue
        if t.id == task_id:
            dependencies[t.hierarchy_number] = list(targets)
            continue
        refs = (reference_target(p) for p in parse_predecessors(t.predecessors))
        dependencies[t.hierarchy_number] = [h for h in refs if h]
    cycle = _find_cycle_from(own, dependencies)
    if cycle:
        result.errors.append(f"Circular dependency detected: {' -> '.join(cycle)}")

    seen: set[str] = set()
    duplicates: list[str] = []
    for h in targets:
        if h in seen and h not in duplicates:
            duplicates.append(h)
        seen.add(h)
    if duplicates:
        result.warnings.append(f"Duplicate predecessors: {', '.join(duplicates)}")

    return result


def _find_cycle_from(start: str, dependencies: Mapping[str, list[str]]) -> list[str] | None:
    state: dict[str, str] = {}
    stack: list[str] = []

    def dfs(node: str) -> list[str] | None:
        state[node] = "visiting"
        stack.append(node)
        for dep in dependencies.get(node, []):
            if dep == start:
                return stack + [start]
            if state.get(dep) is None:
                found = dfs(dep)
                if found:
                    return found
        stack.pop()
        state[node] = "done"
        return None

    return dfs(start)


def find_self_references(tasks: Iterable[Task]) -> list[PredecessorUpdate]:
    """
    Repair helper: strip references a task makes to itself or its own subtree.

    Such references can appear after imports or manual edits and would make
    the task wait on itself.
    """
    out: list[PredecessorUpdate] = []
    for task in tasks:
        own = task.hierarchy_number
        current = parse_predecessors(task.predecessors)
        if not own or not current:
            continue
        kept = [
            p
            for p in current
            if (target := reference_target(p)) is None
            or not (target == own or is_descendant_of(target, own))
        ]
        if kept != current:
            out.append(PredecessorUpdate(task_id=task.id, predecessors=kept or None))
    return out
