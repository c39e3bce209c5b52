# src/schedule_outline/outline/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum
from typing import Any


class DropPosition(StrEnum):
    """Where a dragged task lands relative to its drop target."""

    BEFORE = "before"
    AFTER = "after"

    @classmethod
    def parse(cls, raw: str | None) -> DropPosition:
        if not raw:
            return cls.AFTER
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.AFTER


class OperationKind(StrEnum):
    """User-initiated operations the coordinator runs end-to-end."""

    INDENT = "indent"
    OUTDENT = "outdent"
    MOVE_UP = "move_up"
    MOVE_DOWN = "move_down"
    REPOSITION = "reposition"
    INSERT = "insert"
    DELETE = "delete"
    SET_PREDECESSORS = "set_predecessors"
    EDIT_SCHEDULE = "edit_schedule"
    NORMALIZE = "normalize"
    ROLLUP = "rollup"
    UNDO = "undo"

    @property
    def failure_message(self) -> str:
        """User-facing text naming the attempted operation."""
        return _FAILURE_MESSAGES.get(self, f"Failed to {self.value} task")


_FAILURE_MESSAGES: dict[OperationKind, str] = {
    OperationKind.MOVE_UP: "Failed to move task up",
    OperationKind.MOVE_DOWN: "Failed to move task down",
    OperationKind.REPOSITION: "Failed to move task",
    OperationKind.INSERT: "Failed to add task",
    OperationKind.SET_PREDECESSORS: "Failed to update predecessors",
    OperationKind.EDIT_SCHEDULE: "Failed to update task",
    OperationKind.NORMALIZE: "Failed to renumber schedule",
    OperationKind.ROLLUP: "Failed to update parent tasks",
    OperationKind.UNDO: "Failed to undo last change",
}


@dataclass(slots=True)
class Task:
    """
    One row of the project schedule outline.

    Notes:
    - hierarchy_number is the authoritative position ("2.3.1"); None only for
      tasks that were never positioned.
    - predecessors hold hierarchy-number references, not ids, optionally with a
      link type and lag suffix ("1.2", "1.2FS+3d").
    - parent_id is a convenience back-reference for nested views and is not
      consulted by the renumbering engine.

    Instances are treated as values: changes go through dataclasses.replace.
    """

    id: str
    project_id: str
    name: str
    hierarchy_number: str | None

    predecessors: list[str] = field(default_factory=list)
    start_date: date | None = None
    end_date: date | None = None
    duration: int = 1
    progress: int = 0

    parent_id: str | None = None
    order_index: int = 0
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class HierarchyUpdate:
    id: str
    hierarchy_number: str


@dataclass(slots=True, frozen=True)
class PredecessorUpdate:
    """New predecessor list for one task; None clears the list."""

    task_id: str
    predecessors: list[str] | None


@dataclass(slots=True, frozen=True)
class ScheduleUpdate:
    id: str
    start_date: date | None
    end_date: date | None
    duration: int
    progress: int


@dataclass(slots=True)
class ChangeSet:
    """
    One logical batch submitted to the task store.

    expected_hierarchy maps task id -> hierarchy number the batch was computed
    against; the store refuses the batch when any of them has moved since.
    """

    hierarchy_updates: list[HierarchyUpdate] = field(default_factory=list)
    predecessor_updates: list[PredecessorUpdate] = field(default_factory=list)
    schedule_updates: list[ScheduleUpdate] = field(default_factory=list)
    inserted: list[Task] = field(default_factory=list)
    deleted_ids: list[str] = field(default_factory=list)
    expected_hierarchy: dict[str, str | None] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (
            self.hierarchy_updates
            or self.predecessor_updates
            or self.schedule_updates
            or self.inserted
            or self.deleted_ids
        )

    def affected_ids(self) -> set[str]:
        ids: set[str] = {u.id for u in self.hierarchy_updates}
        ids.update(u.task_id for u in self.predecessor_updates)
        ids.update(u.id for u in self.schedule_updates)
        ids.update(t.id for t in self.inserted)
        ids.update(self.deleted_ids)
        return ids
