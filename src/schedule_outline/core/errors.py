# src/schedule_outline/core/errors.py

"""Errors raised by task-store implementations and understood by the coordinator."""

from __future__ import annotations


class StoreError(RuntimeError):
    """A batch could not be applied; nothing was written."""


class TransientStoreError(StoreError):
    """Temporary failure (locked database, dropped connection); worth one retry."""


class StaleBaseError(StoreError):
    """
    The batch was computed against hierarchy numbers the store no longer holds.

    Raised when ChangeSet.expected_hierarchy does not match the stored rows,
    e.g. after a concurrent restructure of the same subtree.
    """

    def __init__(self, mismatched: dict[str, tuple[str | None, str | None]]) -> None:
        self.mismatched = mismatched
        shown = ", ".join(
            f"{task_id}: expected {exp!r}, found {found!r}"
            for task_id, (exp, found) in list(mismatched.items())[:5]
        )
        super().__init__(f"stale base for {len(mismatched)} task(s): {shown}")
