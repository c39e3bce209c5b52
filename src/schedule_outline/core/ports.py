# src/schedule_outline/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the outline core.

The coordinator depends on Protocols instead of concrete implementations, so
the SQLite store, the live-update channel and the console can be swapped for
fakes in tests.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from ..outline.models import ChangeSet, Task


@dataclass(frozen=True, slots=True)
class TaskChangeEvent:
    """Externally observed change to some tasks of one project."""

    project_id: str
    task_ids: frozenset[str] = field(default_factory=frozenset)
    origin: str = "store"


ChangeHandler = Callable[[TaskChangeEvent], Awaitable[None]]


class TaskRepo(Protocol):
    """
    Persistence collaborator.

    apply_batch must be all-or-nothing. It raises core.errors.StoreError (or a
    subclass) on failure; TransientStoreError marks failures worth a retry.
    """

    async def list_tasks(self, project_id: str) -> list[Task]: ...

    async def apply_batch(
            self,
            project_id: str,
            changes: ChangeSet,
            *,
            suppress_echo: bool = True,
    ) -> None: ...


class LiveUpdates(Protocol):
    """Inbound change notifications, keyed by project."""

    def subscribe(self, project_id: str, handler: ChangeHandler) -> Callable[[], None]: ...

    async def publish(self, event: TaskChangeEvent) -> None: ...


class Notifier(Protocol):
    """Where user-facing operation outcomes go (console, toast, ...)."""

    def notify_error(self, message: str) -> None: ...

    def notify_info(self, message: str) -> None: ...
