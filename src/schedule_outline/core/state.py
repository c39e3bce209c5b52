# src/schedule_outline/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..outline.coordinator import HierarchyCoordinator
from .ports import LiveUpdates, Notifier, TaskRepo


@dataclass
class AppState:
    """Everything a connector needs to drive one project outline."""

    # Store Settings on the state for easy access in commands.
    settings: Any

    store: TaskRepo
    channel: LiveUpdates
    coordinator: HierarchyCoordinator
    notifier: Notifier

    # Free-form scratch space for connectors (last listing, etc.).
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def project_id(self) -> str:
        return self.coordinator.project_id
