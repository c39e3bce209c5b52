# src/schedule_outline/storage/live_updates.py

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable

from ..core.ports import ChangeHandler, TaskChangeEvent

logger = logging.getLogger(__name__)


class LiveUpdateChannel:
    """
    In-process pub/sub for task changes, keyed by project id.

    Handlers run sequentially in subscription order. A failing handler is
    logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[ChangeHandler]] = defaultdict(list)

    def subscribe(self, project_id: str, handler: ChangeHandler) -> Callable[[], None]:
        self._handlers[project_id].append(handler)
        logger.debug("Live updates: subscriber added for project %s", project_id)

        def unsubscribe() -> None:
            handlers = self._handlers.get(project_id, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def subscriber_count(self, project_id: str) -> int:
        return len(self._handlers.get(project_id, []))

    async def publish(self, event: TaskChangeEvent) -> None:
        for handler in list(self._handlers.get(event.project_id, [])):
            try:
                await handler(event)
            except Exception:
                logger.exception("Live-update handler failed for project %s", event.project_id)
