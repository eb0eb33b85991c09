"""
In-process publish/subscribe bus.

Topics carry a payload dict. Handlers may be plain functions or coroutine
functions; coroutine handlers are scheduled as tasks so a slow subscriber
never blocks the publisher.
"""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from sitebind.config.logging_config import get_logger

log = get_logger(__name__)

METADATA_UPDATED = "stacks.metadata.updated"
METADATA_DELETED = "stacks.metadata.deleted"
SECRET_UPDATED = "config.secret.updated"

Handler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class EventBus:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``topic`` and return a function that removes it."""
        self._handlers[topic].append(handler)

        def unsubscribe() -> None:
            try:
                self._handlers[topic].remove(handler)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, topic: str, payload: Optional[Dict[str, Any]] = None) -> None:
        payload = payload or {}
        log.debug(f"Publishing {topic} {payload}")
        for handler in list(self._handlers.get(topic, [])):
            try:
                result = handler(payload)
            except Exception as e:
                log.error(f"Handler for {topic} failed: {e}", exc_info=True)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
