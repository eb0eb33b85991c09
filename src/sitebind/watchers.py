"""
Pollers that turn remote changes into bus events.

- ``MetadataWatcher`` publishes ``stacks.metadata.updated`` when a stack's
  records change and ``stacks.metadata.deleted`` when a stack disappears.
- ``SecretWatcher`` publishes ``config.secret.updated`` with the secret name
  when a secret's version changes.

The first poll only records a baseline.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from sitebind.bus import METADATA_DELETED, METADATA_UPDATED, SECRET_UPDATED, EventBus
from sitebind.config.logging_config import get_logger
from sitebind.config_store import ConfigStore
from sitebind.metadata.sources import MetadataSource

log = get_logger(__name__)


class PollingWatcher(ABC):
    name = "watcher"

    def __init__(self, bus: EventBus, interval: float = 2.0):
        self.bus = bus
        self.interval = interval
        self._task: Optional[asyncio.Task[None]] = None

    @abstractmethod
    async def check(self) -> None:
        """Poll once and publish any changes since the previous poll."""

    async def _run(self) -> None:
        while True:
            try:
                await self.check()
            except (ClientError, BotoCoreError, OSError, ValueError) as e:
                log.warning(f"{self.name} poll failed: {e}")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


class MetadataWatcher(PollingWatcher):
    name = "metadata watcher"

    def __init__(self, bus: EventBus, source: MetadataSource, interval: float = 2.0):
        super().__init__(bus, interval)
        self.source = source
        self._last: Optional[Dict[str, Any]] = None

    async def check(self) -> None:
        snapshot = await self.source.fetch_all()
        previous, self._last = self._last, snapshot
        if previous is None:
            return
        for stack in previous.keys() - snapshot.keys():
            self.bus.publish(METADATA_DELETED, {"stack": stack})
        for stack, records in snapshot.items():
            if previous.get(stack) != records:
                self.bus.publish(METADATA_UPDATED, {"stack": stack})


class SecretWatcher(PollingWatcher):
    name = "secret watcher"

    def __init__(self, bus: EventBus, store: ConfigStore, interval: float = 2.0):
        super().__init__(bus, interval)
        self.store = store
        self._versions: Optional[Dict[str, Any]] = None

    async def check(self) -> None:
        path = self.store.path
        if path is None:
            return
        parameters = await asyncio.to_thread(self.store.list_parameters)
        versions = {
            p["Name"][len(path) :].strip("/"): p.get("Version")
            for p in parameters
            if p.get("Type") == "SecureString"
        }
        previous, self._versions = self._versions, versions
        if previous is None:
            return
        for name, version in versions.items():
            if previous.get(name) != version:
                self.bus.publish(SECRET_UPDATED, {"name": name})
