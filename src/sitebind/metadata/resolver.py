"""
Metadata resolution for the site in the working directory.

The resolver polls the metadata source until a site record whose
``data.path`` points at the working directory appears. While waiting it shows
a spinner on the console; the spinner is cleared once the record is found.
"""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional

from rich.console import Console
from rich.status import Status

from sitebind.config.logging_config import get_logger
from sitebind.metadata.models import SsrSiteMetadata, StaticSiteMetadata, parse_site_record
from sitebind.metadata.sources import MetadataSource

log = get_logger(__name__)

WAITING_MESSAGE = "Waiting for site metadata. Make sure the site is deployed..."


class MetadataResolver:
    """Find the metadata record of the site rooted at ``cwd``.

    Args:
        source: Where stack metadata is read from.
        project_root: Root that record paths are relative to.
        cwd: The directory the bound command runs in.
        console: Console the waiting indicator is drawn on.
        poll_interval: Seconds between lookups while no record exists.
        sleep: Awaitable used between lookups (replaceable in tests).
    """

    def __init__(
        self,
        source: MetadataSource,
        project_root: Path,
        cwd: Path,
        console: Optional[Console] = None,
        poll_interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.source = source
        self.project_root = Path(project_root)
        self.cwd = Path(cwd).resolve()
        self.console = console or Console(stderr=True)
        self.poll_interval = poll_interval
        self._sleep = sleep

    async def find(self) -> Optional[StaticSiteMetadata | SsrSiteMetadata]:
        """Look up the record once.

        Raises:
            OutdatedMetadataError: If any site record lacks required fields.
        """
        snapshot = await self.source.fetch_all()
        for records in snapshot.values():
            for raw in records:
                record = parse_site_record(raw)
                if record is None:
                    continue
                if record.data.path is None:
                    continue
                if (self.project_root / record.data.path).resolve() == self.cwd:
                    return record
        return None

    async def resolve(self) -> StaticSiteMetadata | SsrSiteMetadata:
        """Poll until the record exists.

        A missing record is retried forever; an outdated record is raised
        immediately since polling cannot fix it.
        """
        status: Optional[Status] = None
        try:
            while True:
                record = await self.find()
                if record is not None:
                    log.debug(f"Resolved {record.type} metadata for {self.cwd}")
                    return record
                if status is None:
                    log.debug(f"No site metadata for {self.cwd} yet")
                    status = self.console.status(WAITING_MESSAGE)
                    status.start()
                await self._sleep(self.poll_interval)
        finally:
            if status is not None:
                status.stop()
