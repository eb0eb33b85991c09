"""
Wiring for one ``sitebind bind`` invocation.

Detects whether the working directory is a site, builds the collaborators
for the project, runs the initial bind and, for sites, keeps reconciling
until the supervised command exits. The returned value is the command's exit
code.
"""

import asyncio
import functools
import os
import signal
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console

from sitebind.assembler import EnvironmentAssembler
from sitebind.bus import EventBus
from sitebind.config.environment import Environment
from sitebind.config.logging_config import get_logger
from sitebind.config.project import load_project
from sitebind.config_store import ConfigStore
from sitebind.credentials import CredentialBroker
from sitebind.detector import is_running_in_site
from sitebind.errors import MissingCommandError
from sitebind.metadata.resolver import MetadataResolver
from sitebind.metadata.sources import create_metadata_source
from sitebind.reconciler import BindReconciler
from sitebind.supervisor import ProcessSupervisor
from sitebind.watchers import MetadataWatcher, PollingWatcher, SecretWatcher

log = get_logger(__name__)

LOOP_FAILURE_EXIT_CODE = 1


def _on_loop_done(finish: Callable[[int], None], task: "asyncio.Task[None]") -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        log.error(f"Reconciliation stopped unexpectedly: {error!r}")
        finish(LOOP_FAILURE_EXIT_CODE)


async def run_bind(command: str, cwd: Optional[Path] = None, console: Optional[Console] = None) -> int:
    """Bind ``command`` to the site or project in ``cwd`` and wait for it to exit.

    Raises:
        MissingCommandError: If ``command`` is empty.
        ProjectNotFoundError: If no project file encloses ``cwd``.
    """
    cwd = (cwd or Path.cwd()).resolve()
    console = console or Console(stderr=True)
    is_site = await is_running_in_site(cwd)

    if not command.strip():
        example = "next dev" if is_site else "vitest run"
        raise MissingCommandError(f"Command is required, e.g. sitebind bind {example}")

    project = load_project(cwd)
    loop = asyncio.get_running_loop()
    exited: asyncio.Future[int] = loop.create_future()

    def finish(code: int) -> None:
        if not exited.done():
            exited.set_result(code)

    source = create_metadata_source(project)
    store = ConfigStore(project)
    supervisor = ProcessSupervisor(command, project.region, on_exit=finish, cwd=str(cwd))
    reconciler = BindReconciler(
        command,
        resolver=MetadataResolver(
            source, project.root, cwd, console=console, poll_interval=Environment.get_poll_interval()
        ),
        assembler=EnvironmentAssembler(region=project.region),
        broker=CredentialBroker(region=project.region, console=console),
        supervisor=supervisor,
        declared_config=store,
        console=console,
        settle_delay=Environment.get_settle_delay(),
    )

    if os.name == "posix":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, finish, 128 + sig)

    bus = EventBus()
    watchers: list[PollingWatcher] = []
    loop_task: Optional[asyncio.Task[None]] = None
    try:
        if not is_site:
            log.debug("Running in script mode.")
            await reconciler.bind_script()
        elif await reconciler.start():
            reconciler.attach(bus)
            interval = Environment.get_watch_interval()
            watchers = [MetadataWatcher(bus, source, interval), SecretWatcher(bus, store, interval)]
            for watcher in watchers:
                watcher.start()
            loop_task = asyncio.create_task(reconciler.run())
            loop_task.add_done_callback(functools.partial(_on_loop_done, finish))
        return await exited
    finally:
        for watcher in watchers:
            await watcher.stop()
        if loop_task is not None and not loop_task.done():
            loop_task.cancel()
            try:
                await loop_task
            except asyncio.CancelledError:
                pass
        await reconciler.close()
        if os.name == "posix":
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
