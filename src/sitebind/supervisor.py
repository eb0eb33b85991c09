"""
Process supervisor for the bound command.

At most one command runs at a time. It is started in its own session so the
whole process group can be signalled: dev servers commonly fork workers that
keep ports open after the direct child is gone. Before a replacement is
spawned the previous tree is terminated and the supervisor waits until every
member is confirmed gone.

When the command exits on its own, ``on_exit`` is called with its exit code
and the host is expected to exit with it.
"""

from __future__ import annotations

import asyncio
import os
import signal
from typing import Callable, Mapping, Optional

import psutil

from sitebind.config.logging_config import get_logger
from sitebind.errors import ProcessTerminationError

log = get_logger(__name__)

SPAWN_FAILURE_EXIT_CODE = 127


def exit_code_of(returncode: Optional[int]) -> int:
    """Map an asyncio return code to a shell style exit code."""
    if returncode is None:
        return 0
    if returncode < 0:
        return 128 - returncode
    return returncode


def _signal_group(pgid: int, sig: int) -> None:
    if os.name != "posix":
        return
    try:
        os.killpg(pgid, sig)
    except (ProcessLookupError, PermissionError):
        pass


def _is_running(proc: psutil.Process) -> bool:
    try:
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False


def _signal_all(procs: list[psutil.Process], kill: bool) -> None:
    for p in procs:
        try:
            if kill:
                p.kill()
            else:
                p.terminate()
        except psutil.NoSuchProcess:
            pass


class ProcessSupervisor:
    """Own the single live child process of a binding.

    Args:
        command: Shell command line to run.
        region: Value injected as ``AWS_REGION``.
        on_exit: Called with the exit code when the command exits on its own.
        cwd: Working directory of the command.
        base_env: Environment the overrides are layered on (default: ``os.environ``).
        terminate_timeout: Seconds to wait after SIGTERM before SIGKILL, and
            again after SIGKILL before giving up.
    """

    def __init__(
        self,
        command: str,
        region: str,
        on_exit: Optional[Callable[[int], None]] = None,
        cwd: Optional[str] = None,
        base_env: Optional[Mapping[str, str]] = None,
        terminate_timeout: float = 5.0,
    ):
        self.command = command
        self.region = region
        self.on_exit = on_exit
        self.cwd = cwd
        self.base_env = base_env
        self.terminate_timeout = terminate_timeout
        self._process: Optional[asyncio.subprocess.Process] = None
        self._watch_task: Optional[asyncio.Task[None]] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def build_env(self, env_overrides: Mapping[str, str]) -> dict[str, str]:
        env = dict(os.environ if self.base_env is None else self.base_env)
        env.update({k: v for k, v in env_overrides.items() if v is not None})
        env["AWS_REGION"] = self.region
        return env

    async def run(self, env_overrides: Mapping[str, str]) -> None:
        """Replace the running command with a new one using ``env_overrides``.

        Raises:
            ProcessTerminationError: If the previous tree did not exit; nothing
                new is spawned in that case and the old command stays watched.
            OSError: If the command could not be started. ``on_exit`` is
                called with ``SPAWN_FAILURE_EXIT_CODE`` first.
        """
        await self.terminate()

        kwargs = {"start_new_session": True} if os.name == "posix" else {}
        try:
            self._process = await asyncio.create_subprocess_shell(
                self.command,
                env=self.build_env(env_overrides),
                cwd=self.cwd,
                **kwargs,
            )
        except OSError as e:
            # The previous command is gone; nothing else will report an exit
            log.error(f"Could not start `{self.command}`: {e}")
            if self.on_exit is not None:
                self.on_exit(SPAWN_FAILURE_EXIT_CODE)
            raise
        log.debug(f"Started `{self.command}` (pid {self._process.pid})")
        self._watch_task = asyncio.create_task(self._watch(self._process))

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        if process is not self._process:
            return
        self._process = None
        code = exit_code_of(returncode)
        log.debug(f"`{self.command}` exited with {code}")
        if self.on_exit is not None:
            self.on_exit(code)

    async def terminate(self) -> None:
        """Terminate the current process tree, if any, and wait for it to be gone."""
        process = self._process
        if process is None:
            return

        # Detach first so the deliberate kill is not reported as an exit
        if self._watch_task is not None:
            self._watch_task.cancel()
            self._watch_task = None

        try:
            if process.returncode is None:
                await self._kill_tree(process)
        except Exception:
            # Still the supervised command; keep watching it
            self._watch_task = asyncio.create_task(self._watch(process))
            raise
        self._process = None

    async def _kill_tree(self, process: asyncio.subprocess.Process) -> None:
        pid = process.pid
        try:
            descendants = await asyncio.to_thread(psutil.Process(pid).children, recursive=True)
        except psutil.NoSuchProcess:
            descendants = []

        log.debug(f"Terminating process tree of {pid} ({len(descendants)} descendants)")
        _signal_group(pid, signal.SIGTERM)
        _signal_all(descendants, kill=False)
        try:
            process.terminate()
        except ProcessLookupError:
            pass

        alive = await self._wait_gone(process, descendants)
        if alive:
            log.debug(f"Process tree of {pid} ignored SIGTERM, sending SIGKILL")
            _signal_group(pid, getattr(signal, "SIGKILL", signal.SIGTERM))
            _signal_all(alive, kill=True)
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
            alive = await self._wait_gone(process, alive)

        if alive:
            raise ProcessTerminationError(pid, sorted(p.pid for p in alive))

    async def _wait_gone(
        self, process: asyncio.subprocess.Process, descendants: list[psutil.Process]
    ) -> list[psutil.Process]:
        alive: list[psutil.Process] = []
        if process.returncode is None:
            try:
                await asyncio.wait_for(process.wait(), timeout=self.terminate_timeout)
            except asyncio.TimeoutError:
                try:
                    alive.append(psutil.Process(process.pid))
                except psutil.NoSuchProcess:
                    pass
        pending = [p for p in descendants if p.pid != process.pid]
        if pending:
            alive.extend(await self._wait_descendants(pending))
        return alive

    async def _wait_descendants(self, procs: list[psutil.Process]) -> list[psutil.Process]:
        # Orphans are reparented and may linger as zombies if nothing reaps them
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.terminate_timeout
        while True:
            alive = [p for p in procs if _is_running(p)]
            if not alive or loop.time() >= deadline:
                return alive
            await asyncio.sleep(0.05)
