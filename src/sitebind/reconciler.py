"""
Binding reconciler.

The reconciler keeps the supervised command bound to the current
configuration of the site in the working directory. Each reconciliation pass
resolves the site's metadata, assembles its environment, obtains credentials
and restarts the command.

Passes are triggered by:

- ``init``: the first bind
- ``metadata_updated``: stack metadata changed or was deleted
- ``secrets_updated``: a secret the site declares was rotated
- ``iam_expired``: the assumed role session is about to expire

Triggers go through an inbox and are handled one pass at a time. Triggers
that arrive while a pass is running are coalesced into the next pass. A
metadata update that leaves the environment unchanged does not restart the
command.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

import psutil
from botocore.exceptions import BotoCoreError, ClientError
from rich.console import Console
from rich.markup import escape

from sitebind.assembler import ResolvedBinding, are_envs_same
from sitebind.bus import METADATA_DELETED, METADATA_UPDATED, SECRET_UPDATED, EventBus
from sitebind.config.logging_config import get_logger
from sitebind.credentials import Credentials
from sitebind.errors import BindError, OutdatedMetadataError
from sitebind.metadata.models import SsrSiteMetadata, StaticSiteMetadata

log = get_logger(__name__)

REFRESH_MARGIN_SECONDS = 60.0

OUTDATED_WARNING = (
    "Warning: This site was deployed with an older metadata format. Redeploy it to update its metadata."
)


class BindReason(str, Enum):
    INIT = "init"
    METADATA_UPDATED = "metadata_updated"
    SECRETS_UPDATED = "secrets_updated"
    IAM_EXPIRED = "iam_expired"


class BindState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    BOUND = "bound"
    AWAITING_RESTART = "awaiting_restart"


@dataclass(frozen=True)
class Trigger:
    reason: BindReason
    secret: Optional[str] = None


class Resolver(Protocol):
    async def resolve(self) -> StaticSiteMetadata | SsrSiteMetadata: ...


class Assembler(Protocol):
    async def assemble(self, metadata: StaticSiteMetadata | SsrSiteMetadata) -> ResolvedBinding: ...


class Broker(Protocol):
    async def assume_role(self, role_arn: str) -> Optional[Credentials]: ...

    async def ambient_credentials(self) -> Credentials: ...


class Supervisor(Protocol):
    async def run(self, env_overrides: Dict[str, str]) -> None: ...

    async def terminate(self) -> None: ...


class DeclaredConfig(Protocol):
    async def env(self) -> Dict[str, str]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BindReconciler:
    """Drive reconciliation passes for one bound command.

    All mutable state (current binding, pending refresh timer, supervised
    process) is owned by the instance; collaborators are injected so the
    state machine can run against fakes.

    Args:
        command: The bound command, used in user-facing messages.
        resolver: Finds the site's metadata record.
        assembler: Turns the record into a ``ResolvedBinding``.
        broker: Assumes roles and resolves local credentials.
        supervisor: Owns the child process.
        declared_config: Local configuration used in script mode.
        console: Where user-facing lines are printed.
        settle_delay: Seconds to wait after a trigger before draining the
            inbox, so bursts of events collapse into one pass.
        refresh_margin: Seconds before expiry at which role credentials are renewed.
        clock: Returns the current time (timezone aware).
    """

    def __init__(
        self,
        command: str,
        resolver: Resolver,
        assembler: Assembler,
        broker: Broker,
        supervisor: Supervisor,
        declared_config: Optional[DeclaredConfig] = None,
        console: Optional[Console] = None,
        settle_delay: float = 0.0,
        refresh_margin: float = REFRESH_MARGIN_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.command = command
        self.resolver = resolver
        self.assembler = assembler
        self.broker = broker
        self.supervisor = supervisor
        self.declared_config = declared_config
        self.console = console or Console(stderr=True)
        self.settle_delay = settle_delay
        self.refresh_margin = refresh_margin
        self._clock = clock

        self.state = BindState.IDLE
        self.script_mode = False
        self.binding: Optional[ResolvedBinding] = None
        self.refresh_deadline: Optional[datetime] = None
        self._bound = False
        self._inbox: asyncio.Queue[Trigger] = asyncio.Queue()
        self._pass_lock = asyncio.Lock()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._unsubscribe: list[Callable[[], None]] = []

    # Trigger intake

    def notify(self, trigger: Trigger) -> None:
        self._inbox.put_nowait(trigger)

    def attach(self, bus: EventBus) -> None:
        """Subscribe to the bus topics that invalidate the binding."""
        self._unsubscribe += [
            bus.subscribe(METADATA_UPDATED, lambda _: self.notify(Trigger(BindReason.METADATA_UPDATED))),
            bus.subscribe(METADATA_DELETED, lambda _: self.notify(Trigger(BindReason.METADATA_UPDATED))),
            bus.subscribe(SECRET_UPDATED, self._on_secret_updated),
        ]

    def detach(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    def _on_secret_updated(self, payload: Dict[str, Any]) -> None:
        self.notify(Trigger(BindReason.SECRETS_UPDATED, secret=payload.get("name")))

    def _is_bound_secret(self, name: Optional[str]) -> bool:
        return self.binding is not None and name is not None and name in self.binding.secrets

    def coalesce(self, batch: list[Trigger]) -> Optional[BindReason]:
        """Reduce queued triggers to the reason for a single pass.

        Secret updates for secrets the site does not declare are dropped. Any
        remaining trigger other than a metadata update forces a rebind.
        Returns None when nothing in the batch needs a pass.
        """
        relevant = [
            t for t in batch if t.reason != BindReason.SECRETS_UPDATED or self._is_bound_secret(t.secret)
        ]
        if not relevant:
            return None
        for trigger in relevant:
            if trigger.reason != BindReason.METADATA_UPDATED:
                return trigger.reason
        return BindReason.METADATA_UPDATED

    # Passes

    async def start(self) -> bool:
        """Run the initial bind.

        Returns:
            True when bound to the site, False when outdated metadata forced
            script mode.
        """
        try:
            await self.reconcile(BindReason.INIT)
        except OutdatedMetadataError as e:
            log.debug(f"Falling back to script mode: {e}")
            self.console.print(f"[yellow]{OUTDATED_WARNING}[/yellow]")
            await self.bind_script()
            return False
        return True

    async def bind_script(self) -> None:
        """Bind using only locally declared configuration and local credentials."""
        self.script_mode = True
        async with self._pass_lock:
            env = await self.declared_config.env() if self.declared_config is not None else {}
            credentials = await self.broker.ambient_credentials()
            self.state = BindState.AWAITING_RESTART
            await self.supervisor.run({**env, **credentials.to_env()})
            self._bound = True
            self.state = BindState.BOUND

    async def reconcile(self, reason: BindReason) -> bool:
        """Run one reconciliation pass.

        Returns:
            True if the command was (re)started, False if the pass was
            discarded because nothing material changed.
        """
        async with self._pass_lock:
            try:
                return await self._reconcile(reason)
            finally:
                if self.state != BindState.BOUND:
                    self.state = BindState.BOUND if self._bound else BindState.IDLE

    async def _reconcile(self, reason: BindReason) -> bool:
        self.state = BindState.RESOLVING
        log.debug(f"Reconciling ({reason.value})")
        metadata = await self.resolver.resolve()
        binding = await self.assembler.assemble(metadata)

        if reason == BindReason.METADATA_UPDATED:
            previous = self.binding.envs if self.binding is not None else {}
            if are_envs_same(binding.envs, previous):
                log.debug("Metadata changed but the environment did not; keeping the current process")
                return False
            self.console.print(f"\nSite resources have been updated. Restarting `{self.command}`...")
        elif reason == BindReason.SECRETS_UPDATED:
            self.console.print(f"\nSite secrets have been updated. Restarting `{self.command}`...")
        elif reason == BindReason.IAM_EXPIRED:
            self.console.print(
                f"\nYour AWS session is about to expire. Creating a new session and restarting `{self.command}`..."
            )

        self.state = BindState.AWAITING_RESTART

        credentials: Optional[Credentials] = None
        if binding.role:
            credentials = await self.broker.assume_role(binding.role)
        if credentials is None:
            credentials = await self.broker.ambient_credentials()
        elif credentials.expiration is not None:
            self._schedule_refresh(credentials.expiration)

        await self.supervisor.run({**binding.envs, **credentials.to_env()})
        # The binding is recorded only once the command runs with it
        self.binding = binding
        self._bound = True
        self.state = BindState.BOUND
        return True

    # Refresh timer

    def _schedule_refresh(self, expiration: datetime) -> None:
        if expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=timezone.utc)
        self.cancel_refresh()
        deadline = expiration - timedelta(seconds=self.refresh_margin)
        delay = max(0.0, (deadline - self._clock()).total_seconds())
        self._timer = asyncio.get_running_loop().call_later(delay, self._on_refresh_due)
        self.refresh_deadline = deadline
        log.debug(f"Credentials refresh scheduled for {deadline.isoformat()}")

    def _on_refresh_due(self) -> None:
        self._timer = None
        self.refresh_deadline = None
        self.notify(Trigger(BindReason.IAM_EXPIRED))

    def cancel_refresh(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.refresh_deadline = None

    # Event loop

    def _drain(self) -> list[Trigger]:
        batch = []
        while True:
            try:
                batch.append(self._inbox.get_nowait())
            except asyncio.QueueEmpty:
                return batch

    async def run(self) -> None:
        """Process triggers until cancelled.

        A failed pass is reported and the current binding is kept; the loop
        keeps listening for the next trigger.
        """
        while True:
            first = await self._inbox.get()
            if self.settle_delay > 0:
                await asyncio.sleep(self.settle_delay)
            reason = self.coalesce([first, *self._drain()])
            if reason is None:
                log.debug("Ignoring triggers that do not affect the binding")
                continue
            try:
                await self.reconcile(reason)
            except OutdatedMetadataError as e:
                log.debug(f"Outdated metadata during {reason.value}: {e}")
                self.console.print(
                    f"[red]Site metadata is no longer valid ({escape(str(e))}). Keeping `{self.command}` running.[/red]"
                )
            except (BindError, ClientError, BotoCoreError, OSError, psutil.Error) as e:
                log.error(f"Failed to rebind after {reason.value}: {e}")
                self.console.print(f"[red]Could not restart `{self.command}`: {escape(str(e))}[/red]")

    async def close(self) -> None:
        """Cancel the refresh timer, unsubscribe and stop the supervised process."""
        self.cancel_refresh()
        self.detach()
        await self.supervisor.terminate()
