"""Test doubles for the reconciler's collaborators."""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional

from sitebind.assembler import ResolvedBinding
from sitebind.credentials import Credentials
from sitebind.metadata.models import SsrSiteMetadata, StaticSiteMetadata

AMBIENT = Credentials(access_key_id="AKIALOCAL", secret_access_key="local-secret")


def ssr_record(path: str = "site", server: str = "site-server", secrets: Optional[List[str]] = None) -> SsrSiteMetadata:
    return SsrSiteMetadata.model_validate(
        {"type": "NextjsSite", "data": {"path": path, "server": server, "secrets": secrets or []}}
    )


def static_record(path: str = "site", environment: Optional[Dict[str, str]] = None) -> StaticSiteMetadata:
    return StaticSiteMetadata.model_validate(
        {"type": "StaticSite", "data": {"path": path, "environment": environment or {}}}
    )


def role_credentials(expiration: datetime, key: str = "AKIAROLE") -> Credentials:
    return Credentials(
        access_key_id=key,
        secret_access_key="role-secret",
        session_token="role-token",
        expiration=expiration,
    )


class FakeResolver:
    def __init__(self, record):
        self.record = record
        self.calls = 0

    async def resolve(self):
        self.calls += 1
        if isinstance(self.record, Exception):
            raise self.record
        return self.record


class FakeAssembler:
    def __init__(self, binding: ResolvedBinding):
        self.binding = binding
        self.calls = 0

    async def assemble(self, metadata):
        self.calls += 1
        if isinstance(self.binding, Exception):
            raise self.binding
        return self.binding


class FakeBroker:
    def __init__(self, assumed: Optional[Credentials] = None):
        self.assumed = assumed
        self.assumed_roles: List[str] = []
        self.ambient_calls = 0

    async def assume_role(self, role_arn: str) -> Optional[Credentials]:
        self.assumed_roles.append(role_arn)
        return self.assumed

    async def ambient_credentials(self) -> Credentials:
        self.ambient_calls += 1
        return AMBIENT


class FakeSupervisor:
    def __init__(self, delay: float = 0.0):
        self.runs: List[Dict[str, str]] = []
        self.events: List[str] = []
        self.terminations = 0
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.error: Optional[Exception] = None

    async def run(self, env_overrides: Dict[str, str]) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.runs:
                self.events.append("terminate")
            if self.error is not None:
                raise self.error
            if self.delay:
                await asyncio.sleep(self.delay)
            self.runs.append(dict(env_overrides))
            self.events.append("spawn")
        finally:
            self.active -= 1

    async def terminate(self) -> None:
        self.terminations += 1


class FakeDeclaredConfig:
    def __init__(self, env: Dict[str, str]):
        self._env = env

    async def env(self) -> Dict[str, str]:
        return dict(self._env)


def console_output(console) -> str:
    return console.file.getvalue()
