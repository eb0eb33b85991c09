"""
Environment assembly for a resolved site record.

Static sites carry their environment in the metadata record. Server-rendered
sites keep it on the server function, so the function's live configuration is
fetched from Lambda together with its execution role.
"""

import asyncio
from typing import Any, Dict, FrozenSet, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from sitebind.config.logging_config import get_logger
from sitebind.metadata.models import SsrSiteMetadata, StaticSiteMetadata

log = get_logger(__name__)


class ResolvedBinding(BaseModel):
    """The environment, role and secrets assembled by one reconciliation pass."""

    model_config = ConfigDict(frozen=True)

    envs: Dict[str, str] = Field(default_factory=dict)
    role: Optional[str] = None
    secrets: FrozenSet[str] = Field(default_factory=frozenset)


def are_envs_same(envs1: Mapping[str, Optional[str]], envs2: Mapping[str, Optional[str]]) -> bool:
    """Compare two environment maps regardless of key order."""
    return len(envs1) == len(envs2) and all(key in envs2 and envs1[key] == envs2[key] for key in envs1)


class EnvironmentAssembler:
    def __init__(self, region: Optional[str] = None, lambda_client: Any = None):
        self.region = region
        self._lambda = lambda_client

    @property
    def lambda_client(self):
        if self._lambda is None:
            import boto3

            self._lambda = boto3.session.Session().client("lambda", region_name=self.region)
        return self._lambda

    async def assemble(self, metadata: StaticSiteMetadata | SsrSiteMetadata) -> ResolvedBinding:
        """Build the binding for ``metadata``.

        Lambda errors propagate to the caller unchanged.
        """
        if isinstance(metadata, StaticSiteMetadata):
            return ResolvedBinding(envs=dict(metadata.data.environment or {}))

        log.debug(f"Fetching configuration of function {metadata.data.server}")
        config = await asyncio.to_thread(
            self.lambda_client.get_function_configuration,
            FunctionName=metadata.data.server,
        )
        variables = (config.get("Environment") or {}).get("Variables") or {}
        return ResolvedBinding(
            envs=dict(variables),
            role=config.get("Role"),
            secrets=frozenset(metadata.data.secrets),
        )
