"""
Credential broker.

Server-rendered sites run with the server function's IAM role. The role is
assumed with the longest session STS allows; when the role caps the session
(chained roles are limited to one hour) the assumption is retried with a one
hour session. If the role cannot be assumed at all, the local credentials are
used instead.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ConfigDict
from rich.console import Console

from sitebind.config.logging_config import get_logger
from sitebind.errors import BindError

log = get_logger(__name__)

MAX_SESSION_DURATION = 43200
FALLBACK_SESSION_DURATION = 3600
SESSION_NAME = "dev-session"
DURATION_EXCEEDED_PREFIX = "The requested DurationSeconds exceeds"


class Credentials(BaseModel):
    """AWS credentials injected into the bound command.

    Assumed role credentials carry an expiration; ambient ones do not.
    """

    model_config = ConfigDict(frozen=True)

    access_key_id: str
    secret_access_key: str
    session_token: Optional[str] = None
    expiration: Optional[datetime] = None

    @property
    def is_assumed(self) -> bool:
        return self.expiration is not None

    def to_env(self) -> Dict[str, str]:
        env = {
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.secret_access_key,
        }
        if self.session_token:
            env["AWS_SESSION_TOKEN"] = self.session_token
        return env


def _is_duration_exceeded(error: Exception) -> bool:
    if not isinstance(error, ClientError):
        return False
    err = error.response.get("Error", {})
    return err.get("Code") == "ValidationError" and str(err.get("Message", "")).startswith(DURATION_EXCEEDED_PREFIX)


class CredentialBroker:
    def __init__(
        self,
        region: Optional[str] = None,
        console: Optional[Console] = None,
        session: Any = None,
        sts_client: Any = None,
    ):
        self.region = region
        self.console = console or Console(stderr=True)
        self._session = session
        self._sts = sts_client

    @property
    def session(self):
        if self._session is None:
            import boto3

            self._session = boto3.session.Session(region_name=self.region)
        return self._session

    @property
    def sts_client(self):
        if self._sts is None:
            self._sts = self.session.client("sts", region_name=self.region)
        return self._sts

    def _assume(self, role_arn: str, duration: int) -> Credentials:
        response = self.sts_client.assume_role(
            RoleArn=role_arn,
            RoleSessionName=SESSION_NAME,
            DurationSeconds=duration,
        )
        creds = response["Credentials"]
        return Credentials(
            access_key_id=creds["AccessKeyId"],
            secret_access_key=creds["SecretAccessKey"],
            session_token=creds.get("SessionToken"),
            expiration=creds["Expiration"],
        )

    async def assume_role(self, role_arn: str) -> Optional[Credentials]:
        """Assume ``role_arn``, returning None when the caller should use local credentials."""
        try:
            return await asyncio.to_thread(self._assume, role_arn, MAX_SESSION_DURATION)
        except (ClientError, BotoCoreError) as e:
            err: Exception = e

        if _is_duration_exceeded(err):
            log.debug(f"Session duration capped for {role_arn}, retrying with {FALLBACK_SESSION_DURATION}s")
            try:
                return await asyncio.to_thread(self._assume, role_arn, FALLBACK_SESSION_DURATION)
            except (ClientError, BotoCoreError) as e:
                err = e

        self.console.print("Could not assume the site's IAM role. Using local IAM credentials.")
        log.debug(f"Failed to assume {role_arn}: {err}")
        return None

    async def ambient_credentials(self) -> Credentials:
        """Resolve the local credentials through the default boto3 chain."""

        def _resolve() -> Optional[Credentials]:
            found = self.session.get_credentials()
            if found is None:
                return None
            frozen = found.get_frozen_credentials()
            return Credentials(
                access_key_id=frozen.access_key,
                secret_access_key=frozen.secret_key,
                session_token=frozen.token,
            )

        credentials = await asyncio.to_thread(_resolve)
        if credentials is None:
            raise BindError("Could not find local AWS credentials. Configure a profile or set AWS_ACCESS_KEY_ID.")
        return credentials
