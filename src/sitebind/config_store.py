"""
Locally declared configuration.

Script mode binds the command to what the project declares rather than to a
deployed resource: the ``environment`` map of the project file, plus any
SSM parameters stored under ``<ssm_prefix>/<stage>/``. SecureString
parameters are exposed as ``SITEBIND_SECRET_<NAME>``, the rest as
``SITEBIND_PARAM_<NAME>``.
"""

import asyncio
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from sitebind.config.logging_config import get_logger
from sitebind.config.project import Project

log = get_logger(__name__)

SECRET_ENV_PREFIX = "SITEBIND_SECRET_"
PARAM_ENV_PREFIX = "SITEBIND_PARAM_"


def env_name_for(parameter: Dict[str, Any], path: str) -> str:
    name = parameter["Name"][len(path) :].strip("/").replace("/", "_")
    prefix = SECRET_ENV_PREFIX if parameter.get("Type") == "SecureString" else PARAM_ENV_PREFIX
    return f"{prefix}{name}"


class ConfigStore:
    def __init__(self, project: Project, ssm_client: Any = None):
        self.project = project
        self._ssm = ssm_client

    @property
    def path(self) -> Optional[str]:
        prefix = self.project.config.ssm_prefix
        if not prefix:
            return None
        return f"{prefix}/{self.project.stage}/"

    @property
    def ssm_client(self):
        if self._ssm is None:
            import boto3

            self._ssm = boto3.session.Session().client("ssm", region_name=self.project.region)
        return self._ssm

    def list_parameters(self) -> List[Dict[str, Any]]:
        """Fetch every parameter under the project's SSM path."""
        path = self.path
        if path is None:
            return []
        parameters: List[Dict[str, Any]] = []
        paginator = self.ssm_client.get_paginator("get_parameters_by_path")
        for page in paginator.paginate(Path=path, Recursive=True, WithDecryption=True):
            parameters.extend(page.get("Parameters", []))
        return parameters

    async def env(self) -> Dict[str, str]:
        env = dict(self.project.config.environment)
        path = self.path
        if path is None:
            return env
        try:
            parameters = await asyncio.to_thread(self.list_parameters)
        except (ClientError, BotoCoreError) as e:
            log.warning(f"Could not load parameters under {path}: {e}")
            return env
        for parameter in parameters:
            env[env_name_for(parameter, path)] = parameter.get("Value", "")
        return env
