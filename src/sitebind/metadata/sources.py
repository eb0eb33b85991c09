"""
Metadata sources.

Stacks publish their metadata as one JSON array per stack under
``stackMetadata/app.<app>/stage.<stage>/<stack>.json``, either in an S3
bucket or in a local directory with the same layout.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Optional, Protocol

from sitebind.config.logging_config import get_logger
from sitebind.config.project import Project

log = get_logger(__name__)

MetadataSnapshot = dict[str, list[dict[str, Any]]]


def metadata_prefix(app: str, stage: str) -> str:
    return f"stackMetadata/app.{app}/stage.{stage}/"


class MetadataSource(Protocol):
    async def fetch_all(self) -> MetadataSnapshot: ...


def _records(stack: str, payload: Any) -> list[dict[str, Any]]:
    if not isinstance(payload, list):
        log.debug(f"Ignoring metadata for {stack}: expected a list, got {type(payload).__name__}")
        return []
    return [r for r in payload if isinstance(r, dict)]


class S3MetadataSource:
    """Reads stack metadata published to an S3 bucket."""

    def __init__(self, bucket: str, app: str, stage: str, region: Optional[str] = None, client: Any = None):
        self.bucket = bucket
        self.prefix = metadata_prefix(app, stage)
        self.region = region
        self._client = client

    @property
    def client(self):
        if self._client is None:
            import boto3

            self._client = boto3.session.Session().client("s3", region_name=self.region)
        return self._client

    def _fetch_all_sync(self) -> MetadataSnapshot:
        snapshot: MetadataSnapshot = {}
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
            for obj in page.get("Contents", []):
                key = obj["Key"]
                if not key.endswith(".json"):
                    continue
                stack = key[len(self.prefix) : -len(".json")]
                body = self.client.get_object(Bucket=self.bucket, Key=key)["Body"].read()
                snapshot[stack] = _records(stack, json.loads(body))
        return snapshot

    async def fetch_all(self) -> MetadataSnapshot:
        return await asyncio.to_thread(self._fetch_all_sync)


class DirectoryMetadataSource:
    """Reads stack metadata from a local directory."""

    def __init__(self, directory: Path, app: str, stage: str):
        self.directory = Path(directory) / metadata_prefix(app, stage)

    def _fetch_all_sync(self) -> MetadataSnapshot:
        snapshot: MetadataSnapshot = {}
        if not self.directory.is_dir():
            return snapshot
        for path in sorted(self.directory.glob("*.json")):
            try:
                payload = json.loads(path.read_text())
            except (OSError, json.JSONDecodeError) as e:
                # Partially written files show up while a deploy is running
                log.debug(f"Skipping unreadable metadata file {path}: {e}")
                continue
            snapshot[path.stem] = _records(path.stem, payload)
        return snapshot

    async def fetch_all(self) -> MetadataSnapshot:
        return await asyncio.to_thread(self._fetch_all_sync)


def create_metadata_source(project: Project) -> MetadataSource:
    location = project.config.metadata
    if location.bucket:
        return S3MetadataSource(location.bucket, project.name, project.stage, region=project.region)
    directory = Path(location.directory)
    if not directory.is_absolute():
        directory = project.root / directory
    return DirectoryMetadataSource(directory, project.name, project.stage)
