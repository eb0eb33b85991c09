import io
import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from sitebind.config.project import load_project
from sitebind.metadata.sources import (
    DirectoryMetadataSource,
    S3MetadataSource,
    create_metadata_source,
    metadata_prefix,
)


class TestDirectoryMetadataSource:
    @pytest.mark.asyncio
    async def test_missing_directory_is_empty(self, tmp_path: Path) -> None:
        source = DirectoryMetadataSource(tmp_path, "app", "dev")
        assert await source.fetch_all() == {}

    @pytest.mark.asyncio
    async def test_reads_stacks_and_skips_broken_files(self, tmp_path: Path) -> None:
        directory = tmp_path / metadata_prefix("app", "dev")
        directory.mkdir(parents=True)
        (directory / "web.json").write_text(json.dumps([{"type": "StaticSite"}]))
        (directory / "api.json").write_text("{not json")
        (directory / "odd.json").write_text(json.dumps({"type": "StaticSite"}))

        snapshot = await DirectoryMetadataSource(tmp_path, "app", "dev").fetch_all()

        assert snapshot == {"web": [{"type": "StaticSite"}], "odd": []}


class TestS3MetadataSource:
    @pytest.mark.asyncio
    async def test_reads_json_objects_under_prefix(self) -> None:
        prefix = metadata_prefix("app", "dev")
        client = MagicMock()
        client.get_paginator.return_value.paginate.return_value = [
            {"Contents": [{"Key": f"{prefix}web.json"}, {"Key": f"{prefix}notes.txt"}]},
            {},
        ]
        client.get_object.return_value = {"Body": io.BytesIO(json.dumps([{"type": "NextjsSite"}]).encode())}
        source = S3MetadataSource("bucket", "app", "dev", client=client)

        snapshot = await source.fetch_all()

        assert snapshot == {"web": [{"type": "NextjsSite"}]}
        client.get_paginator.assert_called_once_with("list_objects_v2")
        client.get_paginator.return_value.paginate.assert_called_once_with(Bucket="bucket", Prefix=prefix)
        client.get_object.assert_called_once_with(Bucket="bucket", Key=f"{prefix}web.json")


class TestCreateMetadataSource:
    def test_directory_by_default(self, project_dir: Path) -> None:
        source = create_metadata_source(load_project(project_dir))
        assert isinstance(source, DirectoryMetadataSource)
        assert source.directory == project_dir / ".sitebind/metadata" / metadata_prefix("my-app", "dev")

    def test_bucket_when_configured(self, project_dir: Path) -> None:
        (project_dir / "sitebind.yaml").write_text("name: my-app\nmetadata:\n  bucket: boot\n")
        source = create_metadata_source(load_project(project_dir))
        assert isinstance(source, S3MetadataSource)
        assert source.bucket == "boot"
        assert source.region == "eu-west-1"
