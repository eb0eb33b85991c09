import pytest

from sitebind.errors import OutdatedMetadataError
from sitebind.metadata.models import SiteKind, SsrSiteMetadata, StaticSiteMetadata, parse_site_record


class TestParseSiteRecord:
    """Tests for site record parsing and validation."""

    def test_non_site_records_are_skipped(self) -> None:
        assert parse_site_record({"type": "Api", "data": {"url": "https://api"}}) is None
        assert parse_site_record({"data": {}}) is None

    def test_server_rendered_record(self) -> None:
        record = parse_site_record(
            {"type": "AstroSite", "id": "web", "data": {"path": "web", "server": "fn", "secrets": ["KEY"]}}
        )

        assert isinstance(record, SsrSiteMetadata)
        assert record.kind == SiteKind.SERVER_RENDERED
        assert record.data.secrets == ["KEY"]

    def test_static_record_stringifies_environment(self) -> None:
        record = parse_site_record({"type": "StaticSite", "data": {"path": "web", "environment": {"PORT": 3000}}})

        assert isinstance(record, StaticSiteMetadata)
        assert record.kind == SiteKind.STATIC
        assert record.data.environment == {"PORT": "3000"}

    def test_missing_secrets_default_to_empty(self) -> None:
        record = parse_site_record({"type": "NextjsSite", "data": {"path": "web", "server": "fn", "secrets": None}})
        assert record.data.secrets == []

    @pytest.mark.parametrize(
        "raw, missing",
        [
            ({"type": "NextjsSite", "data": {"server": "fn"}}, ["data.path"]),
            ({"type": "RemixSite", "data": {"path": "web"}}, ["data.server"]),
            ({"type": "StaticSite", "data": {"path": "web"}}, ["data.environment"]),
            ({"type": "SlsNextjsSite", "data": {}}, ["data.path", "data.environment"]),
        ],
    )
    def test_missing_fields_are_outdated(self, raw, missing) -> None:
        with pytest.raises(OutdatedMetadataError) as exc:
            parse_site_record(raw)
        assert exc.value.missing == missing
        assert exc.value.record_type == raw["type"]

    def test_malformed_data_is_outdated(self) -> None:
        with pytest.raises(OutdatedMetadataError):
            parse_site_record({"type": "NextjsSite", "data": "not-a-mapping"})
