from .models import (
    SITE_TYPES,
    SiteKind,
    SiteMetadata,
    SsrSiteMetadata,
    StaticSiteMetadata,
    parse_site_record,
)
from .resolver import MetadataResolver
from .sources import DirectoryMetadataSource, MetadataSource, S3MetadataSource, create_metadata_source

__all__ = [
    "SITE_TYPES",
    "DirectoryMetadataSource",
    "MetadataResolver",
    "MetadataSource",
    "S3MetadataSource",
    "SiteKind",
    "SiteMetadata",
    "SsrSiteMetadata",
    "StaticSiteMetadata",
    "create_metadata_source",
    "parse_site_record",
]
