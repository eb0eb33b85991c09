"""
Deployment metadata records for site resources.

Stacks publish one record per construct. Only site constructs matter here;
they come in two kinds:

- static: an asset bundle with a fixed environment map
- server-rendered: a function whose live configuration carries the
  environment and the IAM role

Records written by older platform versions lack the fields needed to bind
(``data.path`` and the kind specific field). Such records are rejected with
``OutdatedMetadataError`` rather than defaulted.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from sitebind.errors import OutdatedMetadataError


class SiteKind(str, Enum):
    STATIC = "static"
    SERVER_RENDERED = "server-rendered"


STATIC_SITE_TYPES = ("StaticSite", "SlsNextjsSite")
SSR_SITE_TYPES = ("NextjsSite", "AstroSite", "RemixSite", "SolidStartSite", "SvelteKitSite")
SITE_TYPES = STATIC_SITE_TYPES + SSR_SITE_TYPES


class StaticSiteData(BaseModel):
    model_config = ConfigDict(extra="allow")

    path: Optional[str] = None
    environment: Optional[Dict[str, str]] = None

    @field_validator("environment", mode="before")
    @classmethod
    def stringify_values(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): "" if val is None else str(val) for k, val in v.items()}
        return v


class SsrSiteData(BaseModel):
    model_config = ConfigDict(extra="allow")

    path: Optional[str] = None
    server: Optional[str] = None
    secrets: List[str] = Field(default_factory=list)

    @field_validator("secrets", mode="before")
    @classmethod
    def none_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class StaticSiteMetadata(BaseModel):
    """A static site record: the environment is declared in the record itself."""

    model_config = ConfigDict(extra="allow")

    type: Literal["StaticSite", "SlsNextjsSite"]
    id: Optional[str] = None
    stack: Optional[str] = None
    data: StaticSiteData = Field(default_factory=StaticSiteData)

    @property
    def kind(self) -> SiteKind:
        return SiteKind.STATIC

    def missing_fields(self) -> list[str]:
        missing = []
        if not self.data.path:
            missing.append("data.path")
        if self.data.environment is None:
            missing.append("data.environment")
        return missing


class SsrSiteMetadata(BaseModel):
    """A server-rendered site record: the environment lives on the server function."""

    model_config = ConfigDict(extra="allow")

    type: Literal["NextjsSite", "AstroSite", "RemixSite", "SolidStartSite", "SvelteKitSite"]
    id: Optional[str] = None
    stack: Optional[str] = None
    data: SsrSiteData = Field(default_factory=SsrSiteData)

    @property
    def kind(self) -> SiteKind:
        return SiteKind.SERVER_RENDERED

    def missing_fields(self) -> list[str]:
        missing = []
        if not self.data.path:
            missing.append("data.path")
        if not self.data.server:
            missing.append("data.server")
        return missing


SiteMetadata = Annotated[Union[StaticSiteMetadata, SsrSiteMetadata], Field(discriminator="type")]

_site_adapter: TypeAdapter[SiteMetadata] = TypeAdapter(SiteMetadata)


def parse_site_record(raw: Dict[str, Any]) -> Optional[StaticSiteMetadata | SsrSiteMetadata]:
    """Parse a raw metadata record.

    Returns:
        The parsed site record, or None if the record is not a site.

    Raises:
        OutdatedMetadataError: If the record is a site but lacks required fields.
    """
    record_type = raw.get("type") if isinstance(raw, dict) else None
    if record_type not in SITE_TYPES:
        return None

    try:
        record = _site_adapter.validate_python(raw)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise OutdatedMetadataError(record_type, fields) from e

    missing = record.missing_fields()
    if missing:
        raise OutdatedMetadataError(record_type, missing)
    return record
