"""
Project file loading.

A project is described by a ``sitebind.yaml`` file at its root. The file is
found by walking up from the working directory, parsed with PyYAML and
validated with pydantic.
"""

from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from sitebind.config.environment import Environment
from sitebind.errors import ProjectConfigError, ProjectNotFoundError

PROJECT_FILES = ("sitebind.yaml", "sitebind.yml")


class MetadataLocation(BaseModel):
    """Where deployment metadata is published."""

    bucket: Optional[str] = Field(None, description="S3 bucket holding stack metadata")
    directory: str = Field(".sitebind/metadata", description="Local metadata directory, used when no bucket is set")


class ProjectConfig(BaseModel):
    """Validated contents of the project file."""

    name: str = Field(..., description="Application name")
    stage: Optional[str] = Field(None, description="Stage to bind to (default: SITEBIND_STAGE or the user name)")
    region: Optional[str] = Field(None, description="AWS region (default: AWS_REGION)")
    metadata: MetadataLocation = Field(default_factory=MetadataLocation)
    environment: Dict[str, str] = Field(default_factory=dict, description="Declared variables used in script mode")
    ssm_prefix: Optional[str] = Field(None, description="SSM path holding declared secrets and parameters")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip()

    @field_validator("environment", mode="before")
    @classmethod
    def stringify_environment(cls, v):
        if v is None:
            return {}
        return {str(k): "" if val is None else str(val) for k, val in dict(v).items()}

    @field_validator("ssm_prefix")
    @classmethod
    def normalize_prefix(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return "/" + v.strip("/")

    @model_validator(mode="after")
    def fill_defaults(self) -> "ProjectConfig":
        if not self.stage:
            self.stage = Environment.get_stage()
        if not self.region:
            self.region = Environment.get_aws_region()
        return self


class Project(BaseModel):
    """A loaded project: its root directory plus its configuration."""

    root: Path
    config: ProjectConfig

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def stage(self) -> str:
        if not self.config.stage:
            raise ProjectConfigError("No stage configured. Set `stage` in the project file or SITEBIND_STAGE.")
        return self.config.stage

    @property
    def region(self) -> str:
        if not self.config.region:
            raise ProjectConfigError("No AWS region configured. Set `region` in the project file or AWS_REGION.")
        return self.config.region


def find_project_root(start: Path) -> Optional[Path]:
    current = start.resolve()
    for candidate in (current, *current.parents):
        if any((candidate / name).is_file() for name in PROJECT_FILES):
            return candidate
    return None


def load_project(cwd: Optional[Path] = None) -> Project:
    """Find and load the project enclosing ``cwd``.

    The project's `.env` files are loaded before the configuration is
    validated so they can supply the stage and region.

    Raises:
        ProjectNotFoundError: If no project file exists in ``cwd`` or its parents.
        ProjectConfigError: If the project file is not valid YAML or fails validation.
    """
    start = cwd or Path.cwd()
    root = find_project_root(start)
    if root is None:
        raise ProjectNotFoundError(
            f"Could not find {PROJECT_FILES[0]} in {start} or any parent directory"
        )

    path = next(root / name for name in PROJECT_FILES if (root / name).is_file())
    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ProjectConfigError(f"{path} is not valid YAML: {e}") from e
    if not isinstance(raw, dict):
        raise ProjectConfigError(f"{path} must contain a mapping, got {type(raw).__name__}")

    Environment.load(root, raw.get("stage") or Environment.get("SITEBIND_STAGE"))
    try:
        config = ProjectConfig.model_validate(raw)
    except ValidationError as e:
        raise ProjectConfigError(f"Invalid {path.name}: {e}") from e
    return Project(root=root, config=config)
