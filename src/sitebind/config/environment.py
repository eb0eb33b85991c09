"""
Environment Configuration Management Module

This module provides centralized access to runtime configuration for sitebind
through the Environment class. Values are looked up in this order:

- Process environment variables
- `.env` files at the project root (loaded once the project is known)
- Default values from ``DEFAULT_ENV``

The `.env` files never override variables that are already set in the
process environment, so an explicit `export` always wins.
"""

import getpass
import os
from pathlib import Path
from typing import Any, Optional

DEFAULT_ENV: dict[str, Any] = {
    "AWS_REGION": "us-east-1",
    "SITEBIND_STAGE": None,
    "SITEBIND_LOG_LEVEL": "INFO",
    "SITEBIND_POLL_INTERVAL": "1",
    "SITEBIND_WATCH_INTERVAL": "2",
    "SITEBIND_SETTLE_DELAY": "0.2",
}


def load_dotenv_files(project_root: Path, stage: Optional[str] = None) -> list[Path]:
    """Load environment variables from .env files at the project root.

    Later files take precedence over earlier ones, but none of them override
    variables already present in the process environment.
    """
    from dotenv import dotenv_values

    env_files = [project_root / ".env"]
    if stage:
        env_files += [
            project_root / f".env.{stage}",
            project_root / f".env.{stage}.local",
        ]

    merged: dict[str, str] = {}
    loaded = []
    for env_file in env_files:
        if env_file.exists():
            values = dotenv_values(env_file)
            merged.update({k: v for k, v in values.items() if v is not None})
            loaded.append(env_file)

    for key, value in merged.items():
        os.environ.setdefault(key, value)
    return loaded


class Environment(object):
    """
    Central place to read sitebind configuration with defaults and type conversions.
    """

    project_root: Optional[Path] = None
    loaded_files: list[Path] = []

    @classmethod
    def load(cls, project_root: Path, stage: Optional[str] = None) -> None:
        cls.project_root = project_root
        cls.loaded_files = load_dotenv_files(project_root, stage)

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        if key in os.environ:
            return os.environ[key]
        value = DEFAULT_ENV.get(key)
        return value if value is not None else default

    @classmethod
    def _get_float(cls, key: str) -> float:
        raw = cls.get(key)
        try:
            return float(raw)
        except (TypeError, ValueError):
            return float(DEFAULT_ENV[key])

    @classmethod
    def get_log_level(cls) -> str:
        return str(cls.get("SITEBIND_LOG_LEVEL")).upper()

    @classmethod
    def get_aws_region(cls) -> str:
        """
        The AWS region used for cloud lookups when the project file does not set one.
        """
        return cls.get("AWS_REGION")

    @classmethod
    def get_stage(cls) -> str:
        """
        The stage defaults to the local user name, so each developer binds to their own deployment.
        """
        stage = cls.get("SITEBIND_STAGE")
        if stage:
            return stage
        return getpass.getuser()

    @classmethod
    def get_poll_interval(cls) -> float:
        """
        Seconds between metadata lookups while waiting for a deployment.
        """
        return cls._get_float("SITEBIND_POLL_INTERVAL")

    @classmethod
    def get_watch_interval(cls) -> float:
        """
        Seconds between change checks of the metadata and secret watchers.
        """
        return cls._get_float("SITEBIND_WATCH_INTERVAL")

    @classmethod
    def get_settle_delay(cls) -> float:
        return cls._get_float("SITEBIND_SETTLE_DELAY")
