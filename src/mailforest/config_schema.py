"""Pydantic configuration schema for mailforest.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models when it is loaded.

Usage:
    from mailforest.config_schema import AppConfig

    # Validate a config dict
    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1


class BackendConfig(BaseModel):
    """Index backend selection."""

    kind: Literal["notmuch", "fixture"] = Field(
        default="notmuch",
        description="Which index backend to query",
    )
    notmuch_command: str = Field(
        default="notmuch",
        description="notmuch executable (name on PATH or absolute path)",
    )
    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        le=3600,
        description="Seconds before a backend command is abandoned",
    )
    exclude_tags: bool = Field(
        default=True,
        description="Honour notmuch's search.exclude_tags when searching",
    )
    fixture_path: str | None = Field(
        default=None,
        description="JSON/YAML fixture file for the fixture backend",
    )

    @field_validator("notmuch_command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("notmuch_command cannot be empty")
        return v.strip()

    @field_validator("fixture_path")
    @classmethod
    def validate_fixture_path(cls, v: str | None) -> str | None:
        """Ensure fixture path doesn't contain path traversal."""
        if v is None:
            return v
        if not v.strip():
            raise ValueError("fixture_path cannot be empty")
        if ".." in v:
            raise ValueError("fixture_path cannot contain '..' (path traversal)")
        return v


class ThreadingConfig(BaseModel):
    """Threading engine configuration."""

    page_size: int = Field(
        default=40,
        ge=1,
        le=1000,
        description="Thread ids requested from the backend per fetch",
    )
    group_by_subject: bool = Field(
        default=True,
        description="Group messages without a backend thread id by normalized subject",
    )
    fake_root: bool = Field(
        default=True,
        description="Show a synthetic root above threads with several unrelated roots",
    )
    default_limit: int = Field(
        default=100,
        ge=1,
        description="Threads loaded by search/dump when --limit is not given",
    )


class DisplayConfig(BaseModel):
    """Terminal rendering configuration."""

    snippet_length: int = Field(
        default=80,
        ge=0,
        le=1000,
        description="Characters of snippet shown in the thread index (0 hides snippets)",
    )
    initial_display_state: Literal["default", "expanded", "collapsed"] = Field(
        default="default",
        description="How threads open in 'show': 'default' expands unread threads",
    )
    max_participants: int = Field(
        default=3,
        ge=1,
        description="Participants listed per thread in the index",
    )


class LoggingConfig(BaseModel):
    """structlog output configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    json_output: bool = Field(
        default=False,
        description="Emit JSON log lines instead of console output",
    )

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v


class AppConfig(BaseModel):
    """Root configuration schema for mailforest.

    This model validates the entire config.yaml structure. Every command
    parses the YAML and validates it against this schema on startup.

    If validation fails on startup, the CLI exits with a clear error.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )

    backend: BackendConfig = Field(default_factory=BackendConfig)
    threading: ThreadingConfig = Field(default_factory=ThreadingConfig)
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
