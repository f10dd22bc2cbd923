"""Pytest fixtures and configuration for mailforest tests.

Provides common fixtures for configuration, records, forests and backends.
"""

from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import yaml

from mailforest.backend.fixture import FixtureBackend
from mailforest.config import reset_config
from mailforest.config_schema import AppConfig
from mailforest.engine.record import Record
from mailforest.engine.threadset import ThreadSet

BASE_DATE = datetime(2024, 3, 1, 9, 0, tzinfo=UTC)


def at(minutes: int) -> datetime:
    """A date ``minutes`` after BASE_DATE."""
    return BASE_DATE + timedelta(minutes=minutes)


def make_record(
    id: str,
    minutes: int = 0,
    subject: str = "",
    refs: list[str] | None = None,
    **kwargs: Any,
) -> Record:
    """Build a Record with a date offset from BASE_DATE."""
    return Record(id=id, date=at(minutes), subject=subject, refs=refs or [], **kwargs)


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content."""
    return """
schema_version: 1

backend:
  kind: fixture
  fixture_path: threads.yaml

threading:
  page_size: 2
  group_by_subject: true

display:
  snippet_length: 40
  initial_display_state: expanded

logging:
  level: warning
"""


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "backend": {"kind": "fixture", "fixture_path": "threads.yaml"},
        "threading": {"page_size": 2, "group_by_subject": True},
        "display": {"snippet_length": 40, "initial_display_state": "expanded"},
        "logging": {"level": "WARNING"},
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def record_factory() -> Callable[..., Record]:
    return make_record


@pytest.fixture
def forest() -> ThreadSet:
    return ThreadSet()


@pytest.fixture
def fixture_data() -> dict[str, Any]:
    """Three threads: a reply chain, a branching thread and a lone message."""
    return {
        "threads": [
            {
                "id": "t1",
                "messages": [
                    {
                        "id": "a@x",
                        "subject": "Budget",
                        "date": "2024-03-01T09:00:00+00:00",
                        "from": "Ann <ann@example.com>",
                        "to": ["bob@example.com"],
                        "labels": ["inbox"],
                        "snippet": "Here is the budget",
                        "replies": [
                            {
                                "id": "b@x",
                                "subject": "Re: Budget",
                                "date": "2024-03-01T10:00:00+00:00",
                                "from": "Bob <bob@example.com>",
                                "to": ["ann@example.com"],
                                "labels": ["inbox", "unread"],
                                "snippet": "Looks fine",
                                "replies": [
                                    {
                                        "id": "c@x",
                                        "subject": "Re: Budget",
                                        "date": "2024-03-01T11:00:00+00:00",
                                        "from": "Ann <ann@example.com>",
                                        "labels": ["inbox"],
                                    }
                                ],
                            }
                        ],
                    }
                ],
            },
            {
                "id": "t2",
                "messages": [
                    {
                        "id": "d@x",
                        "subject": "Offsite",
                        "date": "2024-03-02T09:00:00+00:00",
                        "from": "Carol <carol@example.com>",
                        "labels": ["inbox", "travel"],
                        "replies": [
                            {
                                "id": "e@x",
                                "subject": "Re: Offsite",
                                "date": "2024-03-02T10:00:00+00:00",
                                "from": "Dan <dan@example.com>",
                                "labels": ["inbox"],
                            },
                            {
                                "id": "f@x",
                                "subject": "Re: Offsite",
                                "date": "2024-03-02T09:30:00+00:00",
                                "from": "Ann <ann@example.com>",
                                "labels": ["inbox"],
                            },
                        ],
                    }
                ],
            },
            {
                "id": "t3",
                "messages": [
                    {
                        "id": "g@x",
                        "subject": "Newsletter",
                        "date": "2024-02-28T08:00:00+00:00",
                        "from": "News <news@example.com>",
                        "labels": ["list"],
                        "snippet": "This week in mail",
                    }
                ],
            },
        ]
    }


@pytest.fixture
def fixture_backend(fixture_data: dict[str, Any]) -> FixtureBackend:
    return FixtureBackend(fixture_data)


@pytest.fixture
def fixture_file(tmp_path: Path, fixture_data: dict[str, Any]) -> Path:
    path = tmp_path / "threads.yaml"
    path.write_text(yaml.safe_dump(fixture_data, sort_keys=False))
    return path
