"""Index backends: where threads come from.

Provides:
- IndexBackend protocol consumed by ThreadSet
- NotmuchBackend over the notmuch CLI
- FixtureBackend over a JSON/YAML file

Usage:
    from mailforest.backend import create_backend
    from mailforest.config import get_config

    backend = create_backend(get_config().backend)
"""

from mailforest.backend.base import IndexBackend
from mailforest.backend.fixture import FixtureBackend
from mailforest.backend.notmuch import NotmuchBackend
from mailforest.config_schema import BackendConfig
from mailforest.core.errors import BackendError


def create_backend(config: BackendConfig) -> IndexBackend:
    """Build the backend selected by the ``backend`` config section.

    Raises:
        BackendError: If the fixture backend is selected without a fixture_path
    """
    if config.kind == "fixture":
        if not config.fixture_path:
            raise BackendError("backend.kind is 'fixture' but backend.fixture_path is not set")
        return FixtureBackend.from_file(config.fixture_path)
    return NotmuchBackend(
        command=config.notmuch_command,
        timeout=config.timeout_seconds,
        exclude=config.exclude_tags,
    )


__all__ = [
    "FixtureBackend",
    "IndexBackend",
    "NotmuchBackend",
    "create_backend",
]
