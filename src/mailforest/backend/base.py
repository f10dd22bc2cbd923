"""The index backend interface consumed by the threading engine.

The engine never talks to a mail index directly: a backend object is passed
into ThreadSet.load_thread_ids / load_n_threads. Any object with these
methods will do.
"""

from collections.abc import Iterable, Sequence
from typing import Any, Protocol, runtime_checkable

from mailforest.engine.record import Record


@runtime_checkable
class IndexBackend(Protocol):
    """Search and fetch capability provided by an external mail index."""

    def search(self, query: str, offset: int = 0, limit: int | None = None) -> list[str]:
        """Resolve a query to backend thread ids, newest first.

        The ordering must be stable across calls so that consecutive pages
        can be concatenated.

        Raises:
            QueryError: If the query is rejected
        """
        ...

    def fetch_subtrees(self, thread_ids: Sequence[str]) -> list[list[dict[str, Any]]]:
        """Return the nested reply structure of each requested thread.

        Must return exactly one entry per thread id, in request order. Each
        entry is the list of top-level reply nodes of that thread (see
        mailforest.backend.payload for the node shape).

        Raises:
            BackendError: If the backend cannot be queried
        """
        ...

    def save_labels(self, records: Iterable[Record]) -> int:
        """Write label changes back to the index and clear their dirty flags.

        Returns:
            Number of records written
        """
        ...
