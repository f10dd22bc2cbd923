"""Index backend over a JSON or YAML fixture file.

Stands in for a real mail index in tests and for offline use of the CLI.
The file holds threads of nested reply nodes (same shape as
mailforest.backend.payload), keyed by backend thread id:

    threads:
      - id: t1
        messages:
          - id: a@example.com
            subject: Budget
            date: 2024-03-01T09:00:00+00:00
            from: Ann <ann@example.com>
            labels: [inbox, unread]
            replies:
              - id: b@example.com
                subject: "Re: Budget"
                ...

Query language (terms separated by whitespace, all must match one message):
    *                everything
    tag:X, label:X   message has label X (``-tag:X`` negates)
    from:X           sender contains X
    subject:X        subject contains X
    id:X             message id is X
    thread:X         backend thread id is X
    word             subject or snippet contains word

Matching is case-insensitive except for ids and labels.
"""

import copy
import json
import shlex
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from mailforest.backend.payload import MessageNode, iter_nodes, parse_thread_payloads
from mailforest.core.errors import BackendError, QueryError
from mailforest.core.logging import get_logger
from mailforest.engine.record import Record

logger = get_logger(__name__)

Predicate = Callable[[str, MessageNode], bool]


def _contains(field: str | None, value: str) -> bool:
    return value.lower() in (field or "").lower()


def _strip_thread_prefix(value: str) -> str:
    return value.removeprefix("thread:")


_PREFIXES: dict[str, Callable[[str], Predicate]] = {
    "tag": lambda v: lambda tid, node: v in node.labels,
    "label": lambda v: lambda tid, node: v in node.labels,
    "from": lambda v: lambda tid, node: _contains(node.sender, v),
    "subject": lambda v: lambda tid, node: _contains(node.subject, v),
    "id": lambda v: lambda tid, node: node.id == v,
    "thread": lambda v: lambda tid, node: (
        _strip_thread_prefix(tid) == _strip_thread_prefix(v)
    ),
}


def parse_query(query: str) -> list[Predicate]:
    """Compile a fixture query into per-message predicates.

    Raises:
        QueryError: On an unknown ``prefix:`` or unbalanced quotes
    """
    try:
        terms = shlex.split(query)
    except ValueError as e:
        raise QueryError(f"Cannot parse query '{query}': {e}", query=query) from e

    predicates: list[Predicate] = []
    for term in terms:
        if term == "*":
            continue

        negate = term.startswith("-") and len(term) > 1
        body = term[1:] if negate else term
        prefix, sep, value = body.partition(":")

        if sep:
            factory = _PREFIXES.get(prefix.lower())
            if factory is None:
                raise QueryError(
                    f"Unknown search term '{prefix}:' in query '{query}'. "
                    f"Supported: {', '.join(sorted(_PREFIXES))}",
                    query=query,
                )
            if not value:
                raise QueryError(f"Empty value for '{prefix}:' in query '{query}'", query=query)
            predicate = factory(value)
        else:
            predicate = (
                lambda word: lambda tid, node: (
                    _contains(node.subject, word) or _contains(node.snippet, word)
                )
            )(body)

        if negate:
            predicate = (lambda p: lambda tid, node: not p(tid, node))(predicate)
        predicates.append(predicate)
    return predicates


class FixtureBackend:
    """Index backend serving threads from an in-memory fixture.

    Attributes:
        path: File the fixture was loaded from; label changes are written
            back to it when set
    """

    def __init__(self, data: dict[str, Any], path: Path | None = None):
        threads = data.get("threads") if isinstance(data, dict) else None
        if not isinstance(threads, list):
            raise BackendError("Fixture must be a mapping with a 'threads' list")
        for entry in threads:
            if not isinstance(entry, dict) or not entry.get("id"):
                raise BackendError(f"Fixture thread entry without an id: {str(entry)[:200]}")
            entry.setdefault("messages", [])

        # Validate once up front so a bad fixture fails on load, not on first query
        parse_thread_payloads([entry["messages"] for entry in threads])

        self.path = path
        self._threads: dict[str, dict[str, Any]] = {str(e["id"]): e for e in threads}

    @classmethod
    def from_file(cls, path: str | Path) -> "FixtureBackend":
        """Load a fixture from a .json, .yaml or .yml file.

        Raises:
            BackendError: If the file is missing or cannot be parsed
        """
        fixture_path = Path(path)
        if not fixture_path.exists():
            raise BackendError(f"Fixture file not found: {fixture_path}")
        try:
            with open(fixture_path) as f:
                if fixture_path.suffix == ".json":
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise BackendError(f"Cannot parse fixture {fixture_path}: {e}") from e

        backend = cls(data or {}, path=fixture_path)
        logger.debug("Loaded fixture", path=str(fixture_path), threads=len(backend._threads))
        return backend

    @property
    def thread_ids(self) -> list[str]:
        return list(self._threads)

    def _latest(self, nodes: list[MessageNode]) -> datetime | None:
        dates = [node.date for node, _ in iter_nodes(nodes)]
        return max(dates) if dates else None

    def search(self, query: str, offset: int = 0, limit: int | None = None) -> list[str]:
        """Return matching thread ids, newest thread first."""
        predicates = parse_query(query or "*")
        thread_ids = list(self._threads)
        payloads = parse_thread_payloads([self._threads[tid]["messages"] for tid in thread_ids])

        matches: list[tuple[float, str]] = []
        for tid, nodes in zip(thread_ids, payloads, strict=True):
            if not any(all(p(tid, node) for p in predicates) for node, _ in iter_nodes(nodes)):
                continue
            latest = self._latest(nodes)
            matches.append((-latest.timestamp() if latest else 0.0, tid))

        matches.sort()
        result = [tid for _, tid in matches]
        end = None if limit is None else offset + limit
        return result[offset:end]

    def fetch_subtrees(self, thread_ids: Sequence[str]) -> list[list[dict[str, Any]]]:
        """Return a copy of each thread's reply nodes; unknown ids give []."""
        subtrees = []
        for thread_id in thread_ids:
            entry = self._threads.get(thread_id)
            subtrees.append(copy.deepcopy(entry["messages"]) if entry else [])
        return subtrees

    def _nodes_by_id(self) -> dict[str, dict[str, Any]]:
        index: dict[str, dict[str, Any]] = {}
        stack = [node for entry in self._threads.values() for node in entry["messages"]]
        while stack:
            node = stack.pop()
            index[node["id"]] = node
            stack.extend(node.get("replies") or [])
        return index

    def save_labels(self, records: Iterable[Record]) -> int:
        """Store each dirty record's labels, writing the fixture file if loaded from one."""
        pending = [r for r in records if r.dirty_labels]
        if not pending:
            return 0

        index = self._nodes_by_id()
        saved = 0
        for record in pending:
            node = index.get(record.id)
            if node is None:
                logger.warning("Record not in fixture, labels not saved", message_id=record.id)
                continue
            node["labels"] = sorted(record.labels)
            record.clear_dirty_labels()
            saved += 1

        if self.path is not None and saved:
            self._write()
        logger.info("Saved labels", records=saved)
        return saved

    def _write(self) -> None:
        data = {"threads": list(self._threads.values())}
        with open(self.path, "w") as f:
            if self.path.suffix == ".json":
                json.dump(data, f, indent=2, default=str)
            else:
                yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
