"""Online JWZ threading: the ThreadSet forest.

This is an incremental version of the JWZ threading algorithm
(https://www.jwz.org/doc/threading.html). Messages arrive in any order, in
pages fetched from an index backend, and the forest is kept correct after
every single message:

- Every message id ever referenced gets a Container in one id-keyed table.
  Unseen ids become placeholders and are filled in when their message shows
  up, so a reply arriving before its parent needs no retry.
- Links are first-writer-wins and are checked for cycles before they are
  made; a link that would loop is dropped, never repaired afterwards.
- Every root container belongs to a Thread. A Thread that loses its last
  root, or its last real message, is removed from the registry at once.

Usage:
    from mailforest.engine.threadset import ThreadSet

    forest = ThreadSet()
    forest.load_n_threads(backend, 100, "tag:inbox")

    for thread in sorted(forest.threads, key=Thread.sort_key):
        for message, depth, parent in thread.walk(fake_root=True):
            ...

The ThreadSet is not thread-safe. Feed it from one logical thread; if the
backend must be queried off the main loop, fetch there and hand the results
back before calling into the forest.
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterable
from itertools import pairwise
from typing import TYPE_CHECKING, TextIO

from mailforest.backend.payload import MessageNode, iter_nodes, parse_thread_payloads
from mailforest.core.errors import BackendContractError
from mailforest.core.logging import get_logger
from mailforest.engine.container import Container
from mailforest.engine.record import Record, normalize_subject
from mailforest.engine.thread import Thread

if TYPE_CHECKING:
    from mailforest.backend.base import IndexBackend

logger = get_logger(__name__)

# Thread ids requested from the backend per fetch
DEFAULT_PAGE_SIZE = 40

# Registry key prefix for threads grouped by normalized subject
SUBJECT_KEY_PREFIX = "subject:"


class ThreadSet:
    """A forest of threads, built online from index backend results.

    Invariants: every Thread has at least one root container, and the
    containers reachable from it hold at least one message. The container
    graph never has a cycle.

    Attributes:
        num_messages: Count of messages materialized so far
        offset: Number of search results already loaded (pagination cursor)
        page_size: Thread ids per backend fetch
        group_by_subject: Group unlinked messages by normalized subject
    """

    def __init__(
        self,
        page_size: int = DEFAULT_PAGE_SIZE,
        group_by_subject: bool = True,
    ):
        """Initialize an empty forest.

        Args:
            page_size: Thread ids per backend fetch (default 40)
            group_by_subject: When a message arrives without a backend
                thread id, file it under its normalized subject
        """
        if page_size < 1:
            raise ValueError(f"page_size must be at least 1, got {page_size}")
        self.page_size = page_size
        self.group_by_subject = group_by_subject
        self.num_messages = 0
        self.offset = 0
        # Message id -> container, placeholders included
        self._containers: dict[str, Container] = {}
        # Thread key -> thread
        self._threads: dict[str, Thread] = {}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def threads(self) -> list[Thread]:
        """All threads, unordered. Sort by Thread.sort_key for display."""
        return list(self._threads.values())

    @property
    def size(self) -> int:
        return len(self._threads)

    def container(self, message_id: str) -> Container | None:
        return self._containers.get(message_id)

    def thread_keys(self) -> list[str]:
        return list(self._threads)

    def has_thread_key(self, key: str) -> bool:
        return key in self._threads

    def get_thread(self, key: str) -> Thread | None:
        return self._threads.get(key)

    def contains_id(self, message_id: str) -> bool:
        """True if the message has been received (placeholders do not count)."""
        container = self._containers.get(message_id)
        return container is not None and container.message is not None

    def contains(self, record: Record) -> bool:
        return self.contains_id(record.id)

    def thread_for_id(self, message_id: str) -> Thread | None:
        container = self._containers.get(message_id)
        if container is None:
            return None
        return container.root().thread

    def thread_for(self, record: Record) -> Thread | None:
        return self.thread_for_id(record.id)

    thread_containing = thread_for

    def is_relevant(self, record: Record) -> bool:
        """True if the record is loaded or would attach to known structure."""
        if self.contains(record):
            return True
        ancestors = [*record.refs, record.reply_to] if record.reply_to else record.refs
        return any(ref in self._containers for ref in ancestors)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def _container_for(self, message_id: str) -> Container:
        container = self._containers.get(message_id)
        if container is None:
            container = Container(message_id)
            self._containers[message_id] = container
        return container

    def _thread_for_key(self, key: str) -> Thread:
        thread = self._threads.get(key)
        if thread is None:
            thread = Thread(key)
            self._threads[key] = thread
        return thread

    def _adopt(self, root: Container, key: str) -> Thread:
        thread = self._thread_for_key(key)
        thread.append(root)
        root.thread = thread
        return thread

    def _delete_thread(self, thread: Thread) -> None:
        if self._threads.get(thread.key) is thread:
            del self._threads[thread.key]
        for root in thread.roots:
            if root.thread is thread:
                root.thread = None
        thread.clear()

    def _discard_if_hollow(self, thread: Thread | None) -> None:
        """Delete a thread that no longer reaches any message."""
        if thread is None or thread.has_message():
            return
        logger.debug("Discarding thread without messages", thread_key=thread.key)
        self._delete_thread(thread)

    def prune_thread_of(self, container: Container) -> None:
        """Detach a container from the thread it roots, deleting emptied threads."""
        thread = container.thread
        if thread is None:
            return
        thread.drop(container)
        if thread.is_empty:
            self._delete_thread(thread)
        container.thread = None

    def _detach(self, container: Container) -> None:
        if container.parent is not None:
            container.parent.children.remove(container)
            container.parent = None

    def link(self, parent: Container, child: Container, overwrite: bool = False) -> bool:
        """Make ``child`` a reply of ``parent``.

        Silently does nothing when the link would create a cycle, or when the
        child already has a parent and ``overwrite`` is not set.

        Args:
            parent: Container to attach under
            child: Container to attach
            overwrite: Re-parent a child that already has a parent

        Returns:
            True if the link was made
        """
        if parent is child or parent.descendant_of(child) or child.descendant_of(parent):
            logger.debug("Link would create a loop", parent=parent.id, child=child.id)
            return False
        if child.parent is not None and not overwrite:
            return False

        old_root = child.root()
        old_thread = child.thread or old_root.thread
        self._detach(child)
        parent.children.append(child)
        child.parent = parent

        # The child is no longer top-level, so it leaves its thread
        self.prune_thread_of(child)

        new_root = parent.root()
        if new_root.thread is None and old_thread is not None:
            self._adopt(new_root, old_thread.key)
        if old_root is not child:
            self._discard_if_hollow(old_root.thread)
        return True

    def relink(self, parent_id: str, child_id: str) -> bool:
        """Re-thread a message under another one, replacing its current parent.

        Used when the user joins threads by hand.

        Returns:
            True if the link was made
        """
        parent = self._containers.get(parent_id)
        child = self._containers.get(child_id)
        if parent is None or child is None:
            return False
        return self.link(parent, child, overwrite=True)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def _key_for(self, root: Container, record: Record, thread_key: str | None) -> str:
        if thread_key:
            return thread_key
        if record.thread_id:
            return record.thread_id
        if self.group_by_subject:
            subject = normalize_subject(root.subject)
            if subject:
                return SUBJECT_KEY_PREFIX + subject
        return root.id

    def ingest(
        self,
        record: Record,
        parent_id: str | None = None,
        thread_key: str | None = None,
    ) -> bool:
        """Add one message to the forest.

        Re-ingesting a message that is already present does nothing.

        Args:
            record: The message
            parent_id: Parent from a nested reply structure. When omitted the
                record's own reference chain is linked instead.
            thread_key: Registry key for a newly created thread (backend
                thread id)

        Returns:
            True if the message was new
        """
        container = self._container_for(record.id)
        if container.message is not None:
            return False
        container.message = record

        if parent_id is not None:
            if parent_id != record.id:
                self.link(self._container_for(parent_id), container)
        else:
            chain = list(record.refs)
            if record.reply_to and record.reply_to not in chain:
                chain.append(record.reply_to)
            chain = [ref for ref in chain if ref != record.id]
            for older, newer in pairwise(chain):
                self.link(self._container_for(older), self._container_for(newer))
            if chain:
                immediate = record.reply_to if record.reply_to in chain else chain[-1]
                self.link(self._container_for(immediate), container)

        root = container.root()
        if root.thread is None:
            self._adopt(root, self._key_for(root, record, thread_key))

        self.num_messages += 1
        return True

    def _process_thread(self, nodes: list[MessageNode], thread_id: str) -> int:
        added = 0
        for node, parent_id in iter_nodes(nodes):
            record = node.to_record(thread_id)
            if self.ingest(record, parent_id=parent_id, thread_key=thread_id):
                added += 1
        return added

    def load_thread_ids(
        self,
        backend: IndexBackend,
        thread_ids: Iterable[str | None],
        ignore_existing: bool = False,
        page_size: int | None = None,
        progress: Callable[[int], None] | None = None,
    ) -> int:
        """Fetch whole threads from the backend and thread every message in them.

        Every message of every returned subtree is ingested, not just the
        requested thread root, since replies carry parent/child evidence too.

        Args:
            backend: Index backend to fetch from
            thread_ids: Backend thread ids to load
            ignore_existing: Skip thread ids already in the registry
            page_size: Thread ids per fetch (default: the forest's page size)
            progress: Called with the thread count after each page

        Returns:
            Number of messages added

        Raises:
            BackendContractError: If a page's result count does not match the
                request, or a reply structure is malformed. Pages already
                ingested stay ingested; the failing page is not applied.
        """
        size = page_size or self.page_size
        wanted = [
            tid for tid in thread_ids if tid and not (ignore_existing and tid in self._threads)
        ]
        added = 0

        for start in range(0, len(wanted), size):
            page = wanted[start : start + size]
            raw = backend.fetch_subtrees(page)
            if len(raw) != len(page):
                logger.error(
                    "Backend returned wrong number of threads",
                    requested=len(page),
                    received=len(raw),
                )
                raise BackendContractError(
                    f"Backend returned {len(raw)} thread(s) for {len(page)} requested id(s). "
                    "The index backend must return exactly one entry per thread id.",
                    expected=len(page),
                    received=len(raw),
                )
            payloads = parse_thread_payloads(raw)

            for thread_id, nodes in zip(page, payloads, strict=True):
                added += self._process_thread(nodes, thread_id)

            logger.debug(
                "Loaded thread page",
                page_threads=len(page),
                threads=self.size,
                num_messages=self.num_messages,
            )
            if progress is not None:
                progress(self.size)

        return added

    def load_n_threads(self, backend: IndexBackend, num: int, query: str) -> int:
        """Load search results until ``num`` threads have been requested.

        Continues from the current offset, so calling again with a bigger
        ``num`` loads the next page of results.

        Args:
            backend: Index backend to search and fetch from
            num: Total number of search results wanted
            query: Backend search query

        Returns:
            Number of messages added

        Raises:
            QueryError: If the backend rejects the query (forest unchanged)
            BackendContractError: If the backend breaks the fetch contract
        """
        if num <= self.offset:
            return 0
        thread_ids = backend.search(query, offset=self.offset, limit=num - self.offset)
        added = self.load_thread_ids(backend, thread_ids, ignore_existing=True)
        self.offset = num

        logger.info(
            "Loaded search results",
            query=query,
            results=len(thread_ids),
            messages_added=added,
            threads=self.size,
        )
        return added

    def add_message(self, record: Record, backend: IndexBackend | None = None) -> bool:
        """Refresh a message's whole thread from the backend, then ingest it.

        The backend's reply structure places the message under its parent
        even when the record carries no references. The record itself is
        only ingested when the refresh did not already deliver it.

        Returns:
            True if the message was new
        """
        if backend is not None and record.thread_id:
            was_known = self.contains(record)
            self.load_thread_ids(backend, [record.thread_id])
            if not was_known and self.contains(record):
                return True
        return self.ingest(record)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def remove_id(self, message_id: str) -> None:
        """Take a message out of its thread.

        Replies to the message travel with it and are not re-attached to the
        remaining thread, so they drop out of every thread.
        """
        container = self._containers.get(message_id)
        if container is None:
            return

        old_thread = container.root().thread
        self._detach(container)
        self.prune_thread_of(container)
        self._discard_if_hollow(old_thread)

        if not container.children:
            del self._containers[message_id]

        logger.debug("Removed message", message_id=message_id, threads=self.size)

    def delete_message(self, message_id: str) -> None:
        """Turn a message back into a placeholder, keeping its replies in place."""
        container = self._containers.get(message_id)
        if container is None or container.message is None:
            return
        container.message = None
        self._discard_if_hollow(container.root().thread)

    demote_to_placeholder = delete_message

    def remove_thread_containing_id(self, message_id: str) -> None:
        thread = self.thread_for_id(message_id)
        if thread is not None:
            self._delete_thread(thread)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def dump(self, file: TextIO | None = None) -> None:
        """Write every thread as an indented tree (not a stable format)."""
        out = file or sys.stdout
        for key, thread in self._threads.items():
            out.write("**********************\n")
            out.write(f"** for subject {key} **\n")
            out.write("**********************\n")
            thread.dump(out)

    def __repr__(self) -> str:
        return f"<ThreadSet threads={self.size} messages={self.num_messages}>"
