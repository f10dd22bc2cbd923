"""Threads: one conversation made of one or more root containers.

A Thread usually has a single root container. It has several when messages
are grouped without reply evidence linking them (typically the same subject
sent from a mail client that drops References headers). ``walk`` can then
yield a synthetic FAKE_ROOT tying the roots together for display.

Every aggregate below is a fold over ``walk``; nothing is cached, so the
answers are always current after the forest mutates.
"""

from __future__ import annotations

import enum
import sys
import time
from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import TextIO

from mailforest.engine.container import Container
from mailforest.engine.record import UNREAD_LABEL, Record, subject_is_reply


class Marker(enum.Enum):
    """Display-only entries yielded by Thread.walk."""

    FAKE_ROOT = "fake_root"


FAKE_ROOT = Marker.FAKE_ROOT

# What Thread.walk yields in the message position
WalkItem = Record | Marker | None


def _unique(values: Iterable[str | None]) -> list[str]:
    seen: set[str] = set()
    result = []
    for value in values:
        if value is None or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


class Thread:
    """A conversation: the roots of one or more reply trees.

    Attributes:
        key: Registry key in the owning ThreadSet (backend thread id,
            normalized subject, or root message id)
        roots: Top-level containers of this thread
    """

    def __init__(self, key: str = ""):
        self.key = key
        self.roots: list[Container] = []

    def append(self, container: Container) -> None:
        self.roots.append(container)

    def drop(self, container: Container) -> None:
        """Remove a root container.

        Raises:
            ValueError: If the container is not a root of this thread
        """
        for i, root in enumerate(self.roots):
            if root is container:
                del self.roots[i]
                return
        raise ValueError(f"Container {container.id!r} is not a root of thread {self.key!r}")

    @property
    def is_empty(self) -> bool:
        return not self.roots

    def clear(self) -> None:
        self.roots.clear()

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def _primary_root(self, roots: list[Container]) -> Container | None:
        """Earliest materialized root whose subject is not a reply."""
        candidates = [
            c for c in roots if c.message is not None and not subject_is_reply(c.message.subject)
        ]
        if not candidates:
            return None
        return min(candidates, key=Container.sort_key)

    def walk(self, fake_root: bool = False) -> Iterator[tuple[WalkItem, int, Record | None]]:
        """Yield (message, depth, parent_message) for every container.

        ``message`` is a Record, None for a placeholder, or FAKE_ROOT when
        ``fake_root`` is set and several roots have no primary root to hang
        under.

        Args:
            fake_root: Synthesize a root entry grouping unrelated roots
        """
        roots = sorted(self.roots, key=Container.sort_key)
        primary = self._primary_root(roots)
        adjust = 0
        faked = False

        if primary is not None:
            adjust = 1
            for node, depth, parent in primary.first_useful_descendant().walk():
                yield node.message, depth, parent.message if parent else None
        elif len(roots) > 1 and fake_root:
            adjust = 1
            faked = True
            yield FAKE_ROOT, 0, None

        for root in roots:
            if root is primary:
                continue
            useful = root.first_useful_descendant()
            for node, depth, parent in useful.walk():
                # An empty root already joined under the fake root adds nothing
                if faked and node.message is None and node is useful:
                    continue
                yield node.message, depth + adjust, parent.message if parent else None

    def __iter__(self) -> Iterator[tuple[WalkItem, int, Record | None]]:
        return self.walk()

    def _records(self) -> Iterator[Record]:
        for message, _, _ in self.walk():
            if isinstance(message, Record):
                yield message

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def messages(self) -> list[Record | None]:
        """Every walked entry in order, placeholders included as None."""
        return [message for message, _, _ in self.walk()]

    def first(self) -> Record | None:
        return next(self._records(), None)

    def has_message(self) -> bool:
        return self.first() is not None

    @property
    def dirty(self) -> bool:
        return any(m.dirty for m in self._records())

    @property
    def date(self) -> datetime | None:
        """Date of the most recent message."""
        latest = self.latest_message()
        return latest.date if latest else None

    def latest_message(self) -> Record | None:
        latest: Record | None = None
        for message in self._records():
            if latest is None or message.date > latest.date:
                latest = message
        return latest

    @property
    def size(self) -> int:
        return sum(1 for _ in self._records())

    @property
    def subject(self) -> str | None:
        for message in self._records():
            if message.subject:
                return message.subject
        return None

    def authors(self) -> list[str]:
        return _unique(m.sender for m in self._records())

    def direct_participants(self) -> list[str]:
        return _unique(p for m in self._records() for p in [m.sender, *m.to])

    def participants(self) -> list[str]:
        return _unique(p for m in self._records() for p in [m.sender, *m.recipients])

    @property
    def labels(self) -> set[str]:
        result: set[str] = set()
        for message in self._records():
            result |= message.labels
        return result

    def has_label(self, label: str) -> bool:
        return any(m.has_label(label) for m in self._records())

    def snippet(self) -> str:
        """Pick the snippet to show for this thread.

        Prefers the earliest message still unread, then the latest message
        overall. Messages without a snippet are never chosen.
        """
        with_snippets = [m for m in self._records() if m.snippet]
        unread = sorted(
            (m for m in with_snippets if m.has_label(UNREAD_LABEL)), key=lambda m: m.date
        )
        if unread:
            return unread[0].snippet
        if with_snippets:
            return max(with_snippets, key=lambda m: m.date).snippet
        return ""

    # ------------------------------------------------------------------
    # Label propagation
    # ------------------------------------------------------------------

    def apply_label(self, label: str) -> None:
        for message in self._records():
            message.add_label(label)

    def remove_label(self, label: str) -> None:
        for message in self._records():
            message.remove_label(label)

    def toggle_label(self, label: str) -> bool:
        """Remove the label if any message has it, else apply it everywhere.

        Returns:
            True if the label was applied, False if it was removed
        """
        if self.has_label(label):
            self.remove_label(label)
            return False
        self.apply_label(label)
        return True

    def set_labels(self, labels: set[str] | frozenset[str]) -> None:
        """Replace the labels of every message.

        Raises:
            TypeError: If labels is not a set
        """
        if not isinstance(labels, (set, frozenset)):
            raise TypeError(f"labels must be a set, got {type(labels).__name__}")
        for message in self._records():
            message.set_labels(set(labels))

    # ------------------------------------------------------------------
    # Ordering and diagnostics
    # ------------------------------------------------------------------

    def sort_key(self) -> tuple[int, str]:
        """Newest thread first, message id as tiebreak."""
        latest = self.latest_message()
        if latest is None:
            return (-int(time.time()), "")
        return (-int(latest.date.timestamp()), latest.id)

    def dump(self, file: TextIO | None = None) -> None:
        out = file or sys.stdout
        out.write(f"=== start thread with {len(self.roots)} trees ===\n")
        for root in self.roots:
            root.dump(out)
            out.write("\n")
        out.write("=== end thread ===\n")

    def __repr__(self) -> str:
        return f"<Thread {self.key!r} containing: {', '.join(repr(r) for r in self.roots)}>"
