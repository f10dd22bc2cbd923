"""Containers: the slots of a reply tree.

A Container holds zero or one Record. An empty container (a placeholder)
stands for a message we have seen referenced but have not received. The
container id is the message id either way.

Containers own their children. ``parent`` and ``thread`` are back references
only: ``thread`` is set on root containers and nowhere else.
"""

from __future__ import annotations

import math
import sys
from collections.abc import Iterator
from datetime import datetime
from typing import TYPE_CHECKING, Any, TextIO

from mailforest.engine.record import Record, subject_is_reply

if TYPE_CHECKING:
    from mailforest.engine.thread import Thread

# Placeholders sort after every dated message
PLACEHOLDER_SORT_KEY: tuple[float, str] = (math.inf, "")


class Container:
    """One node of a reply tree, placeholder or materialized.

    Attributes:
        id: Message id this container stands for
        message: The Record, or None while it is a placeholder
        parent: Parent container (non-owning), None for roots
        children: Child containers, owned by this container
        thread: Owning Thread, set only while this container is a root
    """

    __slots__ = ("id", "message", "parent", "children", "thread")

    def __init__(self, id: str):
        if not isinstance(id, str):
            raise TypeError(f"Container id must be a string, got {id!r}")
        self.id = id
        self.message: Record | None = None
        self.parent: Container | None = None
        self.children: list[Container] = []
        self.thread: Thread | None = None

    @property
    def is_empty(self) -> bool:
        return self.message is None

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def root(self) -> Container:
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def descendant_of(self, other: Container) -> bool:
        """Check whether ``other`` is this container or one of its ancestors."""
        node: Container | None = self
        while node is not None:
            if node is other:
                return True
            node = node.parent
        return False

    def first_useful_descendant(self) -> Container:
        """Skip placeholders that have exactly one child.

        A missing message is only worth showing when it joins more than one
        reply; otherwise its only child stands in for it.
        """
        node = self
        while node.is_empty and len(node.children) == 1:
            node = node.children[0]
        return node

    def walk(
        self, depth: int = 0, parent: Container | None = None
    ) -> Iterator[tuple[Container, int, Container | None]]:
        """Yield (container, depth, parent) in depth-first pre-order.

        Siblings are visited in ascending sort_key order.
        """
        stack: list[tuple[Container, int, Container | None]] = [(self, depth, parent)]
        while stack:
            node, node_depth, node_parent = stack.pop()
            yield node, node_depth, node_parent
            for child in reversed(sorted(node.children, key=Container.sort_key)):
                stack.append((child, node_depth + 1, node))

    def find_attr(self, name: str) -> Any:
        """Answer a message attribute, looking into descendants for placeholders.

        Returns:
            The attribute of this container's record, or for a placeholder the
            first non-empty value among its materialized descendants, or None
        """
        if self.message is not None:
            return getattr(self.message, name)
        for node, _, _ in self.walk():
            if node.message is None:
                continue
            value = getattr(node.message, name)
            if value:
                return value
        return None

    @property
    def subject(self) -> str | None:
        return self.find_attr("subject")

    @property
    def date(self) -> datetime | None:
        return self.find_attr("date")

    @property
    def is_reply(self) -> bool:
        return subject_is_reply(self.subject)

    def sort_key(self) -> tuple[float, str]:
        if self.message is None:
            return PLACEHOLDER_SORT_KEY
        return (int(self.message.date.timestamp()), self.message.id)

    def dump(self, file: TextIO | None = None, indent: int = 0) -> None:
        """Write an indented listing of this subtree (diagnostics only)."""
        out = file or sys.stdout
        for node, depth, _ in self.walk():
            prefix = " " * (indent + 3 * depth) + "+->" if depth else " " * indent
            marker = "*" if node.thread is not None else " "
            line = node.message.subject if node.message is not None else "<no message>"
            out.write(f"{prefix}{node.id} [{marker}] {line}\n")

    def __repr__(self) -> str:
        parts = [f"<Container {self.id}"]
        if self.parent is not None:
            parts.append(f"parent={self.parent.id}")
        if self.children:
            parts.append(f"children={[c.id for c in self.children]!r}")
        return " ".join(parts) + ">"
