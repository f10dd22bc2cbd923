"""Pydantic models for the nested reply structures returned by index backends.

``fetch_subtrees`` returns, per requested thread id, the list of top-level
reply nodes of that thread. Each node carries one message and, recursively,
its direct replies:

    [
        {
            "id": "a@example.com",
            "subject": "Budget",
            "date": "2024-03-01T09:00:00+00:00",
            "from": "Ann <ann@example.com>",
            "to": ["bob@example.com"],
            "labels": ["inbox", "unread"],
            "replies": [
                {"id": "b@example.com", "subject": "Re: Budget", ...}
            ]
        }
    ]

Anything that does not validate is a backend contract violation.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from mailforest.core.errors import BackendContractError
from mailforest.engine.record import Record


class MessageNode(BaseModel):
    """One message of a nested reply structure, with its direct replies."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1, description="Message id")
    subject: str = Field(default="", description="Subject line")
    date: datetime = Field(description="Sent date (ISO-8601 or epoch seconds)")
    sender: str | None = Field(default=None, alias="from", description="From address")
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list, description="Labels (backend tags)")
    snippet: str = Field(default="", description="Body preview")
    refs: list[str] = Field(default_factory=list, description="Ancestor ids, oldest first")
    reply_to: str | None = Field(default=None, description="Immediate parent id")
    replies: list[MessageNode] = Field(default_factory=list, description="Direct replies")

    @field_validator("subject", mode="before")
    @classmethod
    def default_missing_subject(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("date")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Naive dates are taken to be UTC so sorting never mixes offsets."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    def to_record(self, thread_id: str | None = None) -> Record:
        return Record(
            id=self.id,
            date=self.date,
            subject=self.subject,
            sender=self.sender,
            to=list(self.to),
            cc=list(self.cc),
            bcc=list(self.bcc),
            labels=set(self.labels),
            snippet=self.snippet,
            refs=list(self.refs),
            reply_to=self.reply_to,
            thread_id=thread_id,
        )


MessageNode.model_rebuild()

_THREADS_ADAPTER = TypeAdapter(list[list[MessageNode]])


def parse_thread_payloads(raw: Sequence[Any]) -> list[list[MessageNode]]:
    """Validate the raw result of ``fetch_subtrees``.

    Args:
        raw: One entry per requested thread id, each a list of reply nodes

    Returns:
        Validated reply nodes, one list per thread

    Raises:
        BackendContractError: If any entry is malformed
    """
    try:
        return _THREADS_ADAPTER.validate_python(list(raw))
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(loc) for loc in first["loc"])
        raise BackendContractError(
            f"Malformed reply structure from backend at '{location}': {first['msg']} "
            f"({e.error_count()} error(s) in total)"
        ) from e


def iter_nodes(
    nodes: Sequence[MessageNode], parent_id: str | None = None
) -> Iterator[tuple[MessageNode, str | None]]:
    """Yield (node, parent_id) for every node, parents before their replies."""
    stack = [(node, parent_id) for node in reversed(nodes)]
    while stack:
        node, node_parent = stack.pop()
        yield node, node_parent
        stack.extend((reply, node.id) for reply in reversed(node.replies))
