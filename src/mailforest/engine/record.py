"""The message record threaded by the engine, plus subject helpers.

A Record is the engine's view of one message as delivered by the index
backend. The engine never rewrites it, with one exception: labels can be
changed through the label hook (has_label / add_label / remove_label /
set_labels), which tracks whether the change still has to be written back.

Usage:
    from mailforest.engine.record import Record, normalize_subject

    record = Record(
        id="b@example.com",
        date=datetime(2024, 3, 1, tzinfo=UTC),
        subject="Re: Budget",
        refs=["a@example.com"],
        labels={"inbox", "unread"},
    )
    record.parent_id           # "a@example.com"
    normalize_subject("Re: Re[2]: Budget")  # "budget"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

import regex

# Regex timeout for security (used in match operations)
REGEX_TIMEOUT = 1.0

# Reply prefixes: "Re:", "RE:", "Re[2]:", "re(3):", possibly chained
REPLY_PREFIX_PATTERN = regex.compile(r"^((re|re[\[(]\d[\])]):\s*)+", regex.IGNORECASE)

WHITESPACE_PATTERN = regex.compile(r"\s+")

UNREAD_LABEL = "unread"
DRAFT_LABEL = "draft"


def subject_is_reply(subject: str | None) -> bool:
    """Check whether a subject carries a reply prefix.

    Args:
        subject: Email subject

    Returns:
        True if the subject starts with Re:/Re[n]: style prefixes
    """
    if not subject:
        return False
    try:
        return REPLY_PREFIX_PATTERN.match(subject, timeout=REGEX_TIMEOUT) is not None
    except (regex.error, TimeoutError):
        return False


def normalize_subject(subject: str | None) -> str:
    """Normalize a subject for grouping by removing reply prefixes.

    Args:
        subject: Email subject

    Returns:
        Lowercased subject without reply prefixes and with collapsed whitespace
    """
    if not subject:
        return ""

    try:
        stripped = REPLY_PREFIX_PATTERN.sub("", subject, timeout=REGEX_TIMEOUT)
        collapsed = WHITESPACE_PATTERN.sub(" ", stripped, timeout=REGEX_TIMEOUT)
    except (regex.error, TimeoutError):
        # Timeout or error - fall back to the raw subject
        collapsed = subject
    return collapsed.strip().lower()


def reify_subject(subject: str) -> str:
    """Turn a subject into a reply subject, leaving existing replies alone."""
    return subject if subject_is_reply(subject) else "Re: " + subject


@dataclass(eq=False)
class Record:
    """One message as seen by the threading engine.

    Attributes:
        id: Unique message id (Message-Id without angle brackets)
        date: When the message was sent
        subject: Subject line ("" when missing)
        sender: From address, "Name <addr>" form
        to: To recipients
        cc: Cc recipients
        bcc: Bcc recipients
        labels: Label set (backend tags)
        snippet: Short plain-text preview of the body
        refs: Ancestor message ids, oldest first
        reply_to: Immediate parent id (In-Reply-To), if known
        thread_id: Backend thread id this record was loaded under
        dirty: True when the record has changes not yet written back
        dirty_labels: True when the label set has not yet been written back
    """

    id: str
    date: datetime
    subject: str = ""
    sender: str | None = None
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    labels: set[str] = field(default_factory=set)
    snippet: str = ""
    refs: list[str] = field(default_factory=list)
    reply_to: str | None = None
    thread_id: str | None = None
    dirty: bool = False
    dirty_labels: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            raise ValueError(f"Record id must be a non-empty string, got {self.id!r}")
        self.labels = set(self.labels)
        # Naive dates are UTC; threads must never compare naive with aware
        if self.date.tzinfo is None:
            self.date = self.date.replace(tzinfo=UTC)

    @property
    def parent_id(self) -> str | None:
        """Immediate parent: In-Reply-To when known, else the newest reference."""
        if self.reply_to:
            return self.reply_to
        if self.refs:
            return self.refs[-1]
        return None

    @property
    def recipients(self) -> list[str]:
        return self.to + self.cc + self.bcc

    @property
    def is_draft(self) -> bool:
        return DRAFT_LABEL in self.labels

    @property
    def is_reply(self) -> bool:
        return subject_is_reply(self.subject)

    def has_label(self, label: str) -> bool:
        return label in self.labels

    def add_label(self, label: str) -> None:
        if label in self.labels:
            return
        self.labels.add(label)
        self._mark_labels_dirty()

    def remove_label(self, label: str) -> None:
        if label not in self.labels:
            return
        self.labels.discard(label)
        self._mark_labels_dirty()

    def set_labels(self, labels: set[str] | frozenset[str]) -> None:
        """Replace the label set.

        Raises:
            TypeError: If labels is not a set
        """
        if not isinstance(labels, (set, frozenset)):
            raise TypeError(f"labels must be a set, got {type(labels).__name__}")
        if self.labels == labels:
            return
        self.labels = set(labels)
        self._mark_labels_dirty()

    def clear_dirty_labels(self) -> None:
        self.dirty_labels = False

    def clear_dirty(self) -> None:
        self.dirty = self.dirty_labels = False

    def _mark_labels_dirty(self) -> None:
        self.dirty_labels = True
        self.dirty = True

    def __repr__(self) -> str:
        return f"<Record {self.id!r} subject={self.subject!r}>"
