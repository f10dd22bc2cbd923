"""Terminal rendering of threads with rich.

The engine never decides how a thread is shown. A ThreadSummary pairs a
Thread with how it should first be displayed; the render functions turn
threads into rich renderables for the CLI.

Usage:
    from rich.console import Console
    from mailforest.display import DisplayState, ThreadSummary, render_index

    console = Console()
    console.print(render_index(forest.threads))
    console.print(ThreadSummary(thread, DisplayState.DEFAULT).render())
"""

import enum
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from mailforest.engine.record import UNREAD_LABEL, Record
from mailforest.engine.thread import FAKE_ROOT, Thread, WalkItem

NO_MESSAGE_LABEL = "<no message>"
FAKE_ROOT_LABEL = "<thread>"
NO_SUBJECT_LABEL = "(no subject)"


class DisplayState(enum.Enum):
    """How a thread is shown when first opened."""

    EXPANDED = "expanded"
    COLLAPSED = "collapsed"
    # Expanded if the thread has unread messages, collapsed otherwise
    DEFAULT = "default"


@dataclass
class ThreadSummary:
    """A thread together with its display state.

    Attributes:
        thread: The thread shown
        initial_state: State chosen when the summary was created
        state: Current state; toggle() flips it
        fake_root: Group unrelated roots under a synthetic root when rendering
    """

    thread: Thread
    initial_state: DisplayState = DisplayState.DEFAULT
    fake_root: bool = True

    def __post_init__(self) -> None:
        self.state = self.initial_state

    @property
    def expanded(self) -> bool:
        if self.state is DisplayState.EXPANDED:
            return True
        if self.state is DisplayState.COLLAPSED:
            return False
        return self.thread.has_label(UNREAD_LABEL)

    def toggle(self) -> None:
        self.state = DisplayState.COLLAPSED if self.expanded else DisplayState.EXPANDED

    def render(self) -> Tree:
        return render_thread(self.thread, expanded=self.expanded, fake_root=self.fake_root)


def _format_date(date: datetime | None) -> str:
    return date.strftime("%Y-%m-%d %H:%M") if date else ""


def format_entry(message: WalkItem) -> str:
    """One tree line for a walked entry, as rich markup."""
    if message is FAKE_ROOT:
        return escape(FAKE_ROOT_LABEL)
    if not isinstance(message, Record):
        return f"[dim]{escape(NO_MESSAGE_LABEL)}[/dim]"

    sender = escape(message.sender or "unknown")
    subject = escape(message.subject or NO_SUBJECT_LABEL)
    line = f"{sender}  {subject}  [dim]{_format_date(message.date)}[/dim]"
    if message.has_label(UNREAD_LABEL):
        line = f"[bold]{line}[/bold]"
    return line


def thread_title(thread: Thread) -> str:
    count = thread.size
    noun = "message" if count == 1 else "messages"
    return f"{escape(thread.subject or NO_SUBJECT_LABEL)} [dim]({count} {noun})[/dim]"


def render_thread(thread: Thread, expanded: bool = True, fake_root: bool = True) -> Tree:
    """Build a rich Tree of a thread's reply structure.

    Args:
        thread: Thread to render
        expanded: Include every message; when False only the title is shown
        fake_root: Group unrelated roots under a synthetic root

    Returns:
        Tree whose nodes follow Thread.walk order and depth
    """
    marker = "▼" if expanded else "▶"
    tree = Tree(f"{marker} {thread_title(thread)}")
    if not expanded:
        return tree

    # (depth, node, message) of the current ancestry
    stack: list[tuple[int, Tree, WalkItem]] = []
    for message, depth, parent_message in thread.walk(fake_root=fake_root):
        while stack and stack[-1][0] >= depth:
            stack.pop()

        # The walk skips an empty root already grouped under the fake root,
        # leaving its replies one level deeper than their visible ancestor
        if depth >= 2 and parent_message is None and stack and stack[-1][2] is not None:
            while stack and stack[-1][0] >= depth - 1:
                stack.pop()
            holder = stack[-1][1] if stack else tree
            stack.append((depth - 1, holder.add(format_entry(None)), None))

        parent = stack[-1][1] if stack else tree
        stack.append((depth, parent.add(format_entry(message)), message))
    return tree


def render_index(
    threads: Iterable[Thread],
    snippet_length: int = 80,
    max_participants: int = 3,
    title: str | None = None,
) -> Table:
    """Build a table listing threads newest first.

    Args:
        threads: Threads to list (any order)
        snippet_length: Characters of snippet per row; 0 drops the column
        max_participants: Participants listed before "+N"
        title: Optional table title

    Returns:
        Table with one row per thread, ordered by Thread.sort_key
    """
    table = Table(title=title)
    table.add_column("Date", no_wrap=True)
    table.add_column("Participants")
    table.add_column("Subject")
    table.add_column("Msgs", justify="right")
    table.add_column("Labels")
    if snippet_length:
        table.add_column("Snippet", style="dim")

    for thread in sorted(threads, key=Thread.sort_key):
        people = thread.participants()
        shown = ", ".join(people[:max_participants])
        if len(people) > max_participants:
            shown += f" +{len(people) - max_participants}"

        row = [
            _format_date(thread.date),
            escape(shown),
            escape(thread.subject or NO_SUBJECT_LABEL),
            str(thread.size),
            escape(" ".join(sorted(thread.labels))),
        ]
        if snippet_length:
            row.append(escape(thread.snippet()[:snippet_length]))

        style = "bold" if thread.has_label(UNREAD_LABEL) else None
        table.add_row(*row, style=style)
    return table
