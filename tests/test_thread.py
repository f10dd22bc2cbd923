"""Tests for Thread traversal and aggregates."""

import io
from datetime import datetime

import pytest

from mailforest.engine.container import Container
from mailforest.engine.record import Record
from mailforest.engine.thread import FAKE_ROOT, Thread
from mailforest.engine.threadset import ThreadSet

from .conftest import make_record


def _walked(thread: Thread, fake_root: bool = False) -> list[tuple[str | None, int, str | None]]:
    """(id, depth, parent id) per entry; placeholders as None, the fake root as 'FAKE'."""
    result = []
    for message, depth, parent in thread.walk(fake_root=fake_root):
        if message is FAKE_ROOT:
            name = "FAKE"
        else:
            name = message.id if message is not None else None
        result.append((name, depth, parent.id if parent else None))
    return result


@pytest.fixture
def chain() -> Thread:
    """a <- b <- c, plus d replying to a."""
    forest = ThreadSet()
    forest.ingest(make_record("a", 0, "Budget", sender="ann@x", to=["bob@x"], labels={"inbox"}))
    forest.ingest(
        make_record("b", 10, "Re: Budget", refs=["a"], sender="bob@x", cc=["carol@x"],
                    labels={"inbox", "unread"}, snippet="b says")
    )
    forest.ingest(
        make_record("c", 20, "Re: Budget", refs=["a", "b"], sender="ann@x",
                    labels={"unread"}, snippet="c says")
    )
    forest.ingest(make_record("d", 5, "Re: Budget", refs=["a"], sender="dan@x"))
    thread = forest.thread_for_id("a")
    assert thread is not None
    return thread


# =============================================================================
# Walk
# =============================================================================


class TestWalk:
    def test_single_root_depths_and_parents(self, chain: Thread) -> None:
        assert _walked(chain) == [
            ("a", 0, None),
            ("d", 1, "a"),
            ("b", 1, "a"),
            ("c", 2, "b"),
        ]

    def test_iterating_a_thread_walks_it(self, chain: Thread) -> None:
        assert [m.id for m, _, _ in chain] == ["a", "d", "b", "c"]

    def test_unrelated_roots_hang_under_primary_root(self) -> None:
        forest = ThreadSet()
        forest.ingest(make_record("x", 5, "Budget"), thread_key="t")
        forest.ingest(make_record("a", 0, "Budget"), thread_key="t")
        forest.ingest(make_record("y", 7, "Re: Budget"), thread_key="t")
        thread = forest.get_thread("t")

        assert _walked(thread, fake_root=True) == [
            ("a", 0, None),
            ("x", 1, None),
            ("y", 1, None),
        ]

    def test_fake_root_groups_reply_only_roots(self) -> None:
        forest = ThreadSet()
        forest.ingest(make_record("x", 5, "Re: Budget"), thread_key="t")
        forest.ingest(make_record("y", 0, "Re: Budget"), thread_key="t")
        thread = forest.get_thread("t")

        assert _walked(thread, fake_root=True) == [
            ("FAKE", 0, None),
            ("y", 1, None),
            ("x", 1, None),
        ]
        assert _walked(thread) == [("y", 0, None), ("x", 0, None)]

    def test_fake_root_only_for_several_roots(self) -> None:
        forest = ThreadSet()
        forest.ingest(make_record("x", 5, "Re: Budget"), thread_key="t")
        assert _walked(forest.get_thread("t"), fake_root=True) == [("x", 0, None)]

    def test_empty_root_under_fake_root_is_skipped(self) -> None:
        forest = ThreadSet()
        forest.ingest(make_record("b", 10, "Re: x"), parent_id="p", thread_key="t")
        forest.ingest(make_record("c", 20, "Re: x"), parent_id="p", thread_key="t")
        forest.ingest(make_record("d", 0, "Re: x"), thread_key="t")
        thread = forest.get_thread("t")

        assert _walked(thread, fake_root=True) == [
            ("FAKE", 0, None),
            ("d", 1, None),
            ("b", 2, None),
            ("c", 2, None),
        ]

    def test_branching_placeholder_root_is_walked(self) -> None:
        forest = ThreadSet()
        forest.ingest(make_record("b", 10, "Re: x"), parent_id="p", thread_key="t")
        forest.ingest(make_record("c", 20, "Re: x"), parent_id="p", thread_key="t")
        thread = forest.get_thread("t")

        assert thread.messages()[0] is None
        assert _walked(thread) == [(None, 0, None), ("b", 1, None), ("c", 1, None)]

    def test_single_child_placeholder_root_is_skipped(self) -> None:
        forest = ThreadSet()
        forest.ingest(make_record("b", 10, "Re: x", refs=["p"]))
        thread = forest.thread_for_id("b")
        assert _walked(thread) == [("b", 0, None)]


# =============================================================================
# Aggregates
# =============================================================================


class TestAggregates:
    def test_size_and_first(self, chain: Thread) -> None:
        assert chain.size == 4
        assert chain.first().id == "a"
        assert chain.has_message()

    def test_subject_is_first_non_empty(self, chain: Thread) -> None:
        assert chain.subject == "Budget"

    def test_date_is_latest(self, chain: Thread) -> None:
        assert chain.latest_message().id == "c"
        assert chain.date == chain.latest_message().date

    def test_participants(self, chain: Thread) -> None:
        assert chain.authors() == ["ann@x", "dan@x", "bob@x"]
        assert chain.direct_participants() == ["ann@x", "bob@x", "dan@x"]
        assert chain.participants() == ["ann@x", "bob@x", "dan@x", "carol@x"]

    def test_labels_union(self, chain: Thread) -> None:
        assert chain.labels == {"inbox", "unread"}
        assert chain.has_label("unread")
        assert not chain.has_label("spam")

    def test_snippet_prefers_earliest_unread(self, chain: Thread) -> None:
        assert chain.snippet() == "b says"

    def test_snippet_falls_back_to_latest(self, chain: Thread) -> None:
        chain.remove_label("unread")
        assert chain.snippet() == "c says"

    def test_snippet_empty_without_snippets(self) -> None:
        forest = ThreadSet()
        forest.ingest(make_record("a", 0, "x", labels={"unread"}))
        assert forest.thread_for_id("a").snippet() == ""

    def test_naive_and_aware_dates_mix(self) -> None:
        forest = ThreadSet()
        forest.ingest(make_record("a", 0, "Budget", labels={"unread"}, snippet="a says"))
        naive = Record(
            id="n", date=datetime(2024, 3, 1, 12, 0), subject="Re: Budget", refs=["a"],
            labels={"unread"}, snippet="n says",
        )
        forest.ingest(naive)
        thread = forest.thread_for_id("a")

        assert thread.latest_message().id == "n"
        assert thread.snippet() == "a says"

    def test_aggregates_follow_mutation(self, chain: Thread) -> None:
        # Nothing is cached: a late reply shows up at once
        forest_thread = chain
        root = forest_thread.roots[0]
        late = Container("e")
        late.message = make_record("e", 99, "Re: Budget", sender="eve@x")
        root.children.append(late)
        late.parent = root
        assert forest_thread.size == 5
        assert forest_thread.latest_message().id == "e"


class TestLabels:
    def test_apply_label_marks_every_message(self, chain: Thread) -> None:
        chain.apply_label("todo")
        assert all(m.has_label("todo") for m, _, _ in chain.walk())
        assert chain.dirty

    def test_toggle_label(self, chain: Thread) -> None:
        assert chain.toggle_label("unread") is False
        assert not chain.has_label("unread")
        assert chain.toggle_label("unread") is True
        assert all(m.has_label("unread") for m, _, _ in chain.walk())

    def test_set_labels(self, chain: Thread) -> None:
        chain.set_labels({"archive"})
        assert chain.labels == {"archive"}

    def test_set_labels_rejects_list(self, chain: Thread) -> None:
        with pytest.raises(TypeError):
            chain.set_labels(["archive"])  # type: ignore[arg-type]

    def test_clean_thread_is_not_dirty(self, chain: Thread) -> None:
        assert not chain.dirty


# =============================================================================
# Ordering and structure
# =============================================================================


class TestSortKey:
    def test_newer_threads_sort_first(self) -> None:
        forest = ThreadSet()
        forest.ingest(make_record("old", 0, "Old"))
        forest.ingest(make_record("new", 60, "New"))
        ordered = sorted(forest.threads, key=Thread.sort_key)
        assert [t.first().id for t in ordered] == ["new", "old"]

    def test_ties_break_on_message_id(self) -> None:
        forest = ThreadSet()
        forest.ingest(make_record("b", 0, "One"))
        forest.ingest(make_record("a", 0, "Two"))
        ordered = sorted(forest.threads, key=Thread.sort_key)
        assert [t.first().id for t in ordered] == ["a", "b"]

    def test_empty_thread_sorts_as_now(self) -> None:
        assert Thread("empty").sort_key()[1] == ""


class TestRoots:
    def test_drop_unknown_root_raises(self) -> None:
        thread = Thread("t")
        with pytest.raises(ValueError, match="not a root"):
            thread.drop(Container("x"))

    def test_drop_and_is_empty(self) -> None:
        thread = Thread("t")
        root = Container("x")
        thread.append(root)
        assert not thread.is_empty
        thread.drop(root)
        assert thread.is_empty

    def test_dump(self, chain: Thread) -> None:
        out = io.StringIO()
        chain.dump(out)
        lines = out.getvalue().splitlines()
        assert lines[0] == "=== start thread with 1 trees ==="
        assert lines[1] == "a [*] Budget"
        assert lines[-1] == "=== end thread ==="
