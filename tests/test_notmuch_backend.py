"""Tests for the notmuch CLI backend (subprocess mocked)."""

import json
import subprocess
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from mailforest.backend.notmuch import NotmuchBackend, convert_node
from mailforest.core.errors import BackendContractError, BackendError, QueryError
from mailforest.engine.threadset import ThreadSet

from .conftest import make_record


def _completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> MagicMock:
    result = MagicMock(spec=subprocess.CompletedProcess)
    result.stdout = stdout
    result.stderr = stderr
    result.returncode = returncode
    return result


def _message(id: str, timestamp: int, subject: str, tags: list[str], **headers: str) -> dict[str, Any]:
    return {
        "id": id,
        "match": True,
        "excluded": False,
        "filename": [f"/mail/{id}"],
        "timestamp": timestamp,
        "date_relative": "March 01",
        "tags": tags,
        "headers": {"Subject": subject, "Date": "Fri, 01 Mar 2024 09:00:00 +0000", **headers},
    }


@pytest.fixture
def show_output() -> str:
    """notmuch show --format=json output for one thread: a <- b, a <- c."""
    thread = [
        [
            _message("a@x", 1709283600, "Budget", ["inbox"], From="Ann <ann@x>", To="bob@x"),
            [
                [
                    _message(
                        "b@x",
                        1709287200,
                        "Re: Budget",
                        ["inbox", "unread"],
                        From="Bob <bob@x>",
                        To="Ann <ann@x>, carol@x",
                        Cc="dan@x",
                    ),
                    [],
                ],
                [_message("c@x", 1709290800, "Re: Budget", ["inbox"], From="Carol <carol@x>"), []],
            ],
        ]
    ]
    return json.dumps([thread])


@pytest.fixture
def mock_run():
    with patch("mailforest.backend.notmuch.subprocess.run") as run:
        yield run


class TestConvertNode:
    def test_converts_headers_and_replies(self, show_output: str) -> None:
        node = convert_node(json.loads(show_output)[0][0])
        assert node["id"] == "a@x"
        assert node["from"] == "Ann <ann@x>"
        assert node["to"] == ["bob@x"]
        assert node["date"] == 1709283600
        assert [r["id"] for r in node["replies"]] == ["b@x", "c@x"]
        assert node["replies"][0]["to"] == ["Ann <ann@x>", "carol@x"]
        assert node["replies"][0]["cc"] == ["dan@x"]
        assert node["replies"][0]["labels"] == ["inbox", "unread"]

    def test_rejects_wrong_shape(self) -> None:
        with pytest.raises(BackendContractError):
            convert_node({"id": "a"})
        with pytest.raises(BackendContractError):
            convert_node([{"no-id": True}, []])


class TestSearch:
    def test_builds_command(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed("thread:0001\nthread:0002\n")
        backend = NotmuchBackend(command="/usr/bin/notmuch")

        assert backend.search("tag:inbox", offset=10, limit=5) == ["thread:0001", "thread:0002"]

        cmd = mock_run.call_args.args[0]
        assert cmd == [
            "/usr/bin/notmuch",
            "search",
            "--format=text",
            "--output=threads",
            "--offset=10",
            "--limit=5",
            "tag:inbox",
        ]

    def test_exclude_disabled(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed("")
        NotmuchBackend(exclude=False).search("")
        cmd = mock_run.call_args.args[0]
        assert "--exclude=false" in cmd
        assert cmd[-1] == "*"

    def test_rejected_query(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(returncode=1, stderr="Syntax error in query")
        with pytest.raises(QueryError, match="Syntax error") as exc_info:
            NotmuchBackend().search("tag:(")
        assert exc_info.value.query == "tag:("

    def test_missing_binary(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = FileNotFoundError("notmuch")
        with pytest.raises(BackendError, match="not found"):
            NotmuchBackend().search("*")

    def test_timeout(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="notmuch", timeout=1)
        with pytest.raises(BackendError, match="timed out"):
            NotmuchBackend(timeout=1).search("*")


class TestFetchSubtrees:
    def test_one_show_per_thread(self, mock_run: MagicMock, show_output: str) -> None:
        mock_run.side_effect = [_completed(show_output), _completed("[]")]

        subtrees = NotmuchBackend().fetch_subtrees(["thread:0001", "0002"])

        assert len(subtrees) == 2
        assert subtrees[0][0]["id"] == "a@x"
        assert subtrees[1] == []
        queries = [c.args[0][-1] for c in mock_run.call_args_list]
        assert queries == ["thread:0001", "thread:0002"]

    def test_show_failure(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(returncode=2, stderr="database locked")
        with pytest.raises(BackendError) as exc_info:
            NotmuchBackend().fetch_subtrees(["thread:0001"])
        assert exc_info.value.exit_code == 2
        assert not isinstance(exc_info.value, QueryError)

    def test_invalid_json(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed("[[[")
        with pytest.raises(BackendContractError, match="invalid JSON"):
            NotmuchBackend().fetch_subtrees(["thread:0001"])

    def test_loads_into_forest(self, mock_run: MagicMock, show_output: str) -> None:
        mock_run.side_effect = [_completed("thread:0001\n"), _completed(show_output)]
        forest = ThreadSet()

        forest.load_n_threads(NotmuchBackend(), 10, "tag:inbox")

        thread = forest.get_thread("thread:0001")
        assert thread.size == 3
        assert thread.participants() == ["Ann <ann@x>", "bob@x", "Bob <bob@x>", "carol@x", "dan@x", "Carol <carol@x>"]
        assert forest.container("b@x").parent is forest.container("a@x")


class TestSaveLabels:
    def test_batch_tags_dirty_records(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed()
        clean = make_record("clean@x", labels={"inbox"})
        dirty = make_record('we"ird@x', labels={"inbox"})
        dirty.add_label("todo")

        assert NotmuchBackend().save_labels([clean, dirty]) == 1

        cmd = mock_run.call_args.args[0]
        assert cmd == ["notmuch", "tag", "--remove-all", "--batch"]
        assert mock_run.call_args.kwargs["input"] == '+inbox +todo -- id:"we""ird@x"\n'
        assert not dirty.dirty_labels

    def test_nothing_dirty_runs_nothing(self, mock_run: MagicMock) -> None:
        assert NotmuchBackend().save_labels([make_record("a")]) == 0
        mock_run.assert_not_called()

    def test_failure_keeps_records_dirty(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(returncode=1, stderr="cannot write")
        record = make_record("a")
        record.add_label("x")
        with pytest.raises(BackendError):
            NotmuchBackend().save_labels([record])
        assert record.dirty_labels
