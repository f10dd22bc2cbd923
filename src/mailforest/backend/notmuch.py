"""Index backend over the notmuch command-line tool.

Wraps three notmuch commands:
- ``notmuch search --output=threads`` to resolve a query to thread ids
- ``notmuch show --format=json --body=false`` to fetch a thread's reply tree
- ``notmuch tag --remove-all --batch`` to write label changes back

notmuch's JSON nests each thread as ``[message, [replies...]]`` pairs; those
are converted here into the reply-node shape of mailforest.backend.payload.

Usage:
    from mailforest.backend.notmuch import NotmuchBackend
    from mailforest.engine.threadset import ThreadSet

    backend = NotmuchBackend()
    forest = ThreadSet()
    forest.load_n_threads(backend, 50, "tag:inbox")
"""

import json
import subprocess
from collections.abc import Iterable, Sequence
from email.utils import formataddr, getaddresses
from typing import Any

from mailforest.core.errors import BackendContractError, BackendError, QueryError
from mailforest.core.logging import get_logger
from mailforest.engine.record import Record

logger = get_logger(__name__)

DEFAULT_COMMAND = "notmuch"
DEFAULT_TIMEOUT_SECONDS = 60.0


def _addresses(value: str | None) -> list[str]:
    if not value:
        return []
    return [formataddr(pair) for pair in getaddresses([value]) if pair[1]]


def _quote_id(message_id: str) -> str:
    return 'id:"' + message_id.replace('"', '""') + '"'


def _thread_query(thread_id: str) -> str:
    return thread_id if thread_id.startswith("thread:") else f"thread:{thread_id}"


def convert_node(node: Any) -> dict[str, Any]:
    """Convert one notmuch ``[message, [replies]]`` pair into a reply node.

    Raises:
        BackendContractError: If the pair does not have the expected shape
    """
    if not isinstance(node, list) or len(node) != 2 or not isinstance(node[1], list):
        raise BackendContractError(f"Unexpected notmuch thread node: {str(node)[:200]}")
    message, replies = node
    if not isinstance(message, dict) or "id" not in message:
        raise BackendContractError(f"Unexpected notmuch message entry: {str(message)[:200]}")

    headers = message.get("headers") or {}
    return {
        "id": message["id"],
        "subject": headers.get("Subject") or "",
        "date": message.get("timestamp", headers.get("Date")),
        "from": headers.get("From"),
        "to": _addresses(headers.get("To")),
        "cc": _addresses(headers.get("Cc")),
        "bcc": _addresses(headers.get("Bcc")),
        "labels": list(message.get("tags") or []),
        "replies": [convert_node(reply) for reply in replies],
    }


class NotmuchBackend:
    """Index backend running the notmuch CLI.

    Attributes:
        command: notmuch executable
        timeout: Seconds before a notmuch invocation is abandoned
        exclude: Honour notmuch's search.exclude_tags
    """

    def __init__(
        self,
        command: str = DEFAULT_COMMAND,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        exclude: bool = True,
    ):
        self.command = command
        self.timeout = timeout
        self.exclude = exclude

    def _run(self, *args: str, input: str | None = None) -> subprocess.CompletedProcess[str]:
        cmd = [self.command, *args]
        logger.debug("Running notmuch", args=list(args))
        try:
            return subprocess.run(
                cmd,
                input=input,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise BackendError(
                f"notmuch executable not found: {self.command}. "
                "Install notmuch or set backend.notmuch_command in config.yaml.",
                command=" ".join(cmd),
            ) from e
        except subprocess.TimeoutExpired as e:
            raise BackendError(
                f"notmuch {args[0]} timed out after {self.timeout}s",
                command=" ".join(cmd),
            ) from e

    def _check(self, result: subprocess.CompletedProcess[str], args: Sequence[str]) -> str:
        if result.returncode != 0:
            stderr = result.stderr.strip()
            logger.error(
                "notmuch failed",
                args=list(args),
                exit_code=result.returncode,
                stderr=stderr[:200],
            )
            raise BackendError(
                f"notmuch {args[0]} failed (exit code {result.returncode}): {stderr}",
                command=" ".join([self.command, *args]),
                exit_code=result.returncode,
            )
        return result.stdout

    def search(self, query: str, offset: int = 0, limit: int | None = None) -> list[str]:
        """Resolve a query to notmuch thread ids ("thread:...").

        Raises:
            QueryError: If notmuch rejects the query
        """
        args = ["search", "--format=text", "--output=threads"]
        if offset:
            args.append(f"--offset={offset}")
        if limit is not None:
            args.append(f"--limit={limit}")
        if not self.exclude:
            args.append("--exclude=false")
        args.append(query or "*")

        result = self._run(*args)
        if result.returncode != 0:
            raise QueryError(
                f"Problem with query '{query}': {result.stderr.strip()}",
                query=query,
            )
        return [line for line in result.stdout.splitlines() if line.strip()]

    def fetch_subtrees(self, thread_ids: Sequence[str]) -> list[list[dict[str, Any]]]:
        """Fetch the reply tree of each thread, one notmuch show per id.

        notmuch orders a multi-thread ``show`` by date rather than by request,
        so each thread is fetched on its own to keep results aligned.
        """
        subtrees = []
        for thread_id in thread_ids:
            args = ["show", "--format=json", "--body=false", "--entire-thread=true"]
            args.append(_thread_query(thread_id))
            output = self._check(self._run(*args), args)
            try:
                threads = json.loads(output) if output.strip() else []
            except json.JSONDecodeError as e:
                raise BackendContractError(
                    f"notmuch show returned invalid JSON for {thread_id}: {e}"
                ) from e
            if not isinstance(threads, list):
                raise BackendContractError(f"notmuch show returned {type(threads).__name__}")
            nodes = [convert_node(node) for thread in threads for node in thread]
            subtrees.append(nodes)
        return subtrees

    def save_labels(self, records: Iterable[Record]) -> int:
        """Replace each record's tags in notmuch with its current label set."""
        pending = [r for r in records if r.dirty_labels]
        if not pending:
            return 0

        lines = []
        for record in pending:
            tags = " ".join(f"+{label}" for label in sorted(record.labels))
            lines.append(f"{tags} -- {_quote_id(record.id)}".lstrip())
        args = ["tag", "--remove-all", "--batch"]
        self._check(self._run(*args, input="\n".join(lines) + "\n"), args)

        for record in pending:
            record.clear_dirty_labels()
        logger.info("Saved labels", records=len(pending))
        return len(pending)
