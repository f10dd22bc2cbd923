"""Custom exception types for mailforest.

Structural no-ops (cycle-forming links, duplicate deliveries, linking onto an
already-parented container) are expected traffic and never raise. Everything
below is surfaced to the caller:
- What failed (specific operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance, where there is any)
"""


class MailForestError(Exception):
    """Base exception for all mailforest errors."""

    pass


class ConfigValidationError(MailForestError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(MailForestError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class BackendError(MailForestError):
    """Raised when the index backend cannot execute a request.

    Attributes:
        command: The backend command or operation that failed (if available)
        exit_code: Process exit code for command-line backends (if available)
    """

    def __init__(
        self,
        message: str,
        command: str | None = None,
        exit_code: int | None = None,
    ):
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code


class BackendContractError(BackendError):
    """Raised when the backend returns something the threading engine cannot accept.

    Covers result-count mismatches between a fetch request and its reply, and
    malformed nested reply structures. This is fatal and never retried: retry
    policy belongs to whoever wraps the backend.

    Attributes:
        expected: Number of entries requested (if relevant)
        received: Number of entries returned (if relevant)
    """

    def __init__(
        self,
        message: str,
        expected: int | None = None,
        received: int | None = None,
    ):
        super().__init__(message)
        self.expected = expected
        self.received = received


class QueryError(BackendError):
    """Raised when the backend rejects a search query (bad syntax, unknown prefix).

    This is a recoverable, user-visible failure. The forest is left unchanged.

    Attributes:
        query: The query string that was rejected
    """

    def __init__(self, message: str, query: str | None = None):
        super().__init__(message)
        self.query = query
