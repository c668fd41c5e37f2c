"""
Shared exceptions for the ingestion pipeline and the search read path.

Every pipeline failure carries a ``retryable`` flag. The worker hands that flag
to the job queue, which either schedules another attempt or moves the job to
the failed list.
"""


class PipelineError(Exception):
    """Base class for failures raised while processing a bookmark."""

    retryable: bool = True

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationFailure(PipelineError):
    """Non-retryable failure detected before any side effect."""

    retryable = False


class InvalidUrlError(ValidationFailure):
    """Raised when a bookmark URL is not an absolute http(s) URL."""

    def __init__(self, url: str, reason: str = "not an absolute http(s) URL") -> None:
        self.url = url
        super().__init__(f"Invalid URL {url!r}: {reason}")


class BlockedUrlError(ValidationFailure):
    """Raised when a URL targets a private/internal network address."""


class BookmarkNotFoundError(ValidationFailure):
    """Raised when the bookmark row no longer exists in the system of record."""

    def __init__(self, bookmark_id: int) -> None:
        self.bookmark_id = bookmark_id
        super().__init__(f"Bookmark {bookmark_id} not found")


class FetchError(PipelineError):
    """Transient failure while fetching remote content."""


class FetchTimeoutError(FetchError):
    """Raised when a fetch does not complete within the wall-clock timeout."""

    def __init__(self, url: str, timeout: float) -> None:
        self.url = url
        self.timeout = timeout
        super().__init__(f"Fetching {url} timed out after {timeout:g}s")


class FetchConnectionError(FetchError):
    """Raised when the remote host cannot be reached."""


class ResponseTooLargeError(FetchError):
    """Raised when a response body exceeds the configured byte cap."""

    def __init__(self, url: str, max_bytes: int) -> None:
        self.url = url
        self.max_bytes = max_bytes
        super().__init__(f"Response from {url} exceeds {max_bytes:,} bytes")


class HttpStatusError(FetchError):
    """
    Raised for non-2xx responses.

    Server errors and rate limiting (5xx, 429) are worth retrying. Other client
    errors (404, 410, ...) will not fix themselves and fail the job permanently.
    """

    def __init__(self, url: str, status_code: int) -> None:
        self.url = url
        self.status_code = status_code
        self.retryable = status_code >= 500 or status_code == 429
        super().__init__(f"HTTP {status_code} fetching {url}")


class SearchUnavailableError(PipelineError):
    """Raised when the search engine cannot be reached or rejects a request."""


class QueueUnavailableError(PipelineError):
    """Raised when the job queue backend is not connected."""


class StageFailedError(PipelineError):
    """
    Wraps the failure of a single pipeline stage.

    Keeps the original exception as ``cause`` and inherits its retryability.
    Unexpected exceptions (not PipelineError) are treated as transient.
    """

    def __init__(self, bookmark_id: int, stage: str, cause: Exception) -> None:
        self.bookmark_id = bookmark_id
        self.stage = stage
        self.cause = cause
        self.retryable = cause.retryable if isinstance(cause, PipelineError) else True
        super().__init__(f"Bookmark {bookmark_id} failed at {stage}: {cause}")


class InvalidSearchRequestError(ValueError):
    """Raised when a search request is malformed (e.g. out-of-range pagination)."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
