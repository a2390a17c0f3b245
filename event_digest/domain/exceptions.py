"""Custom exception hierarchy for the event digest pipeline.

Following error taxonomy: retryable, non-retryable, validation, rate-limit.
"""


class EventDigestError(Exception):
    """Base exception for all application errors."""

    pass


class RetryableError(EventDigestError):
    """Errors that can be retried (network issues, temporary failures)."""

    pass


class NonRetryableError(EventDigestError):
    """Errors that should not be retried (validation, auth, logic errors)."""

    pass


class ConfigurationError(NonRetryableError):
    """Required configuration is missing or invalid."""

    pass


class DocumentNotFoundError(NonRetryableError):
    """The source page does not link to any guide document."""

    pass


class DocumentFetchError(RetryableError):
    """HTTP errors while fetching the source page or the document."""

    pass


class LLMAPIError(RetryableError):
    """LLM API communication errors."""

    pass


class MessagingAPIError(RetryableError):
    """Messaging sink communication errors."""

    pass


class MessageTooLongError(MessagingAPIError):
    """The sink rejected a payload for exceeding its size limit."""

    pass


class RateLimitError(RetryableError):
    """API rate limit exceeded."""

    def __init__(self, retry_after: float | None = None) -> None:
        """Initialize with optional retry_after seconds."""
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Retry after: {retry_after}s")


class DeliveryExhaustedError(NonRetryableError):
    """A chunk could not be delivered within the retry budget."""

    def __init__(
        self,
        chunk_index: int,
        attempts: int,
        last_error: Exception,
        *,
        rate_limited: bool = False,
    ) -> None:
        self.chunk_index = chunk_index
        self.attempts = attempts
        self.last_error = last_error
        self.rate_limited = rate_limited
        cause = "rate limit waits" if rate_limited else "attempts"
        super().__init__(
            f"Failed to deliver chunk {chunk_index} after {attempts} {cause}: {last_error}"
        )


class RepositoryError(RetryableError):
    """Database/storage errors."""

    pass
