"""Exception taxonomy for sync and notification jobs.

The worker only needs to know two things about a failure: whether retrying
can help (``RetryableError``) and whether the job must stop right away
(``TerminalJobError``). Anything else is retried until attempts run out.
"""

from __future__ import annotations


class TerminalJobError(Exception):
    """Failure that retrying will not fix. The job is failed immediately."""


class RetryableError(Exception):
    """Transient failure. The whole operation is retried by the scheduler."""


class BatchSizeExceededError(TerminalJobError, ValueError):
    """A batch was built with more requests than the API accepts."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Batch request exceeds {limit} item limit (got {size})")
        self.size = size
        self.limit = limit


class ConfigurationError(TerminalJobError):
    """Required configuration is missing."""


class AuthenticationError(TerminalJobError):
    """Base class for external account problems."""


class UserNotConnectedError(AuthenticationError):
    def __init__(self, user_id: object) -> None:
        super().__init__(f"User {user_id} has not connected a Microsoft account")
        self.user_id = user_id


class TokenRefreshError(AuthenticationError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(RetryableError):
    """The workbook API answered 429 for at least one request."""

    def __init__(self, message: str = "Rate limited by Graph API", retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class GraphAPIError(Exception):
    """Non-success HTTP response from the Graph API."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Graph API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class InvalidTransitionError(TerminalJobError):
    """A notification status change is not allowed from its current state."""

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot move notification from {current} to {requested}")
        self.current = current
        self.requested = requested
