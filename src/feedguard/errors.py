"""Error taxonomy for the outbound fetch subsystem.

Validation failures are fail-closed and expose a single generic message to
callers across the trust boundary; the specific reason stays on ``message``
and ``details`` for internal logs. Transport and upstream HTTP errors carry
enough detail for a caller to decide whether to retry.
"""

from __future__ import annotations

from typing import Any

GENERIC_REJECTION = "Invalid or unsafe URL"


class FeedGuardError(Exception):
    """Base exception for all FeedGuard errors."""

    error_code: str = "INTERNAL_ERROR"
    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def public_message(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Validation failures (generic outward message)
# ---------------------------------------------------------------------------


class ValidationFailure(FeedGuardError):
    error_code = "VALIDATION_FAILED"

    @property
    def public_message(self) -> str:
        return GENERIC_REJECTION


class InvalidFormatError(ValidationFailure):
    error_code = "INVALID_FORMAT"


class SchemeNotAllowedError(ValidationFailure):
    error_code = "SCHEME_NOT_ALLOWED"


class HostBlockedError(ValidationFailure):
    error_code = "HOST_BLOCKED"


class ResolutionFailedError(ValidationFailure):
    error_code = "RESOLUTION_FAILED"


class TooManyRedirectsError(ValidationFailure):
    error_code = "TOO_MANY_REDIRECTS"


class BadRedirectError(ValidationFailure):
    error_code = "BAD_REDIRECT"


# ---------------------------------------------------------------------------
# Fetch-time failures (detail passes through)
# ---------------------------------------------------------------------------


class ResponseTooLargeError(FeedGuardError):
    error_code = "RESPONSE_TOO_LARGE"

    def __init__(self, limit: int, received: int) -> None:
        super().__init__(
            f"Response exceeded {limit} bytes (read {received})",
            details={"limit": limit, "received": received},
        )
        self.limit = limit
        self.received = received


class TransportError(FeedGuardError):
    error_code = "TRANSPORT_ERROR"

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.retryable = retryable


class UpstreamHttpError(FeedGuardError):
    error_code = "UPSTREAM_HTTP_ERROR"

    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(f"HTTP {status_code} from upstream", details={"url": url})
        self.status_code = status_code
        self.url = url
        self.retryable = status_code >= 500 or status_code == 429


class RateLimitedError(FeedGuardError):
    error_code = "RATE_LIMITED"
    retryable = True

    def __init__(self, identifier: str, retry_after: float) -> None:
        super().__init__(
            f"Rate limit exceeded; retry in {retry_after:.0f}s",
            details={"retry_after": retry_after},
        )
        self.identifier = identifier
        self.retry_after = retry_after
