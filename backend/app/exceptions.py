"""Domain errors rendered as ``{"error": code}`` responses."""
from fastapi import status


class AppError(Exception):
    """Base class for errors that map directly to an HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "internal_error"

    def __init__(self, code: str | None = None):
        self.code = code or self.default_code
        super().__init__(self.code)


class Unauthorized(AppError):
    """Missing/invalid bearer token or a webhook signature mismatch."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_code = "unauthorized"


class BadRequest(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "bad_request"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class Conflict(AppError):
    """Business-rule violation (unavailable game, wrong mode, closed session)."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class UpstreamFailure(AppError):
    """The data store or identity service is unreachable or failing.

    Surfaced as 5xx so the payment provider retries the delivery.
    """

    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "upstream_failure"
