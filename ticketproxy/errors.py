from __future__ import annotations

from typing import Optional


class ApiError(Exception):
    """
    Base error for everything we surface to API callers.

    status_code is the HTTP status the error renders as; cause keeps the
    original exception around for diagnostics.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.cause = cause
        super().__init__(self.message)
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "status_code": self.status_code}


class UpstreamConnectionError(ApiError):
    status_code = 502
    default_message = "Unable to connect to upstream API"


class UpstreamRequestError(ApiError):
    status_code = 502
    default_message = "Error communicating with upstream API"

    def __init__(
        self,
        message: Optional[str] = None,
        upstream_status: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.upstream_status = upstream_status
        super().__init__(message, upstream_status or 502, cause)


class RateLimitExceeded(ApiError):
    status_code = 429
    default_message = "Rate limit exceeded"


class RetriesExhausted(ApiError):
    status_code = 503
    default_message = "Maximum number of retries exceeded"


class InternalProxyError(ApiError):
    status_code = 500
    default_message = "An unexpected error occurred"


class ValidationError(ApiError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not found"
