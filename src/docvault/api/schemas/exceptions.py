"""
Exception classes for API error handling.
"""


class APIException(Exception):
    """
    Base exception for API errors.

    Rendered by the application as ``{"error": {"type", "message", "detail"}}``.
    """

    status_code: int = 500
    error_type: str = "api_error"
    message: str = "An error occurred"
    detail: str | None = None

    def __init__(
        self,
        message: str | None = None,
        detail: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.message = message or self.message
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(APIException):
    """Raised when no documentation or file can be served."""

    status_code = 404
    error_type = "not_found"
    message = "Resource not found"


class ServiceUnavailableError(APIException):
    """Raised when the object store cannot be reached."""

    status_code = 503
    error_type = "service_unavailable"
    message = "Service temporarily unavailable"
