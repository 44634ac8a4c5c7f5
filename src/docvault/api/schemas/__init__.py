"""
Pydantic schemas and exceptions for the API.
"""

from docvault.api.schemas.exceptions import (
    APIException,
    NotFoundError,
    ServiceUnavailableError,
)
from docvault.api.schemas.responses import ErrorResponse, HealthResponse

__all__ = [
    # Exceptions
    "APIException",
    "NotFoundError",
    "ServiceUnavailableError",
    # Responses
    "ErrorResponse",
    "HealthResponse",
]
