"""
Pydantic response schemas for API endpoints.
"""

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(..., description="Health status")
    version: str = Field(..., description="API version")
    timestamp: str = Field(..., description="Check timestamp")
    runtime_version: str = Field(..., description="Current runtime version")
    components: dict[str, str] = Field(default_factory=dict, description="Component statuses")

    model_config = {"extra": "forbid"}


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: dict[str, Any] = Field(..., description="Error details")
