"""
Irshad Backend: Shared Response Schemas
========================================

What:  Response models used across routers: the error envelope, health
       check, and small acknowledgement bodies.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Consistent error response format for all API errors.

    Example:
        {
            "error": "not_found",
            "message": "student with ID 'abc' was not found",
            "details": {"resource": "student", "resource_id": "abc"},
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Additional error context (field names, limits)"
    )
    request_id: Optional[str] = Field(
        default=None, description="Request ID for support ticket correlation"
    )


class HealthResponse(BaseModel):
    """Returned by GET /health; 503 when status is 'unhealthy'."""
    status: str = Field(description="'healthy', 'degraded' or 'unhealthy'")
    database: str = Field(description="Database connectivity: 'connected' or 'disconnected'")
    stripe: str = Field(description="Stripe circuit breaker state: closed, open, half_open")
    version: str = Field(description="Application version")


class CountResponse(BaseModel):
    count: int


class MessageResponse(BaseModel):
    success: bool = True
    message: str
