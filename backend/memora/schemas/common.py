"""
Memora Backend — Shared Response Schemas
==========================================

What:  Error envelope, health check, pagination envelope and simple
       acknowledgements used across every router.
"""

from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


# ══════════════════════════════════════════════════════════════════════════
# Error envelope shared by every endpoint
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "limit_reached",
            "code": "SELECTION_LIMIT_REACHED",
            "message": "Selection limit reached. Cannot select more items.",
            "details": {"limit": 2, "current_count": 2},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Error category (snake_case)")
    code: str = Field(description="Machine-readable error code (UPPER_SNAKE_CASE)")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    """Health check response showing service and dependency status."""
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    paypal: str = Field(description="PayPal verification circuit: closed, open, half_open")
    uptime_seconds: float = Field(description="Seconds since service started")


# ══════════════════════════════════════════════════════════════════════════
# Pagination: {data, pagination: {page, limit, total, totalPages}}
# ══════════════════════════════════════════════════════════════════════════


class PaginationMeta(BaseModel):
    page: int = Field(ge=1)
    limit: int = Field(ge=1, le=100, description="Items per page")
    total: int = Field(ge=0)
    total_pages: int = Field(ge=0, serialization_alias="totalPages")


class Page(BaseModel, Generic[T]):
    data: List[T]
    pagination: PaginationMeta
