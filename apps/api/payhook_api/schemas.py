"""Pydantic schemas for API requests/responses."""

from typing import Any, Optional

from pydantic import BaseModel, Field


# ============================================================================
# POST /payment-webhook
# ============================================================================


class WebhookEnvelope(BaseModel):
    """Request body shared by every provider."""

    provider: str = Field(..., description="Payment provider (openpix, asaas)")
    event: str = Field(..., description="Provider event name")
    data: dict[str, Any] = Field(..., description="Provider-specific payload, stored verbatim")


class WebhookAck(BaseModel):
    """200 response: updated payment row or the not-processed marker."""

    success: bool = True
    data: Optional[dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """4xx/5xx response body."""

    error: str
    error_code: Optional[str] = None


# ============================================================================
# GET /health
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    services: dict[str, str]
    providers: list[str]
