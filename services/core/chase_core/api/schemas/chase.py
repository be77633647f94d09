"""Chase API schemas for request/response validation."""

from typing import Optional

from pydantic import BaseModel, Field


class TickResponse(BaseModel):
    """Response body for a chase tick."""

    processed: int
    errors: int
    skipped: int


class DispatchResponse(BaseModel):
    """Response body for draining the message queue."""

    sent: int
    failed: int
    opted_out: int
    skipped: int


class StaleClaimsResponse(BaseModel):
    """Response body for failing stale dispatch claims."""

    failed: int


class StatusCallbackResponse(BaseModel):
    """Response body for a provider status callback."""

    received: bool = True
    applied: bool
    status: Optional[str] = None


class UnsubscribeResponse(BaseModel):
    """Response body for an unsubscribe link."""

    unsubscribed: bool
    channel: str
    all_channels_revoked: bool


class DocumentReceivedRequest(BaseModel):
    """Request body for recording a received document."""

    document_id: str = Field(..., min_length=1, max_length=128)


class DocumentProgressResponse(BaseModel):
    """Response body for enrollment document progress."""

    enrollment_id: int
    received: int
    required: int
    completion_percent: int
    completed: bool
