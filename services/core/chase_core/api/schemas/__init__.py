"""API schemas."""

from chase_core.api.schemas.chase import (
    DispatchResponse,
    DocumentProgressResponse,
    DocumentReceivedRequest,
    StaleClaimsResponse,
    StatusCallbackResponse,
    TickResponse,
    UnsubscribeResponse,
)

__all__ = [
    "DispatchResponse",
    "DocumentProgressResponse",
    "DocumentReceivedRequest",
    "StaleClaimsResponse",
    "StatusCallbackResponse",
    "TickResponse",
    "UnsubscribeResponse",
]
