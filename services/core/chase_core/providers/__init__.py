"""Channel provider integrations.

This package contains provider-specific implementations:
- Base: Sender interfaces and DTOs
- Resend: email
- Twilio: WhatsApp chat
"""

from chase_core.providers.base import (
    ChatSender,
    EmailSender,
    OutboundChat,
    OutboundEmail,
    SendResult,
)

__all__ = [
    "ChatSender",
    "EmailSender",
    "OutboundChat",
    "OutboundEmail",
    "SendResult",
]
