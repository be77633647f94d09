"""Channel sender interfaces and DTOs.

The dispatcher only talks to these interfaces; concrete adapters wrap a
provider's HTTP API.

Senders report outcomes through SendResult rather than raising:
- On success, return success=True with the provider's message id
- On a clear or ambiguous failure, return success=False with the
  provider's error text verbatim in error_message

Usage:
    class MyEmailSender(EmailSender):
        async def send_email(self, message: OutboundEmail) -> SendResult:
            ...
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class OutboundEmail:
    """An email ready to hand to the email provider."""

    to: str
    from_address: str
    subject: str
    text: str
    html: Optional[str] = None
    reply_to: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class OutboundChat:
    """A chat message ready to hand to the chat provider.

    Exactly one of body or content_sid is expected to be used: a templated
    send carries content_sid and content_variables, a free-form send
    carries body.
    """

    to: str
    from_number: str
    body: Optional[str] = None
    content_sid: Optional[str] = None
    content_variables: Optional[dict[str, str]] = None
    status_callback: Optional[str] = None


@dataclass
class SendResult:
    """Result of sending a message through a channel provider."""

    success: bool
    external_message_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    # Provider-reported price in minor currency units, if any
    price_minor_units: Optional[int] = None
    error_message: Optional[str] = None
    status_code: Optional[int] = None
    is_ambiguous: bool = False  # True if we don't know if message was sent


# =============================================================================
# SENDER INTERFACES
# =============================================================================


class EmailSender(ABC):
    """Sends chase emails."""

    @abstractmethod
    async def send_email(self, message: OutboundEmail) -> SendResult:
        """Send one email."""
        ...


class ChatSender(ABC):
    """Sends chat messages (templated or free-form)."""

    @abstractmethod
    async def send_chat_message(self, message: OutboundChat) -> SendResult:
        """Send one chat message."""
        ...
