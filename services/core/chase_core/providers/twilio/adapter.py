"""Twilio WhatsApp adapter.

Implements the ChatSender interface over Twilio's Messages API. Templated
sends use ContentSid/ContentVariables; free-form sends use Body.

Usage:
    sender = TwilioChatSender(account_sid="AC...", auth_token="...")
    result = await sender.send_chat_message(OutboundChat(...))
"""

import json
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

import httpx

from chase_core.providers.base import ChatSender, OutboundChat, SendResult


def whatsapp_address(number: str) -> str:
    """Prefix an E.164 number for the WhatsApp channel."""
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


def price_to_minor_units(price: Optional[str]) -> Optional[int]:
    """Convert a provider price string ("-0.0050") to whole minor units.

    Half a minor unit rounds up, so "-0.0050" is 1.
    """
    if price in (None, ""):
        return None
    try:
        amount = abs(Decimal(str(price)))
    except InvalidOperation:
        return None
    return int((amount * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


class TwilioChatSender(ChatSender):
    """Chat sender backed by Twilio's WhatsApp messaging."""

    DEFAULT_BASE_URL = "https://api.twilio.com"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Twilio sender.

        Args:
            account_sid: Twilio account SID.
            auth_token: Twilio auth token.
            base_url: API root, overridable for tests.
            timeout: Per-request HTTP timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/2010-04-01/Accounts/{self.account_sid}/Messages.json"

    def _build_form(self, message: OutboundChat) -> dict[str, str]:
        form = {
            "To": whatsapp_address(message.to),
            "From": whatsapp_address(message.from_number),
        }
        if message.content_sid:
            form["ContentSid"] = message.content_sid
            if message.content_variables:
                form["ContentVariables"] = json.dumps(message.content_variables)
        else:
            form["Body"] = message.body or ""
        if message.status_callback:
            form["StatusCallback"] = message.status_callback
        return form

    async def send_chat_message(self, message: OutboundChat) -> SendResult:
        """Send a WhatsApp message through Twilio.

        Returns:
            SendResult with the message SID and reported price on success,
            or Twilio's error message on failure.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.messages_url,
                    data=self._build_form(message),
                    auth=(self.account_sid, self.auth_token),
                )
        except httpx.TimeoutException:
            return SendResult(
                success=False,
                error_message="Chat provider request timed out",
                is_ambiguous=True,
            )
        except httpx.HTTPError as e:
            return SendResult(
                success=False,
                error_message=f"Chat provider request failed: {e}",
                is_ambiguous=True,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            return SendResult(
                success=False,
                error_message=data.get("message") or f"Chat provider returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        return SendResult(
            success=True,
            external_message_id=data.get("sid"),
            sent_at=datetime.now(timezone.utc),
            price_minor_units=price_to_minor_units(data.get("price")),
            status_code=response.status_code,
        )
