"""Resend email adapter.

Implements the EmailSender interface over Resend's HTTP API.

Usage:
    sender = ResendEmailSender(api_key="re_...")
    result = await sender.send_email(OutboundEmail(...))
"""

from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from chase_core.providers.base import EmailSender, OutboundEmail, SendResult


class ResendEmailSender(EmailSender):
    """Email sender backed by Resend."""

    DEFAULT_BASE_URL = "https://api.resend.com"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Resend sender.

        Args:
            api_key: Resend API key.
            base_url: API root, overridable for tests.
            timeout: Per-request HTTP timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, message: OutboundEmail) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "from": message.from_address,
            "to": [message.to],
            "subject": message.subject,
            "text": message.text,
        }
        if message.html:
            payload["html"] = message.html
        if message.reply_to:
            payload["reply_to"] = message.reply_to
        if message.headers:
            payload["headers"] = dict(message.headers)
        return payload

    async def send_email(self, message: OutboundEmail) -> SendResult:
        """Send an email through Resend.

        Returns:
            SendResult with the Resend email id on success, or the API's
            error message on failure.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/emails",
                    headers=self._get_headers(),
                    json=self._build_payload(message),
                )
        except httpx.TimeoutException:
            return SendResult(
                success=False,
                error_message="Email provider request timed out",
                is_ambiguous=True,
            )
        except httpx.HTTPError as e:
            return SendResult(
                success=False,
                error_message=f"Email provider request failed: {e}",
                is_ambiguous=True,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            return SendResult(
                success=False,
                error_message=data.get("message") or f"Email provider returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        return SendResult(
            success=True,
            external_message_id=data.get("id"),
            sent_at=datetime.now(timezone.utc),
            status_code=response.status_code,
        )
