"""Message dispatcher for queued chase messages.

This service handles:
1. Claiming a queued message atomically so no two workers send it
2. Re-checking consent immediately before the provider call
3. Routing by channel (email, chat, sms) and choosing the chat payload
   from the session window
4. Recording the terminal outcome (sent, failed or opted_out)

Delivery is at most once. The claim (``dispatch_claimed_at``) is committed
before the provider is called, every provider call is bounded by a
timeout, and failures are terminal: nothing here retries.

Usage:
    dispatcher = MessageDispatcher.from_settings(db, get_settings())
    outcome = dispatcher.dispatch(message_id)
    summary = dispatcher.dispatch_queued()
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Mapping, Optional

from sqlalchemy.orm import Session

from chase_core.config import Settings
from chase_core.domain.errors import (
    ChannelNotImplementedError,
    DeliveryError,
    MessageNotFoundError,
    MissingAddressError,
    MissingSenderConfigError,
    ProviderError,
)
from chase_core.domain.models import (
    ChaseMessage,
    Client,
    MessageStatus,
    Practice,
    as_naive_utc,
    utcnow,
)
from chase_core.domain.services.chat_templates import (
    ChatPayload,
    TemplateConfig,
    TemplateVariables,
    select_payload,
)
from chase_core.domain.services.consent import ConsentService
from chase_core.domain.services.escalation import Channel
from chase_core.domain.services.session_window import is_in_window
from chase_core.observability.logging import LogContext, get_logger
from chase_core.providers.base import (
    ChatSender,
    EmailSender,
    OutboundChat,
    OutboundEmail,
    SendResult,
)
from chase_core.providers.resend import ResendEmailSender
from chase_core.providers.twilio import TwilioChatSender

logger = get_logger(__name__)


DEFAULT_SUBJECT = "Documents needed"
DEFAULT_EMAIL_DOMAIN = "chase.local"

# Assumed chat price when the provider does not report one (minor units)
DEFAULT_CHAT_COST_MINOR_UNITS = 4

STALE_CLAIM_REASON = "Dispatch interrupted before completion"


class DispatchOutcome(str, Enum):
    """Result of one dispatch attempt."""

    SENT = "sent"
    FAILED = "failed"
    OPTED_OUT = "opted_out"
    SKIPPED = "skipped"


@dataclass
class DispatchSummary:
    """Counts from draining the queue."""

    sent: int = 0
    failed: int = 0
    opted_out: int = 0
    skipped: int = 0

    def record(self, outcome: DispatchOutcome) -> None:
        if outcome == DispatchOutcome.SENT:
            self.sent += 1
        elif outcome == DispatchOutcome.FAILED:
            self.failed += 1
        elif outcome == DispatchOutcome.OPTED_OUT:
            self.opted_out += 1
        else:
            self.skipped += 1

    def to_dict(self) -> dict:
        return asdict(self)


class MessageDispatcher:
    """Delivers queued chase messages through the channel senders."""

    def __init__(
        self,
        db: Session,
        email_sender: Optional[EmailSender] = None,
        chat_sender: Optional[ChatSender] = None,
        consent: Optional[ConsentService] = None,
        template_defaults: Optional[Mapping[str, Optional[str]]] = None,
        default_email_domain: str = DEFAULT_EMAIL_DOMAIN,
        status_callback_url: Optional[str] = None,
        timeout_seconds: float = 15.0,
    ):
        """Initialize the dispatcher.

        Args:
            db: SQLAlchemy database session. The dispatcher commits.
            email_sender: Email channel sender (None if not configured).
            chat_sender: Chat channel sender (None if not configured).
            consent: Consent gate (defaults to one on the same session).
            template_defaults: Process-wide chat template ids per level.
            default_email_domain: Sending domain when the practice has none.
            status_callback_url: Delivery status webhook for chat sends.
            timeout_seconds: Upper bound on each provider call.
        """
        self.db = db
        self.email_sender = email_sender
        self.chat_sender = chat_sender
        self.consent = consent or ConsentService(db)
        self.template_defaults = dict(template_defaults or {})
        self.default_email_domain = default_email_domain
        self.status_callback_url = status_callback_url
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, db: Session, settings: Settings) -> "MessageDispatcher":
        email_sender = None
        if settings.resend_api_key:
            email_sender = ResendEmailSender(
                api_key=settings.resend_api_key,
                base_url=settings.resend_base_url,
                timeout=settings.provider_timeout_seconds,
            )

        chat_sender = None
        if settings.twilio_account_sid and settings.twilio_auth_token:
            chat_sender = TwilioChatSender(
                account_sid=settings.twilio_account_sid,
                auth_token=settings.twilio_auth_token,
                base_url=settings.twilio_base_url,
                timeout=settings.provider_timeout_seconds,
            )

        return cls(
            db=db,
            email_sender=email_sender,
            chat_sender=chat_sender,
            template_defaults=settings.default_chat_template_sids(),
            default_email_domain=settings.default_email_domain,
            status_callback_url=f"{settings.base_url.rstrip('/')}/webhooks/twilio/status",
            timeout_seconds=settings.provider_timeout_seconds,
        )

    # =========================================================================
    # CLAIM AND STATUS
    # =========================================================================

    def claim(self, message_id: int, now: datetime) -> bool:
        """Atomically mark a queued message as being dispatched.

        Only one caller can succeed per message.
        """
        result = (
            self.db.query(ChaseMessage)
            .filter(
                ChaseMessage.id == message_id,
                ChaseMessage.status == MessageStatus.QUEUED,
                ChaseMessage.dispatch_claimed_at.is_(None),
            )
            .update(
                {ChaseMessage.dispatch_claimed_at: now},
                synchronize_session=False,
            )
        )
        return result > 0

    def _finish(self, message_id: int, values: dict[Any, Any]) -> bool:
        """Move a message out of queued, unless something else already did."""
        updated = (
            self.db.query(ChaseMessage)
            .filter(
                ChaseMessage.id == message_id,
                ChaseMessage.status == MessageStatus.QUEUED,
            )
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        return updated > 0

    def _mark_failed(self, message_id: int, reason: str, now: datetime) -> bool:
        return self._finish(
            message_id,
            {
                ChaseMessage.status: MessageStatus.FAILED,
                ChaseMessage.failed_at: now,
                ChaseMessage.failure_reason: reason,
            },
        )

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def dispatch(self, message_id: int, now: Optional[datetime] = None) -> DispatchOutcome:
        """Deliver one queued message.

        Returns:
            The outcome. SKIPPED when the message is not queued or another
            worker holds the claim.

        Raises:
            MessageNotFoundError: If the message does not exist.
        """
        now = as_naive_utc(now) if now is not None else utcnow()

        message = self.db.get(ChaseMessage, message_id)
        if message is None:
            raise MessageNotFoundError(f"Message {message_id} not found")
        if message.status != MessageStatus.QUEUED or message.dispatch_claimed_at is not None:
            return DispatchOutcome.SKIPPED

        if not self.claim(message_id, now):
            self.db.rollback()
            return DispatchOutcome.SKIPPED
        self.db.commit()

        message = self.db.get(ChaseMessage, message_id)
        ctx = LogContext(
            practice_id=message.practice_id,
            client_id=message.client_id,
            enrollment_id=message.enrollment_id,
            message_id=message.id,
        )
        channel = Channel(message.channel)

        if not self.consent.has_consent(message.client_id, channel):
            self._finish(
                message_id,
                {
                    ChaseMessage.status: MessageStatus.OPTED_OUT,
                    ChaseMessage.opted_out_at: now,
                },
            )
            logger.info("No consent on channel, message opted out", context=ctx, channel=channel.value)
            return DispatchOutcome.OPTED_OUT

        try:
            result = self._send(message, channel, now)
        except DeliveryError as e:
            self._mark_failed(message_id, str(e), now)
            logger.warning(
                "Chase message failed",
                context=ctx,
                channel=channel.value,
                reason=str(e),
                error_type=type(e).__name__,
            )
            return DispatchOutcome.FAILED
        except Exception as e:
            # Claimed and committed already; never leave it queued
            self.db.rollback()
            self._mark_failed(message_id, str(e), now)
            logger.error(
                "Unexpected error sending chase message",
                context=ctx,
                exc_info=True,
                channel=channel.value,
                reason=str(e),
                error_type=type(e).__name__,
            )
            return DispatchOutcome.FAILED

        cost = result.price_minor_units
        if cost is None and channel == Channel.CHAT:
            cost = DEFAULT_CHAT_COST_MINOR_UNITS

        finished = self._finish(
            message_id,
            {
                ChaseMessage.status: MessageStatus.SENT,
                ChaseMessage.external_message_id: result.external_message_id,
                ChaseMessage.sent_at: now,
                ChaseMessage.cost_minor_units: cost,
            },
        )
        if not finished:
            logger.warning(
                "Message left queued state during send; provider accepted it",
                context=ctx,
                external_message_id=result.external_message_id,
            )
        else:
            logger.info(
                "Chase message sent",
                context=ctx,
                channel=channel.value,
                external_message_id=result.external_message_id,
            )
        return DispatchOutcome.SENT

    def dispatch_queued(self, limit: Optional[int] = None) -> DispatchSummary:
        """Dispatch every unclaimed queued message, isolating failures."""
        query = (
            self.db.query(ChaseMessage.id)
            .filter(
                ChaseMessage.status == MessageStatus.QUEUED,
                ChaseMessage.dispatch_claimed_at.is_(None),
            )
            .order_by(ChaseMessage.created_at, ChaseMessage.id)
        )
        if limit:
            query = query.limit(limit)
        message_ids = [row[0] for row in query.all()]

        summary = DispatchSummary()
        for message_id in message_ids:
            try:
                summary.record(self.dispatch(message_id))
            except Exception as e:
                self.db.rollback()
                summary.failed += 1
                logger.error(
                    "Failed to dispatch message",
                    context=LogContext(message_id=message_id),
                    exc_info=True,
                    error=str(e),
                )

        logger.info("Dispatch run complete", **summary.to_dict())
        return summary

    def fail_stale_claims(self, older_than: timedelta, now: Optional[datetime] = None) -> int:
        """Fail messages whose dispatch was claimed but never finished.

        A worker crash between claim and outcome leaves a message queued
        with a claim; after ``older_than`` it is marked failed so it does
        not sit in the queue forever.
        """
        now = as_naive_utc(now) if now is not None else utcnow()
        cutoff = now - older_than

        count = (
            self.db.query(ChaseMessage)
            .filter(
                ChaseMessage.status == MessageStatus.QUEUED,
                ChaseMessage.dispatch_claimed_at.is_not(None),
                ChaseMessage.dispatch_claimed_at < cutoff,
            )
            .update(
                {
                    ChaseMessage.status: MessageStatus.FAILED,
                    ChaseMessage.failed_at: now,
                    ChaseMessage.failure_reason: STALE_CLAIM_REASON,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()

        if count:
            logger.warning("Failed stale dispatch claims", count=count)
        return count

    # =========================================================================
    # CHANNEL ROUTING
    # =========================================================================

    def _run(self, call: Awaitable[SendResult]) -> SendResult:
        """Run a provider coroutine with the configured timeout."""
        try:
            return asyncio.run(asyncio.wait_for(call, timeout=self.timeout_seconds))
        except asyncio.TimeoutError:
            raise ProviderError(f"Provider call timed out after {self.timeout_seconds:g}s")

    def _send(self, message: ChaseMessage, channel: Channel, now: datetime) -> SendResult:
        client = self.db.get(Client, message.client_id)
        practice = self.db.get(Practice, message.practice_id)

        if channel == Channel.EMAIL:
            result = self._send_email(message, client, practice)
        elif channel == Channel.CHAT:
            result = self._send_chat(message, client, practice, now)
        else:
            if not (client.phone or client.chat_phone):
                raise MissingAddressError("Client has no phone number")
            raise ChannelNotImplementedError("SMS channel not yet implemented")

        if not result.success:
            raise ProviderError(
                result.error_message or "Unknown provider error",
                status_code=result.status_code,
            )
        return result

    def _send_email(self, message: ChaseMessage, client: Client, practice: Practice) -> SendResult:
        if not client.email:
            raise MissingAddressError("Client has no email address")
        if self.email_sender is None:
            raise MissingSenderConfigError("Email provider is not configured")

        domain = practice.custom_email_domain or self.default_email_domain
        from_name = practice.from_email_name or practice.name

        email = OutboundEmail(
            to=client.email,
            from_address=f"{from_name} <chase@{domain}>",
            subject=message.subject or DEFAULT_SUBJECT,
            text=message.body_text,
            html=message.body_html,
            reply_to=practice.email,
            headers={"X-Chase-Message-Id": str(message.id)},
        )
        return self._run(self.email_sender.send_email(email))

    def build_chat_payload(
        self, message: ChaseMessage, client: Client, practice: Practice, now: datetime
    ) -> ChatPayload:
        """Free-form inside the session window, approved template outside it."""
        in_window = is_in_window(client.chat_last_inbound_at, now)

        if not message.template_variables:
            if not in_window:
                logger.warning(
                    "Chat message has no template variables; sending body on template path",
                    context=LogContext(message_id=message.id),
                )
            return ChatPayload(use_template=not in_window, body=message.body_text)

        return select_payload(
            level=message.escalation_level,
            in_window=in_window,
            template_override=None,
            template_config=TemplateConfig.for_practice(
                practice.chat_template_sids, self.template_defaults
            ),
            variables=TemplateVariables.from_dict(message.template_variables),
        )

    def _send_chat(
        self, message: ChaseMessage, client: Client, practice: Practice, now: datetime
    ) -> SendResult:
        number = client.chat_phone or client.phone
        if not number:
            raise MissingAddressError("Client has no WhatsApp/phone number")
        if not practice.chat_sender_number:
            raise MissingSenderConfigError("Practice has no WhatsApp number configured")
        if self.chat_sender is None:
            raise MissingSenderConfigError("Chat provider is not configured")

        payload = self.build_chat_payload(message, client, practice, now)
        chat = OutboundChat(
            to=number,
            from_number=practice.chat_sender_number,
            body=payload.body,
            content_sid=payload.content_sid,
            content_variables=payload.content_variables,
            status_callback=self.status_callback_url,
        )
        return self._run(self.chat_sender.send_chat_message(chat))


__all__ = [
    "DEFAULT_CHAT_COST_MINOR_UNITS",
    "DispatchOutcome",
    "DispatchSummary",
    "MessageDispatcher",
]
