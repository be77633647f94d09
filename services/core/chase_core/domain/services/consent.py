"""Consent gate for outbound chasing.

Tracks per-channel permission for each client and enforces the
side effects of withdrawing it:

1. The client's channel flag is set and an append-only ConsentRecord
   is written for every change.
2. Queued messages on a revoked channel become ``opted_out``.
3. Once no channel remains, every active enrollment for the client is
   paused so nothing can chase them again.

Defaults when a channel was never recorded: email is granted (legitimate
interest), sms and chat are revoked until the client opts in. All checks
also require the client's master ``chase_enabled`` flag.

Usage:
    gate = ConsentService(db)
    if gate.has_consent(client_id, Channel.CHAT):
        ...
    result = gate.process_opt_out(client_id, practice_id, Channel.EMAIL, "email_unsubscribe")
    db.commit()
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy.orm import Session

from chase_core.domain.errors import ClientNotFoundError
from chase_core.domain.models import (
    ChaseMessage,
    Client,
    ConsentRecord,
    ConsentStatus,
    Enrollment,
    EnrollmentStatus,
    LegalBasis,
    MessageStatus,
    as_naive_utc,
    utcnow,
)
from chase_core.domain.services.audit import AuditService
from chase_core.domain.services.escalation import Channel
from chase_core.observability.logging import LogContext, get_logger

logger = get_logger(__name__)


# Client columns holding each channel's flag and its timestamp
_CONSENT_FIELDS = {
    Channel.EMAIL: ("email_consent", "email_consent_at"),
    Channel.SMS: ("sms_consent", "sms_consent_at"),
    Channel.CHAT: ("chat_opt_in", "chat_opt_in_at"),
}

# Value assumed when a channel's flag was never recorded
_DEFAULT_CONSENT = {
    Channel.EMAIL: True,
    Channel.SMS: False,
    Channel.CHAT: False,
}

_OPT_OUT_KEYWORDS = re.compile(r"^(stop|unsubscribe|cancel|end|quit)\s*$", re.IGNORECASE)


def is_opt_out_keyword(text: Optional[str]) -> bool:
    """Check whether an inbound SMS/chat message is an opt-out keyword."""
    if not text:
        return False
    return _OPT_OUT_KEYWORDS.match(text.strip()) is not None


def channel_consent(client: Client, channel: Union[Channel, str]) -> bool:
    """Current permission for one channel, ignoring the master flag."""
    channel = Channel(channel)
    flag_name, _ = _CONSENT_FIELDS[channel]
    value = getattr(client, flag_name)
    return _DEFAULT_CONSENT[channel] if value is None else bool(value)


@dataclass
class OptOutResult:
    """Outcome of an opt-out."""

    all_channels_revoked: bool
    enrollments_paused: int
    messages_cancelled: int


class ConsentService:
    """Answers "may we contact this client on this channel" and records changes."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def _get_client(self, client_id: int, practice_id: Optional[int] = None) -> Client:
        query = self.db.query(Client).filter(Client.id == client_id)
        if practice_id is not None:
            query = query.filter(Client.practice_id == practice_id)
        client = query.first()
        if client is None:
            raise ClientNotFoundError(f"Client {client_id} not found")
        return client

    # =========================================================================
    # CHECKS
    # =========================================================================

    def has_consent(self, client_id: int, channel: Union[Channel, str]) -> bool:
        """True if the client may be contacted on the channel right now."""
        client = self.db.get(Client, client_id)
        if client is None or not client.chase_enabled:
            return False
        return channel_consent(client, channel)

    def consented_channels(self, client_id: int) -> list[Channel]:
        """Channels currently granted for a client, in a stable order."""
        client = self.db.get(Client, client_id)
        if client is None:
            return []
        return [channel for channel in Channel if channel_consent(client, channel)]

    # =========================================================================
    # CHANGES
    # =========================================================================

    def _set_channel_flag(self, client: Client, channel: Channel, granted: bool, now: datetime) -> None:
        flag_name, at_name = _CONSENT_FIELDS[channel]
        setattr(client, flag_name, granted)
        setattr(client, at_name, now)
        client.updated_at = now

    def process_opt_out(
        self,
        client_id: int,
        practice_id: int,
        channel: Union[Channel, str],
        method: str,
        actor_user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OptOutResult:
        """Revoke consent for a channel and apply the cascading effects.

        Args:
            client_id: The client opting out.
            practice_id: The client's practice.
            channel: Channel being revoked.
            method: How the revocation was captured (e.g. "sms_stop",
                "email_unsubscribe", "chat_stop", "manual").
            actor_user_id: Staff user for manual changes.
            ip_address: Request origin, when known.
            now: Effective time, defaults to now.

        Returns:
            OptOutResult with the cascade counts.

        Raises:
            ClientNotFoundError: If the client does not belong to the practice.
        """
        channel = Channel(channel)
        now = as_naive_utc(now) if now is not None else utcnow()
        client = self._get_client(client_id, practice_id)
        ctx = LogContext(practice_id=practice_id, client_id=client_id)

        self._set_channel_flag(client, channel, False, now)

        self.db.add(
            ConsentRecord(
                practice_id=practice_id,
                client_id=client_id,
                channel=channel.value,
                status=ConsentStatus.REVOKED,
                method=method,
                legal_basis=LegalBasis.CONSENT,
                revoked_at=now,
                actor_user_id=actor_user_id,
                ip_address=ip_address,
                created_at=now,
            )
        )
        self.db.flush()

        self.audit.log_consent_change(
            practice_id=practice_id,
            client_id=client_id,
            channel=channel.value,
            granted=False,
            method=method,
            user_id=actor_user_id,
            ip_address=ip_address,
        )

        messages_cancelled = (
            self.db.query(ChaseMessage)
            .filter(
                ChaseMessage.client_id == client_id,
                ChaseMessage.channel == channel.value,
                ChaseMessage.status == MessageStatus.QUEUED,
            )
            .update(
                {
                    ChaseMessage.status: MessageStatus.OPTED_OUT,
                    ChaseMessage.opted_out_at: now,
                },
                synchronize_session=False,
            )
        )

        remaining = self.consented_channels(client_id)
        all_revoked = len(remaining) == 0
        enrollments_paused = 0

        if all_revoked:
            reason = f"All communication channels opted out (last: {channel.value} via {method})"
            enrollments_paused = (
                self.db.query(Enrollment)
                .filter(
                    Enrollment.client_id == client_id,
                    Enrollment.status == EnrollmentStatus.ACTIVE,
                )
                .update(
                    {
                        Enrollment.status: EnrollmentStatus.PAUSED,
                        Enrollment.next_chase_at: None,
                        Enrollment.opted_out_at: now,
                        Enrollment.opt_out_reason: reason,
                        Enrollment.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )

            self.audit.log_event(
                actor="system",
                action_type="consent.all_channels_revoked",
                practice_id=practice_id,
                client_id=client_id,
                entity_type="client",
                entity_id=client_id,
                metadata={
                    "all_channels_revoked": True,
                    "enrollments_paused": enrollments_paused,
                    "last_channel": channel.value,
                    "method": method,
                },
            )

        self.db.flush()
        # Bulk updates above bypass the identity map
        self.db.expire_all()

        logger.info(
            "Processed opt-out",
            context=ctx,
            channel=channel.value,
            method=method,
            messages_cancelled=messages_cancelled,
            all_channels_revoked=all_revoked,
            enrollments_paused=enrollments_paused,
        )

        return OptOutResult(
            all_channels_revoked=all_revoked,
            enrollments_paused=enrollments_paused,
            messages_cancelled=messages_cancelled,
        )

    def process_opt_in(
        self,
        client_id: int,
        practice_id: int,
        channel: Union[Channel, str],
        method: str,
        actor_user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ConsentRecord:
        """Grant consent for a channel.

        Paused enrollments are not resumed; that is an explicit operator
        action.

        Raises:
            ClientNotFoundError: If the client does not belong to the practice.
        """
        channel = Channel(channel)
        now = as_naive_utc(now) if now is not None else utcnow()
        client = self._get_client(client_id, practice_id)

        self._set_channel_flag(client, channel, True, now)

        record = ConsentRecord(
            practice_id=practice_id,
            client_id=client_id,
            channel=channel.value,
            status=ConsentStatus.GRANTED,
            method=method,
            legal_basis=(
                LegalBasis.LEGITIMATE_INTEREST if channel == Channel.EMAIL else LegalBasis.CONSENT
            ),
            consented_at=now,
            actor_user_id=actor_user_id,
            ip_address=ip_address,
            created_at=now,
        )
        self.db.add(record)
        self.db.flush()

        self.audit.log_consent_change(
            practice_id=practice_id,
            client_id=client_id,
            channel=channel.value,
            granted=True,
            method=method,
            user_id=actor_user_id,
            ip_address=ip_address,
        )

        logger.info(
            "Processed opt-in",
            context=LogContext(practice_id=practice_id, client_id=client_id),
            channel=channel.value,
            method=method,
        )

        return record

    def latest_record(self, client_id: int, channel: Union[Channel, str]) -> Optional[ConsentRecord]:
        """Most recent consent record for a client and channel."""
        return (
            self.db.query(ConsentRecord)
            .filter(
                ConsentRecord.client_id == client_id,
                ConsentRecord.channel == Channel(channel).value,
            )
            .order_by(ConsentRecord.created_at.desc(), ConsentRecord.id.desc())
            .first()
        )


__all__ = [
    "ConsentService",
    "OptOutResult",
    "channel_consent",
    "is_opt_out_keyword",
]
