"""Provider delivery status callbacks.

Applies status updates reported by a channel provider (looked up by the
provider's message id) to chase messages. Transitions only move forward:

    queued -> sent -> delivered -> read
    queued -> failed

A callback that would move a message backwards, or report failure for a
message already sent, is ignored and logged.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from chase_core.domain.models import ChaseMessage, MessageStatus, as_naive_utc, utcnow
from chase_core.observability.logging import LogContext, get_logger

logger = get_logger(__name__)


# Position along the success path
_PROGRESS = {
    MessageStatus.QUEUED: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}

# Provider status -> our status
PROVIDER_STATUS_MAP = {
    "sent": MessageStatus.SENT,
    "delivered": MessageStatus.DELIVERED,
    "read": MessageStatus.READ,
    "failed": MessageStatus.FAILED,
    "undelivered": MessageStatus.FAILED,
}

_TIMESTAMP_COLUMN = {
    MessageStatus.SENT: ChaseMessage.sent_at,
    MessageStatus.DELIVERED: ChaseMessage.delivered_at,
    MessageStatus.READ: ChaseMessage.read_at,
    MessageStatus.FAILED: ChaseMessage.failed_at,
}


def can_transition(current: str, target: str) -> bool:
    """Whether a message in ``current`` may move to ``target``."""
    if target == MessageStatus.FAILED:
        return current == MessageStatus.QUEUED
    if current not in _PROGRESS or target not in _PROGRESS:
        return False
    return _PROGRESS[target] > _PROGRESS[current]


@dataclass
class StatusUpdateResult:
    """Outcome of applying one callback."""

    applied: bool
    message_id: Optional[int] = None
    status: Optional[str] = None
    reason: Optional[str] = None


class DeliveryStatusService:
    """Applies provider delivery callbacks to chase messages."""

    def __init__(self, db: Session):
        self.db = db

    def apply(
        self,
        external_message_id: str,
        provider_status: str,
        error_message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> StatusUpdateResult:
        """Apply one provider status callback.

        Args:
            external_message_id: Provider message id stored at send time.
            provider_status: Provider's status string (e.g. "delivered").
            error_message: Provider error text for failure statuses.
            now: Time of the update (defaults to now).

        Returns:
            StatusUpdateResult; ``applied`` is False for unknown messages,
            unmapped statuses and backward transitions.
        """
        now = as_naive_utc(now) if now is not None else utcnow()

        target = PROVIDER_STATUS_MAP.get((provider_status or "").lower())
        if target is None:
            return StatusUpdateResult(applied=False, reason="unmapped_status")

        message = (
            self.db.query(ChaseMessage)
            .filter(ChaseMessage.external_message_id == external_message_id)
            .first()
        )
        if message is None:
            logger.info(
                "Status callback for unknown message",
                external_message_id=external_message_id,
                provider_status=provider_status,
            )
            return StatusUpdateResult(applied=False, reason="unknown_message")

        ctx = LogContext(
            practice_id=message.practice_id,
            client_id=message.client_id,
            message_id=message.id,
        )
        current = message.status

        if not can_transition(current, target):
            logger.info(
                "Ignoring non-monotonic status callback",
                context=ctx,
                current_status=current,
                provider_status=provider_status,
            )
            return StatusUpdateResult(
                applied=False, message_id=message.id, status=current, reason="not_monotonic"
            )

        values = {
            ChaseMessage.status: target,
            _TIMESTAMP_COLUMN[target]: now,
        }
        if target == MessageStatus.FAILED:
            values[ChaseMessage.failure_reason] = error_message or f"Provider reported {provider_status}"

        # Conditional on the status we read, so a concurrent callback wins cleanly
        updated = (
            self.db.query(ChaseMessage)
            .filter(ChaseMessage.id == message.id, ChaseMessage.status == current)
            .update(values, synchronize_session=False)
        )
        self.db.flush()
        self.db.expire(message)

        if not updated:
            return StatusUpdateResult(
                applied=False, message_id=message.id, status=current, reason="concurrent_update"
            )

        logger.info(
            "Applied delivery status",
            context=ctx,
            from_status=current,
            to_status=target,
        )
        return StatusUpdateResult(applied=True, message_id=message.id, status=target)


__all__ = [
    "PROVIDER_STATUS_MAP",
    "DeliveryStatusService",
    "StatusUpdateResult",
    "can_transition",
]
