"""Chat session window tracking.

The chat channel only allows free-form messages within 24 hours of the
client's last inbound message; outside that window a pre-approved template
must be used. The window is tracked as ``Client.chat_last_inbound_at``.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from chase_core.domain.errors import ClientNotFoundError
from chase_core.domain.models import Client, Practice, as_naive_utc, utcnow


SESSION_WINDOW = timedelta(hours=24)


def is_in_window(last_inbound_at: Optional[datetime], now: datetime) -> bool:
    """True iff the client messaged us less than 24 hours before ``now``."""
    if last_inbound_at is None:
        return False
    return as_naive_utc(now) - as_naive_utc(last_inbound_at) < SESSION_WINDOW


def normalize_chat_address(address: str) -> str:
    """Strip the provider's channel prefix from an address ("whatsapp:+44...")."""
    value = address.strip()
    if ":" in value:
        value = value.split(":", 1)[1]
    return value.strip()


class SessionWindowService:
    """Reads and writes chat session window state."""

    def __init__(self, db: Session):
        self.db = db

    def record_inbound(self, client_id: int, now: Optional[datetime] = None) -> None:
        """Record an inbound chat message from a client.

        Last write wins; concurrent inbound messages set near-identical
        timestamps.

        Raises:
            ClientNotFoundError: If the client does not exist.
        """
        now = as_naive_utc(now) if now is not None else utcnow()
        updated = (
            self.db.query(Client)
            .filter(Client.id == client_id)
            .update(
                {Client.chat_last_inbound_at: now, Client.updated_at: now},
                synchronize_session="fetch",
            )
        )
        if updated == 0:
            raise ClientNotFoundError(f"Client {client_id} not found")
        self.db.flush()

    def is_client_in_window(self, client_id: int, now: Optional[datetime] = None) -> bool:
        client = self.db.get(Client, client_id)
        if client is None:
            return False
        return is_in_window(client.chat_last_inbound_at, now or utcnow())

    def find_client_by_chat_address(
        self, address: str, practice_id: Optional[int] = None
    ) -> Optional[Client]:
        """Match an inbound sender address to a client by chat phone or phone."""
        number = normalize_chat_address(address)
        if not number:
            return None

        query = self.db.query(Client).filter(
            or_(Client.chat_phone == number, Client.phone == number)
        )
        if practice_id is not None:
            query = query.filter(Client.practice_id == practice_id)

        return query.order_by(Client.id).first()

    def find_practice_by_chat_number(self, address: str) -> Optional[Practice]:
        """Match the number a chat was sent to with a practice's sender number."""
        number = normalize_chat_address(address)
        if not number:
            return None
        return (
            self.db.query(Practice)
            .filter(Practice.chat_sender_number == number)
            .order_by(Practice.id)
            .first()
        )


__all__ = [
    "SESSION_WINDOW",
    "is_in_window",
    "normalize_chat_address",
    "SessionWindowService",
]
