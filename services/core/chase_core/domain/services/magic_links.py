"""Deep-link issuer for the client upload portal.

A magic link is an unguessable token that lets a client reach their
upload page without logging in. Links are reused per (client, enrollment)
while they are unexpired and unrevoked, so every chase in a cycle points
at the same URL.
"""

import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from chase_core.domain.models import MagicLink, as_naive_utc, utcnow

DEFAULT_TTL_DAYS = 90
DEFAULT_MAX_USAGES = 50

# 32 random bytes, hex encoded (64 chars)
TOKEN_BYTES = 32


def portal_url(base_url: str, token: str) -> str:
    """Public URL of the upload page for a token."""
    return f"{base_url.rstrip('/')}/p/{token}"


class MagicLinkService:
    """Issues and redeems upload-portal deep links."""

    def __init__(
        self,
        db: Session,
        ttl_days: int = DEFAULT_TTL_DAYS,
        max_usages: int = DEFAULT_MAX_USAGES,
    ):
        self.db = db
        self.ttl = timedelta(days=ttl_days)
        self.max_usages = max_usages

    def get_or_create_link(
        self,
        practice_id: int,
        client_id: int,
        enrollment_id: Optional[int],
        now: Optional[datetime] = None,
    ) -> MagicLink:
        """Return an unexpired, unrevoked link for the pair, minting one if needed."""
        now = as_naive_utc(now) if now is not None else utcnow()

        existing = (
            self.db.query(MagicLink)
            .filter(
                MagicLink.client_id == client_id,
                MagicLink.enrollment_id == enrollment_id,
                MagicLink.is_revoked.is_(False),
                MagicLink.expires_at > now,
            )
            .order_by(MagicLink.expires_at.desc())
            .first()
        )
        if existing is not None:
            return existing

        link = MagicLink(
            practice_id=practice_id,
            client_id=client_id,
            enrollment_id=enrollment_id,
            token=secrets.token_hex(TOKEN_BYTES),
            expires_at=now + self.ttl,
            is_revoked=False,
            usage_count=0,
            max_usages=self.max_usages,
            created_at=now,
        )
        self.db.add(link)
        self.db.flush()
        return link

    def record_usage(self, token: str, now: Optional[datetime] = None) -> Optional[MagicLink]:
        """Count one use of a link.

        The increment is a conditional update (unrevoked, unexpired, under
        the usage limit) so concurrent requests cannot exceed max_usages.

        Returns:
            The link if the use was allowed, otherwise None.
        """
        now = as_naive_utc(now) if now is not None else utcnow()

        updated = (
            self.db.query(MagicLink)
            .filter(
                MagicLink.token == token,
                MagicLink.is_revoked.is_(False),
                MagicLink.expires_at > now,
                MagicLink.usage_count < MagicLink.max_usages,
            )
            .update(
                {
                    MagicLink.usage_count: MagicLink.usage_count + 1,
                    MagicLink.last_used_at: now,
                },
                synchronize_session=False,
            )
        )
        if updated == 0:
            return None

        link = self.db.query(MagicLink).filter(MagicLink.token == token).first()
        if link is not None:
            self.db.refresh(link)
        return link


__all__ = [
    "DEFAULT_TTL_DAYS",
    "DEFAULT_MAX_USAGES",
    "MagicLinkService",
    "portal_url",
]
