"""Maintenance tasks for the chase queue."""

from datetime import timedelta
from typing import Optional

from chase_worker.celery_app import app


@app.task(name="maintenance.fail_stale_claims")
def fail_stale_claims(older_than_minutes: Optional[int] = None) -> dict:
    """Fail messages that were claimed for dispatch but never finished.

    Args:
        older_than_minutes: Claim age after which a message is failed.
            Defaults to the stale_claim_minutes setting.

    Returns:
        Dictionary with the number of messages failed.
    """
    from chase_core.config import get_settings
    from chase_core.domain.services.dispatcher import MessageDispatcher
    from chase_core.infra.db import get_sync_session_factory

    settings = get_settings()
    minutes = older_than_minutes if older_than_minutes is not None else settings.stale_claim_minutes

    session = get_sync_session_factory()()
    try:
        dispatcher = MessageDispatcher.from_settings(session, settings)
        count = dispatcher.fail_stale_claims(timedelta(minutes=minutes))
    finally:
        session.close()

    return {
        "status": "ok",
        "failed": count,
        "older_than_minutes": minutes,
    }
