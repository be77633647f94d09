"""Message dispatch tasks.

These tasks deliver single chase messages through the channel senders
with at-most-once delivery semantics.
"""

from typing import Any

from chase_worker.celery_app import app


@app.task(
    name="message.dispatch",
    bind=True,
    max_retries=0,  # At-most-once: no automatic retries for this task
    acks_late=False,  # Acknowledge immediately to prevent redelivery
)
def dispatch(self, payload: dict[str, Any]) -> dict:
    """Dispatch one queued chase message.

    The dispatcher claims the message before calling the provider, so a
    duplicate task for the same message is a no-op (outcome "skipped").

    Args:
        payload: Dictionary containing:
            - message_id: Chase message ID

    Returns:
        Dictionary with status and details.
    """
    # Import here to avoid circular imports
    from chase_core.config import get_settings
    from chase_core.domain.errors import MessageNotFoundError
    from chase_core.domain.services.dispatcher import MessageDispatcher
    from chase_core.infra.db import get_sync_session_factory

    message_id = payload.get("message_id")
    if not message_id:
        return {
            "status": "error",
            "error": "Missing required payload fields",
            "message_id": message_id,
        }

    session = get_sync_session_factory()()
    try:
        dispatcher = MessageDispatcher.from_settings(session, get_settings())
        outcome = dispatcher.dispatch(int(message_id))
    except MessageNotFoundError:
        return {
            "status": "error",
            "error": f"Message {message_id} not found",
            "message_id": message_id,
        }
    finally:
        session.close()

    return {
        "status": "ok",
        "outcome": outcome.value,
        "message_id": message_id,
    }
