"""Chase cycle tasks.

The beat schedule runs ``chase.run_cycle``: one tick that queues due
chases, then one dispatch pass over the queue. ``chase.tick`` and
``chase.dispatch_queued`` run the halves on their own.
"""

from chase_worker.celery_app import app


@app.task(name="chase.tick")
def tick() -> dict:
    """Queue a chase message for every due enrollment.

    Returns:
        Dictionary with processed, errors and skipped counts.
    """
    # Import here to avoid circular imports
    from chase_core.config import get_settings
    from chase_core.domain.services.chase_engine import ChaseEngine
    from chase_core.infra.db import get_sync_session_factory

    session = get_sync_session_factory()()
    try:
        engine = ChaseEngine.from_settings(session, get_settings())
        return engine.tick().to_dict()
    finally:
        session.close()


@app.task(name="chase.dispatch_queued")
def dispatch_queued() -> dict:
    """Deliver every queued chase message.

    Returns:
        Dictionary with sent, failed, opted_out and skipped counts.
    """
    from chase_core.config import get_settings
    from chase_core.domain.services.dispatcher import MessageDispatcher
    from chase_core.infra.db import get_sync_session_factory

    session = get_sync_session_factory()()
    try:
        dispatcher = MessageDispatcher.from_settings(session, get_settings())
        return dispatcher.dispatch_queued().to_dict()
    finally:
        session.close()


@app.task(
    name="chase.run_cycle",
    acks_late=False,  # A redelivered cycle would just run again on the next beat
)
def run_cycle() -> dict:
    """Run a tick and then dispatch the queue, sequentially.

    Returns:
        Dictionary with the tick summary under "chases" and the dispatch
        summary under "dispatched".
    """
    return {
        "chases": tick(),
        "dispatched": dispatch_queued(),
    }
