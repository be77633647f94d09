"""Operator API routes for the chase cycle.

Provides endpoints for:
- POST /ops/chase/tick - Run one chase tick
- POST /ops/chase/dispatch - Dispatch all queued messages
- POST /ops/chase/run - Tick then dispatch
- POST /ops/chase/stale-claims - Fail messages stuck mid-dispatch
- POST /ops/messages/{id}/dispatch - Dispatch a single message

Routes are plain (sync) functions: the dispatcher drives provider calls
on its own event loop, so it must run on a worker thread.
"""

from datetime import timedelta

from fastapi import APIRouter, HTTPException, status

from chase_core.api.deps import AppSettings, ChaseEngineDep, DispatcherDep, OpsToken
from chase_core.api.schemas.chase import DispatchResponse, StaleClaimsResponse, TickResponse
from chase_core.domain.errors import MessageNotFoundError
from chase_core.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/ops", tags=["operations"], dependencies=[OpsToken])


@router.post(
    "/chase/tick",
    response_model=TickResponse,
    summary="Run a chase tick",
    description="Queue a chase message for every enrollment that is due.",
)
def run_tick(engine: ChaseEngineDep):
    """Run one chase tick."""
    summary = engine.tick()
    return TickResponse(**summary.to_dict())


@router.post(
    "/chase/dispatch",
    response_model=DispatchResponse,
    summary="Dispatch queued messages",
    description="Deliver every queued, unclaimed chase message.",
)
def run_dispatch(dispatcher: DispatcherDep):
    """Drain the message queue."""
    summary = dispatcher.dispatch_queued()
    return DispatchResponse(**summary.to_dict())


@router.post(
    "/chase/run",
    summary="Run a full chase cycle",
    description="Run a tick, then dispatch the queue.",
)
def run_cycle(engine: ChaseEngineDep, dispatcher: DispatcherDep):
    """Tick then dispatch, as the scheduler does."""
    tick = engine.tick()
    dispatched = dispatcher.dispatch_queued()
    return {
        "chases": TickResponse(**tick.to_dict()),
        "dispatched": DispatchResponse(**dispatched.to_dict()),
    }


@router.post(
    "/chase/stale-claims",
    response_model=StaleClaimsResponse,
    summary="Fail stale dispatch claims",
)
def fail_stale_claims(dispatcher: DispatcherDep, settings: AppSettings):
    """Fail messages claimed for dispatch but never finished."""
    count = dispatcher.fail_stale_claims(timedelta(minutes=settings.stale_claim_minutes))
    return StaleClaimsResponse(failed=count)


@router.post(
    "/messages/{message_id}/dispatch",
    summary="Dispatch one message",
)
def dispatch_message(message_id: int, dispatcher: DispatcherDep):
    """Dispatch a single queued message."""
    try:
        outcome = dispatcher.dispatch(message_id)
    except MessageNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found",
        )

    logger.info("Operator dispatched message", message_id=message_id, outcome=outcome.value)
    return {"message_id": message_id, "outcome": outcome.value}
