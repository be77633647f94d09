"""Domain services for the chase engine."""

from chase_core.domain.services.audit import AuditService
from chase_core.domain.services.chase_engine import ChaseEngine, TickSummary
from chase_core.domain.services.consent import ConsentService, OptOutResult
from chase_core.domain.services.delivery_status import DeliveryStatusService
from chase_core.domain.services.dispatcher import (
    DispatchOutcome,
    DispatchSummary,
    MessageDispatcher,
)
from chase_core.domain.services.documents import DocumentProgressService
from chase_core.domain.services.magic_links import MagicLinkService
from chase_core.domain.services.session_window import SessionWindowService

__all__ = [
    "AuditService",
    "ChaseEngine",
    "TickSummary",
    "ConsentService",
    "OptOutResult",
    "DeliveryStatusService",
    "DispatchOutcome",
    "DispatchSummary",
    "MessageDispatcher",
    "DocumentProgressService",
    "MagicLinkService",
    "SessionWindowService",
]
