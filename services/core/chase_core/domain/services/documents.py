"""Document progress for enrollments.

Required and received document ids are sets. Receiving the last
outstanding document completes the enrollment and stops scheduling.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from chase_core.domain.errors import EnrollmentNotFoundError
from chase_core.domain.models import Enrollment, EnrollmentStatus, as_naive_utc, utcnow
from chase_core.observability.logging import LogContext, get_logger

logger = get_logger(__name__)


def completion_percent(required: frozenset, received: frozenset) -> int:
    """Share of required documents received, 0-100."""
    if not required:
        return 0
    return int(len(required & received) * 100 / len(required))


@dataclass
class DocumentProgress:
    enrollment_id: int
    received: int
    required: int
    completion_percent: int
    completed: bool


class DocumentProgressService:
    """Tracks received documents and completes enrollments."""

    def __init__(self, db: Session):
        self.db = db

    def _get(self, enrollment_id: int) -> Enrollment:
        enrollment = self.db.get(Enrollment, enrollment_id)
        if enrollment is None:
            raise EnrollmentNotFoundError(f"Enrollment {enrollment_id} not found")
        return enrollment

    def _progress(self, enrollment: Enrollment) -> DocumentProgress:
        return DocumentProgress(
            enrollment_id=enrollment.id,
            received=len(enrollment.required_documents & enrollment.received_documents),
            required=len(enrollment.required_documents),
            completion_percent=enrollment.completion_percent,
            completed=enrollment.status == EnrollmentStatus.COMPLETED,
        )

    def _recompute(self, enrollment: Enrollment, now: datetime) -> None:
        required = enrollment.required_documents
        received = enrollment.received_documents
        enrollment.completion_percent = completion_percent(required, received)

        if (
            required
            and not (required - received)
            and enrollment.status in (EnrollmentStatus.ACTIVE, EnrollmentStatus.PAUSED)
        ):
            enrollment.status = EnrollmentStatus.COMPLETED
            enrollment.completed_at = now
            enrollment.next_chase_at = None
            logger.info(
                "Enrollment completed, all documents received",
                context=LogContext(
                    practice_id=enrollment.practice_id,
                    client_id=enrollment.client_id,
                    enrollment_id=enrollment.id,
                ),
            )

    def set_required(
        self, enrollment_id: int, document_ids: Iterable[str], now: Optional[datetime] = None
    ) -> DocumentProgress:
        """Replace the required document set."""
        now = as_naive_utc(now) if now is not None else utcnow()
        enrollment = self._get(enrollment_id)
        enrollment.required_documents = document_ids
        self._recompute(enrollment, now)
        self.db.flush()
        return self._progress(enrollment)

    def record_received(
        self, enrollment_id: int, document_id: str, now: Optional[datetime] = None
    ) -> DocumentProgress:
        """Record one received document. Receiving the same id twice is a no-op."""
        now = as_naive_utc(now) if now is not None else utcnow()
        enrollment = self._get(enrollment_id)

        received = enrollment.received_documents
        if str(document_id) not in received:
            enrollment.received_documents = received | {str(document_id)}

        self._recompute(enrollment, now)
        self.db.flush()
        return self._progress(enrollment)


__all__ = [
    "DocumentProgress",
    "DocumentProgressService",
    "completion_percent",
]
