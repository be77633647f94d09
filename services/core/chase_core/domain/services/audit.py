"""Audit log service for the chase engine.

Audit entries are append-only - they should never be updated or deleted.

Two entry points:
- create_entry: validated insert that raises on bad input, for callers
  that treat the audit row as part of their own unit of work.
- log_event: fire-and-forget. The insert runs in a savepoint and any
  failure is logged and swallowed, so auditing never blocks chasing,
  dispatch or consent handling.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from chase_core.domain.models import AuditActor, AuditLog, AuditResult, utcnow
from chase_core.observability.logging import get_logger

logger = get_logger(__name__)

# Valid values for audit fields
VALID_ACTORS = {AuditActor.USER, AuditActor.SYSTEM, AuditActor.CLIENT}
VALID_RESULTS = {AuditResult.OK, AuditResult.ERROR}


class AuditService:
    """Service for audit log operations."""

    def __init__(self, db: DBSession):
        """Initialize the audit service.

        Args:
            db: SQLAlchemy database session.
        """
        self.db = db

    def create_entry(
        self,
        actor: str,
        action_type: str,
        result: str = "ok",
        practice_id: Optional[int] = None,
        client_id: Optional[int] = None,
        user_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        changes: Optional[dict] = None,
        metadata: Optional[dict] = None,
        ip_address: Optional[str] = None,
        error_detail: Optional[str] = None,
        ts: Optional[datetime] = None,
    ) -> AuditLog:
        """Create a new audit log entry.

        Args:
            actor: Who performed the action (user, system, client).
            action_type: The type of action (e.g., "consent.revoke").
            result: The result of the action (ok, error).
            practice_id: Practice the action belongs to.
            client_id: Client the action concerns.
            user_id: Staff user who triggered the action, if any.
            entity_type: Optional entity type.
            entity_id: Optional entity ID.
            changes: What changed.
            metadata: Extra context.
            ip_address: Request origin, for client-initiated actions.
            error_detail: Optional error details (for errors).
            ts: Entry time, defaults to now.

        Returns:
            The created AuditLog entry.

        Raises:
            ValueError: If actor or result is invalid.
        """
        if actor not in VALID_ACTORS:
            raise ValueError(
                f"actor must be one of {VALID_ACTORS}, got '{actor}'"
            )

        if result not in VALID_RESULTS:
            raise ValueError(
                f"result must be one of {VALID_RESULTS}, got '{result}'"
            )

        entry = AuditLog(
            ts=ts or utcnow(),
            actor=actor,
            action_type=action_type,
            result=result,
            practice_id=practice_id,
            client_id=client_id,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            changes_json=changes,
            metadata_json=metadata,
            ip_address=ip_address,
            error_detail=error_detail,
        )

        self.db.add(entry)
        self.db.flush()

        return entry

    def log_event(self, actor: str, action_type: str, **fields) -> Optional[AuditLog]:
        """Append an audit entry without letting failures propagate.

        Returns:
            The entry, or None if it could not be written.
        """
        try:
            with self.db.begin_nested():
                return self.create_entry(actor=actor, action_type=action_type, **fields)
        except (SQLAlchemyError, ValueError, TypeError) as e:
            logger.warning(
                "Failed to write audit entry",
                action_type=action_type,
                error=str(e),
            )
            return None

    def log_consent_change(
        self,
        practice_id: int,
        client_id: int,
        channel: str,
        granted: bool,
        method: str,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """Record a consent grant or revocation."""
        return self.log_event(
            actor=AuditActor.USER if user_id else AuditActor.CLIENT,
            action_type="consent.grant" if granted else "consent.revoke",
            practice_id=practice_id,
            client_id=client_id,
            user_id=user_id,
            entity_type="consent",
            changes={"channel": channel, "granted": granted, "method": method},
            ip_address=ip_address,
        )

    def list_entries(
        self,
        practice_id: Optional[int] = None,
        client_id: Optional[int] = None,
        action_type: Optional[str] = None,
        limit: int = 50,
    ) -> list[AuditLog]:
        """List audit entries, newest first.

        Args:
            practice_id: Filter by practice.
            client_id: Filter by client.
            action_type: Filter by action type.
            limit: Maximum number of entries to return.

        Returns:
            Matching entries.
        """
        query = self.db.query(AuditLog)

        if practice_id:
            query = query.filter(AuditLog.practice_id == practice_id)
        if client_id:
            query = query.filter(AuditLog.client_id == client_id)
        if action_type:
            query = query.filter(AuditLog.action_type == action_type)

        return query.order_by(AuditLog.ts.desc(), AuditLog.id.desc()).limit(limit).all()
