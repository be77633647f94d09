"""Unit tests for audit log functionality.

Tests cover:
- Audit entry creation and validation
- Fire-and-forget logging that never breaks the caller
- Consent change entries
- Listing with filters
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import Session as DBSession

from tests.factories import create_client, create_practice


class TestAuditEntryCreation:
    """Tests for creating audit entries."""

    def test_create_audit_entry_basic(self, db_session: DBSession):
        """Test creating a basic audit entry."""
        from chase_core.domain.services.audit import AuditService

        service = AuditService(db_session)

        entry = service.create_entry(
            actor="system",
            action_type="chase.tick",
            result="ok",
        )

        assert entry.id is not None
        assert entry.actor == "system"
        assert entry.action_type == "chase.tick"
        assert entry.result == "ok"
        assert entry.ts is not None

    def test_create_audit_entry_with_client(self, db_session: DBSession):
        """Test creating an entry scoped to a practice and client."""
        from chase_core.domain.services.audit import AuditService

        practice = create_practice(db_session)
        client = create_client(db_session, practice)

        entry = AuditService(db_session).create_entry(
            actor="client",
            action_type="chat.inbound",
            practice_id=practice.id,
            client_id=client.id,
            metadata={"message_sid": "SM1"},
            ip_address="203.0.113.9",
        )

        assert entry.practice_id == practice.id
        assert entry.client_id == client.id
        assert entry.metadata_json == {"message_sid": "SM1"}
        assert entry.ip_address == "203.0.113.9"

    def test_create_audit_entry_error_result(self, db_session: DBSession):
        """Test creating an entry for a failed action."""
        from chase_core.domain.services.audit import AuditService

        entry = AuditService(db_session).create_entry(
            actor="system",
            action_type="message.dispatch",
            result="error",
            error_detail="Provider call timed out after 15s",
        )

        assert entry.result == "error"
        assert entry.error_detail == "Provider call timed out after 15s"

    def test_invalid_actor_raises(self, db_session: DBSession):
        from chase_core.domain.services.audit import AuditService

        with pytest.raises(ValueError, match="actor must be one of"):
            AuditService(db_session).create_entry(actor="robot", action_type="x")

    def test_invalid_result_raises(self, db_session: DBSession):
        from chase_core.domain.services.audit import AuditService

        with pytest.raises(ValueError, match="result must be one of"):
            AuditService(db_session).create_entry(actor="system", action_type="x", result="maybe")


class TestLogEvent:
    """Tests for fire-and-forget audit logging."""

    def test_log_event_writes_entry(self, db_session: DBSession):
        from chase_core.domain.models import AuditLog
        from chase_core.domain.services.audit import AuditService

        entry = AuditService(db_session).log_event("system", "consent.all_channels_revoked")

        assert entry is not None
        assert db_session.query(AuditLog).count() == 1

    def test_log_event_swallows_invalid_input(self, db_session: DBSession):
        from chase_core.domain.models import AuditLog
        from chase_core.domain.services.audit import AuditService

        assert AuditService(db_session).log_event("robot", "x") is None
        assert db_session.query(AuditLog).count() == 0

    def test_failed_entry_does_not_roll_back_caller(self, db_session: DBSession):
        """A failed audit insert only rolls back its own savepoint."""
        from chase_core.domain.models import Practice
        from chase_core.domain.services.audit import AuditService

        practice = create_practice(db_session)
        AuditService(db_session).log_event("system", "x", unknown_field=True)

        assert db_session.get(Practice, practice.id) is not None

    def test_log_consent_change(self, db_session: DBSession):
        from chase_core.domain.services.audit import AuditService

        service = AuditService(db_session)

        revoked = service.log_consent_change(
            practice_id=1, client_id=2, channel="email", granted=False, method="email_unsubscribe"
        )
        granted = service.log_consent_change(
            practice_id=1, client_id=2, channel="chat", granted=True, method="manual", user_id="staff-1"
        )

        assert revoked.action_type == "consent.revoke"
        assert revoked.actor == "client"
        assert revoked.changes_json == {
            "channel": "email",
            "granted": False,
            "method": "email_unsubscribe",
        }
        assert granted.action_type == "consent.grant"
        assert granted.actor == "user"
        assert granted.user_id == "staff-1"


class TestListEntries:
    """Tests for querying audit entries."""

    def test_newest_first(self, db_session: DBSession):
        from chase_core.domain.services.audit import AuditService

        service = AuditService(db_session)
        base = datetime(2026, 10, 19, 12, 0)
        for offset in range(3):
            service.create_entry(
                actor="system", action_type=f"step.{offset}", ts=base + timedelta(minutes=offset)
            )

        entries = service.list_entries()

        assert [e.action_type for e in entries] == ["step.2", "step.1", "step.0"]

    def test_filters(self, db_session: DBSession):
        from chase_core.domain.services.audit import AuditService

        service = AuditService(db_session)
        service.create_entry(actor="system", action_type="chat.inbound", practice_id=1, client_id=10)
        service.create_entry(actor="system", action_type="chat.inbound", practice_id=2, client_id=20)
        service.create_entry(actor="system", action_type="consent.revoke", practice_id=1, client_id=10)

        assert len(service.list_entries(practice_id=1)) == 2
        assert len(service.list_entries(client_id=20)) == 1
        assert len(service.list_entries(action_type="consent.revoke")) == 1
        assert len(service.list_entries(practice_id=1, action_type="chat.inbound")) == 1

    def test_limit(self, db_session: DBSession):
        from chase_core.domain.services.audit import AuditService

        service = AuditService(db_session)
        for _ in range(5):
            service.create_entry(actor="system", action_type="chase.tick")

        assert len(service.list_entries(limit=2)) == 2
