"""Unit tests for message dispatch and maintenance tasks.

Tests cover:
- message.dispatch at-most-once settings
- Payload validation and error results
- maintenance.fail_stale_claims defaults
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from chase_core.domain.errors import MessageNotFoundError
from chase_core.domain.services.dispatcher import DispatchOutcome


class TestDispatchTask:
    """Tests for the message.dispatch task."""

    def test_task_is_registered(self, mock_celery_app):
        from chase_worker.tasks.message import dispatch

        assert dispatch.name == "message.dispatch"

    def test_task_has_no_retries(self, mock_celery_app):
        """Task should have max_retries=0 for at-most-once."""
        from chase_worker.tasks.message import dispatch

        assert dispatch.max_retries == 0

    def test_task_acks_early(self, mock_celery_app):
        """Task should ack early to prevent redelivery."""
        from chase_worker.tasks.message import dispatch

        assert dispatch.acks_late is False

    @pytest.mark.parametrize("payload", [{}, {"message_id": None}, {"message_id": 0}])
    def test_missing_message_id_returns_error(self, mock_celery_app, payload):
        from chase_worker.tasks.message import dispatch

        result = dispatch.apply(args=[payload]).get()

        assert result["status"] == "error"
        assert result["error"] == "Missing required payload fields"

    def test_dispatches_message(self, mock_celery_app, mock_session_factory, mock_db_session):
        from chase_worker.tasks.message import dispatch

        with patch("chase_core.domain.services.dispatcher.MessageDispatcher") as dispatcher_cls:
            dispatcher_cls.from_settings.return_value.dispatch.return_value = DispatchOutcome.SENT

            result = dispatch.apply(args=[{"message_id": "42"}]).get()

        assert result == {"status": "ok", "outcome": "sent", "message_id": "42"}
        dispatcher_cls.from_settings.return_value.dispatch.assert_called_once_with(42)
        mock_db_session.close.assert_called_once()

    def test_duplicate_task_is_skipped(self, mock_celery_app, mock_session_factory):
        from chase_worker.tasks.message import dispatch

        with patch("chase_core.domain.services.dispatcher.MessageDispatcher") as dispatcher_cls:
            dispatcher_cls.from_settings.return_value.dispatch.return_value = DispatchOutcome.SKIPPED

            result = dispatch.apply(args=[{"message_id": 42}]).get()

        assert result["outcome"] == "skipped"

    def test_unknown_message(self, mock_celery_app, mock_session_factory, mock_db_session):
        from chase_worker.tasks.message import dispatch

        with patch("chase_core.domain.services.dispatcher.MessageDispatcher") as dispatcher_cls:
            dispatcher_cls.from_settings.return_value.dispatch.side_effect = MessageNotFoundError(
                "Message 42 not found"
            )

            result = dispatch.apply(args=[{"message_id": 42}]).get()

        assert result == {"status": "error", "error": "Message 42 not found", "message_id": 42}
        mock_db_session.close.assert_called_once()


class TestFailStaleClaimsTask:
    """Tests for the maintenance.fail_stale_claims task."""

    def test_uses_configured_age_by_default(self, mock_celery_app, mock_session_factory):
        from chase_worker.tasks.maintenance import fail_stale_claims

        with patch("chase_core.domain.services.dispatcher.MessageDispatcher") as dispatcher_cls:
            dispatcher_cls.from_settings.return_value.fail_stale_claims.return_value = 2

            result = fail_stale_claims.apply().get()

        assert result == {"status": "ok", "failed": 2, "older_than_minutes": 30}
        dispatcher_cls.from_settings.return_value.fail_stale_claims.assert_called_once_with(
            timedelta(minutes=30)
        )

    def test_explicit_age(self, mock_celery_app, mock_session_factory, mock_db_session):
        from chase_worker.tasks.maintenance import fail_stale_claims

        with patch("chase_core.domain.services.dispatcher.MessageDispatcher") as dispatcher_cls:
            dispatcher_cls.from_settings.return_value.fail_stale_claims.return_value = 0

            result = fail_stale_claims.apply(kwargs={"older_than_minutes": 5}).get()

        assert result["older_than_minutes"] == 5
        mock_db_session.close.assert_called_once()
