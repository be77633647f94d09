"""Unit tests for provider delivery status callbacks."""

from datetime import datetime

import pytest

from chase_core.domain.models import ChaseMessage
from chase_core.domain.services.delivery_status import (
    DeliveryStatusService,
    can_transition,
)
from tests.factories import (
    create_campaign,
    create_client,
    create_enrollment,
    create_message,
    create_practice,
)


NOW = datetime(2026, 10, 19, 12, 0)


@pytest.fixture
def enrollment(db_session):
    practice = create_practice(db_session)
    client = create_client(db_session, practice, chat_opt_in=True)
    campaign = create_campaign(db_session, practice)
    return create_enrollment(db_session, campaign, client)


def sent_message(db_session, enrollment, status="sent", external_id="SM100") -> ChaseMessage:
    return create_message(
        db_session, enrollment, channel="chat", status=status, external_message_id=external_id
    )


class TestCanTransition:
    @pytest.mark.parametrize(
        "current,target",
        [
            ("queued", "sent"),
            ("sent", "delivered"),
            ("sent", "read"),
            ("delivered", "read"),
            ("queued", "failed"),
        ],
    )
    def test_forward_moves_allowed(self, current, target):
        assert can_transition(current, target) is True

    @pytest.mark.parametrize(
        "current,target",
        [
            ("read", "delivered"),
            ("delivered", "sent"),
            ("sent", "sent"),
            ("sent", "failed"),
            ("failed", "delivered"),
            ("opted_out", "sent"),
        ],
    )
    def test_backward_and_terminal_moves_rejected(self, current, target):
        assert can_transition(current, target) is False


class TestDeliveryStatusService:
    """Tests for applying callbacks."""

    def test_delivered_then_read(self, db_session, enrollment):
        message = sent_message(db_session, enrollment)
        service = DeliveryStatusService(db_session)

        delivered = service.apply("SM100", "delivered", now=NOW)
        read = service.apply("SM100", "read", now=NOW)

        assert delivered.applied is True
        assert read.applied is True
        assert read.status == "read"
        db_session.refresh(message)
        assert message.status == "read"
        assert message.delivered_at == NOW
        assert message.read_at == NOW

    def test_out_of_order_callback_ignored(self, db_session, enrollment):
        message = sent_message(db_session, enrollment, status="read")

        result = DeliveryStatusService(db_session).apply("SM100", "delivered", now=NOW)

        assert result.applied is False
        assert result.reason == "not_monotonic"
        assert result.status == "read"
        db_session.refresh(message)
        assert message.status == "read"

    def test_failure_after_send_ignored(self, db_session, enrollment):
        message = sent_message(db_session, enrollment)

        result = DeliveryStatusService(db_session).apply("SM100", "undelivered", now=NOW)

        assert result.applied is False
        db_session.refresh(message)
        assert message.status == "sent"
        assert message.failure_reason is None

    def test_failure_of_queued_message(self, db_session, enrollment):
        message = sent_message(db_session, enrollment, status="queued")

        result = DeliveryStatusService(db_session).apply(
            "SM100", "failed", error_message="Recipient unreachable", now=NOW
        )

        assert result.applied is True
        db_session.refresh(message)
        assert message.status == "failed"
        assert message.failed_at == NOW
        assert message.failure_reason == "Recipient unreachable"

    def test_failure_reason_defaults_to_provider_status(self, db_session, enrollment):
        message = sent_message(db_session, enrollment, status="queued")

        DeliveryStatusService(db_session).apply("SM100", "undelivered", now=NOW)

        db_session.refresh(message)
        assert message.failure_reason == "Provider reported undelivered"

    def test_unknown_message(self, db_session):
        result = DeliveryStatusService(db_session).apply("SMnope", "delivered")
        assert result.applied is False
        assert result.reason == "unknown_message"

    @pytest.mark.parametrize("status", ["accepted", "queued", "sending", "", None])
    def test_unmapped_status(self, db_session, enrollment, status):
        sent_message(db_session, enrollment)

        result = DeliveryStatusService(db_session).apply("SM100", status)

        assert result.applied is False
        assert result.reason == "unmapped_status"

    def test_status_is_case_insensitive(self, db_session, enrollment):
        sent_message(db_session, enrollment)
        assert DeliveryStatusService(db_session).apply("SM100", "DELIVERED").applied is True
