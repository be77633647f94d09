"""Integration tests for the operator API."""

from datetime import timedelta

import pytest

from chase_core.api.deps import DBSession, get_dispatcher
from chase_core.domain.models import ChaseMessage, utcnow
from chase_core.domain.services.dispatcher import MessageDispatcher
from tests.factories import (
    create_campaign,
    create_client,
    create_enrollment,
    create_message,
    create_practice,
)


OPS_HEADERS = {"X-Ops-Token": "test-ops-token"}


@pytest.fixture
def mocked_dispatcher(test_app, mock_email_sender, mock_chat_sender):
    """Route dispatch through mock senders instead of the real providers."""

    def override_get_dispatcher(db: DBSession) -> MessageDispatcher:
        return MessageDispatcher(db, email_sender=mock_email_sender, chat_sender=mock_chat_sender)

    test_app.dependency_overrides[get_dispatcher] = override_get_dispatcher
    return mock_email_sender


@pytest.fixture
def due_enrollment(db_session):
    practice = create_practice(db_session)
    client = create_client(db_session, practice)
    campaign = create_campaign(db_session, practice)
    return create_enrollment(db_session, campaign, client)


class TestOpsToken:
    """Tests for the shared operator token."""

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.post("/ops/chase/tick")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_token(self, client):
        response = await client.post("/ops/chase/tick", headers={"X-Ops-Token": "nope"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid ops token"

    @pytest.mark.asyncio
    async def test_disabled_when_unconfigured(self, client, test_app, test_settings):
        test_app.state.settings = test_settings.model_copy(update={"ops_api_token": None})

        response = await client.post("/ops/chase/tick", headers=OPS_HEADERS)

        assert response.status_code == 503


class TestChaseCycle:
    """Tests for the tick and dispatch endpoints."""

    @pytest.mark.asyncio
    async def test_tick(self, client, db_session, due_enrollment):
        enrollment_id = due_enrollment.id
        db_session.commit()

        response = await client.post("/ops/chase/tick", headers=OPS_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"processed": 1, "errors": 0, "skipped": 0}
        message = db_session.query(ChaseMessage).filter_by(enrollment_id=enrollment_id).one()
        assert message.status == "queued"

    @pytest.mark.asyncio
    async def test_dispatch(self, client, db_session, due_enrollment, mocked_dispatcher):
        create_message(db_session, due_enrollment)
        db_session.commit()

        response = await client.post("/ops/chase/dispatch", headers=OPS_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"sent": 1, "failed": 0, "opted_out": 0, "skipped": 0}
        mocked_dispatcher.send_email.assert_called_once()

    @pytest.mark.asyncio
    async def test_run_ticks_then_dispatches(
        self, client, db_session, due_enrollment, mocked_dispatcher
    ):
        db_session.commit()

        response = await client.post("/ops/chase/run", headers=OPS_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["chases"]["processed"] == 1
        assert body["dispatched"]["sent"] == 1
        assert db_session.query(ChaseMessage).one().status == "sent"

    @pytest.mark.asyncio
    async def test_stale_claims(self, client, db_session, due_enrollment, mocked_dispatcher):
        create_message(db_session, due_enrollment, dispatch_claimed_at=utcnow() - timedelta(hours=1))
        create_message(db_session, due_enrollment, chase_number=2, dispatch_claimed_at=utcnow())
        db_session.commit()

        response = await client.post("/ops/chase/stale-claims", headers=OPS_HEADERS)

        assert response.json() == {"failed": 1}


class TestDispatchOne:
    @pytest.mark.asyncio
    async def test_dispatch_single_message(
        self, client, db_session, due_enrollment, mocked_dispatcher
    ):
        message = create_message(db_session, due_enrollment)
        message_id = message.id
        db_session.commit()

        response = await client.post(f"/ops/messages/{message_id}/dispatch", headers=OPS_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"message_id": message_id, "outcome": "sent"}

    @pytest.mark.asyncio
    async def test_already_sent_is_skipped(
        self, client, db_session, due_enrollment, mocked_dispatcher
    ):
        message = create_message(db_session, due_enrollment, status="sent")
        message_id = message.id
        db_session.commit()

        response = await client.post(f"/ops/messages/{message_id}/dispatch", headers=OPS_HEADERS)

        assert response.json()["outcome"] == "skipped"
        mocked_dispatcher.send_email.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_message(self, client, mocked_dispatcher):
        response = await client.post("/ops/messages/9999/dispatch", headers=OPS_HEADERS)
        assert response.status_code == 404
