"""Unit tests for the chat session window and template selection."""

from datetime import datetime, timedelta

import pytest

from chase_core.domain.errors import ClientNotFoundError
from chase_core.domain.services.chat_templates import (
    TemplateConfig,
    TemplateVariables,
    get_template_for_level,
    list_templates,
    select_payload,
)
from chase_core.domain.services.escalation import EscalationLevel
from chase_core.domain.services.session_window import (
    SessionWindowService,
    is_in_window,
    normalize_chat_address,
)
from tests.factories import create_client, create_practice


NOW = datetime(2026, 10, 19, 12, 0)


def make_variables(**overrides) -> TemplateVariables:
    values = {
        "client_first_name": "Jane",
        "practice_name": "Smith & Co",
        "tax_year": "2025/26",
        "portal_url": "https://chase.test/p/abc",
    }
    values.update(overrides)
    return TemplateVariables(**values)


class TestIsInWindow:
    """Tests for the 24 hour window check."""

    @pytest.mark.parametrize(
        "hours_ago,expected",
        [(0, True), (1, True), (23, True), (24, False), (25, False)],
    )
    def test_window_boundary(self, hours_ago, expected):
        assert is_in_window(NOW - timedelta(hours=hours_ago), NOW) is expected

    def test_never_messaged_is_outside(self):
        assert is_in_window(None, NOW) is False

    def test_just_under_24_hours(self):
        assert is_in_window(NOW - timedelta(hours=23, minutes=59, seconds=59), NOW) is True


class TestNormalizeChatAddress:
    def test_strips_channel_prefix(self):
        assert normalize_chat_address("whatsapp:+447700900001") == "+447700900001"

    def test_plain_number_unchanged(self):
        assert normalize_chat_address(" +447700900001 ") == "+447700900001"


class TestSessionWindowService:
    """Tests for SessionWindowService against the database."""

    def test_record_inbound_opens_window(self, db_session):
        practice = create_practice(db_session)
        client = create_client(db_session, practice)
        service = SessionWindowService(db_session)

        assert service.is_client_in_window(client.id, NOW) is False

        service.record_inbound(client.id, now=NOW - timedelta(hours=2))

        assert service.is_client_in_window(client.id, NOW) is True
        assert service.is_client_in_window(client.id, NOW + timedelta(hours=23)) is False

    def test_record_inbound_last_write_wins(self, db_session):
        practice = create_practice(db_session)
        client = create_client(db_session, practice)
        service = SessionWindowService(db_session)

        service.record_inbound(client.id, now=NOW - timedelta(hours=30))
        service.record_inbound(client.id, now=NOW - timedelta(hours=1))

        db_session.refresh(client)
        assert client.chat_last_inbound_at == NOW - timedelta(hours=1)

    def test_record_inbound_unknown_client(self, db_session):
        with pytest.raises(ClientNotFoundError):
            SessionWindowService(db_session).record_inbound(9999, now=NOW)

    def test_unknown_client_is_not_in_window(self, db_session):
        assert SessionWindowService(db_session).is_client_in_window(9999, NOW) is False

    def test_find_client_by_chat_address(self, db_session):
        practice = create_practice(db_session)
        by_phone = create_client(db_session, practice, phone="+447700900001")
        by_chat = create_client(
            db_session, practice, first_name="Ali", phone="+447700900002", chat_phone="+447700900099"
        )
        service = SessionWindowService(db_session)

        assert service.find_client_by_chat_address("whatsapp:+447700900001").id == by_phone.id
        assert service.find_client_by_chat_address("whatsapp:+447700900099").id == by_chat.id
        assert service.find_client_by_chat_address("whatsapp:+15550000000") is None
        assert service.find_client_by_chat_address("whatsapp:") is None

    def test_find_client_scoped_to_practice(self, db_session):
        first = create_practice(db_session)
        second = create_practice(db_session, name="Other Practice")
        create_client(db_session, first, phone="+447700900001")

        service = SessionWindowService(db_session)
        assert service.find_client_by_chat_address("+447700900001", practice_id=second.id) is None

    def test_find_practice_by_chat_number(self, db_session):
        practice = create_practice(db_session, chat_sender_number="+441110000007")
        service = SessionWindowService(db_session)

        assert service.find_practice_by_chat_number("whatsapp:+441110000007").id == practice.id
        assert service.find_practice_by_chat_number("whatsapp:+441119999999") is None
        assert service.find_practice_by_chat_number("") is None


class TestTemplates:
    """Tests for the approved chat templates."""

    def test_one_template_per_level(self):
        assert {t.level for t in list_templates()} == set(EscalationLevel)

    def test_escalate_template_name(self):
        assert get_template_for_level("escalate").name == "chase_final_v1"

    def test_firm_variables_use_defaults(self):
        variables = get_template_for_level(EscalationLevel.FIRM).build_variables(make_variables())
        assert variables == {
            "1": "Jane",
            "2": "Smith & Co",
            "3": "some",
            "4": "2025/26",
            "5": "soon",
            "6": "https://chase.test/p/abc",
        }

    def test_urgent_body_and_variables(self):
        template = get_template_for_level(EscalationLevel.URGENT)
        variables = make_variables(deadline_date="31/01/2027")

        assert template.render(variables).startswith("⚠️ Jane")
        assert template.build_variables(variables)["4"] == "31/01/2027"
        assert template.build_variables(make_variables())["4"] == "immediately"

    def test_escalate_uses_partner_name(self):
        template = get_template_for_level(EscalationLevel.ESCALATE)

        assert "a senior partner" in template.render(make_variables())
        assert template.build_variables(make_variables(partner_name="Ms Smith"))["2"] == "Ms Smith"

    def test_variables_round_trip_through_dict(self):
        variables = make_variables(remaining_docs=2, deadline_date="31/01/2027")
        assert TemplateVariables.from_dict(variables.to_dict()) == variables


class TestTemplateConfig:
    def test_practice_sid_overrides_default(self):
        config = TemplateConfig.for_practice(
            {"gentle": "HXpractice"},
            {"gentle": "HXdefault", "firm": "HXfirm"},
        )

        assert config.sid_for("gentle") == "HXpractice"
        assert config.sid_for(EscalationLevel.FIRM) == "HXfirm"
        assert config.sid_for("urgent") is None

    def test_empty_practice_sid_falls_back(self):
        config = TemplateConfig.for_practice({"reminder": ""}, {"reminder": "HXdefault"})
        assert config.sid_for("reminder") == "HXdefault"

    def test_no_configuration(self):
        config = TemplateConfig.for_practice(None, None)
        assert all(config.sid_for(level) is None for level in EscalationLevel)


class TestSelectPayload:
    """Tests for select_payload."""

    def test_in_window_sends_free_form(self):
        config = TemplateConfig.for_practice({"gentle": "HXgentle"})
        payload = select_payload("gentle", True, None, config, make_variables())

        assert payload.use_template is False
        assert payload.content_sid is None
        assert payload.body.startswith("Hi Jane, Smith & Co needs")

    def test_outside_window_uses_template(self):
        config = TemplateConfig.for_practice({"gentle": "HXgentle"})
        payload = select_payload("gentle", False, None, config, make_variables())

        assert payload.use_template is True
        assert payload.content_sid == "HXgentle"
        assert payload.content_variables["4"] == "https://chase.test/p/abc"
        assert payload.body is None

    def test_override_wins_over_config(self):
        config = TemplateConfig.for_practice({"firm": "HXfirm"})
        payload = select_payload("firm", False, "HXoverride", config, make_variables())
        assert payload.content_sid == "HXoverride"

    def test_missing_template_id_returns_body(self):
        payload = select_payload("urgent", False, None, TemplateConfig(), make_variables())

        assert payload.use_template is True
        assert payload.content_sid is None
        assert payload.body.startswith("⚠️")
