"""Chat message templates per escalation level.

Outside the 24 hour session window the chat provider only accepts
pre-approved templates, referenced by a content id and filled with
numbered variables ("1", "2", ...). Inside the window free-form text is
allowed, so each template also carries a human-readable body.

Template ids are configured per practice, falling back to process-wide
defaults from settings. Both are passed in explicitly through
TemplateConfig; nothing here reads global state.

Usage:
    config = TemplateConfig.for_practice(
        practice.chat_template_sids, settings.default_chat_template_sids()
    )
    payload = select_payload(level, in_window, None, config, variables)
"""

from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Union

from chase_core.domain.services.escalation import EscalationLevel
from chase_core.observability.logging import get_logger

logger = get_logger(__name__)


DEFAULT_PARTNER_NAME = "a senior partner"


@dataclass(frozen=True)
class TemplateVariables:
    """Values substituted into a chat template."""

    client_first_name: str
    practice_name: str
    tax_year: str
    portal_url: str
    deadline_date: Optional[str] = None
    remaining_docs: Optional[int] = None
    partner_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "client_first_name": self.client_first_name,
            "practice_name": self.practice_name,
            "tax_year": self.tax_year,
            "portal_url": self.portal_url,
            "deadline_date": self.deadline_date,
            "remaining_docs": self.remaining_docs,
            "partner_name": self.partner_name,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "TemplateVariables":
        return cls(
            client_first_name=data["client_first_name"],
            practice_name=data["practice_name"],
            tax_year=data["tax_year"],
            portal_url=data["portal_url"],
            deadline_date=data.get("deadline_date"),
            remaining_docs=data.get("remaining_docs"),
            partner_name=data.get("partner_name"),
        )


@dataclass(frozen=True)
class ChatTemplate:
    """An approved chat template for one escalation level."""

    level: EscalationLevel
    name: str
    body: str
    build_variables: Callable[[TemplateVariables], dict[str, str]]

    def render(self, v: TemplateVariables) -> str:
        """Render the free-form body for use inside the session window."""
        return self.body.format(
            client_first_name=v.client_first_name,
            practice_name=v.practice_name,
            tax_year=v.tax_year,
            portal_url=v.portal_url,
            deadline_date=v.deadline_date or "soon",
            remaining_docs=v.remaining_docs if v.remaining_docs is not None else "some",
            partner_name=v.partner_name or DEFAULT_PARTNER_NAME,
        )


_TEMPLATES: dict[EscalationLevel, ChatTemplate] = {
    t.level: t
    for t in (
        ChatTemplate(
            level=EscalationLevel.GENTLE,
            name="chase_gentle_v1",
            body=(
                "Hi {client_first_name}, {practice_name} needs a few documents from you "
                "for {tax_year}. Upload easily here: {portal_url}"
            ),
            build_variables=lambda v: {
                "1": v.client_first_name,
                "2": v.practice_name,
                "3": v.tax_year,
                "4": v.portal_url,
            },
        ),
        ChatTemplate(
            level=EscalationLevel.REMINDER,
            name="chase_reminder_v1",
            body=(
                "Hi {client_first_name}, just a reminder from {practice_name}, we still "
                "need a few documents for {tax_year}. It only takes a minute: {portal_url}"
            ),
            build_variables=lambda v: {
                "1": v.client_first_name,
                "2": v.practice_name,
                "3": v.tax_year,
                "4": v.portal_url,
            },
        ),
        ChatTemplate(
            level=EscalationLevel.FIRM,
            name="chase_firm_v1",
            body=(
                "Hi {client_first_name}, {practice_name} still needs {remaining_docs} "
                "documents from you. The deadline for {tax_year} is {deadline_date}. "
                "Please upload now: {portal_url}"
            ),
            build_variables=lambda v: {
                "1": v.client_first_name,
                "2": v.practice_name,
                "3": str(v.remaining_docs) if v.remaining_docs is not None else "some",
                "4": v.tax_year,
                "5": v.deadline_date or "soon",
                "6": v.portal_url,
            },
        ),
        ChatTemplate(
            level=EscalationLevel.URGENT,
            name="chase_urgent_v1",
            body=(
                "⚠️ {client_first_name}, this is urgent. {practice_name} needs your "
                "documents for {tax_year} by {deadline_date} or you may face late-filing "
                "penalties. Upload now: {portal_url}"
            ),
            build_variables=lambda v: {
                "1": v.client_first_name,
                "2": v.practice_name,
                "3": v.tax_year,
                "4": v.deadline_date or "immediately",
                "5": v.portal_url,
            },
        ),
        ChatTemplate(
            level=EscalationLevel.ESCALATE,
            name="chase_final_v1",
            body=(
                "Hi {client_first_name}, this is {partner_name} from {practice_name}. "
                "We've tried to reach you several times about your {tax_year} documents. "
                "This is our final notice before we escalate. Please upload here: "
                "{portal_url} or call us to discuss."
            ),
            build_variables=lambda v: {
                "1": v.client_first_name,
                "2": v.partner_name or DEFAULT_PARTNER_NAME,
                "3": v.practice_name,
                "4": v.tax_year,
                "5": v.portal_url,
            },
        ),
    )
}


def get_template_for_level(level: Union[EscalationLevel, str]) -> ChatTemplate:
    """Get the chat template for an escalation level."""
    return _TEMPLATES[EscalationLevel(level)]


def list_templates() -> list[ChatTemplate]:
    return list(_TEMPLATES.values())


@dataclass(frozen=True)
class TemplateConfig:
    """Approved template content ids for one practice, keyed by level."""

    sids: dict[EscalationLevel, Optional[str]] = field(default_factory=dict)

    @classmethod
    def for_practice(
        cls,
        practice_sids: Optional[Mapping[str, Optional[str]]],
        defaults: Optional[Mapping[str, Optional[str]]] = None,
    ) -> "TemplateConfig":
        """Merge a practice's template ids over process-wide defaults."""
        merged: dict[EscalationLevel, Optional[str]] = {}
        for level in EscalationLevel:
            practice_sid = (practice_sids or {}).get(level.value)
            merged[level] = practice_sid or (defaults or {}).get(level.value)
        return cls(sids=merged)

    def sid_for(self, level: Union[EscalationLevel, str]) -> Optional[str]:
        return self.sids.get(EscalationLevel(level))


@dataclass(frozen=True)
class ChatPayload:
    """What to hand the chat sender.

    Free-form: ``use_template`` is False and ``body`` is set.
    Templated: ``use_template`` is True with ``content_sid`` and
    ``content_variables``; when no template id is configured only ``body``
    is set and the provider makes the final call.
    """

    use_template: bool
    body: Optional[str] = None
    content_sid: Optional[str] = None
    content_variables: Optional[dict[str, str]] = None


def select_payload(
    level: Union[EscalationLevel, str],
    in_window: bool,
    template_override: Optional[str],
    template_config: TemplateConfig,
    variables: TemplateVariables,
) -> ChatPayload:
    """Choose between a free-form body and an approved template."""
    template = get_template_for_level(level)

    if in_window:
        return ChatPayload(use_template=False, body=template.render(variables))

    content_sid = template_override or template_config.sid_for(template.level)
    if not content_sid:
        logger.warning(
            "No chat template id configured for level",
            level=template.level.value,
            template_name=template.name,
        )
        return ChatPayload(use_template=True, body=template.render(variables))

    return ChatPayload(
        use_template=True,
        content_sid=content_sid,
        content_variables=template.build_variables(variables),
    )


__all__ = [
    "DEFAULT_PARTNER_NAME",
    "TemplateVariables",
    "ChatTemplate",
    "TemplateConfig",
    "ChatPayload",
    "get_template_for_level",
    "list_templates",
    "select_payload",
]
