"""Escalation policy for document chasing.

Pure functions that decide how hard to push a client and where to reach
them:

- escalation_level: chases delivered so far -> severity level
- select_channel: which channel carries a given chase
- generate_message: deterministic subject/text/HTML for a level, rendered
  from the jinja2 templates in chase_core/templates/email

Usage:
    level = escalation_level(chases_delivered=3, escalate_after=4)
    channel = select_channel(3, client.preferred_channel, practice.default_chase_channel)
    rendered = generate_message(level, MessageContext(...))
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from jinja2 import Environment, FileSystemLoader, select_autoescape

TEMPLATE_DIR = Path(__file__).resolve().parents[2] / "templates" / "email"


# =============================================================================
# ENUMS
# =============================================================================


class EscalationLevel(str, Enum):
    """Severity ladder, in escalation order."""

    GENTLE = "gentle"
    REMINDER = "reminder"
    FIRM = "firm"
    URGENT = "urgent"
    ESCALATE = "escalate"

    @property
    def rank(self) -> int:
        return LEVEL_ORDER.index(self)


LEVEL_ORDER = (
    EscalationLevel.GENTLE,
    EscalationLevel.REMINDER,
    EscalationLevel.FIRM,
    EscalationLevel.URGENT,
    EscalationLevel.ESCALATE,
)


class Channel(str, Enum):
    """Outbound communication channels."""

    EMAIL = "email"
    SMS = "sms"
    CHAT = "chat"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Channel"]:
        """Resolve a stored channel name, or None if it is not a known channel.

        "whatsapp" is accepted as a legacy name for the chat channel.
        """
        if not value:
            return None
        normalized = value.strip().lower()
        if normalized == "whatsapp":
            return cls.CHAT
        try:
            return cls(normalized)
        except ValueError:
            return None


# Smallest allowed escalate_after; lower values would skip the firm level
MIN_ESCALATE_AFTER = 2


# =============================================================================
# LEVEL AND CHANNEL POLICY
# =============================================================================


def escalation_level(chases_delivered: int, escalate_after: int) -> EscalationLevel:
    """Map the number of chases already delivered to an escalation level.

    0 -> gentle, 1 -> reminder, 2..escalate_after-1 -> firm,
    escalate_after -> urgent, anything beyond -> escalate.

    escalate_after values below 2 are clamped to 2 and negative counts are
    treated as 0, so the function is total and non-decreasing in
    chases_delivered.
    """
    delivered = max(chases_delivered, 0)
    threshold = max(escalate_after, MIN_ESCALATE_AFTER)

    if delivered == 0:
        return EscalationLevel.GENTLE
    if delivered < 2:
        return EscalationLevel.REMINDER
    if delivered < threshold:
        return EscalationLevel.FIRM
    if delivered == threshold:
        return EscalationLevel.URGENT
    return EscalationLevel.ESCALATE


def max_level(a: Union[EscalationLevel, str], b: Union[EscalationLevel, str]) -> EscalationLevel:
    """Return the more severe of two levels."""
    first, second = EscalationLevel(a), EscalationLevel(b)
    return first if first.rank >= second.rank else second


def select_channel(
    chase_number: int,
    client_preferred: Optional[str],
    practice_default: Optional[str],
) -> Channel:
    """Pick the channel for a chase.

    The first attempt (chase_number == 0) always goes by email so the client
    receives the full context and deep link at least once. Later chases use
    the client's preference, then the practice default, then email.
    """
    if chase_number == 0:
        return Channel.EMAIL

    for candidate in (client_preferred, practice_default):
        channel = Channel.parse(candidate)
        if channel is not None:
            return channel

    return Channel.EMAIL


# =============================================================================
# MESSAGE CONTENT
# =============================================================================


@dataclass(frozen=True)
class MessageContext:
    """Inputs to message rendering."""

    client_first_name: str
    practice_name: str
    remaining_documents: int
    portal_url: str
    deadline_date: Optional[date] = None
    unsubscribe_url: Optional[str] = None


@dataclass(frozen=True)
class RenderedMessage:
    """Rendered chase content."""

    subject: str
    body_text: str
    body_html: str


def format_deadline(deadline: Optional[date]) -> Optional[str]:
    """Format a deadline the way UK clients read dates (dd/mm/YYYY)."""
    if deadline is None:
        return None
    return deadline.strftime("%d/%m/%Y")


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


_env = None


def _get_env() -> Environment:
    """Get or create the email template environment."""
    global _env
    if _env is None:
        _env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(["html"]),
        )
    return _env


def _render_text(level: EscalationLevel, ctx: MessageContext) -> tuple[str, str]:
    """Subject and plain-text body from the level's template."""
    template = _get_env().get_template(f"{level.value}.txt")
    module = template.make_module(
        {
            "name": ctx.client_first_name,
            "practice": ctx.practice_name,
            "portal_url": ctx.portal_url,
            "docs": _plural(ctx.remaining_documents, "document"),
            "items": _plural(ctx.remaining_documents, "item"),
            "deadline": format_deadline(ctx.deadline_date) or "coming up soon",
        }
    )
    return module.subject, str(module)


def _render_html(body_text: str, ctx: MessageContext) -> str:
    """HTML version of the body with a call to action and unsubscribe footer."""
    return _get_env().get_template("chase.html").render(
        paragraphs=[block.split("\n") for block in body_text.split("\n\n")],
        portal_url=ctx.portal_url,
        practice=ctx.practice_name,
        unsubscribe_url=ctx.unsubscribe_url,
    )


def generate_message(level: Union[EscalationLevel, str], context: MessageContext) -> RenderedMessage:
    """Render the chase content for a level.

    Output depends only on the arguments.
    """
    subject, body_text = _render_text(EscalationLevel(level), context)
    return RenderedMessage(
        subject=subject,
        body_text=body_text,
        body_html=_render_html(body_text, context),
    )


__all__ = [
    "EscalationLevel",
    "LEVEL_ORDER",
    "Channel",
    "MessageContext",
    "RenderedMessage",
    "escalation_level",
    "max_level",
    "select_channel",
    "format_deadline",
    "generate_message",
]
