"""Domain models for the chase engine.

This module defines the SQLAlchemy ORM models for practices, clients,
campaigns, enrollments, outbound chase messages, consent history,
deep links and the audit log.

All timestamps are stored as naive UTC.
"""

from datetime import date, datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Current time as naive UTC, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# =============================================================================
# ENUMS
# =============================================================================


class EnrollmentStatus(str):
    """Enrollment status values."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    OPTED_OUT = "opted_out"


class MessageStatus(str):
    """Outbound chase message status values."""

    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"
    OPTED_OUT = "opted_out"


class ConsentStatus(str):
    """Consent record status values."""

    GRANTED = "granted"
    REVOKED = "revoked"


class LegalBasis(str):
    """Legal basis recorded alongside a consent change."""

    CONSENT = "consent"
    LEGITIMATE_INTEREST = "legitimate_interest"


class AuditActor(str):
    """Audit actor values."""

    USER = "user"
    SYSTEM = "system"
    CLIENT = "client"


class AuditResult(str):
    """Audit result values."""

    OK = "ok"
    ERROR = "error"


CHANNEL_VALUES = ("email", "sms", "chat")
LEVEL_VALUES = ("gentle", "reminder", "firm", "urgent", "escalate")


# =============================================================================
# TENANCY
# =============================================================================


class Practice(Base):
    """A practice that chases its clients for documents."""

    __tablename__ = "practices"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Reply-to address for chase emails
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    custom_email_domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    from_email_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Chat sender identity (E.164 number registered with the chat provider)
    chat_sender_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    default_chase_channel: Mapped[str] = mapped_column(
        Enum(*CHANNEL_VALUES, name="practice_channel_enum"),
        nullable=False,
        default="chat",
    )
    business_hours_start: Mapped[str] = mapped_column(String(5), nullable=False, default="09:00")
    business_hours_end: Mapped[str] = mapped_column(String(5), nullable=False, default="17:30")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="Europe/London")

    # Per-level approved chat template ids, e.g. {"gentle": "HX..."}
    chat_template_sids: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    # Signs the final-notice chat template
    partner_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    # Relationships
    clients: Mapped[list["Client"]] = relationship(back_populates="practice")
    campaigns: Mapped[list["Campaign"]] = relationship(back_populates="practice")


class Client(Base):
    """A practice's client, with per-channel consent and chat session state."""

    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    practice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("practices.id"), nullable=False
    )

    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    chat_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    preferred_channel: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    # Master switch; no channel may be used while this is off
    chase_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # NULL means "never recorded": email defaults to granted, sms/chat to revoked
    email_consent: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    email_consent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    sms_consent: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    sms_consent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    chat_opt_in: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    chat_opt_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Session window state for the chat channel
    chat_last_inbound_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_client_practice", "practice_id"),
        Index("idx_client_chat_phone", "chat_phone"),
        Index("idx_client_phone", "phone"),
    )

    # Relationships
    practice: Mapped["Practice"] = relationship(back_populates="clients")
    enrollments: Mapped[list["Enrollment"]] = relationship(back_populates="client")


# =============================================================================
# CHASING
# =============================================================================


class Campaign(Base):
    """A document-chase campaign (usually one per tax year)."""

    __tablename__ = "campaigns"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    practice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("practices.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    tax_year: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    deadline_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    max_chases: Mapped[int] = mapped_column(Integer, nullable=False, default=6)
    chase_days_between: Mapped[int] = mapped_column(Integer, nullable=False, default=7)
    escalate_after_chase: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    skip_weekends: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    # Relationships
    practice: Mapped["Practice"] = relationship(back_populates="campaigns")
    enrollments: Mapped[list["Enrollment"]] = relationship(back_populates="campaign")


class Enrollment(Base):
    """A client's participation in one campaign's chase cycle."""

    __tablename__ = "enrollments"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    practice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("practices.id"), nullable=False
    )
    campaign_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("campaigns.id"), nullable=False
    )
    client_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("clients.id"), nullable=False
    )

    status: Mapped[str] = mapped_column(
        Enum("active", "paused", "completed", "opted_out", name="enrollment_status_enum"),
        nullable=False,
        default="active",
    )
    chases_delivered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_escalation_level: Mapped[str] = mapped_column(
        Enum(*LEVEL_VALUES, name="escalation_level_enum"),
        nullable=False,
        default="gentle",
    )
    last_chased_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # NULL means no further chase is scheduled
    next_chase_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Stored as sorted JSON lists; use the set properties below
    required_document_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    received_document_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    completion_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    opted_out_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    opt_out_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("campaign_id", "client_id", name="uq_enrollment"),
        Index("idx_enrollment_due", "status", "next_chase_at"),
        Index("idx_enrollment_client", "client_id", "status"),
    )

    # Relationships
    campaign: Mapped["Campaign"] = relationship(back_populates="enrollments")
    client: Mapped["Client"] = relationship(back_populates="enrollments")
    messages: Mapped[list["ChaseMessage"]] = relationship(back_populates="enrollment")

    @property
    def required_documents(self) -> frozenset[str]:
        return frozenset(str(d) for d in (self.required_document_ids or []))

    @required_documents.setter
    def required_documents(self, value: Iterable[str]) -> None:
        self.required_document_ids = sorted({str(d) for d in value})

    @property
    def received_documents(self) -> frozenset[str]:
        return frozenset(str(d) for d in (self.received_document_ids or []))

    @received_documents.setter
    def received_documents(self, value: Iterable[str]) -> None:
        self.received_document_ids = sorted({str(d) for d in value})

    @property
    def outstanding_documents(self) -> frozenset[str]:
        """Required documents not yet received."""
        return self.required_documents - self.received_documents


class ChaseMessage(Base):
    """One outbound chase attempt on one channel at one escalation level."""

    __tablename__ = "chase_messages"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    practice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("practices.id"), nullable=False
    )
    enrollment_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("enrollments.id"), nullable=False
    )
    client_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("clients.id"), nullable=False
    )
    campaign_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("campaigns.id"), nullable=False
    )
    magic_link_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("magic_links.id"), nullable=True
    )

    channel: Mapped[str] = mapped_column(
        Enum(*CHANNEL_VALUES, name="message_channel_enum"), nullable=False
    )
    escalation_level: Mapped[str] = mapped_column(
        Enum(*LEVEL_VALUES, name="message_level_enum"), nullable=False
    )
    # 1-based, monotonic per enrollment
    chase_number: Mapped[int] = mapped_column(Integer, nullable=False)

    subject: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    body_text: Mapped[str] = mapped_column(Text, nullable=False)
    body_html: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Chat template variables, rendered at dispatch time if the window is closed
    template_variables: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(
        Enum(
            "queued", "sent", "delivered", "read", "failed", "opted_out",
            name="chase_message_status_enum",
        ),
        nullable=False,
        default="queued",
    )
    # Set by the dispatch claim; a queued row with a claim is in flight
    dispatch_claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    external_message_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cost_minor_units: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    opted_out_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("enrollment_id", "chase_number", name="uq_chase_attempt"),
        Index("idx_chase_msg_status", "status", "dispatch_claimed_at"),
        Index("idx_chase_msg_client", "client_id", "channel", "status"),
        Index("idx_chase_msg_external", "external_message_id"),
    )

    # Relationships
    enrollment: Mapped["Enrollment"] = relationship(back_populates="messages")
    client: Mapped["Client"] = relationship()
    practice: Mapped["Practice"] = relationship()


class MagicLink(Base):
    """Deep-link token granting a client access to their upload page."""

    __tablename__ = "magic_links"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    practice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("practices.id"), nullable=False
    )
    client_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("clients.id"), nullable=False
    )
    enrollment_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("enrollments.id"), nullable=True
    )

    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_usages: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_magic_link_owner", "client_id", "enrollment_id", "is_revoked"),
    )


# =============================================================================
# COMPLIANCE
# =============================================================================


class ConsentRecord(Base):
    """Append-only consent history per client and channel."""

    __tablename__ = "consent_records"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    practice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("practices.id"), nullable=False
    )
    client_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("clients.id"), nullable=False
    )
    channel: Mapped[str] = mapped_column(
        Enum(*CHANNEL_VALUES, name="consent_channel_enum"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        Enum("granted", "revoked", name="consent_status_enum"), nullable=False
    )
    method: Mapped[str] = mapped_column(String(64), nullable=False)
    legal_basis: Mapped[str] = mapped_column(
        Enum("consent", "legitimate_interest", name="legal_basis_enum"), nullable=False
    )

    consented_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    actor_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_consent_client_channel", "client_id", "channel", "created_at"),
    )


class AuditLog(Base):
    """Append-only audit log."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    ts: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    actor: Mapped[str] = mapped_column(
        Enum("user", "system", "client", name="audit_actor_enum"), nullable=False
    )
    action_type: Mapped[str] = mapped_column(String(128), nullable=False)

    practice_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    client_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    entity_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    changes_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    metadata_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    result: Mapped[str] = mapped_column(
        Enum("ok", "error", name="audit_result_enum"), nullable=False
    )
    error_detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_audit_ts", "ts"),
        Index("idx_audit_action", "action_type"),
        Index("idx_audit_practice", "practice_id"),
        Index("idx_audit_client", "client_id"),
    )


__all__ = [
    "Base",
    "utcnow",
    "as_naive_utc",
    "EnrollmentStatus",
    "MessageStatus",
    "ConsentStatus",
    "LegalBasis",
    "AuditActor",
    "AuditResult",
    "CHANNEL_VALUES",
    "LEVEL_VALUES",
    "Practice",
    "Client",
    "Campaign",
    "Enrollment",
    "ChaseMessage",
    "MagicLink",
    "ConsentRecord",
    "AuditLog",
]
