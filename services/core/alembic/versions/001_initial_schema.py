"""Initial chase schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates all tables for the chase engine:
- practices
- clients (with per-channel consent and chat session state)
- campaigns
- enrollments
- magic_links
- chase_messages
- consent_records
- audit_log
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


CHANNELS = ("email", "sms", "chat")
LEVELS = ("gentle", "reminder", "firm", "urgent", "escalate")


def upgrade() -> None:
    # Practices table
    op.create_table(
        "practices",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("custom_email_domain", sa.String(255), nullable=True),
        sa.Column("from_email_name", sa.String(255), nullable=True),
        sa.Column("chat_sender_number", sa.String(32), nullable=True),
        sa.Column(
            "default_chase_channel",
            sa.Enum(*CHANNELS, name="practice_channel_enum"),
            nullable=False,
            server_default="chat",
        ),
        sa.Column("business_hours_start", sa.String(5), nullable=False, server_default="09:00"),
        sa.Column("business_hours_end", sa.String(5), nullable=False, server_default="17:30"),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="Europe/London"),
        sa.Column("chat_template_sids", sa.JSON, nullable=True),
        sa.Column("partner_name", sa.String(255), nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
    )

    # Clients table
    op.create_table(
        "clients",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("practice_id", sa.BigInteger, nullable=False),
        sa.Column("first_name", sa.String(128), nullable=False),
        sa.Column("last_name", sa.String(128), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("chat_phone", sa.String(32), nullable=True),
        sa.Column("preferred_channel", sa.String(16), nullable=True),
        sa.Column("chase_enabled", sa.Boolean, nullable=False, server_default="1"),
        sa.Column("email_consent", sa.Boolean, nullable=True),
        sa.Column("email_consent_at", sa.DateTime, nullable=True),
        sa.Column("sms_consent", sa.Boolean, nullable=True),
        sa.Column("sms_consent_at", sa.DateTime, nullable=True),
        sa.Column("chat_opt_in", sa.Boolean, nullable=True),
        sa.Column("chat_opt_in_at", sa.DateTime, nullable=True),
        sa.Column("chat_last_inbound_at", sa.DateTime, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
        sa.ForeignKeyConstraint(["practice_id"], ["practices.id"], name="fk_client_practice"),
    )
    op.create_index("idx_client_practice", "clients", ["practice_id"])
    op.create_index("idx_client_chat_phone", "clients", ["chat_phone"])
    op.create_index("idx_client_phone", "clients", ["phone"])

    # Campaigns table
    op.create_table(
        "campaigns",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("practice_id", sa.BigInteger, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("tax_year", sa.String(16), nullable=True),
        sa.Column("deadline_date", sa.Date, nullable=True),
        sa.Column("max_chases", sa.Integer, nullable=False, server_default="6"),
        sa.Column("chase_days_between", sa.Integer, nullable=False, server_default="7"),
        sa.Column("escalate_after_chase", sa.Integer, nullable=False, server_default="4"),
        sa.Column("skip_weekends", sa.Boolean, nullable=False, server_default="1"),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
        sa.ForeignKeyConstraint(["practice_id"], ["practices.id"], name="fk_campaign_practice"),
    )

    # Enrollments table
    op.create_table(
        "enrollments",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("practice_id", sa.BigInteger, nullable=False),
        sa.Column("campaign_id", sa.BigInteger, nullable=False),
        sa.Column("client_id", sa.BigInteger, nullable=False),
        sa.Column(
            "status",
            sa.Enum("active", "paused", "completed", "opted_out", name="enrollment_status_enum"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("chases_delivered", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "current_escalation_level",
            sa.Enum(*LEVELS, name="escalation_level_enum"),
            nullable=False,
            server_default="gentle",
        ),
        sa.Column("last_chased_at", sa.DateTime, nullable=True),
        sa.Column("next_chase_at", sa.DateTime, nullable=True),
        sa.Column("required_document_ids", sa.JSON, nullable=False),
        sa.Column("received_document_ids", sa.JSON, nullable=False),
        sa.Column("completion_percent", sa.Integer, nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("opted_out_at", sa.DateTime, nullable=True),
        sa.Column("opt_out_reason", sa.Text, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
        sa.ForeignKeyConstraint(["practice_id"], ["practices.id"], name="fk_enrollment_practice"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], name="fk_enrollment_campaign"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], name="fk_enrollment_client"),
        sa.UniqueConstraint("campaign_id", "client_id", name="uq_enrollment"),
    )
    op.create_index("idx_enrollment_due", "enrollments", ["status", "next_chase_at"])
    op.create_index("idx_enrollment_client", "enrollments", ["client_id", "status"])

    # Magic links table
    op.create_table(
        "magic_links",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("practice_id", sa.BigInteger, nullable=False),
        sa.Column("client_id", sa.BigInteger, nullable=False),
        sa.Column("enrollment_id", sa.BigInteger, nullable=True),
        sa.Column("token", sa.String(64), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("is_revoked", sa.Boolean, nullable=False, server_default="0"),
        sa.Column("usage_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_usages", sa.Integer, nullable=False, server_default="50"),
        sa.Column("last_used_at", sa.DateTime, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.ForeignKeyConstraint(["practice_id"], ["practices.id"], name="fk_link_practice"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], name="fk_link_client"),
        sa.ForeignKeyConstraint(["enrollment_id"], ["enrollments.id"], name="fk_link_enrollment"),
    )
    op.create_index(
        "idx_magic_link_owner", "magic_links", ["client_id", "enrollment_id", "is_revoked"]
    )

    # Chase messages table
    op.create_table(
        "chase_messages",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("practice_id", sa.BigInteger, nullable=False),
        sa.Column("enrollment_id", sa.BigInteger, nullable=False),
        sa.Column("client_id", sa.BigInteger, nullable=False),
        sa.Column("campaign_id", sa.BigInteger, nullable=False),
        sa.Column("magic_link_id", sa.BigInteger, nullable=True),
        sa.Column(
            "channel",
            sa.Enum(*CHANNELS, name="message_channel_enum"),
            nullable=False,
        ),
        sa.Column(
            "escalation_level",
            sa.Enum(*LEVELS, name="message_level_enum"),
            nullable=False,
        ),
        sa.Column("chase_number", sa.Integer, nullable=False),
        sa.Column("subject", sa.String(512), nullable=True),
        sa.Column("body_text", sa.Text, nullable=False),
        sa.Column("body_html", sa.Text, nullable=True),
        sa.Column("template_variables", sa.JSON, nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "queued", "sent", "delivered", "read", "failed", "opted_out",
                name="chase_message_status_enum",
            ),
            nullable=False,
            server_default="queued",
        ),
        sa.Column("dispatch_claimed_at", sa.DateTime, nullable=True),
        sa.Column("external_message_id", sa.String(128), nullable=True),
        sa.Column("failure_reason", sa.Text, nullable=True),
        sa.Column("cost_minor_units", sa.Integer, nullable=True),
        sa.Column("sent_at", sa.DateTime, nullable=True),
        sa.Column("delivered_at", sa.DateTime, nullable=True),
        sa.Column("read_at", sa.DateTime, nullable=True),
        sa.Column("failed_at", sa.DateTime, nullable=True),
        sa.Column("opted_out_at", sa.DateTime, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.ForeignKeyConstraint(["practice_id"], ["practices.id"], name="fk_chase_msg_practice"),
        sa.ForeignKeyConstraint(["enrollment_id"], ["enrollments.id"], name="fk_chase_msg_enrollment"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], name="fk_chase_msg_client"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], name="fk_chase_msg_campaign"),
        sa.ForeignKeyConstraint(["magic_link_id"], ["magic_links.id"], name="fk_chase_msg_link"),
        sa.UniqueConstraint("enrollment_id", "chase_number", name="uq_chase_attempt"),
    )
    op.create_index("idx_chase_msg_status", "chase_messages", ["status", "dispatch_claimed_at"])
    op.create_index("idx_chase_msg_client", "chase_messages", ["client_id", "channel", "status"])
    op.create_index("idx_chase_msg_external", "chase_messages", ["external_message_id"])

    # Consent records table
    op.create_table(
        "consent_records",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("practice_id", sa.BigInteger, nullable=False),
        sa.Column("client_id", sa.BigInteger, nullable=False),
        sa.Column(
            "channel",
            sa.Enum(*CHANNELS, name="consent_channel_enum"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("granted", "revoked", name="consent_status_enum"),
            nullable=False,
        ),
        sa.Column("method", sa.String(64), nullable=False),
        sa.Column(
            "legal_basis",
            sa.Enum("consent", "legitimate_interest", name="legal_basis_enum"),
            nullable=False,
        ),
        sa.Column("consented_at", sa.DateTime, nullable=True),
        sa.Column("revoked_at", sa.DateTime, nullable=True),
        sa.Column("actor_user_id", sa.String(64), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.ForeignKeyConstraint(["practice_id"], ["practices.id"], name="fk_consent_practice"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], name="fk_consent_client"),
    )
    op.create_index(
        "idx_consent_client_channel", "consent_records", ["client_id", "channel", "created_at"]
    )

    # Audit log table
    op.create_table(
        "audit_log",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("ts", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column(
            "actor",
            sa.Enum("user", "system", "client", name="audit_actor_enum"),
            nullable=False,
        ),
        sa.Column("action_type", sa.String(128), nullable=False),
        sa.Column("practice_id", sa.BigInteger, nullable=True),
        sa.Column("client_id", sa.BigInteger, nullable=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("entity_type", sa.String(64), nullable=True),
        sa.Column("entity_id", sa.BigInteger, nullable=True),
        sa.Column("changes_json", sa.JSON, nullable=True),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column(
            "result",
            sa.Enum("ok", "error", name="audit_result_enum"),
            nullable=False,
        ),
        sa.Column("error_detail", sa.Text, nullable=True),
    )
    op.create_index("idx_audit_ts", "audit_log", ["ts"])
    op.create_index("idx_audit_action", "audit_log", ["action_type"])
    op.create_index("idx_audit_practice", "audit_log", ["practice_id"])
    op.create_index("idx_audit_client", "audit_log", ["client_id"])


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table("audit_log")
    op.drop_table("consent_records")
    op.drop_table("chase_messages")
    op.drop_table("magic_links")
    op.drop_table("enrollments")
    op.drop_table("campaigns")
    op.drop_table("clients")
    op.drop_table("practices")
