"""create profiles and sms messaging/compliance tables

Revision ID: 3f1a9c2d7b64
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2d7b64"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Profiles (customer directory)
    op.create_table(
        "profiles",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column(
            "role",
            sa.Enum("customer", "admin", name="profile_role"),
            server_default="customer",
            nullable=False,
        ),
        sa.Column("sms_consent", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("sms_consent_method", sa.String(length=50), nullable=True),
        sa.Column("sms_consent_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_profiles_phone", "profiles", ["phone"])
    op.create_index("ix_profiles_sms_consent", "profiles", ["sms_consent"])

    # Opt-out ledger
    op.create_table(
        "sms_opt_outs",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("phone_number", sa.String(length=20), nullable=False),
        sa.Column("method", sa.String(length=50), server_default="STOP keyword", nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("opted_out_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("phone_number"),
    )

    # Web opt-ins from non-customers
    op.create_table(
        "sms_consent_records",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("phone_number", sa.String(length=20), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("consent_given", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("consent_method", sa.String(length=50), nullable=False),
        sa.Column("consent_date", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sms_consent_records_phone_number", "sms_consent_records", ["phone_number"])

    # 1:1 messaging allow-list
    op.create_table(
        "authorized_phone_numbers",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("phone_number", sa.String(length=20), nullable=False),
        sa.Column("compliance_verified", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("verification_date", sa.DateTime(), nullable=True),
        sa.Column("verification_notes", sa.Text(), nullable=True),
        sa.Column("added_by", sa.UUID(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["added_by"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_authorized_phone_numbers_active_phone",
        "authorized_phone_numbers",
        ["phone_number"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    # SMS Conversations
    op.create_table(
        "sms_conversations",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("customer_phone", sa.String(length=20), nullable=False),
        sa.Column("customer_id", sa.UUID(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("active", "archived", name="sms_conversation_status"),
            server_default="active",
            nullable=False,
        ),
        sa.Column("unread_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_message_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("customer_phone"),
    )
    op.create_index("ix_sms_conversations_customer_id", "sms_conversations", ["customer_id"])
    op.create_index("ix_sms_conversations_status", "sms_conversations", ["status"])
    op.create_index("ix_sms_conversations_last_message_at", "sms_conversations", ["last_message_at"])

    # SMS Messages
    op.create_table(
        "sms_messages",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("conversation_id", sa.UUID(), nullable=False),
        sa.Column(
            "direction",
            sa.Enum("inbound", "outbound", name="sms_direction"),
            nullable=False,
        ),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("from_number", sa.String(length=20), nullable=False),
        sa.Column("to_number", sa.String(length=20), nullable=False),
        sa.Column("twilio_sid", sa.String(length=50), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "queued", "sent", "delivered", "failed", "undelivered", "received",
                name="sms_message_status",
            ),
            server_default="queued",
            nullable=False,
        ),
        sa.Column("error_code", sa.String(length=20), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_by", sa.UUID(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("status_checked_at", sa.DateTime(), nullable=True),
        sa.Column("status_check_count", sa.Integer(), server_default="0", nullable=False),
        sa.ForeignKeyConstraint(["conversation_id"], ["sms_conversations.id"]),
        sa.ForeignKeyConstraint(["sent_by"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sms_messages_conversation_id", "sms_messages", ["conversation_id"])
    op.create_index("ix_sms_messages_twilio_sid", "sms_messages", ["twilio_sid"])
    op.create_index("ix_sms_messages_direction", "sms_messages", ["direction"])
    op.create_index("ix_sms_messages_sent_at", "sms_messages", ["sent_at"])

    # Campaign audit trail
    op.create_table(
        "sms_message_audit",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=True),
        sa.Column("phone_number", sa.String(length=20), nullable=False),
        sa.Column("message_body", sa.Text(), nullable=False),
        sa.Column("template_used", sa.Text(), nullable=True),
        sa.Column("twilio_sid", sa.String(length=50), nullable=True),
        sa.Column("twilio_status", sa.String(length=20), nullable=False),
        sa.Column("error_code", sa.String(length=20), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_by", sa.UUID(), nullable=True),
        sa.Column("batch_id", sa.UUID(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("status_checked_at", sa.DateTime(), nullable=True),
        sa.Column("status_check_count", sa.Integer(), server_default="0", nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["sent_by"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sms_message_audit_batch_id", "sms_message_audit", ["batch_id"])
    op.create_index("ix_sms_message_audit_user_id", "sms_message_audit", ["user_id"])
    op.create_index("ix_sms_message_audit_twilio_sid", "sms_message_audit", ["twilio_sid"])
    op.create_index("ix_sms_message_audit_sent_at", "sms_message_audit", ["sent_at"])


def downgrade() -> None:
    op.drop_index("ix_sms_message_audit_sent_at", table_name="sms_message_audit")
    op.drop_index("ix_sms_message_audit_twilio_sid", table_name="sms_message_audit")
    op.drop_index("ix_sms_message_audit_user_id", table_name="sms_message_audit")
    op.drop_index("ix_sms_message_audit_batch_id", table_name="sms_message_audit")
    op.drop_table("sms_message_audit")

    op.drop_index("ix_sms_messages_sent_at", table_name="sms_messages")
    op.drop_index("ix_sms_messages_direction", table_name="sms_messages")
    op.drop_index("ix_sms_messages_twilio_sid", table_name="sms_messages")
    op.drop_index("ix_sms_messages_conversation_id", table_name="sms_messages")
    op.drop_table("sms_messages")

    op.drop_index("ix_sms_conversations_last_message_at", table_name="sms_conversations")
    op.drop_index("ix_sms_conversations_status", table_name="sms_conversations")
    op.drop_index("ix_sms_conversations_customer_id", table_name="sms_conversations")
    op.drop_table("sms_conversations")

    op.drop_index("uq_authorized_phone_numbers_active_phone", table_name="authorized_phone_numbers")
    op.drop_table("authorized_phone_numbers")

    op.drop_index("ix_sms_consent_records_phone_number", table_name="sms_consent_records")
    op.drop_table("sms_consent_records")

    op.drop_table("sms_opt_outs")

    op.drop_index("ix_profiles_sms_consent", table_name="profiles")
    op.drop_index("ix_profiles_phone", table_name="profiles")
    op.drop_table("profiles")

    op.execute("DROP TYPE IF EXISTS sms_conversation_status")
    op.execute("DROP TYPE IF EXISTS sms_direction")
    op.execute("DROP TYPE IF EXISTS sms_message_status")
    op.execute("DROP TYPE IF EXISTS profile_role")
