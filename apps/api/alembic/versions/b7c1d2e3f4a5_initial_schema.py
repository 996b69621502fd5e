"""initial schema

Revision ID: b7c1d2e3f4a5
Revises:
Create Date: 2026-10-17 12:00:00.000000

This migration creates:
1. users, education and experience (portfolio owners and claim items)
2. verifications, verification_logs and verifier_invites
3. background_verifications with their chats and chat messages
4. magic_link_tokens and outbox_messages

"Only one active row" rules are partial unique indexes:
- ix_verifications_unique_pending_item: one PENDING cycle per item
- ix_verifier_invites_unique_pending: one PENDING invite per (verification, email)
- ix_bg_verifications_unique_active: one active check per (student, verifier)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "b7c1d2e3f4a5"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# Enum types store member names
ENUMS: dict[str, tuple[str, ...]] = {
    "user_role": ("STUDENT", "VERIFIER"),
    "item_type": ("EDUCATION", "EXPERIENCE", "GITHUB_PROJECT"),
    "verification_status": ("PENDING", "APPROVED", "REJECTED", "EXPIRED"),
    "verification_action": ("CREATED", "APPROVED", "REJECTED"),
    "invite_status": ("PENDING", "ACCEPTED", "REVOKED", "EXPIRED", "REJECTED"),
    "bg_verification_status": ("PENDING", "SUBMITTED"),
    "magic_link_type": ("BG_VERIFICATION", "EMAIL_VERIFICATION", "PASSWORD_RESET", "INVITE"),
    "notification_kind": (
        "VERIFIER_INVITE",
        "VERIFICATION_REQUEST",
        "VERIFICATION_DECISION",
        "BG_REQUEST_TO_STUDENT",
        "BG_REFEREE_NOTIFICATION",
        "BG_MAGIC_LINK",
    ),
    "outbox_status": ("PENDING", "SENT", "FAILED"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _base_columns() -> list[sa.Column]:
    """Primary key and timestamps (from BaseModel)."""
    return [
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def _verifiable_columns() -> list[sa.Column]:
    """Owner and verification result columns shared by claim items."""
    return [
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_by", sa.String(length=255), nullable=True),
        sa.Column("verifier_comment", sa.Text(), nullable=True),
        sa.Column("verifier_name", sa.String(length=200), nullable=True),
        sa.Column("verifier_organization", sa.String(length=200), nullable=True),
    ]


def upgrade() -> None:
    """Create all tables, enum types and indexes."""
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ---------------------------------------------------------------- users
    op.create_table(
        "users",
        *_base_columns(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("role", _enum("user_role"), nullable=False, server_default="STUDENT"),
        sa.Column("institute", sa.String(length=200), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("profile_setup_complete", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("external_contact", sa.Boolean(), nullable=False, server_default="false"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)
    op.create_index(op.f("ix_users_institute"), "users", ["institute"], unique=False)

    # ---------------------------------------------------------- claim items
    op.create_table(
        "education",
        *_base_columns(),
        *_verifiable_columns(),
        sa.Column("institution", sa.String(length=200), nullable=False),
        sa.Column("degree", sa.String(length=200), nullable=False),
        sa.Column("field_of_study", sa.String(length=200), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index(op.f("ix_education_user_id"), "education", ["user_id"], unique=False)

    op.create_table(
        "experience",
        *_base_columns(),
        *_verifiable_columns(),
        sa.Column("organization", sa.String(length=200), nullable=False),
        sa.Column("role", sa.String(length=200), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index(op.f("ix_experience_user_id"), "experience", ["user_id"], unique=False)

    # -------------------------------------------------------- verifications
    op.create_table(
        "verifications",
        *_base_columns(),
        sa.Column("item_id", _uuid(), nullable=False),
        sa.Column("item_type", _enum("item_type"), nullable=False),
        sa.Column("verifier_email", sa.String(length=255), nullable=False),
        sa.Column("verifier_name", sa.String(length=200), nullable=True),
        sa.Column("verifier_organization", sa.String(length=200), nullable=True),
        sa.Column("status", _enum("verification_status"), nullable=False, server_default="PENDING"),
        sa.Column("token", sa.String(length=64), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("decided_by", sa.String(length=255), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_verifications_item", "verifications", ["item_id", "item_type"], unique=False)
    op.create_index("ix_verifications_verifier_email", "verifications", ["verifier_email"], unique=False)
    op.create_index(
        "ix_verifications_unique_pending_item",
        "verifications",
        ["item_id", "item_type"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        "verification_logs",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("verification_id", _uuid(), nullable=False),
        sa.Column("action", _enum("verification_action"), nullable=False),
        sa.Column("actor_email", sa.String(length=255), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["verification_id"], ["verifications.id"], ondelete="CASCADE"),
    )
    op.create_index(
        op.f("ix_verification_logs_verification_id"), "verification_logs", ["verification_id"], unique=False
    )

    op.create_table(
        "verifier_invites",
        *_base_columns(),
        sa.Column("verification_id", _uuid(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("email_lower", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=True),
        sa.Column("organization", sa.String(length=200), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", _uuid(), nullable=True),
        sa.Column("status", _enum("invite_status"), nullable=False, server_default="PENDING"),
        sa.Column("status_reason", sa.String(length=255), nullable=True),
        sa.Column("token_jti", sa.String(length=64), nullable=False),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("action_token_jti", sa.String(length=64), nullable=True),
        sa.Column("action_token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_by_user_id", _uuid(), nullable=True),
        sa.Column("last_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notify_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("complaint_flag", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column(
            "audit",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["verification_id"], ["verifications.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["used_by_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index(
        op.f("ix_verifier_invites_verification_id"), "verifier_invites", ["verification_id"], unique=False
    )
    op.create_index(op.f("ix_verifier_invites_email_lower"), "verifier_invites", ["email_lower"], unique=False)
    op.create_index(
        "ix_verifier_invites_unique_pending",
        "verifier_invites",
        ["verification_id", "email_lower"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
    )

    # ------------------------------------------------ background verifications
    op.create_table(
        "background_verifications",
        *_base_columns(),
        sa.Column("student_id", _uuid(), nullable=False),
        sa.Column("student_name", sa.String(length=200), nullable=False),
        sa.Column("student_email", sa.String(length=255), nullable=False),
        sa.Column("student_institute", sa.String(length=200), nullable=True),
        sa.Column("verifier_id", _uuid(), nullable=False),
        sa.Column("verifier_name", sa.String(length=200), nullable=False),
        sa.Column("verifier_email", sa.String(length=255), nullable=False),
        sa.Column("verifier_institute", sa.String(length=200), nullable=False),
        sa.Column("referee_contacts_requested", sa.Integer(), nullable=False, server_default="3"),
        sa.Column(
            "referee_contacts",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", _enum("bg_verification_status"), nullable=False, server_default="PENDING"),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by", _uuid(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["verifier_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "referee_contacts_requested BETWEEN 1 AND 3",
            name="ck_bg_verifications_referees_requested",
        ),
    )
    op.create_index(
        op.f("ix_background_verifications_student_id"), "background_verifications", ["student_id"], unique=False
    )
    op.create_index(
        op.f("ix_background_verifications_verifier_id"), "background_verifications", ["verifier_id"], unique=False
    )
    op.create_index(
        op.f("ix_background_verifications_expires_at"), "background_verifications", ["expires_at"], unique=False
    )
    op.create_index(
        "ix_bg_verifications_unique_active",
        "background_verifications",
        ["student_id", "verifier_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('PENDING', 'SUBMITTED') AND completed = false"),
    )
    # Referee lookups for "shared with me"
    op.create_index(
        "ix_bg_verifications_referee_contacts",
        "background_verifications",
        ["referee_contacts"],
        unique=False,
        postgresql_using="gin",
    )

    op.create_table(
        "background_verification_chats",
        *_base_columns(),
        sa.Column("bg_verification_id", _uuid(), nullable=False),
        sa.Column("requesting_verifier_id", _uuid(), nullable=False),
        sa.Column("requesting_verifier_email", sa.String(length=255), nullable=False),
        sa.Column("shared_contact_id", _uuid(), nullable=False),
        sa.Column("shared_contact_email", sa.String(length=255), nullable=False),
        sa.Column("student_id", _uuid(), nullable=False),
        sa.Column("student_email", sa.String(length=255), nullable=False),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["bg_verification_id"], ["background_verifications.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["requesting_verifier_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shared_contact_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "bg_verification_id",
            "requesting_verifier_id",
            "shared_contact_id",
            name="uq_bg_chats_participants",
        ),
    )
    for column in ("bg_verification_id", "requesting_verifier_id", "shared_contact_id"):
        op.create_index(
            op.f(f"ix_background_verification_chats_{column}"),
            "background_verification_chats",
            [column],
            unique=False,
        )

    op.create_table(
        "background_verification_chat_messages",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("chat_id", _uuid(), nullable=False),
        sa.Column("sender_id", _uuid(), nullable=False),
        sa.Column("sender_email", sa.String(length=255), nullable=False),
        sa.Column("sender_name", sa.String(length=200), nullable=False),
        sa.Column("sender_role", sa.String(length=20), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["chat_id"], ["background_verification_chats.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "char_length(message) BETWEEN 1 AND 2000",
            name="ck_bg_chat_messages_length",
        ),
    )
    op.create_index(
        "ix_bg_chat_messages_chat_created",
        "background_verification_chat_messages",
        ["chat_id", "created_at"],
        unique=False,
    )

    # ----------------------------------------------------- magic links, outbox
    op.create_table(
        "magic_link_tokens",
        *_base_columns(),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("type", _enum("magic_link_type"), nullable=False),
        sa.Column(
            "context",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("used", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token_hash", name="uq_magic_link_tokens_token_hash"),
    )
    op.create_index(op.f("ix_magic_link_tokens_email"), "magic_link_tokens", ["email"], unique=False)
    op.create_index(op.f("ix_magic_link_tokens_expires_at"), "magic_link_tokens", ["expires_at"], unique=False)

    op.create_table(
        "outbox_messages",
        *_base_columns(),
        sa.Column("kind", _enum("notification_kind"), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", _enum("outbox_status"), nullable=False, server_default="PENDING"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("recipient", sa.String(length=255), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_outbox_messages_status_created", "outbox_messages", ["status", "created_at"], unique=False
    )


def downgrade() -> None:
    """Drop everything created by upgrade()."""
    op.drop_table("outbox_messages")
    op.drop_table("magic_link_tokens")
    op.drop_table("background_verification_chat_messages")
    op.drop_table("background_verification_chats")
    op.drop_table("background_verifications")
    op.drop_table("verifier_invites")
    op.drop_table("verification_logs")
    op.drop_table("verifications")
    op.drop_table("experience")
    op.drop_table("education")
    op.drop_table("users")

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
