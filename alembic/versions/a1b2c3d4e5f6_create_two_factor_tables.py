"""Create second-factor tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-17 12:00:00.000000

This migration adds:
- users table (owned by the account layer; created here if missing)
- two_factor_profiles with the factor payload CHECK constraint
- two_factor_backup_codes, two_factor_trusted_devices, two_factor_email_codes
- two_factor_attempt_ledgers for the shared lockout counter
- two_factor_activity for the user-visible activity log
"""

from collections.abc import Sequence
from typing import Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a1b2c3d4e5f6"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    if not sa.inspect(bind).has_table("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("username", sa.String(), nullable=True),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("hashed_password", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("ix_users_id", "users", ["id"])
        op.create_index("ix_users_username", "users", ["username"])

    op.create_table(
        "two_factor_profiles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("method", sa.Enum("authenticator", "email", name="twofactormethod"), nullable=True),
        sa.Column("shared_secret", sa.String(64), nullable=True),
        sa.Column("email_address", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("enabled_at", sa.DateTime(), nullable=True),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "(enabled AND method = 'authenticator' AND shared_secret IS NOT NULL AND email_address IS NULL)"
            " OR (enabled AND method = 'email' AND email_address IS NOT NULL AND shared_secret IS NULL)"
            " OR (NOT enabled AND method IS NULL AND shared_secret IS NULL AND email_address IS NULL)",
            name="ck_two_factor_profiles_factor_payload",
        ),
    )
    op.create_index("ix_two_factor_profiles_id", "two_factor_profiles", ["id"])
    op.create_index("ix_two_factor_profiles_user_id", "two_factor_profiles", ["user_id"], unique=True)

    op.create_table(
        "two_factor_backup_codes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("hint", sa.String(8), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "code_hash", name="uq_backup_code_user_hash"),
    )
    op.create_index("ix_two_factor_backup_codes_id", "two_factor_backup_codes", ["id"])
    op.create_index("ix_two_factor_backup_codes_user_id", "two_factor_backup_codes", ["user_id"])

    op.create_table(
        "two_factor_trusted_devices",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("fingerprint", sa.String(128), nullable=False),
        sa.Column("device_name", sa.String(255), nullable=True),
        sa.Column("browser", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "fingerprint", name="uq_trusted_device_user_fingerprint"),
    )
    op.create_index("ix_two_factor_trusted_devices_id", "two_factor_trusted_devices", ["id"])
    op.create_index("ix_two_factor_trusted_devices_user_id", "two_factor_trusted_devices", ["user_id"])
    op.create_index("idx_trusted_device_user_expires", "two_factor_trusted_devices", ["user_id", "expires_at"])

    op.create_table(
        "two_factor_email_codes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column(
            "purpose",
            sa.Enum("enrollment", "login", "management", name="emailcodepurpose"),
            nullable=False,
        ),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_two_factor_email_codes_id", "two_factor_email_codes", ["id"])
    op.create_index("ix_two_factor_email_codes_user_id", "two_factor_email_codes", ["user_id"])
    op.create_index("idx_email_code_user_created", "two_factor_email_codes", ["user_id", "created_at"])

    op.create_table(
        "two_factor_attempt_ledgers",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_until", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "two_factor_activity",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_two_factor_activity_id", "two_factor_activity", ["id"])
    op.create_index("idx_two_factor_activity_user_created", "two_factor_activity", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_two_factor_activity_user_created", table_name="two_factor_activity")
    op.drop_index("ix_two_factor_activity_id", table_name="two_factor_activity")
    op.drop_table("two_factor_activity")

    op.drop_table("two_factor_attempt_ledgers")

    op.drop_index("idx_email_code_user_created", table_name="two_factor_email_codes")
    op.drop_index("ix_two_factor_email_codes_user_id", table_name="two_factor_email_codes")
    op.drop_index("ix_two_factor_email_codes_id", table_name="two_factor_email_codes")
    op.drop_table("two_factor_email_codes")

    op.drop_index("idx_trusted_device_user_expires", table_name="two_factor_trusted_devices")
    op.drop_index("ix_two_factor_trusted_devices_user_id", table_name="two_factor_trusted_devices")
    op.drop_index("ix_two_factor_trusted_devices_id", table_name="two_factor_trusted_devices")
    op.drop_table("two_factor_trusted_devices")

    op.drop_index("ix_two_factor_backup_codes_user_id", table_name="two_factor_backup_codes")
    op.drop_index("ix_two_factor_backup_codes_id", table_name="two_factor_backup_codes")
    op.drop_table("two_factor_backup_codes")

    op.drop_index("ix_two_factor_profiles_user_id", table_name="two_factor_profiles")
    op.drop_index("ix_two_factor_profiles_id", table_name="two_factor_profiles")
    op.drop_table("two_factor_profiles")

    sa.Enum(name="emailcodepurpose").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="twofactormethod").drop(op.get_bind(), checkfirst=True)
