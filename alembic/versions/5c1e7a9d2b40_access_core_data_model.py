"""access_core_data_model

Revision ID: 5c1e7a9d2b40
Revises:
Create Date: 2026-10-18 09:30:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "5c1e7a9d2b40"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("role", sa.String(16), nullable=False, server_default=sa.text("'USER'")),
        sa.Column("status", sa.String(16), nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("role IN ('USER','ARTIST','ADMIN')", name="ck_users_role"),
        sa.CheckConstraint("status IN ('ACTIVE','BLOCKED','DELETED')", name="ck_users_status"),
    )
    op.create_index("idx_users_role", "users", ["role"])

    op.create_table(
        "user_wallets",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("address", sa.String(64), nullable=False),
        sa.Column("chain", sa.String(16), nullable=False, server_default=sa.text("'SOLANA'")),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("chain IN ('SOLANA')", name="ck_user_wallets_chain"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.UniqueConstraint("user_id", "address", name="uq_user_wallets_user_address"),
    )
    op.create_index("idx_user_wallets_address", "user_wallets", ["address"])

    op.create_table(
        "gated_resources",
        sa.Column("resource_kind", sa.String(32), nullable=False),
        sa.Column("resource_id", sa.String(64), nullable=False),
        sa.Column("owner_user_id", sa.BigInteger(), nullable=False),
        sa.Column("access_control", sa.String(16), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("content_type", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "resource_kind IN ('EXCLUSIVE_CONTENT','EVENT','COLLECTION')",
            name="ck_gated_resources_kind",
        ),
        sa.CheckConstraint(
            "access_control IN ('PUBLIC','NFT_GATED','TICKET_GATED','HYBRID')",
            name="ck_gated_resources_access_control",
        ),
        sa.ForeignKeyConstraint(["owner_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("resource_kind", "resource_id"),
    )
    op.create_index("idx_gated_resources_owner", "gated_resources", ["owner_user_id"])

    op.create_table(
        "ownership_records",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("token_address", sa.String(64), nullable=False),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("owned", sa.Boolean(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=True),
        sa.Column("verification_source", sa.String(16), nullable=False),
        sa.Column(
            "token_metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("last_verified_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "verification_source IN ('LEDGER','INDEXER','SYNC','MANUAL')",
            name="ck_ownership_records_source",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.UniqueConstraint("token_address", "wallet_address", name="uq_ownership_records_token_wallet"),
    )
    op.create_index("idx_ownership_records_wallet", "ownership_records", ["wallet_address"])
    op.create_index("idx_ownership_records_user_owned", "ownership_records", ["user_id", "owned"])

    op.create_table(
        "access_rules",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("resource_id", sa.String(64), nullable=False),
        sa.Column("resource_kind", sa.String(32), nullable=False),
        sa.Column("token_address", sa.String(64), nullable=False),
        sa.Column("access_level", sa.String(16), nullable=False),
        sa.Column("is_temporary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "restrictions",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_by_user_id", sa.BigInteger(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "access_level IN ('VIEW','STREAM','DOWNLOAD','EDIT','ADMIN')",
            name="ck_access_rules_level",
        ),
        sa.CheckConstraint(
            "resource_kind IN ('EXCLUSIVE_CONTENT','EVENT','COLLECTION')",
            name="ck_access_rules_resource_kind",
        ),
        sa.CheckConstraint(
            "is_temporary = false OR expires_at IS NOT NULL",
            name="ck_access_rules_temporary_expiry",
        ),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.UniqueConstraint("token_address", "resource_id", name="uq_access_rules_token_resource"),
    )
    op.create_index("idx_access_rules_resource", "access_rules", ["resource_kind", "resource_id"])
    op.create_index("idx_access_rules_token", "access_rules", ["token_address"])
    op.create_index(
        "idx_access_rules_temporary_expires",
        "access_rules",
        ["expires_at"],
        postgresql_where=sa.text("is_temporary = true AND is_active = true"),
    )

    op.create_table(
        "access_grants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("resource_id", sa.String(64), nullable=False),
        sa.Column("resource_kind", sa.String(32), nullable=False),
        sa.Column("resource_title", sa.Text(), nullable=False),
        sa.Column("resource_type", sa.String(32), nullable=False),
        sa.Column("nft_address", sa.String(64), nullable=True),
        sa.Column("nft_wallet_address", sa.String(64), nullable=True),
        sa.Column("access_level", sa.String(16), nullable=False),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_usage", sa.Integer(), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('ACTIVE','USED','EXPIRED','REVOKED')",
            name="ck_access_grants_status",
        ),
        sa.CheckConstraint(
            "access_level IN ('VIEW','STREAM','DOWNLOAD','EDIT','ADMIN')",
            name="ck_access_grants_level",
        ),
        sa.CheckConstraint("usage_count >= 0", name="ck_access_grants_usage_non_negative"),
        sa.CheckConstraint(
            "max_usage IS NULL OR max_usage > 0",
            name="ck_access_grants_max_usage_positive",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.UniqueConstraint("token", name="uq_access_grants_token"),
    )
    op.create_index("idx_access_grants_user_status", "access_grants", ["user_id", "status"])
    op.create_index("idx_access_grants_resource", "access_grants", ["resource_kind", "resource_id"])
    op.create_index("idx_access_grants_nft", "access_grants", ["nft_address"])
    op.create_index("idx_access_grants_expires", "access_grants", ["expires_at"])
    op.create_index(
        "uq_access_grants_active_user_resource",
        "access_grants",
        ["user_id", "resource_kind", "resource_id"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )


def downgrade() -> None:
    op.drop_index("uq_access_grants_active_user_resource", table_name="access_grants")
    op.drop_index("idx_access_grants_expires", table_name="access_grants")
    op.drop_index("idx_access_grants_nft", table_name="access_grants")
    op.drop_index("idx_access_grants_resource", table_name="access_grants")
    op.drop_index("idx_access_grants_user_status", table_name="access_grants")
    op.drop_table("access_grants")

    op.drop_index("idx_access_rules_temporary_expires", table_name="access_rules")
    op.drop_index("idx_access_rules_token", table_name="access_rules")
    op.drop_index("idx_access_rules_resource", table_name="access_rules")
    op.drop_table("access_rules")

    op.drop_index("idx_ownership_records_user_owned", table_name="ownership_records")
    op.drop_index("idx_ownership_records_wallet", table_name="ownership_records")
    op.drop_table("ownership_records")

    op.drop_index("idx_gated_resources_owner", table_name="gated_resources")
    op.drop_table("gated_resources")

    op.drop_index("idx_user_wallets_address", table_name="user_wallets")
    op.drop_table("user_wallets")

    op.drop_index("idx_users_role", table_name="users")
    op.drop_table("users")
