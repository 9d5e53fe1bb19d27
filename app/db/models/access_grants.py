from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class AccessGrant(Base):
    __tablename__ = "access_grants"
    __table_args__ = (
        CheckConstraint(
            "status IN ('ACTIVE','USED','EXPIRED','REVOKED')",
            name="ck_access_grants_status",
        ),
        CheckConstraint(
            "access_level IN ('VIEW','STREAM','DOWNLOAD','EDIT','ADMIN')",
            name="ck_access_grants_level",
        ),
        CheckConstraint("usage_count >= 0", name="ck_access_grants_usage_non_negative"),
        CheckConstraint(
            "max_usage IS NULL OR max_usage > 0",
            name="ck_access_grants_max_usage_positive",
        ),
        UniqueConstraint("token", name="uq_access_grants_token"),
        Index("idx_access_grants_user_status", "user_id", "status"),
        Index("idx_access_grants_resource", "resource_kind", "resource_id"),
        Index("idx_access_grants_nft", "nft_address"),
        Index("idx_access_grants_expires", "expires_at"),
        Index(
            "uq_access_grants_active_user_resource",
            "user_id",
            "resource_kind",
            "resource_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    resource_title: Mapped[str] = mapped_column(Text, nullable=False)
    resource_type: Mapped[str] = mapped_column(String(32), nullable=False)
    nft_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    nft_wallet_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    access_level: Mapped[str] = mapped_column(String(16), nullable=False)
    token: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    max_usage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict[str, object]] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
