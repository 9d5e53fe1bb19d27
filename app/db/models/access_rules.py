from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class AccessRule(Base):
    __tablename__ = "access_rules"
    __table_args__ = (
        CheckConstraint(
            "access_level IN ('VIEW','STREAM','DOWNLOAD','EDIT','ADMIN')",
            name="ck_access_rules_level",
        ),
        CheckConstraint(
            "resource_kind IN ('EXCLUSIVE_CONTENT','EVENT','COLLECTION')",
            name="ck_access_rules_resource_kind",
        ),
        CheckConstraint(
            "is_temporary = false OR expires_at IS NOT NULL",
            name="ck_access_rules_temporary_expiry",
        ),
        UniqueConstraint("token_address", "resource_id", name="uq_access_rules_token_resource"),
        Index("idx_access_rules_resource", "resource_kind", "resource_id"),
        Index("idx_access_rules_token", "token_address"),
        Index(
            "idx_access_rules_temporary_expires",
            "expires_at",
            postgresql_where=text("is_temporary = true AND is_active = true"),
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    token_address: Mapped[str] = mapped_column(String(64), nullable=False)
    access_level: Mapped[str] = mapped_column(String(16), nullable=False)
    is_temporary: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    restrictions: Mapped[dict[str, object]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
    created_by_user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id"),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
