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


class OwnershipRecord(Base):
    __tablename__ = "ownership_records"
    __table_args__ = (
        CheckConstraint(
            "verification_source IN ('LEDGER','INDEXER','SYNC','MANUAL')",
            name="ck_ownership_records_source",
        ),
        UniqueConstraint(
            "token_address",
            "wallet_address",
            name="uq_ownership_records_token_wallet",
        ),
        Index("idx_ownership_records_wallet", "wallet_address"),
        Index("idx_ownership_records_user_owned", "user_id", "owned"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    token_address: Mapped[str] = mapped_column(String(64), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    owned: Mapped[bool] = mapped_column(Boolean, nullable=False)
    user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True)
    verification_source: Mapped[str] = mapped_column(String(16), nullable=False)
    token_metadata: Mapped[dict[str, object]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
    last_verified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
