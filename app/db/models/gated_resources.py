from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class GatedResource(Base):
    __tablename__ = "gated_resources"
    __table_args__ = (
        CheckConstraint(
            "resource_kind IN ('EXCLUSIVE_CONTENT','EVENT','COLLECTION')",
            name="ck_gated_resources_kind",
        ),
        CheckConstraint(
            "access_control IN ('PUBLIC','NFT_GATED','TICKET_GATED','HYBRID')",
            name="ck_gated_resources_access_control",
        ),
        Index("idx_gated_resources_owner", "owner_user_id"),
    )

    resource_kind: Mapped[str] = mapped_column(String(32), primary_key=True)
    resource_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    access_control: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
