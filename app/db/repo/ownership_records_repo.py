from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import cast, func, select, update
from sqlalchemy.dialects.postgresql import JSONB, insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.ownership_records import OwnershipRecord


class OwnershipRecordsRepo:
    @staticmethod
    async def get(
        session: AsyncSession,
        *,
        token_address: str,
        wallet_address: str,
    ) -> OwnershipRecord | None:
        stmt = select(OwnershipRecord).where(
            OwnershipRecord.token_address == token_address,
            OwnershipRecord.wallet_address == wallet_address,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert(
        session: AsyncSession,
        *,
        token_address: str,
        wallet_address: str,
        owned: bool,
        user_id: int | None,
        verification_source: str,
        token_metadata: dict[str, Any] | None,
        now_utc: datetime,
    ) -> OwnershipRecord:
        stmt = insert(OwnershipRecord).values(
            token_address=token_address,
            wallet_address=wallet_address,
            owned=owned,
            user_id=user_id,
            verification_source=verification_source,
            token_metadata=token_metadata or {},
            last_verified_at=now_utc,
            created_at=now_utc,
            updated_at=now_utc,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_ownership_records_token_wallet",
            set_={
                "owned": stmt.excluded.owned,
                "user_id": func.coalesce(stmt.excluded.user_id, OwnershipRecord.user_id),
                "verification_source": stmt.excluded.verification_source,
                "token_metadata": OwnershipRecord.token_metadata.op("||")(
                    stmt.excluded.token_metadata
                ),
                "last_verified_at": stmt.excluded.last_verified_at,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(OwnershipRecord)
        result = await session.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one()

    @staticmethod
    async def list_owned_token_addresses_for_user(
        session: AsyncSession,
        *,
        user_id: int,
    ) -> list[str]:
        stmt = (
            select(OwnershipRecord.token_address)
            .where(
                OwnershipRecord.user_id == user_id,
                OwnershipRecord.owned.is_(True),
            )
            .distinct()
        )
        result = await session.execute(stmt)
        return [str(token_address) for token_address in result.scalars().all()]

    @staticmethod
    async def merge_metadata(
        session: AsyncSession,
        *,
        token_address: str,
        wallet_address: str,
        token_metadata: dict[str, Any],
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(OwnershipRecord)
            .where(
                OwnershipRecord.token_address == token_address,
                OwnershipRecord.wallet_address == wallet_address,
            )
            .values(
                token_metadata=OwnershipRecord.token_metadata.op("||")(
                    cast(token_metadata, JSONB)
                ),
                updated_at=now_utc,
            )
        )
        result = await session.execute(stmt)
        return bool(result.rowcount)
