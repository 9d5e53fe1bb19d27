from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.access.types import OwnershipRecordSnapshot, VerificationSource
from app.db.models.ownership_records import OwnershipRecord
from app.db.repo.ownership_records_repo import OwnershipRecordsRepo
from app.db.session import SessionLocal

logger = structlog.get_logger(__name__)


def snapshot_ownership_record(record: OwnershipRecord) -> OwnershipRecordSnapshot:
    return OwnershipRecordSnapshot(
        token_address=record.token_address,
        wallet_address=record.wallet_address,
        owned=bool(record.owned),
        user_id=record.user_id,
        verification_source=record.verification_source,
        token_metadata=dict(record.token_metadata or {}),
        last_verified_at=record.last_verified_at,
    )


class OwnershipCache:
    """Durable record of verified (token, wallet) ownership.

    Lookups never touch the chain. ``is_owner`` answers ``None`` when the pair
    was never verified, so a miss is distinguishable from a confirmed negative.
    Each call runs in its own short transaction, which lets concurrent access
    checks share one instance.
    """

    def __init__(self, *, session_factory: async_sessionmaker[AsyncSession] = SessionLocal) -> None:
        self._session_factory = session_factory

    async def get_record(
        self,
        token_address: str,
        wallet_address: str,
    ) -> OwnershipRecordSnapshot | None:
        async with self._session_factory() as session:
            record = await OwnershipRecordsRepo.get(
                session,
                token_address=token_address,
                wallet_address=wallet_address,
            )
            return snapshot_ownership_record(record) if record is not None else None

    async def is_owner(self, token_address: str, wallet_address: str) -> bool | None:
        record = await self.get_record(token_address, wallet_address)
        if record is None:
            return None
        return record.owned

    async def record_ownership(
        self,
        *,
        token_address: str,
        wallet_address: str,
        owned: bool = True,
        token_metadata: dict[str, Any] | None = None,
        user_id: int | None = None,
        source: VerificationSource = VerificationSource.LEDGER,
        now_utc: datetime | None = None,
    ) -> OwnershipRecordSnapshot:
        verified_at = now_utc or datetime.now(timezone.utc)
        async with self._session_factory.begin() as session:
            record = await OwnershipRecordsRepo.upsert(
                session,
                token_address=token_address,
                wallet_address=wallet_address,
                owned=owned,
                user_id=user_id,
                verification_source=source.value,
                token_metadata=token_metadata,
                now_utc=verified_at,
            )
            snapshot = snapshot_ownership_record(record)

        logger.debug(
            "ownership_record_upserted",
            token_address=token_address,
            wallet_address=wallet_address,
            owned=owned,
            source=source.value,
        )
        return snapshot

    async def attach_metadata(
        self,
        *,
        token_address: str,
        wallet_address: str,
        token_metadata: dict[str, Any],
        now_utc: datetime | None = None,
    ) -> bool:
        async with self._session_factory.begin() as session:
            return await OwnershipRecordsRepo.merge_metadata(
                session,
                token_address=token_address,
                wallet_address=wallet_address,
                token_metadata=token_metadata,
                now_utc=now_utc or datetime.now(timezone.utc),
            )
