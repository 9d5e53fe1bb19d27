from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.chain.indexer_client import IndexerApiClient
from app.access.chain.ledger_client import SolanaRpcClient
from app.access.chain.strategies import TIER_FAILURES, describe_failure
from app.access.errors import AccessUserNotFoundError
from app.access.ownership_cache import OwnershipCache
from app.access.types import VerificationSource, WalletSyncResult
from app.db.repo.users_repo import UsersRepo

logger = structlog.get_logger(__name__)


class WalletInventorySync:
    """Records every NFT currently held by a user's linked wallets as owned."""

    def __init__(
        self,
        *,
        indexer: IndexerApiClient,
        ledger: SolanaRpcClient,
        ownership_cache: OwnershipCache,
    ) -> None:
        self._indexer = indexer
        self._ledger = ledger
        self._ownership_cache = ownership_cache

    async def sync_user(
        self,
        session: AsyncSession,
        *,
        user_id: int,
        now_utc: datetime,
    ) -> list[WalletSyncResult]:
        if await UsersRepo.get_by_id(session, user_id) is None:
            raise AccessUserNotFoundError(user_id)

        wallets = await UsersRepo.list_wallet_addresses(session, user_id)
        results = await asyncio.gather(
            *(self._sync_wallet(wallet, user_id=user_id, now_utc=now_utc) for wallet in wallets)
        )
        logger.info(
            "wallet_inventory_synced",
            user_id=user_id,
            wallets=len(wallets),
            failed_wallets=sum(1 for result in results if not result.success),
            recorded=sum(result.recorded for result in results),
        )
        return list(results)

    async def _list_wallet_nfts(self, wallet_address: str) -> list[tuple[str, dict[str, Any]]]:
        if self._indexer.is_configured:
            try:
                items = await self._indexer.list_wallet_nfts(wallet_address=wallet_address)
                return [(item["mint"], item["metadata"]) for item in items]
            except TIER_FAILURES as exc:
                logger.warning(
                    "wallet_inventory_indexer_failed",
                    wallet_address=wallet_address,
                    reason=describe_failure(exc),
                )

        mints = await self._ledger.list_wallet_nft_mints(wallet_address=wallet_address)
        return [(mint, {}) for mint in mints]

    async def _sync_wallet(
        self,
        wallet_address: str,
        *,
        user_id: int,
        now_utc: datetime,
    ) -> WalletSyncResult:
        try:
            items = await self._list_wallet_nfts(wallet_address)
        except TIER_FAILURES as exc:
            reason = describe_failure(exc)
            logger.warning("wallet_inventory_sync_failed", wallet_address=wallet_address, reason=reason)
            return WalletSyncResult(wallet_address=wallet_address, success=False, error=reason)

        recorded = 0
        failed = 0
        for mint_address, token_metadata in items:
            try:
                await self._ownership_cache.record_ownership(
                    token_address=mint_address,
                    wallet_address=wallet_address,
                    owned=True,
                    token_metadata=token_metadata,
                    user_id=user_id,
                    source=VerificationSource.SYNC,
                    now_utc=now_utc,
                )
            except SQLAlchemyError as exc:
                failed += 1
                logger.warning(
                    "wallet_inventory_record_failed",
                    wallet_address=wallet_address,
                    token_address=mint_address,
                    error_type=type(exc).__name__,
                )
                continue
            recorded += 1

        return WalletSyncResult(
            wallet_address=wallet_address,
            success=True,
            total=len(items),
            recorded=recorded,
            failed=failed,
        )
