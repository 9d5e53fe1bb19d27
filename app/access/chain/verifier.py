from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

import structlog

from app.access.chain.strategies import (
    TIER_FAILURES,
    MemoryCacheStrategy,
    OwnershipKey,
    OwnershipStrategy,
    describe_failure,
)
from app.access.errors import VerificationUnavailableError
from app.access.ownership_cache import OwnershipCache
from app.access.ttl_cache import TtlCache
from app.access.types import OwnershipHit, OwnershipAnswer, OwnershipUnavailable, VerificationSource

logger = structlog.get_logger(__name__)

MetadataFetcher = Callable[[str], Awaitable[dict[str, Any] | None]]


class ChainVerifier:
    """Tiered ownership verification.

    Tiers are tried in order: the in-process memory cache, then each remote
    strategy (ledger RPC, indexer API). A tier either answers with a hit or
    reports why it could not; only a hit stops the chain. Remote hits are written
    to the memory cache and to the durable ownership cache. When every tier is
    unavailable ``VerificationUnavailableError`` is raised with per-tier reasons.
    Token metadata for a positive hit is attached to the durable record by a
    background task after the verdict is returned.
    """

    def __init__(
        self,
        *,
        strategies: Sequence[OwnershipStrategy],
        ownership_cache: OwnershipCache,
        memory_cache: TtlCache[OwnershipKey, bool],
        metadata_cache: TtlCache[str, dict[str, Any]],
        metadata_fetcher: MetadataFetcher | None = None,
        metadata_timeout_seconds: float = 5.0,
        tier_timeouts: Mapping[VerificationSource, float] | None = None,
    ) -> None:
        self._memory_cache = memory_cache
        self._metadata_cache = metadata_cache
        self._ownership_cache = ownership_cache
        self._metadata_fetcher = metadata_fetcher
        self._metadata_timeout_seconds = metadata_timeout_seconds
        self._enrichment_tasks: set[asyncio.Task[None]] = set()
        self._tier_timeouts = dict(tier_timeouts or {})
        self._tiers: list[OwnershipStrategy] = [MemoryCacheStrategy(memory_cache), *strategies]

    @property
    def tiers(self) -> list[VerificationSource]:
        return [tier.source for tier in self._tiers]

    async def _run_tier(
        self,
        tier: OwnershipStrategy,
        token_address: str,
        wallet_address: str,
    ) -> OwnershipAnswer:
        timeout = self._tier_timeouts.get(tier.source)
        try:
            if timeout is None:
                return await tier.lookup(token_address, wallet_address)
            return await asyncio.wait_for(tier.lookup(token_address, wallet_address), timeout=timeout)
        except asyncio.TimeoutError:
            return OwnershipUnavailable(source=tier.source, reason="timeout")

    async def check_ownership(
        self,
        token_address: str,
        wallet_address: str,
        *,
        user_id: int | None = None,
    ) -> OwnershipHit:
        reasons: dict[str, str] = {}
        for tier in self._tiers:
            outcome = await self._run_tier(tier, token_address, wallet_address)
            if isinstance(outcome, OwnershipHit):
                if outcome.source != VerificationSource.MEMORY:
                    await self._write_through(token_address, wallet_address, outcome, user_id=user_id)
                return outcome

            reasons[outcome.source.value] = outcome.reason
            if outcome.source != VerificationSource.MEMORY:
                logger.warning(
                    "ownership_tier_unavailable",
                    tier=outcome.source.value,
                    reason=outcome.reason,
                    token_address=token_address,
                    wallet_address=wallet_address,
                )

        logger.warning(
            "ownership_verification_unavailable",
            token_address=token_address,
            wallet_address=wallet_address,
            reasons=reasons,
        )
        raise VerificationUnavailableError(token_address, wallet_address, reasons)

    async def verify_ownership(
        self,
        token_address: str,
        wallet_address: str,
        *,
        user_id: int | None = None,
    ) -> bool:
        hit = await self.check_ownership(token_address, wallet_address, user_id=user_id)
        return hit.owned

    async def _write_through(
        self,
        token_address: str,
        wallet_address: str,
        hit: OwnershipHit,
        *,
        user_id: int | None,
    ) -> None:
        self._memory_cache.set((token_address, wallet_address), hit.owned)
        token_metadata = self._metadata_cache.get(token_address) if hit.owned else None
        await self._ownership_cache.record_ownership(
            token_address=token_address,
            wallet_address=wallet_address,
            owned=hit.owned,
            token_metadata=token_metadata,
            user_id=user_id,
            source=hit.source,
            now_utc=datetime.now(timezone.utc),
        )
        if hit.owned and token_metadata is None and self._metadata_fetcher is not None:
            # The verdict never waits on metadata.
            task = asyncio.create_task(self._enrich_record(token_address, wallet_address))
            self._enrichment_tasks.add(task)
            task.add_done_callback(self._enrichment_finished)

    async def _enrich_record(self, token_address: str, wallet_address: str) -> None:
        try:
            token_metadata = await asyncio.wait_for(
                self.get_metadata(token_address),
                timeout=self._metadata_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("token_metadata_fetch_timeout", token_address=token_address)
            return
        if token_metadata:
            await self._ownership_cache.attach_metadata(
                token_address=token_address,
                wallet_address=wallet_address,
                token_metadata=token_metadata,
            )

    def _enrichment_finished(self, task: asyncio.Task[None]) -> None:
        self._enrichment_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "ownership_metadata_enrichment_failed",
                error_type=type(exc).__name__,
            )

    async def wait_for_enrichment(self) -> None:
        if self._enrichment_tasks:
            await asyncio.gather(*list(self._enrichment_tasks), return_exceptions=True)

    async def get_metadata(self, token_address: str) -> dict[str, Any] | None:
        cached = self._metadata_cache.get(token_address)
        if cached is not None:
            return cached
        if self._metadata_fetcher is None:
            return None

        try:
            metadata = await self._metadata_fetcher(token_address)
        except TIER_FAILURES as exc:
            logger.warning(
                "token_metadata_fetch_failed",
                token_address=token_address,
                reason=describe_failure(exc),
            )
            return None

        if metadata:
            self._metadata_cache.set(token_address, metadata)
        return metadata or None

    def clear_caches(self) -> None:
        self._memory_cache.clear()
        self._metadata_cache.clear()
        logger.info("verifier_caches_cleared")
