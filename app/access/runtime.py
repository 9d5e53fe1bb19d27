from __future__ import annotations

from functools import lru_cache

from app.access.chain.indexer_client import IndexerApiClient
from app.access.chain.ledger_client import SolanaRpcClient
from app.access.chain.strategies import IndexerStrategy, LedgerStrategy
from app.access.chain.verifier import ChainVerifier
from app.access.ownership_cache import OwnershipCache
from app.access.resolver import AccessResolver
from app.access.sync import WalletInventorySync
from app.access.ttl_cache import TtlCache
from app.access.types import VerificationSource
from app.core.config import get_settings


@lru_cache(maxsize=1)
def get_ledger_client() -> SolanaRpcClient:
    settings = get_settings()
    return SolanaRpcClient(
        rpc_url=settings.solana_rpc_url,
        timeout_seconds=settings.solana_rpc_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_indexer_client() -> IndexerApiClient:
    settings = get_settings()
    return IndexerApiClient(
        base_url=settings.indexer_api_url,
        api_key=settings.indexer_api_key,
        timeout_seconds=settings.indexer_api_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_ownership_cache() -> OwnershipCache:
    return OwnershipCache()


@lru_cache(maxsize=1)
def get_chain_verifier() -> ChainVerifier:
    settings = get_settings()
    indexer = get_indexer_client()

    async def fetch_metadata(token_address: str):
        return await indexer.get_token_metadata(mint_address=token_address)

    return ChainVerifier(
        strategies=[LedgerStrategy(get_ledger_client()), IndexerStrategy(indexer)],
        ownership_cache=get_ownership_cache(),
        memory_cache=TtlCache(
            ttl_seconds=settings.ownership_cache_ttl_seconds,
            max_entries=settings.verifier_cache_max_entries,
        ),
        metadata_cache=TtlCache(
            ttl_seconds=settings.metadata_cache_ttl_seconds,
            max_entries=settings.verifier_cache_max_entries,
        ),
        metadata_fetcher=fetch_metadata if indexer.is_configured else None,
        metadata_timeout_seconds=settings.indexer_api_timeout_seconds + 0.5,
        # Slack over the client timeout so the client reports its own error first.
        tier_timeouts={
            VerificationSource.LEDGER: settings.solana_rpc_timeout_seconds + 0.5,
            VerificationSource.INDEXER: settings.indexer_api_timeout_seconds + 0.5,
        },
    )


@lru_cache(maxsize=1)
def get_access_resolver() -> AccessResolver:
    settings = get_settings()
    return AccessResolver(
        verifier=get_chain_verifier(),
        ownership_cache=get_ownership_cache(),
        record_max_age_seconds=settings.ownership_record_max_age_seconds,
        max_parallel=settings.access_check_max_parallel,
        default_deadline_seconds=settings.access_check_deadline_seconds,
        ip_allowlist=settings.access_ip_allowlist,
    )


@lru_cache(maxsize=1)
def get_wallet_sync() -> WalletInventorySync:
    return WalletInventorySync(
        indexer=get_indexer_client(),
        ledger=get_ledger_client(),
        ownership_cache=get_ownership_cache(),
    )
