from __future__ import annotations

import json
from typing import Protocol

import httpx

from app.access.chain.errors import ChainClientError, IndexerNotConfiguredError
from app.access.chain.indexer_client import IndexerApiClient
from app.access.chain.ledger_client import SolanaRpcClient
from app.access.ttl_cache import TtlCache
from app.access.types import (
    OwnershipHit,
    OwnershipAnswer,
    OwnershipUnavailable,
    VerificationSource,
)

OwnershipKey = tuple[str, str]

# Errors that mean "this tier could not answer", never "not owned".
TIER_FAILURES = (httpx.HTTPError, ChainClientError, json.JSONDecodeError, KeyError, TypeError, ValueError)


def describe_failure(exc: BaseException) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"http_{exc.response.status_code}"
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    if isinstance(exc, httpx.HTTPError):
        return "transport_error"
    if isinstance(exc, IndexerNotConfiguredError):
        return "indexer_not_configured"
    if isinstance(exc, ChainClientError):
        return "upstream_error"
    return "malformed_response"


class OwnershipStrategy(Protocol):
    source: VerificationSource

    async def lookup(self, token_address: str, wallet_address: str) -> OwnershipAnswer: ...


class MemoryCacheStrategy:
    source = VerificationSource.MEMORY

    def __init__(self, cache: TtlCache[OwnershipKey, bool]) -> None:
        self._cache = cache

    async def lookup(self, token_address: str, wallet_address: str) -> OwnershipAnswer:
        cached = self._cache.get((token_address, wallet_address))
        if cached is None:
            return OwnershipUnavailable(source=self.source, reason="not_cached")
        return OwnershipHit(owned=cached, source=self.source)


class LedgerStrategy:
    source = VerificationSource.LEDGER

    def __init__(self, client: SolanaRpcClient) -> None:
        self._client = client

    async def lookup(self, token_address: str, wallet_address: str) -> OwnershipAnswer:
        try:
            amounts = await self._client.query_token_accounts(
                wallet_address=wallet_address,
                mint_address=token_address,
            )
        except TIER_FAILURES as exc:
            return OwnershipUnavailable(source=self.source, reason=describe_failure(exc))
        return OwnershipHit(owned=any(amount > 0 for amount in amounts), source=self.source)


class IndexerStrategy:
    source = VerificationSource.INDEXER

    def __init__(self, client: IndexerApiClient) -> None:
        self._client = client

    async def lookup(self, token_address: str, wallet_address: str) -> OwnershipAnswer:
        if not self._client.is_configured:
            return OwnershipUnavailable(source=self.source, reason="indexer_not_configured")
        try:
            accounts = await self._client.token_account_owners(mint_address=token_address)
            owned = any(_holds_token(account, wallet_address) for account in accounts)
        except TIER_FAILURES as exc:
            return OwnershipUnavailable(source=self.source, reason=describe_failure(exc))
        return OwnershipHit(owned=owned, source=self.source)


def _holds_token(account: dict, wallet_address: str) -> bool:
    if account.get("owner") != wallet_address:
        return False
    amount = account.get("amount")
    return amount is None or int(amount) > 0
