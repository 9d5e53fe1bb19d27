from __future__ import annotations

from typing import Any

import httpx

from app.access.chain.errors import IndexerApiError, IndexerNotConfiguredError
from app.access.constants import WALLET_NFT_PAGE_LIMIT


def _first_str(*values: object) -> str | None:
    for value in values:
        if isinstance(value, str) and value:
            return value
    return None


def extract_token_metadata(item: dict[str, Any]) -> dict[str, Any]:
    on_chain = (item.get("onChainMetadata") or {}).get("metadata") or {}
    on_chain_data = on_chain.get("data") or {}
    legacy = item.get("legacyMetadata") or {}
    off_chain = (item.get("offChainMetadata") or {}).get("metadata") or {}
    collection = on_chain.get("collection") or {}

    metadata: dict[str, Any] = {
        "name": _first_str(on_chain_data.get("name"), legacy.get("name"), off_chain.get("name")),
        "symbol": _first_str(on_chain_data.get("symbol"), legacy.get("symbol"), off_chain.get("symbol")),
        "uri": _first_str(on_chain_data.get("uri"), legacy.get("uri")),
        "image": _first_str(off_chain.get("image"), legacy.get("logoURI")),
        "collection_address": _first_str(collection.get("key")),
        "token_standard": _first_str(on_chain.get("tokenStandard")),
    }
    return {key: value for key, value in metadata.items() if value is not None}


class IndexerApiClient:
    """HTTP client for the third-party indexing API (Helius-compatible endpoints)."""

    def __init__(self, *, base_url: str, api_key: str, timeout_seconds: float = 5.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self._base_url and self._api_key)

    async def _post(self, path: str, body: dict[str, Any]) -> Any:
        if not self.is_configured:
            raise IndexerNotConfiguredError("indexer api url or key is not configured")

        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            response = await client.post(
                f"{self._base_url}{path}",
                json=body,
                headers={"x-api-key": self._api_key},
            )
            response.raise_for_status()
            return response.json()

    async def token_account_owners(self, *, mint_address: str) -> list[dict[str, Any]]:
        payload = await self._post(
            "/v0/token-accounts",
            {"mintAccounts": [mint_address], "includeNft": False},
        )
        if not isinstance(payload, list):
            raise IndexerApiError("token-accounts: expected a list")
        return [item for item in payload if isinstance(item, dict)]

    async def get_token_metadata(self, *, mint_address: str) -> dict[str, Any] | None:
        payload = await self._post("/v0/token-metadata", {"mintAccounts": [mint_address]})
        if not isinstance(payload, list):
            raise IndexerApiError("token-metadata: expected a list")
        if not payload or not isinstance(payload[0], dict):
            return None
        return extract_token_metadata(payload[0]) or None

    async def list_wallet_nfts(self, *, wallet_address: str) -> list[dict[str, Any]]:
        payload = await self._post(
            "/v1/nfts",
            {"ownerAddress": wallet_address, "limit": WALLET_NFT_PAGE_LIMIT},
        )
        nfts = payload.get("nfts") if isinstance(payload, dict) else None
        if not isinstance(nfts, list):
            raise IndexerApiError("nfts: expected an nfts list")

        items: list[dict[str, Any]] = []
        for nft in nfts:
            if not isinstance(nft, dict) or not nft.get("mint"):
                continue
            collection = nft.get("collection") or {}
            metadata = {
                "name": nft.get("name"),
                "description": nft.get("description"),
                "image": nft.get("image"),
                "collection": collection.get("name"),
                "collection_address": collection.get("mintAddress"),
                "token_id": nft.get("tokenId"),
            }
            items.append(
                {
                    "mint": str(nft["mint"]),
                    "metadata": {key: value for key, value in metadata.items() if value is not None},
                }
            )
        return items
