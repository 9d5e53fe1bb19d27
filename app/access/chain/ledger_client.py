from __future__ import annotations

from itertools import count
from typing import Any

import httpx

from app.access.chain.errors import LedgerRpcError
from app.access.constants import SPL_TOKEN_PROGRAM_ID

_REQUEST_IDS = count(1)


def _parsed_token_amount(account: dict[str, Any]) -> tuple[int, int]:
    info = account["account"]["data"]["parsed"]["info"]
    token_amount = info["tokenAmount"]
    return int(token_amount["amount"]), int(token_amount.get("decimals", 0))


class SolanaRpcClient:
    """Minimal JSON-RPC client for the token-account queries the verifier needs."""

    def __init__(self, *, rpc_url: str, timeout_seconds: float = 3.0) -> None:
        self._rpc_url = rpc_url
        self._timeout_seconds = timeout_seconds

    async def _call(self, method: str, params: list[Any]) -> Any:
        body = {
            "jsonrpc": "2.0",
            "id": next(_REQUEST_IDS),
            "method": method,
            "params": params,
        }
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            response = await client.post(self._rpc_url, json=body)
            response.raise_for_status()
            payload = response.json()

        if not isinstance(payload, dict):
            raise LedgerRpcError(f"{method}: malformed response")
        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise LedgerRpcError(f"{method}: {message}")
        if "result" not in payload:
            raise LedgerRpcError(f"{method}: response has no result")
        return payload["result"]

    async def query_token_accounts(self, *, wallet_address: str, mint_address: str) -> list[int]:
        result = await self._call(
            "getTokenAccountsByOwner",
            [
                wallet_address,
                {"mint": mint_address},
                {"encoding": "jsonParsed", "commitment": "confirmed"},
            ],
        )
        try:
            return [_parsed_token_amount(account)[0] for account in result["value"]]
        except (KeyError, TypeError, ValueError) as exc:
            raise LedgerRpcError("getTokenAccountsByOwner: unexpected account layout") from exc

    async def list_wallet_nft_mints(self, *, wallet_address: str) -> list[str]:
        result = await self._call(
            "getTokenAccountsByOwner",
            [
                wallet_address,
                {"programId": SPL_TOKEN_PROGRAM_ID},
                {"encoding": "jsonParsed", "commitment": "confirmed"},
            ],
        )
        mints: list[str] = []
        try:
            for account in result["value"]:
                amount, decimals = _parsed_token_amount(account)
                if amount == 1 and decimals == 0:
                    mints.append(str(account["account"]["data"]["parsed"]["info"]["mint"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise LedgerRpcError("getTokenAccountsByOwner: unexpected account layout") from exc
        return mints
