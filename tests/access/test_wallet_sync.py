from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from app.access.chain.errors import LedgerRpcError
from app.access.errors import AccessUserNotFoundError
from app.access.ownership_cache import OwnershipCache
from app.access.sync import WalletInventorySync
from app.access.types import VerificationSource
from app.db.models.users import User
from app.db.repo.users_repo import UsersRepo
from tests.access.fakes import FakeSessionFactory, InMemoryOwnershipRecords

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
WALLET_1 = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
WALLET_2 = "5ZWj7a1f8tWkjBESHKgrLmXshuXxqeY9SYcfbshpAqPG"
MINT_A = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
MINT_B = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


class _Indexer:
    def __init__(self, *, configured: bool = True, inventory=None, error: Exception | None = None) -> None:
        self.is_configured = configured
        self.inventory = inventory or {}
        self.error = error

    async def list_wallet_nfts(self, *, wallet_address: str):
        if self.error is not None:
            raise self.error
        return [
            {"mint": mint, "metadata": {"name": f"Pass {mint[:4]}"}}
            for mint in self.inventory.get(wallet_address, [])
        ]


class _Ledger:
    def __init__(self, *, inventory=None, failing_wallets: set[str] | None = None) -> None:
        self.inventory = inventory or {}
        self.failing_wallets = failing_wallets or set()
        self.calls: list[str] = []

    async def list_wallet_nft_mints(self, *, wallet_address: str):
        self.calls.append(wallet_address)
        if wallet_address in self.failing_wallets:
            raise LedgerRpcError("node is behind")
        return list(self.inventory.get(wallet_address, []))


class _FlakyOwnershipCache(OwnershipCache):
    def __init__(self, failing_mint: str) -> None:
        super().__init__(session_factory=FakeSessionFactory())  # type: ignore[arg-type]
        self.failing_mint = failing_mint

    async def record_ownership(self, *, token_address: str, **kwargs):
        if token_address == self.failing_mint:
            raise OperationalError("INSERT INTO ownership_records", {}, Exception("deadlock"))
        return await super().record_ownership(token_address=token_address, **kwargs)


def _install_user(monkeypatch, wallets: list[str]) -> None:
    async def _get_user(session, user_id: int):
        return User(id=user_id, role="USER", status="ACTIVE") if user_id == 2 else None

    async def _list_wallets(session, user_id: int):
        return list(wallets)

    monkeypatch.setattr(UsersRepo, "get_by_id", staticmethod(_get_user))
    monkeypatch.setattr(UsersRepo, "list_wallet_addresses", staticmethod(_list_wallets))


@pytest.mark.asyncio
async def test_sync_records_indexer_inventory_with_metadata(monkeypatch) -> None:
    _install_user(monkeypatch, [WALLET_1, WALLET_2])
    records = InMemoryOwnershipRecords()
    records.install(monkeypatch)
    ledger = _Ledger()
    sync = WalletInventorySync(
        indexer=_Indexer(inventory={WALLET_1: [MINT_A, MINT_B], WALLET_2: [MINT_A]}),  # type: ignore[arg-type]
        ledger=ledger,  # type: ignore[arg-type]
        ownership_cache=records.ownership_cache(),
    )

    results = await sync.sync_user(object(), user_id=2, now_utc=NOW)  # type: ignore[arg-type]

    assert [(r.wallet_address, r.success, r.total, r.recorded) for r in results] == [
        (WALLET_1, True, 2, 2),
        (WALLET_2, True, 1, 1),
    ]
    assert ledger.calls == []
    record = records.rows[(MINT_B, WALLET_1)]
    assert record.owned is True
    assert record.user_id == 2
    assert record.verification_source == VerificationSource.SYNC.value
    assert record.token_metadata == {"name": f"Pass {MINT_B[:4]}"}


@pytest.mark.asyncio
async def test_sync_falls_back_to_ledger_when_indexer_fails(monkeypatch) -> None:
    _install_user(monkeypatch, [WALLET_1])
    records = InMemoryOwnershipRecords()
    records.install(monkeypatch)
    ledger = _Ledger(inventory={WALLET_1: [MINT_A]})
    sync = WalletInventorySync(
        indexer=_Indexer(error=httpx.ConnectError("refused")),  # type: ignore[arg-type]
        ledger=ledger,  # type: ignore[arg-type]
        ownership_cache=records.ownership_cache(),
    )

    results = await sync.sync_user(object(), user_id=2, now_utc=NOW)  # type: ignore[arg-type]

    assert results[0].success is True
    assert results[0].recorded == 1
    assert ledger.calls == [WALLET_1]
    assert records.rows[(MINT_A, WALLET_1)].token_metadata == {}


@pytest.mark.asyncio
async def test_one_failing_wallet_does_not_block_others(monkeypatch) -> None:
    _install_user(monkeypatch, [WALLET_1, WALLET_2])
    records = InMemoryOwnershipRecords()
    records.install(monkeypatch)
    sync = WalletInventorySync(
        indexer=_Indexer(configured=False),  # type: ignore[arg-type]
        ledger=_Ledger(inventory={WALLET_2: [MINT_B]}, failing_wallets={WALLET_1}),  # type: ignore[arg-type]
        ownership_cache=records.ownership_cache(),
    )

    results = await sync.sync_user(object(), user_id=2, now_utc=NOW)  # type: ignore[arg-type]

    assert (results[0].success, results[0].error) == (False, "upstream_error")
    assert (results[1].success, results[1].recorded) == (True, 1)


@pytest.mark.asyncio
async def test_storage_failure_counts_against_the_wallet(monkeypatch) -> None:
    _install_user(monkeypatch, [WALLET_1])
    records = InMemoryOwnershipRecords()
    records.install(monkeypatch)
    sync = WalletInventorySync(
        indexer=_Indexer(inventory={WALLET_1: [MINT_A, MINT_B]}),  # type: ignore[arg-type]
        ledger=_Ledger(),  # type: ignore[arg-type]
        ownership_cache=_FlakyOwnershipCache(failing_mint=MINT_A),
    )

    results = await sync.sync_user(object(), user_id=2, now_utc=NOW)  # type: ignore[arg-type]

    assert (results[0].success, results[0].total, results[0].recorded, results[0].failed) == (True, 2, 1, 1)
    assert list(records.rows) == [(MINT_B, WALLET_1)]


@pytest.mark.asyncio
async def test_sync_unknown_user_raises(monkeypatch) -> None:
    _install_user(monkeypatch, [])
    sync = WalletInventorySync(
        indexer=_Indexer(),  # type: ignore[arg-type]
        ledger=_Ledger(),  # type: ignore[arg-type]
        ownership_cache=InMemoryOwnershipRecords().ownership_cache(),
    )

    with pytest.raises(AccessUserNotFoundError):
        await sync.sync_user(object(), user_id=404, now_utc=NOW)  # type: ignore[arg-type]
