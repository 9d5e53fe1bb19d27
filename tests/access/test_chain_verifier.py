from __future__ import annotations

import asyncio

import pytest

from app.access.chain.verifier import ChainVerifier
from app.access.errors import VerificationUnavailableError
from app.access.ttl_cache import TtlCache
from app.access.types import VerificationSource
from tests.access.fakes import InMemoryOwnershipRecords, ScriptedStrategy

TOKEN = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


def _build_verifier(
    records: InMemoryOwnershipRecords,
    *,
    ledger: ScriptedStrategy,
    indexer: ScriptedStrategy,
    metadata: dict[str, object] | None = None,
    metadata_delay_seconds: float = 0.0,
    metadata_timeout_seconds: float = 5.0,
    tier_timeouts: dict[VerificationSource, float] | None = None,
) -> tuple[ChainVerifier, list[str]]:
    metadata_calls: list[str] = []

    async def fetch_metadata(token_address: str):
        metadata_calls.append(token_address)
        if metadata_delay_seconds:
            await asyncio.sleep(metadata_delay_seconds)
        return metadata

    verifier = ChainVerifier(
        strategies=[ledger, indexer],
        ownership_cache=records.ownership_cache(),
        memory_cache=TtlCache(ttl_seconds=300),
        metadata_cache=TtlCache(ttl_seconds=3600),
        metadata_fetcher=fetch_metadata,
        metadata_timeout_seconds=metadata_timeout_seconds,
        tier_timeouts=tier_timeouts,
    )
    return verifier, metadata_calls


@pytest.mark.asyncio
async def test_ledger_hit_is_written_through_and_served_from_memory(monkeypatch) -> None:
    records = InMemoryOwnershipRecords()
    records.install(monkeypatch)
    ledger = ScriptedStrategy(VerificationSource.LEDGER, {(TOKEN, WALLET): True})
    indexer = ScriptedStrategy(VerificationSource.INDEXER, {(TOKEN, WALLET): True})
    verifier, _ = _build_verifier(records, ledger=ledger, indexer=indexer, metadata={"name": "Pass"})

    first = await verifier.check_ownership(TOKEN, WALLET, user_id=7)
    second = await verifier.check_ownership(TOKEN, WALLET, user_id=7)

    assert first.owned is True
    assert first.source == VerificationSource.LEDGER
    assert second.source == VerificationSource.MEMORY
    assert len(ledger.calls) == 1
    assert indexer.calls == []

    await verifier.wait_for_enrichment()

    cache = records.ownership_cache()
    assert await cache.is_owner(TOKEN, WALLET) is True
    record = await cache.get_record(TOKEN, WALLET)
    assert record is not None
    assert record.user_id == 7
    assert record.verification_source == "LEDGER"
    assert record.token_metadata == {"name": "Pass"}
    assert len(ledger.calls) == 1


@pytest.mark.asyncio
async def test_ledger_failure_falls_through_to_indexer(monkeypatch) -> None:
    records = InMemoryOwnershipRecords()
    records.install(monkeypatch)
    ledger = ScriptedStrategy(VerificationSource.LEDGER, default="http_503")
    indexer = ScriptedStrategy(VerificationSource.INDEXER, {(TOKEN, WALLET): True})
    verifier, _ = _build_verifier(records, ledger=ledger, indexer=indexer)

    assert await verifier.verify_ownership(TOKEN, WALLET) is True
    assert len(ledger.calls) == 1
    assert len(indexer.calls) == 1
    assert records.rows[(TOKEN, WALLET)].verification_source == "INDEXER"


@pytest.mark.asyncio
async def test_ledger_timeout_falls_through_to_indexer(monkeypatch) -> None:
    records = InMemoryOwnershipRecords()
    records.install(monkeypatch)
    ledger = ScriptedStrategy(VerificationSource.LEDGER, {(TOKEN, WALLET): True}, delay_seconds=1.0)
    indexer = ScriptedStrategy(VerificationSource.INDEXER, {(TOKEN, WALLET): False})
    verifier, _ = _build_verifier(
        records,
        ledger=ledger,
        indexer=indexer,
        tier_timeouts={VerificationSource.LEDGER: 0.01},
    )

    hit = await verifier.check_ownership(TOKEN, WALLET)

    assert hit.owned is False
    assert hit.source == VerificationSource.INDEXER


@pytest.mark.asyncio
async def test_negative_ledger_answer_is_final_and_recorded(monkeypatch) -> None:
    records = InMemoryOwnershipRecords()
    records.install(monkeypatch)
    ledger = ScriptedStrategy(VerificationSource.LEDGER, {(TOKEN, WALLET): False})
    indexer = ScriptedStrategy(VerificationSource.INDEXER, {(TOKEN, WALLET): True})
    verifier, metadata_calls = _build_verifier(records, ledger=ledger, indexer=indexer)

    assert await verifier.verify_ownership(TOKEN, WALLET) is False
    assert indexer.calls == []
    assert metadata_calls == []
    assert await records.ownership_cache().is_owner(TOKEN, WALLET) is False


@pytest.mark.asyncio
async def test_all_tiers_failing_raises_unavailable_with_reasons(monkeypatch) -> None:
    records = InMemoryOwnershipRecords()
    records.install(monkeypatch)
    ledger = ScriptedStrategy(VerificationSource.LEDGER, default="timeout")
    indexer = ScriptedStrategy(VerificationSource.INDEXER, default="indexer_not_configured")
    verifier, _ = _build_verifier(records, ledger=ledger, indexer=indexer)

    with pytest.raises(VerificationUnavailableError) as exc_info:
        await verifier.verify_ownership(TOKEN, WALLET)

    assert exc_info.value.reasons == {
        "MEMORY": "not_cached",
        "LEDGER": "timeout",
        "INDEXER": "indexer_not_configured",
    }
    assert records.rows == {}
    assert await records.ownership_cache().is_owner(TOKEN, WALLET) is None


@pytest.mark.asyncio
async def test_metadata_is_cached_and_failures_return_none(monkeypatch) -> None:
    records = InMemoryOwnershipRecords()
    records.install(monkeypatch)
    ledger = ScriptedStrategy(VerificationSource.LEDGER)
    indexer = ScriptedStrategy(VerificationSource.INDEXER)
    verifier, metadata_calls = _build_verifier(
        records,
        ledger=ledger,
        indexer=indexer,
        metadata={"name": "Pass"},
    )

    assert await verifier.get_metadata(TOKEN) == {"name": "Pass"}
    assert await verifier.get_metadata(TOKEN) == {"name": "Pass"}
    assert metadata_calls == [TOKEN]

    async def broken_fetcher(token_address: str):
        raise ValueError("bad payload")

    failing = ChainVerifier(
        strategies=[],
        ownership_cache=records.ownership_cache(),
        memory_cache=TtlCache(ttl_seconds=300),
        metadata_cache=TtlCache(ttl_seconds=3600),
        metadata_fetcher=broken_fetcher,
    )
    assert await failing.get_metadata(TOKEN) is None


@pytest.mark.asyncio
async def test_clear_caches_forces_a_new_ledger_call(monkeypatch) -> None:
    records = InMemoryOwnershipRecords()
    records.install(monkeypatch)
    ledger = ScriptedStrategy(VerificationSource.LEDGER, {(TOKEN, WALLET): True})
    indexer = ScriptedStrategy(VerificationSource.INDEXER)
    verifier, _ = _build_verifier(records, ledger=ledger, indexer=indexer)

    await verifier.verify_ownership(TOKEN, WALLET)
    verifier.clear_caches()
    await verifier.verify_ownership(TOKEN, WALLET)

    assert len(ledger.calls) == 2
    assert verifier.tiers == [
        VerificationSource.MEMORY,
        VerificationSource.LEDGER,
        VerificationSource.INDEXER,
    ]


@pytest.mark.asyncio
async def test_slow_metadata_does_not_hold_back_a_confirmed_hit(monkeypatch) -> None:
    records = InMemoryOwnershipRecords()
    records.install(monkeypatch)
    ledger = ScriptedStrategy(VerificationSource.LEDGER, {(TOKEN, WALLET): True})
    indexer = ScriptedStrategy(VerificationSource.INDEXER)
    verifier, metadata_calls = _build_verifier(
        records,
        ledger=ledger,
        indexer=indexer,
        metadata={"name": "Pass"},
        metadata_delay_seconds=0.2,
    )

    hit = await asyncio.wait_for(verifier.check_ownership(TOKEN, WALLET, user_id=7), timeout=0.1)

    assert hit.owned is True
    record = records.rows[(TOKEN, WALLET)]
    assert record.owned is True
    assert record.token_metadata == {}

    await verifier.wait_for_enrichment()

    assert metadata_calls == [TOKEN]
    assert records.rows[(TOKEN, WALLET)].token_metadata == {"name": "Pass"}


@pytest.mark.asyncio
async def test_metadata_timeout_leaves_the_record_without_metadata(monkeypatch) -> None:
    records = InMemoryOwnershipRecords()
    records.install(monkeypatch)
    ledger = ScriptedStrategy(VerificationSource.LEDGER, {(TOKEN, WALLET): True})
    indexer = ScriptedStrategy(VerificationSource.INDEXER)
    verifier, _ = _build_verifier(
        records,
        ledger=ledger,
        indexer=indexer,
        metadata={"name": "Pass"},
        metadata_delay_seconds=1.0,
        metadata_timeout_seconds=0.05,
    )

    assert await verifier.verify_ownership(TOKEN, WALLET) is True
    await verifier.wait_for_enrichment()

    assert records.rows[(TOKEN, WALLET)].owned is True
    assert records.rows[(TOKEN, WALLET)].token_metadata == {}
