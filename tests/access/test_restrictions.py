from __future__ import annotations

import pytest

from app.access.levels import AccessLevel
from app.access.restrictions import evaluate_restrictions, remaining_usage_allowance
from app.access.types import RequestContext, RuleRestrictions
from app.db.repo.access_grants_repo import AccessGrantsRepo


class _Usage:
    def __init__(self, monkeypatch, *, views: int = 0, downloads: int = 0, agents: set[str] | None = None) -> None:
        self.calls: list[tuple[str, ...]] = []

        async def _sum_usage(session, *, user_id, resource_kind, resource_id, access_levels):
            self.calls.append(tuple(access_levels))
            if "DOWNLOAD" in access_levels:
                return downloads
            return views

        async def _agents(session, *, user_id, resource_kind, resource_id):
            return set(agents or set())

        monkeypatch.setattr(AccessGrantsRepo, "sum_usage_for_user_resource", staticmethod(_sum_usage))
        monkeypatch.setattr(AccessGrantsRepo, "list_user_agents_for_user_resource", staticmethod(_agents))


async def _evaluate(restrictions: dict, *, context: RequestContext | None = None, ip_allowlist: str = ""):
    return await evaluate_restrictions(
        object(),  # type: ignore[arg-type]
        restrictions=RuleRestrictions.from_payload(restrictions),
        user_id=2,
        resource_kind="EXCLUSIVE_CONTENT",
        resource_id="content-1",
        context=context or RequestContext(),
        ip_allowlist=ip_allowlist,
    )


@pytest.mark.asyncio
async def test_empty_restrictions_pass_without_queries(monkeypatch) -> None:
    usage = _Usage(monkeypatch, views=100)

    assert await _evaluate({}) is None
    assert usage.calls == []


@pytest.mark.asyncio
async def test_view_limit_counts_view_and_stream_usage(monkeypatch) -> None:
    usage = _Usage(monkeypatch, views=2)

    assert await _evaluate({"max_views": 3}) is None
    assert usage.calls == [("VIEW", "STREAM")]

    _Usage(monkeypatch, views=3)
    assert await _evaluate({"max_views": 3}) == "max_views"


@pytest.mark.asyncio
async def test_download_limit(monkeypatch) -> None:
    _Usage(monkeypatch, views=50, downloads=1)

    assert await _evaluate({"max_downloads": 1}) == "max_downloads"
    assert await _evaluate({"max_downloads": 2}) is None


@pytest.mark.asyncio
async def test_presence_is_checked_first(monkeypatch) -> None:
    _Usage(monkeypatch, views=10)

    assert await _evaluate({"requires_presence": True, "max_views": 1}) == "requires_presence"
    assert (
        await _evaluate(
            {"requires_presence": True, "max_views": 1},
            context=RequestContext(presence_confirmed=True),
        )
        == "max_views"
    )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("client_ip", "expected"),
    [
        ("10.0.0.7", None),
        ("192.168.1.5", "ip_restriction"),
        (None, "ip_restriction"),
    ],
)
async def test_ip_restriction_uses_allowlist(monkeypatch, client_ip, expected) -> None:
    _Usage(monkeypatch)

    result = await _evaluate(
        {"ip_restriction": True},
        context=RequestContext(ip_address=client_ip),
        ip_allowlist="10.0.0.0/8",
    )

    assert result == expected


@pytest.mark.asyncio
async def test_device_limit_admits_known_devices(monkeypatch) -> None:
    _Usage(monkeypatch, agents={"phone", "laptop"})

    known = await _evaluate({"device_limit": 2}, context=RequestContext(user_agent="phone"))
    unknown = await _evaluate({"device_limit": 2}, context=RequestContext(user_agent="tv"))
    roomy = await _evaluate({"device_limit": 3}, context=RequestContext(user_agent="tv"))

    assert known is None
    assert unknown == "device_limit"
    assert roomy is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("restrictions", "level", "expected"),
    [
        ({"max_views": 3}, AccessLevel.STREAM, 1),
        ({"max_views": 3}, AccessLevel.VIEW, 1),
        ({"max_views": 3}, AccessLevel.DOWNLOAD, None),
        ({"max_downloads": 5}, AccessLevel.DOWNLOAD, 4),
        ({"max_downloads": 5, "max_views": 3}, AccessLevel.EDIT, None),
        ({}, AccessLevel.STREAM, None),
    ],
)
async def test_remaining_allowance_follows_the_counted_level(monkeypatch, restrictions, level, expected) -> None:
    _Usage(monkeypatch, views=2, downloads=1)

    allowance = await remaining_usage_allowance(
        object(),  # type: ignore[arg-type]
        restrictions=RuleRestrictions.from_payload(restrictions),
        user_id=2,
        resource_kind="EXCLUSIVE_CONTENT",
        resource_id="content-1",
        access_level=level,
    )

    assert allowance == expected


@pytest.mark.asyncio
async def test_remaining_allowance_never_goes_negative(monkeypatch) -> None:
    _Usage(monkeypatch, views=9)

    allowance = await remaining_usage_allowance(
        object(),  # type: ignore[arg-type]
        restrictions=RuleRestrictions.from_payload({"max_views": 3}),
        user_id=2,
        resource_kind="EXCLUSIVE_CONTENT",
        resource_id="content-1",
        access_level=AccessLevel.VIEW,
    )

    assert allowance == 0
