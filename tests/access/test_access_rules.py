from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from app.access.errors import (
    AccessResourceNotFoundError,
    AccessRuleForbiddenError,
    AccessUserNotFoundError,
    InvalidAccessRuleError,
)
from app.access.levels import AccessLevel
from app.access.rules import AccessRuleStore, parse_resource_kind, validate_rule_spec
from app.access.types import AccessRuleSpec, ResourceKind
from app.db.models.access_rules import AccessRule
from app.db.models.gated_resources import GatedResource
from app.db.models.users import User
from app.db.repo.access_rules_repo import AccessRulesRepo
from app.db.repo.resources_repo import ResourcesRepo
from app.db.repo.users_repo import UsersRepo

UTC = timezone.utc
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
TOKEN_T = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
TOKEN_U = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
TOKEN_V = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


class _Nested:
    async def __aenter__(self) -> None:
        return None

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _Session:
    def begin_nested(self) -> _Nested:
        return _Nested()


def test_validate_normalizes_level_and_drops_expiry_for_permanent_rules() -> None:
    validated = validate_rule_spec(
        AccessRuleSpec(
            token_address=f"  {TOKEN_T} ",
            access_level="stream",
            expires_at=NOW + timedelta(days=1),
            restrictions={"max_views": 5},
        ),
        now_utc=NOW,
    )

    assert validated.token_address == TOKEN_T
    assert validated.access_level == AccessLevel.STREAM
    assert validated.is_temporary is False
    assert validated.expires_at is None
    assert validated.restrictions == {"max_views": 5}


def test_validate_treats_naive_expiry_as_utc() -> None:
    validated = validate_rule_spec(
        AccessRuleSpec(token_address=TOKEN_T, temporary=True, expires_at=datetime(2026, 3, 2, 12, 0)),
        now_utc=NOW,
    )

    assert validated.expires_at == datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    ("spec", "error"),
    [
        (AccessRuleSpec(token_address="not-a-mint"), "invalid_token_address"),
        (AccessRuleSpec(token_address="0" * 40), "invalid_token_address"),
        (AccessRuleSpec(token_address=TOKEN_T, access_level="OWNER"), "invalid_access_level"),
        (AccessRuleSpec(token_address=TOKEN_T, temporary=True), "temporary_rule_requires_expiry"),
        (
            AccessRuleSpec(token_address=TOKEN_T, temporary=True, expires_at=NOW - timedelta(seconds=1)),
            "expiry_in_past",
        ),
        (AccessRuleSpec(token_address=TOKEN_T, restrictions={"max_views": 0}), "invalid_restrictions"),
        (AccessRuleSpec(token_address=TOKEN_T, restrictions={"device_limit": "2"}), "invalid_restrictions"),
    ],
)
def test_validate_rejects_bad_rules(spec: AccessRuleSpec, error: str) -> None:
    with pytest.raises(InvalidAccessRuleError) as exc_info:
        validate_rule_spec(spec, now_utc=NOW)

    assert str(exc_info.value) == error


def test_parse_resource_kind_rejects_unknown_kind() -> None:
    assert parse_resource_kind("event") == ResourceKind.EVENT
    with pytest.raises(AccessResourceNotFoundError):
        parse_resource_kind("PLAYLIST")


class _RulesWorld:
    def __init__(self, monkeypatch) -> None:
        self.users = {
            1: User(id=1, role="ARTIST", status="ACTIVE"),
            2: User(id=2, role="USER", status="ACTIVE"),
            3: User(id=3, role="ADMIN", status="ACTIVE"),
        }
        self.failing_tokens: set[str] = set()
        self.kind_conflict_tokens: set[str] = set()
        self.upserted: list[str] = []

        async def _get_user(session, user_id: int):
            return self.users.get(user_id)

        async def _get_resource(session, *, resource_kind: str, resource_id: str):
            if resource_id != "content-1":
                return None
            return GatedResource(
                resource_kind=resource_kind,
                resource_id=resource_id,
                owner_user_id=1,
                access_control="NFT_GATED",
            )

        async def _upsert(session, **values):
            token_address = values["token_address"]
            if token_address in self.failing_tokens:
                raise OperationalError("INSERT INTO access_rules", {}, Exception("connection reset"))
            if token_address in self.kind_conflict_tokens:
                return None
            self.upserted.append(token_address)
            return AccessRule(
                id=len(self.upserted),
                resource_id=values["resource_id"],
                resource_kind=values["resource_kind"],
                token_address=token_address,
                access_level=values["access_level"],
                is_temporary=values["is_temporary"],
                expires_at=values["expires_at"],
                restrictions=values["restrictions"],
                created_by_user_id=values["created_by_user_id"],
                is_active=True,
                created_at=values["now_utc"],
                updated_at=values["now_utc"],
            )

        monkeypatch.setattr(UsersRepo, "get_by_id", staticmethod(_get_user))
        monkeypatch.setattr(ResourcesRepo, "get", staticmethod(_get_resource))
        monkeypatch.setattr(AccessRulesRepo, "upsert", staticmethod(_upsert))


async def _define(creator_id: int, specs: list[AccessRuleSpec], *, resource_id: str = "content-1"):
    return await AccessRuleStore.define_rules(
        _Session(),  # type: ignore[arg-type]
        resource_id=resource_id,
        resource_kind="EXCLUSIVE_CONTENT",
        rule_specs=specs,
        creator_id=creator_id,
        now_utc=NOW,
    )


@pytest.mark.asyncio
async def test_define_rules_reports_each_rule_independently(monkeypatch) -> None:
    world = _RulesWorld(monkeypatch)
    world.failing_tokens = {TOKEN_V}

    report = await _define(
        1,
        [
            AccessRuleSpec(token_address=TOKEN_T, access_level="STREAM"),
            AccessRuleSpec(token_address="bogus"),
            AccessRuleSpec(token_address=TOKEN_V),
            AccessRuleSpec(token_address=TOKEN_U, temporary=True, expires_at=NOW + timedelta(hours=2)),
        ],
    )

    assert (report.total_rules, report.successful, report.failed) == (4, 2, 2)
    assert [(r.token_address, r.success, r.error) for r in report.rules] == [
        (TOKEN_T, True, None),
        ("bogus", False, "invalid_token_address"),
        (TOKEN_V, False, "storage_error"),
        (TOKEN_U, True, None),
    ]
    temporary = report.rules[3].rule
    assert temporary is not None
    assert temporary.is_temporary is True
    assert temporary.expires_at == NOW + timedelta(hours=2)
    assert world.upserted == [TOKEN_T, TOKEN_U]


@pytest.mark.asyncio
async def test_admin_may_define_rules_on_any_resource(monkeypatch) -> None:
    _RulesWorld(monkeypatch)

    report = await _define(3, [AccessRuleSpec(token_address=TOKEN_T)])

    assert report.successful == 1
    assert report.rules[0].rule is not None
    assert report.rules[0].rule.created_by_user_id == 3


@pytest.mark.asyncio
async def test_define_rules_authorization_failures(monkeypatch) -> None:
    world = _RulesWorld(monkeypatch)

    with pytest.raises(AccessRuleForbiddenError):
        await _define(2, [AccessRuleSpec(token_address=TOKEN_T)])
    with pytest.raises(AccessUserNotFoundError):
        await _define(404, [AccessRuleSpec(token_address=TOKEN_T)])
    with pytest.raises(AccessResourceNotFoundError):
        await _define(1, [AccessRuleSpec(token_address=TOKEN_T)], resource_id="missing")

    assert world.upserted == []


@pytest.mark.asyncio
async def test_get_rules_drops_lapsed_temporary_rules(monkeypatch) -> None:
    rows = [
        AccessRule(
            id=1,
            resource_id="content-1",
            resource_kind="EXCLUSIVE_CONTENT",
            token_address=TOKEN_T,
            access_level="VIEW",
            is_temporary=False,
            expires_at=None,
            restrictions={},
            created_by_user_id=1,
            is_active=True,
        ),
        AccessRule(
            id=2,
            resource_id="content-1",
            resource_kind="EXCLUSIVE_CONTENT",
            token_address=TOKEN_U,
            access_level="DOWNLOAD",
            is_temporary=True,
            expires_at=NOW,
            restrictions={"max_downloads": 1},
            created_by_user_id=1,
            is_active=True,
        ),
    ]

    async def _list(session, *, resource_kind: str, resource_id: str, now_utc: datetime):
        return rows

    monkeypatch.setattr(AccessRulesRepo, "list_effective_for_resource", staticmethod(_list))

    rules = await AccessRuleStore.get_rules(
        object(),  # type: ignore[arg-type]
        resource_id="content-1",
        resource_kind="EXCLUSIVE_CONTENT",
        now_utc=NOW,
    )

    assert [rule.id for rule in rules] == [1]


@pytest.mark.asyncio
async def test_define_rules_reports_rule_held_by_another_resource_kind(monkeypatch) -> None:
    world = _RulesWorld(monkeypatch)
    world.kind_conflict_tokens = {TOKEN_U}

    report = await _define(
        1,
        [
            AccessRuleSpec(token_address=TOKEN_T),
            AccessRuleSpec(token_address=TOKEN_U, access_level="DOWNLOAD"),
        ],
    )

    assert (report.successful, report.failed) == (1, 1)
    assert report.rules[1].success is False
    assert report.rules[1].error == "resource_kind_conflict"
    assert report.rules[1].rule is None
    assert world.upserted == [TOKEN_T]
