from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.access.errors import AccessUserNotFoundError
from app.access.levels import AccessLevel
from app.access.rules import snapshot_access_rule
from app.access.types import AccessibleResource, ResourceKind
from app.db.repo.access_rules_repo import AccessRulesRepo
from app.db.repo.ownership_records_repo import OwnershipRecordsRepo
from app.db.repo.users_repo import UsersRepo


class AccessibleResources:
    @staticmethod
    async def list_for_user(
        session: AsyncSession,
        *,
        user_id: int,
        now_utc: datetime,
    ) -> list[AccessibleResource]:
        """Resources reachable through tokens the user is recorded as owning.

        Based on persisted ownership only, so it is as fresh as the last sync
        or verification. Each resource is reported once at its highest level.
        """
        if await UsersRepo.get_by_id(session, user_id) is None:
            raise AccessUserNotFoundError(user_id)

        token_addresses = await OwnershipRecordsRepo.list_owned_token_addresses_for_user(
            session,
            user_id=user_id,
        )
        rules = await AccessRulesRepo.list_effective_for_tokens(
            session,
            token_addresses=token_addresses,
            now_utc=now_utc,
        )

        levels: dict[tuple[str, str], AccessLevel] = {}
        rule_ids: dict[tuple[str, str], list[int]] = {}
        for rule in map(snapshot_access_rule, rules):
            if not rule.is_effective(now_utc):
                continue
            key = (rule.resource_kind.value, rule.resource_id)
            rule_ids.setdefault(key, []).append(rule.id)
            current = levels.get(key)
            if current is None or rule.access_level.rank > current.rank:
                levels[key] = rule.access_level

        return [
            AccessibleResource(
                resource_id=resource_id,
                resource_kind=ResourceKind(resource_kind),
                highest_level=level,
                rule_ids=sorted(rule_ids[(resource_kind, resource_id)]),
            )
            for (resource_kind, resource_id), level in levels.items()
        ]
