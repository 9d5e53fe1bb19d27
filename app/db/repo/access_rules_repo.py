from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.access_rules import AccessRule


def _effective_clause(now_utc: datetime):
    return (
        AccessRule.is_active.is_(True),
        or_(
            AccessRule.is_temporary.is_(False),
            AccessRule.expires_at > now_utc,
        ),
    )


class AccessRulesRepo:
    @staticmethod
    async def list_effective_for_resource(
        session: AsyncSession,
        *,
        resource_kind: str,
        resource_id: str,
        now_utc: datetime,
    ) -> list[AccessRule]:
        stmt = (
            select(AccessRule)
            .where(
                AccessRule.resource_kind == resource_kind,
                AccessRule.resource_id == resource_id,
                *_effective_clause(now_utc),
            )
            .order_by(AccessRule.id.asc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_effective_for_tokens(
        session: AsyncSession,
        *,
        token_addresses: Sequence[str],
        now_utc: datetime,
    ) -> list[AccessRule]:
        addresses = tuple(set(token_addresses))
        if not addresses:
            return []
        stmt = (
            select(AccessRule)
            .where(
                AccessRule.token_address.in_(addresses),
                *_effective_clause(now_utc),
            )
            .order_by(AccessRule.created_at.desc(), AccessRule.id.desc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def upsert(
        session: AsyncSession,
        *,
        resource_id: str,
        resource_kind: str,
        token_address: str,
        access_level: str,
        is_temporary: bool,
        expires_at: datetime | None,
        restrictions: dict[str, Any],
        created_by_user_id: int,
        now_utc: datetime,
    ) -> AccessRule | None:
        stmt = insert(AccessRule).values(
            resource_id=resource_id,
            resource_kind=resource_kind,
            token_address=token_address,
            access_level=access_level,
            is_temporary=is_temporary,
            expires_at=expires_at,
            restrictions=restrictions,
            created_by_user_id=created_by_user_id,
            is_active=True,
            created_at=now_utc,
            updated_at=now_utc,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_access_rules_token_resource",
            set_={
                "access_level": stmt.excluded.access_level,
                "is_temporary": stmt.excluded.is_temporary,
                "expires_at": stmt.excluded.expires_at,
                "restrictions": stmt.excluded.restrictions,
                "created_by_user_id": stmt.excluded.created_by_user_id,
                "is_active": True,
                "updated_at": stmt.excluded.updated_at,
            },
            # A rule keyed to another kind of resource with the same id is left untouched.
            where=AccessRule.resource_kind == stmt.excluded.resource_kind,
        ).returning(AccessRule)
        result = await session.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    @staticmethod
    async def deactivate_expired_temporary(session: AsyncSession, *, now_utc: datetime) -> int:
        stmt = (
            update(AccessRule)
            .where(
                AccessRule.is_active.is_(True),
                AccessRule.is_temporary.is_(True),
                AccessRule.expires_at <= now_utc,
            )
            .values(is_active=False, updated_at=now_utc)
        )
        result = await session.execute(stmt)
        return int(result.rowcount or 0)
