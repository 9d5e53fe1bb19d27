from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.access_grants import AccessGrant


class AccessGrantsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, grant_id: UUID) -> AccessGrant | None:
        return await session.get(AccessGrant, grant_id)

    @staticmethod
    async def get_by_id_for_update(session: AsyncSession, grant_id: UUID) -> AccessGrant | None:
        stmt = select(AccessGrant).where(AccessGrant.id == grant_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_token(session: AsyncSession, token: str) -> AccessGrant | None:
        stmt = select(AccessGrant).where(AccessGrant.token == token)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_token_for_update(session: AsyncSession, token: str) -> AccessGrant | None:
        stmt = select(AccessGrant).where(AccessGrant.token == token).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_active_for_user_resource_for_update(
        session: AsyncSession,
        *,
        user_id: int,
        resource_kind: str,
        resource_id: str,
    ) -> AccessGrant | None:
        stmt = (
            select(AccessGrant)
            .where(
                AccessGrant.user_id == user_id,
                AccessGrant.resource_kind == resource_kind,
                AccessGrant.resource_id == resource_id,
                AccessGrant.status == "ACTIVE",
            )
            .order_by(AccessGrant.created_at.desc())
            .limit(1)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(session: AsyncSession, *, grant: AccessGrant) -> AccessGrant:
        session.add(grant)
        await session.flush()
        return grant

    @staticmethod
    async def list_live_for_user(
        session: AsyncSession,
        *,
        user_id: int,
        now_utc: datetime,
        limit: int = 100,
    ) -> list[AccessGrant]:
        stmt = (
            select(AccessGrant)
            .where(
                AccessGrant.user_id == user_id,
                AccessGrant.status == "ACTIVE",
                AccessGrant.expires_at > now_utc,
            )
            .order_by(AccessGrant.created_at.desc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def sum_usage_for_user_resource(
        session: AsyncSession,
        *,
        user_id: int,
        resource_kind: str,
        resource_id: str,
        access_levels: Sequence[str],
    ) -> int:
        stmt = select(func.coalesce(func.sum(AccessGrant.usage_count), 0)).where(
            AccessGrant.user_id == user_id,
            AccessGrant.resource_kind == resource_kind,
            AccessGrant.resource_id == resource_id,
            AccessGrant.access_level.in_(tuple(access_levels)),
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def list_user_agents_for_user_resource(
        session: AsyncSession,
        *,
        user_id: int,
        resource_kind: str,
        resource_id: str,
    ) -> set[str]:
        stmt = (
            select(AccessGrant.user_agent)
            .where(
                AccessGrant.user_id == user_id,
                AccessGrant.resource_kind == resource_kind,
                AccessGrant.resource_id == resource_id,
                AccessGrant.user_agent.is_not(None),
            )
            .distinct()
        )
        result = await session.execute(stmt)
        return {str(user_agent) for user_agent in result.scalars().all()}

    @staticmethod
    async def expire_active(session: AsyncSession, *, now_utc: datetime) -> int:
        stmt = (
            update(AccessGrant)
            .where(
                AccessGrant.status == "ACTIVE",
                AccessGrant.expires_at <= now_utc,
            )
            .values(status="EXPIRED", updated_at=now_utc)
        )
        result = await session.execute(stmt)
        return int(result.rowcount or 0)
