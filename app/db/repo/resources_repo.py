from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.gated_resources import GatedResource


class ResourcesRepo:
    @staticmethod
    async def get(
        session: AsyncSession,
        *,
        resource_kind: str,
        resource_id: str,
    ) -> GatedResource | None:
        return await session.get(GatedResource, (resource_kind, resource_id))
