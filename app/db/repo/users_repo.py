from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.user_wallets import UserWallet
from app.db.models.users import User


class UsersRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, user_id: int) -> User | None:
        return await session.get(User, user_id)

    @staticmethod
    async def list_wallet_addresses(session: AsyncSession, user_id: int) -> list[str]:
        stmt = (
            select(UserWallet.address)
            .where(UserWallet.user_id == user_id)
            .order_by(UserWallet.is_primary.desc(), UserWallet.id.asc())
        )
        result = await session.execute(stmt)
        return [str(address) for address in result.scalars().all()]
