from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.users import User


async def list_active_users(db: AsyncSession) -> List[User]:
    res = await db.execute(
        select(User).where(User.deleted_at.is_(None)).order_by(User.username)
    )
    return list(res.scalars().all())


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    res = await db.execute(
        select(User).where(User.username == username, User.deleted_at.is_(None))
    )
    return res.scalar_one_or_none()


async def count_users(db: AsyncSession) -> int:
    res = await db.execute(select(func.count(User.id)))
    return int(res.scalar_one())
