import secrets
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db.setting import Setting

JWT_SECRET_KEY = "jwt_secret"


async def get_setting(db: AsyncSession, key: str) -> Optional[str]:
    res = await db.execute(select(Setting.value).where(Setting.key == key))
    return res.scalar_one_or_none()


async def get_or_create_jwt_secret(db: AsyncSession) -> str:
    """Return the stored signing secret, generating and persisting one on first use."""
    existing = await get_setting(db, JWT_SECRET_KEY)
    if existing:
        return existing
    db.add(Setting(key=JWT_SECRET_KEY, value=secrets.token_urlsafe(48)))
    try:
        await db.commit()
    except IntegrityError:
        # Another worker stored one first
        await db.rollback()
    return await get_setting(db, JWT_SECRET_KEY)
