from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import utcnow
from db.revoked_token import RevokedToken


async def revoke_token(db: AsyncSession, jti: str, expires_at: datetime) -> None:
    """Record a token id as revoked and drop entries whose tokens have expired."""
    await db.execute(delete(RevokedToken).where(RevokedToken.expires_at < utcnow()))
    await db.merge(RevokedToken(jti=jti, expires_at=expires_at))
    await db.commit()


async def is_token_revoked(db: AsyncSession, jti: str) -> bool:
    res = await db.execute(select(RevokedToken.jti).where(RevokedToken.jti == jti))
    return res.scalar_one_or_none() is not None
