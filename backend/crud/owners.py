from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.inventory.holding import Holding
from db.owner import OWNER_TYPE_LOCATION, Owner


async def create_owner(db: AsyncSession, name: str, owner_type: str) -> Owner:
    owner = Owner(name=name, type=owner_type)
    db.add(owner)
    await db.commit()
    await db.refresh(owner)
    return owner


async def get_owner(db: AsyncSession, owner_id: int) -> Optional[Owner]:
    """Return the owner even when soft-deleted; callers decide what deleted means."""
    return await db.get(Owner, owner_id)


async def list_owners(db: AsyncSession, owner_type: Optional[str] = None) -> List[Owner]:
    q = select(Owner).where(Owner.deleted_at.is_(None))
    if owner_type:
        q = q.where(Owner.type == owner_type)
    res = await db.execute(q.order_by(Owner.name, Owner.id))
    return list(res.scalars().all())


async def update_owner_name(db: AsyncSession, owner_id: int, name: str) -> Optional[Owner]:
    owner = await db.get(Owner, owner_id)
    if not owner or owner.is_deleted:
        return None
    owner.name = name
    await db.commit()
    await db.refresh(owner)
    return owner


async def get_holding(db: AsyncSession, item_id: int, owner_id: int) -> Optional[int]:
    """
    Current quantity of an item held by an owner, or None when there is no row.

    These lookups are plain reads for callers; the transfer engine re-reads the
    same facts under its write lock instead.
    """
    res = await db.execute(
        select(Holding.quantity).where(Holding.item_id == item_id, Holding.owner_id == owner_id)
    )
    qty = res.scalar_one_or_none()
    return int(qty) if qty is not None else None


async def is_location(db: AsyncSession, owner_id: int) -> bool:
    """Non-locking check; deleted locations still count as locations."""
    res = await db.execute(select(Owner.type).where(Owner.id == owner_id))
    return res.scalar_one_or_none() == OWNER_TYPE_LOCATION


async def owner_exists(db: AsyncSession, owner_id: int) -> bool:
    """True for owners that exist and are not soft-deleted. Non-locking."""
    res = await db.execute(
        select(Owner.id).where(Owner.id == owner_id, Owner.deleted_at.is_(None))
    )
    return res.scalar_one_or_none() is not None
