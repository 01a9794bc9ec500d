from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import undefer

from db.database import utcnow
from db.item import ITEM_STATUS_ACTIVE, Item


async def create_item(
    db: AsyncSession,
    name: str,
    description: Optional[str] = None,
    status: str = ITEM_STATUS_ACTIVE,
) -> Item:
    item = Item(name=name, description=description, status=status)
    db.add(item)
    await db.commit()
    await db.refresh(item)
    return item


async def get_item(db: AsyncSession, item_id: int) -> Optional[Item]:
    return await db.get(Item, item_id)


async def list_items(db: AsyncSession, status: Optional[str] = None) -> List[Item]:
    q = select(Item).where(Item.deleted_at.is_(None))
    if status:
        q = q.where(Item.status == status)
    res = await db.execute(q.order_by(Item.name, Item.id))
    return list(res.scalars().all())


async def update_item(db: AsyncSession, item_id: int, changes: dict) -> Optional[Item]:
    """Apply name/description/status changes; keys absent from ``changes`` are left alone."""
    item = await db.get(Item, item_id)
    if not item or item.is_deleted:
        return None
    for field in ("name", "description", "status"):
        if field in changes:
            setattr(item, field, changes[field])
    item.updated_at = utcnow()
    await db.commit()
    await db.refresh(item)
    return item


async def soft_delete_item(db: AsyncSession, item_id: int) -> bool:
    item = await db.get(Item, item_id)
    if not item or item.is_deleted:
        return False
    item.deleted_at = utcnow()
    await db.commit()
    return True


async def set_item_image(db: AsyncSession, item_id: int, data: bytes, mime: str) -> bool:
    item = await db.get(Item, item_id)
    if not item or item.is_deleted:
        return False
    item.image = data
    item.image_mime = mime
    item.updated_at = utcnow()
    await db.commit()
    return True


async def get_item_image(db: AsyncSession, item_id: int) -> Optional[Tuple[bytes, str]]:
    res = await db.execute(
        select(Item).options(undefer(Item.image)).where(Item.id == item_id, Item.deleted_at.is_(None))
    )
    item = res.scalar_one_or_none()
    if not item or item.image is None:
        return None
    return item.image, item.image_mime or "application/octet-stream"
