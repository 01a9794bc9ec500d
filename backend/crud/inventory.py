"""
Read paths over the holdings ledger and the transfer log.

Everything here is read-only and runs on a plain request session; in WAL mode
these reads never wait on the transfer engine's write lock.
"""
from typing import Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from db.inventory.holding import Holding
from db.inventory.transfer import Transfer
from db.item import Item
from db.owner import Owner
from db.users import User

DEFAULT_TRANSFER_LIMIT = 100
DASHBOARD_RECENT_TRANSFERS = 10


def _holding_row(r) -> Dict:
    return {
        "item_id": r.item_id,
        "item_name": r.item_name,
        "owner_id": r.owner_id,
        "owner_name": r.owner_name,
        "owner_type": r.owner_type,
        "quantity": int(r.quantity),
    }


def _holdings_query():
    return (
        select(
            Holding.item_id,
            Item.name.label("item_name"),
            Holding.owner_id,
            Owner.name.label("owner_name"),
            Owner.type.label("owner_type"),
            Holding.quantity,
        )
        .join(Item, Item.id == Holding.item_id)
        .join(Owner, Owner.id == Holding.owner_id)
    )


async def list_inventory(db: AsyncSession) -> List[Dict]:
    res = await db.execute(_holdings_query().order_by(Item.name, Owner.name, Holding.owner_id))
    return [_holding_row(r) for r in res.all()]


async def get_item_distribution(db: AsyncSession, item_id: int) -> List[Dict]:
    """Who holds an item, locations before people (type sorts alphabetically)."""
    q = _holdings_query().where(Holding.item_id == item_id).order_by(Owner.type, Owner.name, Owner.id)
    res = await db.execute(q)
    return [_holding_row(r) for r in res.all()]


async def get_owner_inventory(db: AsyncSession, owner_id: int) -> List[Dict]:
    q = _holdings_query().where(Holding.owner_id == owner_id).order_by(Item.name, Item.id)
    res = await db.execute(q)
    return [_holding_row(r) for r in res.all()]


def _transfers_query():
    from_owner = aliased(Owner)
    to_owner = aliased(Owner)
    q = (
        select(
            Transfer,
            Item.name.label("item_name"),
            from_owner.name.label("from_owner_name"),
            to_owner.name.label("to_owner_name"),
            User.username.label("transferred_by_username"),
        )
        .join(Item, Item.id == Transfer.item_id)
        .join(from_owner, from_owner.id == Transfer.from_owner_id)
        .join(to_owner, to_owner.id == Transfer.to_owner_id)
        .outerjoin(User, User.id == Transfer.transferred_by)
    )
    return q


def _transfer_row(r) -> Dict:
    out = r.Transfer.to_schema
    out.update(
        {
            "item_name": r.item_name,
            "from_owner_name": r.from_owner_name,
            "to_owner_name": r.to_owner_name,
            "transferred_by_username": r.transferred_by_username,
        }
    )
    return out


async def list_transfers(
    db: AsyncSession,
    item_id: Optional[int] = None,
    owner_id: Optional[int] = None,
    limit: int = DEFAULT_TRANSFER_LIMIT,
) -> List[Dict]:
    """Newest first. ``owner_id`` matches either side of the transfer."""
    q = _transfers_query()
    if item_id is not None:
        q = q.where(Transfer.item_id == item_id)
    if owner_id is not None:
        q = q.where(or_(Transfer.from_owner_id == owner_id, Transfer.to_owner_id == owner_id))
    # id order is commit order for transfers that contended on the write lock
    q = q.order_by(Transfer.id.desc()).limit(limit)
    res = await db.execute(q)
    return [_transfer_row(r) for r in res.all()]


async def get_transfer(db: AsyncSession, transfer_id: int) -> Optional[Dict]:
    res = await db.execute(_transfers_query().where(Transfer.id == transfer_id))
    row = res.first()
    return _transfer_row(row) if row else None


async def get_item_history(db: AsyncSession, item_id: int, limit: int = DEFAULT_TRANSFER_LIMIT) -> List[Dict]:
    return await list_transfers(db, item_id=item_id, limit=limit)


async def get_dashboard(db: AsyncSession, recent: int = DASHBOARD_RECENT_TRANSFERS) -> Dict:
    inventory = await list_inventory(db)
    totals = {
        "items": len({row["item_id"] for row in inventory}),
        "holdings": len(inventory),
        "units": sum(row["quantity"] for row in inventory),
    }
    return {
        "inventory": inventory,
        "totals": totals,
        "recent_transfers": await list_transfers(db, limit=recent),
    }
