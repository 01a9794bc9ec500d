from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.auth import current_active_user
from crud import inventory as inventory_crud
from db.database import get_async_session, get_session_maker
from db.users import User
from schemas.transfers import TransferCreate
from services.transfer_engine import TransferEngine, get_transfer_engine

router = APIRouter()

MAX_TRANSFER_LIMIT = 1000


@router.post("", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_transfer(
    payload: TransferCreate,
    user: User = Depends(current_active_user),
    engine: TransferEngine = Depends(get_transfer_engine),
    session_maker: async_sessionmaker = Depends(get_session_maker),
):
    """
    Move stock of one item between two owners.

    - Any authenticated user may transfer.
    - 400 for self-transfer or a non-positive quantity, 404 for unknown
      item/owner, 409 when the source holds too little, 503 when the store is busy.
    """
    transfer = await engine.execute(
        payload.item_id,
        payload.from_owner_id,
        payload.to_owner_id,
        payload.quantity,
        notes=payload.notes,
        actor=user.id,
    )
    # The request session already holds a read snapshot from the user lookup,
    # which predates the commit
    async with session_maker() as s:
        return await inventory_crud.get_transfer(s, transfer.id)


@router.get("", response_model=List[Dict])
async def list_transfers(
    item_id: Optional[int] = Query(default=None),
    owner_id: Optional[int] = Query(default=None),
    limit: int = Query(default=inventory_crud.DEFAULT_TRANSFER_LIMIT, ge=1, le=MAX_TRANSFER_LIMIT),
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    return await inventory_crud.list_transfers(db, item_id=item_id, owner_id=owner_id, limit=limit)


@router.get("/{transfer_id}", response_model=Dict)
async def get_transfer(
    transfer_id: int,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    out = await inventory_crud.get_transfer(db, transfer_id)
    if out is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transfer not found")
    return out
